# (c) Copyright 2022 Aaron Kimball

import os
import os.path
import time
import tracemalloc
import traceback

from heapdbg.aliases import AliasTable
import heapdbg.builtin_commands as builtin_commands
from heapdbg.commands import InvalidOperationError, run_command
import heapdbg.dump as dump
from heapdbg.parser import CommandParser
import heapdbg.serialize as serialize
from heapdbg.symbol import SymbolCache
import heapdbg.term as term

_LOCAL_CONF_FILENAME = os.path.expanduser("~/.heapdbg.conf")
_DEFAULT_HISTORY_FILENAME = os.path.expanduser("~/.heapdbg_history")

# Warn when more than this many temporary (hyperlink) aliases are outstanding.
_DEFAULT_TEMP_ALIAS_WARN_THRESHOLD = 100

COMMAND_SEPARATOR = ';'
COMMENT_TOKEN = '#'

_dbg_conf_keys = [
    "dbg.alias.warn",       # Outstanding temporary alias count that triggers a warning.
    "dbg.colors",
    "dbg.conf.formatversion",
    "dbg.diag",             # Print time & memory diagnostics after each command?
    "dbg.historyfile",
    "dbg.hyperlinks",       # Emit clickable command aliases in command output?
    "dbg.symbolpath",
    "dbg.verbose",
]


def _silent(*args):
    """
        dummy method to turn verboseprint() calls to nothing
    """
    pass


# Control codes for verboseprint() - if this sequence preceeds an int, provides instructions on
# how to format it when printed.
VDEC = b'\x00\xFF\x0a'  # Print base 10
VHEX = b'\x00\xFF\x10'  # Print base 16
VHEX8 = b'\x00\xFF\x10\x08'  # Print base 16, 0-pad to 8 places
VHEX16 = b'\x00\xFF\x10\x10'  # Print base 16, 0-pad to 16 places


class TimeAndMemory(object):
    """
    Scope that reports elapsed time and python heap usage of the enclosed block
    through the context's info channel. Does nothing unless enabled.
    """

    _active_scopes = 0  # Enabled scopes currently open; only the outermost resets the peak.

    def __init__(self, enabled, context):
        self._enabled = enabled
        self._context = context
        self._started_tracing = False
        self._start_time = None
        self._start_mem = 0

    def __enter__(self):
        if not self._enabled:
            return self

        if not tracemalloc.is_tracing():
            tracemalloc.start()
            self._started_tracing = True
        elif TimeAndMemory._active_scopes == 0:
            tracemalloc.reset_peak()
        TimeAndMemory._active_scopes += 1
        self._start_mem = tracemalloc.get_traced_memory()[0]
        self._start_time = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc_value, tb):
        if not self._enabled:
            return False

        TimeAndMemory._active_scopes -= 1
        elapsed_ms = (time.perf_counter() - self._start_time) * 1000
        (end_mem, peak_mem) = tracemalloc.get_traced_memory()
        if self._started_tracing:
            tracemalloc.stop()
            self._started_tracing = False

        self._context.write_info(
            f'Time: {elapsed_ms:.0f} ms, Memory start: {self._start_mem // 1024:,}kb, ' +
            f'Memory end: {end_mem // 1024:,}kb, ' +
            f'Memory delta: {(end_mem - self._start_mem) // 1024:+,}kb, ' +
            f'Peak: {peak_mem // 1024:,}kb')
        return False


class CommandExecutionContext(object):
    """
    Shared state of a debugging session.

    Every command is executed against this object: it holds the loaded runtime and heap,
    the current thread, the alias table, symbol cache, defines buffer, configuration,
    and the Printer that all output flows through. It also hosts the command dispatch loop.
    """

    def __init__(self, printer, registry=None, force_config=None, history_change_hook=None):
        """
        @param printer the term.Printer for all output. The context releases it in close().
        @param registry the commands.CommandRegistry to dispatch against; defaults to the
            builtin command set.
        @param force_config if not None, provides config inputs and suppresses loading from
            the user config file. Also suppresses subsequent writes to the user config file
            if settings change.
        @param history_change_hook a function to call when the history filename is changed.
        """
        self.printer = printer
        self._history_change_hook = history_change_hook

        self.should_quit = False
        self.runtime = None
        self.heap = None
        self.heap_index = None
        self.current_managed_thread_id = 0
        self.dump_file = None
        self.process_id = 0
        self.target = None

        self.aliases = AliasTable()
        self.symbol_cache = SymbolCache()
        self.defines = []

        self.registry = registry or builtin_commands.build_registry()
        self._parser = CommandParser(self.registry, self.write)
        self._dispatch_depth = 0   # >0 while inside execute_command(); nested calls via aliases.

        self.verboseprint = _silent  # verboseprint() method is either _silent() or
                                     # _verbose_print_all()

        self._do_persist_config_changes = (force_config is None)
        self._init_config_from_file(force_config)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_value, tb):
        self.close()
        return False

    ###### Session state

    @property
    def current_thread(self):
        """ The ManagedThread selected with `~`, or None. """
        if self.runtime is None:
            return None
        return self.runtime.thread_by_id(self.current_managed_thread_id)

    @property
    def hyperlink_output(self):
        return bool(self.get_conf('dbg.hyperlinks'))

    @hyperlink_output.setter
    def hyperlink_output(self, enabled):
        self.set_conf('dbg.hyperlinks', bool(enabled))

    @property
    def dispatch_depth(self):
        """ How many execute_command() calls are active; 1 for a plain top-level command. """
        return self._dispatch_depth

    @property
    def symbol_path(self):
        return self.get_conf('dbg.symbolpath')

    def open_dump(self, dump_filename):
        """
        Load a snapshot dump and make it the session's target. Raises
        dump.DumpFormatError if the file cannot be loaded.
        """
        target = dump.load_dump(dump_filename)

        self.target = target
        self.dump_file = target.filename
        self.process_id = target.process_id
        self.runtime = target.runtime
        self.heap = target.heap
        self.heap_index = target.heap_index()

        self.symbol_cache.clear()
        for sym in target.symbols:
            self.symbol_cache.add(sym)

        if self.runtime.threads:
            self.current_managed_thread_id = self.runtime.threads[0].managed_thread_id
        else:
            self.current_managed_thread_id = 0

        self.verboseprint("Loaded dump ", self.dump_file, ": ", VDEC, len(self.runtime.threads),
                          " threads, ", VDEC, len(self.heap), " objects, ", VDEC,
                          len(self.symbol_cache), " symbols")
        return target

    def create_dump_target(self):
        """
        Load a fresh, independent DumpTarget for the session's dump file.

        Only possible when the session was opened on a dump file.
        """
        if not self.dump_file:
            raise InvalidOperationError("Dump targets can be created only for dump files at this point.")

        target = dump.load_dump(self.dump_file)
        target.symbol_path = self.symbol_path
        return target

    def close(self):
        """
        End the session and release the printer. Safe to call more than once.
        """
        if self.printer is None:
            return

        printer = self.printer
        self.printer = None
        printer.close()

    ###### Command dispatch

    def execute_command(self, input_command, display_diagnostics=None):
        """
        Execute every ';'-separated command in `input_command`, in order.

        Failure of one command does not stop the rest. Temporary aliases are removed
        after each top-level command completes.
        """
        commands = [cmd for cmd in input_command.split(COMMAND_SEPARATOR) if cmd]
        for command in commands:
            self._dispatch_depth += 1
            try:
                self.execute_one_command(command, display_diagnostics)
            finally:
                self._dispatch_depth -= 1
                if self._dispatch_depth == 0:
                    self.remove_temporary_aliases()

    def _make_command(self, parts):
        """
        Return the Command for a list of tokens, or None if they do not parse.
        """

        # The trailing text of `.newalias` and `!hq` is captured as-is; it may contain
        # flag-like tokens (e.g. '--type') that belong to the aliased command or query.
        keyword = parts[0].lower()
        if keyword == builtin_commands.HEAP_QUERY_KEYWORD and len(parts) >= 2:
            return builtin_commands.HeapQuery(output_format=parts[1], query=parts[2:])
        elif keyword == builtin_commands.NEW_ALIAS_KEYWORD and len(parts) >= 2:
            return builtin_commands.CreateAlias(alias_name=parts[1], alias_command=parts[2:])
        else:
            return self._parser.parse(parts)

    def execute_one_command(self, command, display_diagnostics=None):
        """
        Parse and execute a single command (no ';' splitting).
        """
        parts = command.split()
        if len(parts) == 0:
            return

        if parts[0] == COMMENT_TOKEN:
            return # Lines starting with # are comments

        if display_diagnostics is None:
            display_diagnostics = self.get_conf('dbg.diag')

        cmd = self._make_command(parts)
        try:
            if cmd is not None:
                self.verboseprint("Executing ", repr(cmd))
                with TimeAndMemory(display_diagnostics, self):
                    result = run_command(cmd, self)

                if not result.succeeded:
                    self.write_error(f"Exception during command execution -- {result.category}: " +
                                     f"'{result.message}'")
                    self.write_error("Proceed at your own risk, or restart the debugging session.")
                    if result.exception is not None:
                        self.verboseprint(''.join(traceback.format_exception(
                            type(result.exception), result.exception,
                            result.exception.__traceback__)))

            # Segments nested in an alias run leave their links in place; the outermost
            # segment counts them once they are all issued.
            if self._dispatch_depth <= 1:
                self._warn_temporary_alias_count()
        finally:
            if self.printer is not None:
                self.printer.command_ended()

    def _warn_temporary_alias_count(self):
        temp_count = self.aliases.temporary_count()
        warn_at = self.get_conf('dbg.alias.warn')
        if warn_at is None:
            warn_at = _DEFAULT_TEMP_ALIAS_WARN_THRESHOLD
        if self.hyperlink_output and temp_count > warn_at:
            self.write_warning(f"Hyperlinks are enabled. You currently have {temp_count} " +
                               "temporary aliases. Use .clearalias --temporary to clear them.")

    ###### Aliases

    def _add_temporary_alias(self, command):
        return self.aliases.add_temporary(command)

    def remove_temporary_aliases(self):
        return self.aliases.remove_temporary()

    ###### Output

    def write(self, text):
        self.printer.write_command_output(text)

    def write_line(self, text=''):
        self.printer.write_command_output(text + '\n')

    def write_error(self, text):
        self.printer.write_error(text + '\n')

    def write_warning(self, text):
        self.printer.write_warning(text + '\n')

    def write_info(self, text):
        self.printer.write_info(text + '\n')

    def write_link(self, text, command):
        """
        Write `text` followed by a clickable reference that runs `command`.
        With hyperlinks disabled, only `text` is written.
        """
        if self.hyperlink_output:
            alias = self._add_temporary_alias(command)
            self.write(text + " ")
            self.printer.write_link(f"[{alias}]")
        else:
            self.write(text)

    ###### Configuration file / config key management functions.

    def _set_conf_defaults(self, conf_map=None):
        """
        Populate conf_map with all our config keys, and initialize any default values.
        """
        if conf_map is None:
            conf_map = {}

        for k in _dbg_conf_keys:
            conf_map[k] = None

        conf_map["dbg.conf.formatversion"] = serialize.DBG_CONF_FMT_VERSION
        conf_map["dbg.alias.warn"] = _DEFAULT_TEMP_ALIAS_WARN_THRESHOLD
        conf_map["dbg.colors"] = True
        conf_map["dbg.diag"] = False
        conf_map["dbg.historyfile"] = _DEFAULT_HISTORY_FILENAME
        conf_map["dbg.hyperlinks"] = True
        conf_map["dbg.symbolpath"] = ''
        conf_map["dbg.verbose"] = False

        return conf_map

    def _init_config_from_file(self, force_config=None):
        """
        Initialize self._config with defaults, overridden by force_config if given, or by
        the user's config file (see _LOCAL_CONF_FILENAME) if it exists.
        """
        defaults = self._set_conf_defaults()
        if force_config is not None:
            for (key, val) in force_config.items():
                defaults[key] = val

        if os.path.exists(_LOCAL_CONF_FILENAME) and force_config is None:
            new_conf = serialize.load_config_file(_LOCAL_CONF_FILENAME, 'config', defaults)
        else:
            new_conf = defaults

        # Drop anything an older/newer version of this program put in the file.
        self._config = dict([(k, v) for (k, v) in new_conf.items() if k in _dbg_conf_keys])

        self._config_verbose_print()
        self._config_history_file()

        if force_config is None:
            self.verboseprint("Loaded config from file: ", _LOCAL_CONF_FILENAME)
        else:
            self.verboseprint("Used programmatic configuration")
        self.verboseprint("Loaded configuration: ", self._config)

    def _persist_config(self):
        """
        Write the current config out to a file to reload the next time we start.
        """

        if not self._do_persist_config_changes:
            return

        # Don't let user session change this value; we know what serialization version we're
        # writing.
        self._config["dbg.conf.formatversion"] = serialize.DBG_CONF_FMT_VERSION
        serialize.persist_config_file(_LOCAL_CONF_FILENAME, 'config', self._config)

    def set_conf(self, key, val, persist=True):
        """
        Set a key-value pair in the configuration map.
        Then process any triggers associated with that key.
        If persist is False, the change lasts only for this session.
        """
        if key not in _dbg_conf_keys:
            raise KeyError("Not a valid conf key: %s" % key)

        self._config[key] = val

        # Process triggers for specific keys
        if key == "dbg.verbose" or key == "dbg.colors":
            self._config_verbose_print()
        if key == "dbg.historyfile":
            self._config_history_file()

        if persist:
            self._persist_config()  # Write changes to conf file.

    def get_conf(self, key):
        if key not in _dbg_conf_keys:
            raise KeyError("Not a valid conf key: %s" % key)
        return self._config[key]

    def get_full_config(self):
        """
        Return all user-configurable configuration key-val pairs.
        """
        return self._config.items()

    def get_conf_keys(self):
        """
        Return the set of valid configuration keys for use with 'set'.
        """
        return _dbg_conf_keys

    def _make_verbose_print_fn(self):
        """
        Return a 'verboseprint()' method that writes to the debug channel of our printer.
        """

        def _verbose_print_all(*args):
            """
            Verbose printing method that lazily concatenates its arguments rather than requiring
            callers to compute an f'string that might get swallowed by _silent() if verbose
            printing is disabled.
            """

            s = ''
            next_ctrl = None
            for arg in args:
                if isinstance(arg, bytes):
                    if arg == VDEC or arg == VHEX or arg == VHEX8 or arg == VHEX16:
                        next_ctrl = arg
                        continue
                    else:
                        # Just a byte string to format.
                        s += repr(arg)
                elif next_ctrl is not None and isinstance(arg, int):
                    if next_ctrl == VDEC:
                        s += f'{arg}'
                    elif next_ctrl == VHEX:
                        s += f'{arg:x}'
                    elif next_ctrl == VHEX8:
                        s += f'{arg:08x}'
                    elif next_ctrl == VHEX16:
                        s += f'{arg:016x}'
                elif isinstance(arg, str):
                    s += arg
                else:
                    s += repr(arg)

                next_ctrl = None

            if self.printer is not None:
                self.printer.write_debug(s + '\n')

        return _verbose_print_all

    def _config_verbose_print(self):
        term.set_use_colors(self._config['dbg.colors'])
        if self._config['dbg.verbose']:
            self.verboseprint = self._make_verbose_print_fn()
        else:
            self.verboseprint = _silent

    def _config_history_file(self):
        history_filename = self._config['dbg.historyfile']

        if history_filename is not None:
            # Canonicalize path before storing in conf/file.
            history_filename = os.path.abspath(os.path.expanduser(history_filename))
            self._config['dbg.historyfile'] = history_filename

        if self._history_change_hook is not None:
            # Invoke installed callback (likely installed by repl)
            self._history_change_hook(history_filename)

    def set_history_change_hook(self, history_hook):
        """
        Set a function to invoke whenever the active readline history filename is changed.
        This function will be invoked immediately with the current history filename.
        """
        self._history_change_hook = history_hook
        history_hook(self.get_conf('dbg.historyfile'))
