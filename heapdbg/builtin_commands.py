# (c) Copyright 2022 Aaron Kimball
#
# The commands available in the debugger console.

import argparse
import functools
import json

from heapdbg.aliases import AliasError
from heapdbg.commands import Command, CommandRegistry, CommandResult, Completions, \
    InvalidOperationError, Verb
import heapdbg.dump as dump

# Keywords of the two commands whose trailing text is captured verbatim rather than
# parsed as flags; see CommandExecutionContext.execute_one_command().
HEAP_QUERY_KEYWORD = '!hq'
NEW_ALIAS_KEYWORD = '.newalias'

HEAP_QUERY_FORMATS = ['tabular', 'json']

# An alias that (indirectly) runs itself would otherwise recurse without bound.
MAX_ALIAS_DEPTH = 32


def _softint(intstr, base=10):
    """
        Try to convert intstr to an int; if it fails, return None instead of ValueError like int()
    """
    try:
        return int(intstr, base)
    except ValueError:
        return None


def _address(text):
    """
    argparse type for a heap/code address in hex, with or without a 0x prefix.
    """
    addr = _softint(text, 16)
    if addr is None or addr < 0:
        raise argparse.ArgumentTypeError(f"not a hex address: '{text}'")
    return addr


def _require_heap(context):
    if context.heap is None:
        raise InvalidOperationError("No heap is loaded; open a dump with .load <filename>")
    return context.heap


def _require_runtime(context):
    if context.runtime is None:
        raise InvalidOperationError("No runtime is loaded; open a dump with .load <filename>")
    return context.runtime


def _require_heap_index(context):
    _require_heap(context)
    if context.heap_index is None:
        raise InvalidOperationError("No heap index has been built for this heap")
    return context.heap_index


###### Aliases

@Verb(keywords=[NEW_ALIAS_KEYWORD], completions=[Completions.NONE, Completions.KW])
class CreateAlias(Command):
    """
    Create an alias for a command

        Syntax: .newalias <name> <command...>

    Everything after the alias name is stored verbatim as the alias's command text, and
    may contain %1, %2, ... placeholders that are filled in from the arguments given
    when the alias is run with `% <name> [args...]`. An existing alias with the same
    name is replaced. Names of the form a<number> are reserved for hyperlinks.
    """

    @classmethod
    def add_arguments(cls, parser):
        parser.add_argument('alias_name')
        parser.add_argument('alias_command', nargs=argparse.REMAINDER)

    def execute(self, context):
        command_text = ' '.join(self.alias_command)
        if not command_text:
            raise AliasError(f"No command given for alias '{self.alias_name}'")

        context.aliases.add(self.alias_name, command_text)
        context.verboseprint("Alias ", self.alias_name, " => ", command_text)


@Verb(keywords=['.rmalias'], completions=[Completions.ALIAS])
class RemoveAlias(Command):
    """
    Remove an alias

        Syntax: .rmalias <name>
    """

    @classmethod
    def add_arguments(cls, parser):
        parser.add_argument('alias_name')

    def execute(self, context):
        context.aliases.remove(self.alias_name)


@Verb(keywords=['.clearalias'], completions=[['--temporary', '--all']])
class ClearAliases(Command):
    """
    Remove all aliases

        Syntax: .clearalias [--temporary | --all]

    With no flags, removes every alias created with .newalias. With --temporary, removes
    the aliases generated for hyperlinks instead. --all removes both kinds.
    """

    @classmethod
    def add_arguments(cls, parser):
        group = parser.add_mutually_exclusive_group()
        group.add_argument('--temporary', action='store_true')
        group.add_argument('--all', action='store_true')

    def execute(self, context):
        if self.all:
            count = context.aliases.clear_all()
        elif self.temporary:
            count = context.remove_temporary_aliases()
        else:
            count = context.aliases.clear_persistent()
        context.write_info(f"Removed {count} aliases.")


@Verb(keywords=['.listalias'])
class ListAliases(Command):
    """
    List all aliases

    Aliases generated for hyperlinks are marked with '*'.
    """

    def execute(self, context):
        if len(context.aliases) == 0:
            context.write_line("No aliases defined.")
            return

        for (name, expansion) in context.aliases.items():
            marker = '*' if context.aliases.is_temporary(name) else ' '
            context.write_line(f'{marker} {name:<12} {expansion}')


@Verb(keywords=['%'], completions=[Completions.ALIAS])
class ExecuteAlias(Command):
    """
    Run the command stored in an alias

        Syntax: % <name> [args...]

    Any %1, %2, ... placeholders in the alias are replaced by the corresponding args.
    The alias may contain multiple ';'-separated commands.
    """

    @classmethod
    def add_arguments(cls, parser):
        parser.add_argument('alias_name')
        parser.add_argument('params', nargs=argparse.REMAINDER)

    def execute(self, context):
        if context.dispatch_depth > MAX_ALIAS_DEPTH:
            raise AliasError(f"Alias '{self.alias_name}' nested more than {MAX_ALIAS_DEPTH} deep")

        command_text = context.aliases.expand(self.alias_name, self.params)
        context.verboseprint("Expanded alias ", self.alias_name, " => ", command_text)
        context.execute_command(command_text)


###### Defines

@Verb(keywords=['.define'])
class Define(Command):
    """
    Add a helper definition for heap queries

        Syntax: .define <python statement...>

    Definitions are python statements (e.g. `def big(o): return o.size > 1024`). Every
    definition is executed before each heap query runs, and the names it binds can be
    used in the query expression.
    """

    @classmethod
    def add_arguments(cls, parser):
        parser.add_argument('text', nargs=argparse.REMAINDER)

    def execute(self, context):
        text = ' '.join(self.text)
        if not text:
            raise ValueError("Empty definition")
        compile(text, '<define>', 'exec') # Reject syntax errors now, not at query time.
        context.defines.append(text)
        context.write_info(f"Added definition #{len(context.defines) - 1}.")


@Verb(keywords=['.undefine'])
class Undefine(Command):
    """
    Remove a helper definition

        Syntax: .undefine <index>

    Use .listdefines to see the index of each definition.
    """

    @classmethod
    def add_arguments(cls, parser):
        parser.add_argument('index', type=int)

    def execute(self, context):
        if self.index < 0 or self.index >= len(context.defines):
            return CommandResult.failure('IndexError', f'No definition #{self.index}')
        del context.defines[self.index]


@Verb(keywords=['.listdefines'])
class ListDefines(Command):
    """
    List helper definitions for heap queries
    """

    def execute(self, context):
        if not context.defines:
            context.write_line("No definitions.")
        for (i, text) in enumerate(context.defines):
            context.write_line(f'#{i}. {text}')


###### Heap

@Verb(keywords=[HEAP_QUERY_KEYWORD], completions=[HEAP_QUERY_FORMATS])
class HeapQuery(Command):
    """
    Query the heap

        Syntax: !hq <tabular|json> <expression...>

    The expression is evaluated for every heap object, with these names bound:
    `obj`, `address`, `type`, `size`, `fields`, and `heap`, plus anything bound by
    .define statements. Objects for which it is true are displayed.

    e.g.: !hq tabular type == 'System.String' and size > 1024
    """

    @classmethod
    def add_arguments(cls, parser):
        parser.add_argument('output_format')
        parser.add_argument('query', nargs=argparse.REMAINDER)

    def execute(self, context):
        heap = _require_heap(context)

        output_format = self.output_format.lower()
        if output_format not in HEAP_QUERY_FORMATS:
            raise ValueError(f"Unknown output format '{self.output_format}'; use one of: " +
                             ', '.join(HEAP_QUERY_FORMATS))

        expression = ' '.join(self.query)
        if not expression:
            raise ValueError("Empty query")

        results = list(heap.query(expression, context.defines))

        if output_format == 'json':
            rows = []
            for obj in results:
                rows.append({'address': f'{obj.address:x}', 'type': obj.type_name,
                             'size': obj.size, 'fields': obj.fields})
            context.write_line(json.dumps(rows, indent=2, default=repr))
        else:
            context.write_line(f'{"Address":<16} {"Size":>8} Type')
            for obj in results:
                context.write_link(f'{obj.address:016x}', f'!do {obj.address:x}')
                context.write_line(f' {obj.size:>8} {obj.type_name}')
            context.write_line(f'Rows: {len(results)}')


@Verb(keywords=['!do', '!dumpobj'], completions=[Completions.NONE])
class DumpObject(Command):
    """
    Display a heap object and its fields

        Syntax: !do <address (hex)>

    Fields that refer to other heap objects are shown as links.
    """

    @classmethod
    def add_arguments(cls, parser):
        parser.add_argument('address', type=_address)

    def execute(self, context):
        heap = _require_heap(context)
        obj = heap.get_object(self.address)
        if obj is None:
            return CommandResult.failure('KeyError', f'No heap object at address {self.address:x}')

        context.write_line(f'Name:    {obj.type_name}')
        context.write_line(f'Address: {obj.address:x}')
        context.write_line(f'Size:    {obj.size}(0x{obj.size:x}) bytes')
        if not obj.fields:
            return

        context.write_line('Fields:')
        width = max(len(name) for name in obj.fields)
        for (name, value) in obj.fields.items():
            if heap.is_reference(value):
                target = heap.get_object(value)
                context.write_link(f'  {name:<{width}} = {value:x}', f'!do {value:x}')
                context.write_line(f' ({target.type_name})')
            else:
                context.write_line(f'  {name:<{width}} = {value!r}')


@Verb(keywords=['!dumpheap'], completions=[['--type', '--stat'], Completions.TYPE])
class DumpHeap(Command):
    """
    List the objects on the heap

        Syntax: !dumpheap [--type <substring>] [--stat]

    --type restricts the output to types whose name contains the substring. --stat
    shows per-type counts and total sizes instead of individual objects.
    """

    @classmethod
    def add_arguments(cls, parser):
        parser.add_argument('--type', dest='type_filter')
        parser.add_argument('--stat', action='store_true')

    def _matches(self, type_name):
        return self.type_filter is None or self.type_filter in type_name

    def execute(self, context):
        heap = _require_heap(context)

        if self.stat:
            index = _require_heap_index(context)
            context.write_line(f'{"Count":>8} {"TotalSize":>12} Type')
            total_count = 0
            for (type_name, count, total_size) in index.type_stats():
                if not self._matches(type_name):
                    continue
                total_count += count
                context.write(f'{count:>8} {total_size:>12} ')
                context.write_link(type_name, f'!dumpheap --type {type_name}')
                context.write_line()
            context.write_line(f'Total {total_count} objects')
            return

        context.write_line(f'{"Address":<16} {"Size":>8} Type')
        count = 0
        total_size = 0
        for obj in heap.objects():
            if not self._matches(obj.type_name):
                continue
            count += 1
            total_size += obj.size
            context.write_link(f'{obj.address:016x}', f'!do {obj.address:x}')
            context.write_line(f' {obj.size:>8} {obj.type_name}')
        context.write_line(f'Total {count} objects, {total_size} bytes')


@Verb(keywords=['!refs'], completions=[Completions.NONE])
class ObjectReferrers(Command):
    """
    List the heap objects that refer to an object

        Syntax: !refs <address (hex)>
    """

    @classmethod
    def add_arguments(cls, parser):
        parser.add_argument('address', type=_address)

    def execute(self, context):
        heap = _require_heap(context)
        index = _require_heap_index(context)
        if heap.get_object(self.address) is None:
            return CommandResult.failure('KeyError', f'No heap object at address {self.address:x}')

        referrers = index.referrers(self.address)
        context.write_line(f'Referenced by {len(referrers)} objects:')
        for addr in referrers:
            obj = heap.get_object(addr)
            context.write_link(f'  {addr:016x}', f'!do {addr:x}')
            context.write_line(f' {obj.type_name}')


###### Threads and stacks

@Verb(keywords=['!threads'])
class ListThreads(Command):
    """
    List the managed threads

    The current thread is marked with '*'. Use `~ <id>` to switch threads.
    """

    def execute(self, context):
        runtime = _require_runtime(context)
        context.write_line(f'  {"MgdId":>6} {"OSId":>8} State')
        for thread in runtime.threads:
            is_current = thread.managed_thread_id == context.current_managed_thread_id
            marker = '*' if is_current else ' '
            context.write(f'{marker} ')
            context.write_link(f'{thread.managed_thread_id:>6}', f'~ {thread.managed_thread_id}')
            name = f' "{thread.name}"' if thread.name else ''
            context.write_line(f' {thread.os_thread_id:>8x} {thread.state}{name}')


@Verb(keywords=['~'], completions=[Completions.THREAD])
class SwitchThread(Command):
    """
    Switch the current managed thread

        Syntax: ~ <managed thread id>
    """

    @classmethod
    def add_arguments(cls, parser):
        parser.add_argument('thread_id', type=int)

    def execute(self, context):
        runtime = _require_runtime(context)
        thread = runtime.thread_by_id(self.thread_id)
        if thread is None:
            raise ValueError(f"No managed thread with id {self.thread_id}")

        context.current_managed_thread_id = self.thread_id
        context.write_info(f"Current thread is now {thread}")


@Verb(keywords=['!clrstack', 'k'])
class ClrStack(Command):
    """
    Show the managed stack of the current thread

    Frames without a recorded method name are resolved against the symbol cache.
    """

    def execute(self, context):
        _require_runtime(context)
        thread = context.current_thread
        if thread is None:
            raise InvalidOperationError("No current thread; select one with ~ <id>")

        context.write_line(f'Thread {thread}')
        context.write_line(f'{"SP":<16} {"IP":<16} Method')
        for frame in thread.frames:
            method = frame.method
            if method is None:
                (sym, offset) = context.symbol_cache.nearest_sym(frame.ip)
                if sym is not None and sym.contains(frame.ip):
                    method = f'{sym.name}+0x{offset:x}'
                else:
                    method = '<unknown>'
            context.write_line(f'{frame.sp:016x} {frame.ip:016x} {method}')


@Verb(keywords=['ln'], completions=[Completions.SYM])
class ListNearest(Command):
    """
    Show the symbol nearest to an address

        Syntax: ln <address (hex) | symbol name>

    Given a symbol name, shows that symbol's address and extent instead.
    """

    @classmethod
    def add_arguments(cls, parser):
        parser.add_argument('target')

    def execute(self, context):
        sym = context.symbol_cache.lookup_sym(self.target)
        if sym is not None:
            context.write_line(f'{sym}')
            return

        address = _softint(self.target, 16)
        if address is None:
            raise ValueError(f"'{self.target}' is neither a symbol nor a hex address")
        (sym, offset) = context.symbol_cache.nearest_sym(address)
        if sym is None:
            context.write_line(f'No symbol found for {address:x}')
        elif offset == 0:
            context.write_line(f'Exact match: {sym}')
        else:
            context.write_line(f'{sym.name}+0x{offset:x}  ({sym})')


###### Session

@Verb(keywords=['.load'], completions=[Completions.PATH])
class LoadDump(Command):
    """
    Load a heap snapshot for debugging

        Syntax: .load <filename>

    Replaces whatever dump is currently loaded. The first thread becomes current.
    """

    @classmethod
    def add_arguments(cls, parser):
        parser.add_argument('filename')

    def execute(self, context):
        context.write_info(f"Loading heap snapshot from {self.filename}...")
        target = context.open_dump(self.filename)
        context.write_info(f"Process {target.process_id}: {len(target.runtime.threads)} threads, " +
                           f"{len(target.heap)} objects ({target.heap.total_size()} bytes).")


@Verb(keywords=['.dump'], completions=[Completions.PATH])
class CaptureDump(Command):
    """
    Save the loaded threads, heap and symbols to a snapshot file

        Syntax: .dump <filename>

    Later, you can load the file with `.load <filename>` or specify it on the command line
    of a later debugging session.
    """

    @classmethod
    def add_arguments(cls, parser):
        parser.add_argument('filename')

    def execute(self, context):
        runtime = _require_runtime(context)
        context.write_info(f"Writing heap snapshot to file ({self.filename})...")
        dump.capture_dump(runtime, self.filename, context.process_id, context.symbol_cache)
        context.write_info("Done.")


def _fmt_value(v, in_hex=False, quote_strs=False, level=0):
    """
        Format one config value for printing. If in_hex is True, and the value is
        an integer, it will be formatted in base 16.

        Strings are not-quoted by default; quote_strs is set to True for recursive calls
        for composite value formatting.
    """
    if callable(v):
        return "<function>"
    elif isinstance(v, bool):
        return f"{v}"
    elif isinstance(v, int):
        if in_hex:
            return f"0x{v:x}"
        else:
            return f"{v}"
    elif isinstance(v, str):
        if quote_strs:
            return f"'{v}'"
        else:
            return v
    elif isinstance(v, list):
        items = [ _fmt_value(v2, in_hex, True, level+1) for v2 in v ]
        if not items:
            return '[]'

        # Should we put these on a comma-delimited single line? Or wrap item-by-item onto
        # one line each? Depends on the max length of a single item.
        max_len = functools.reduce(max, [len(it) for it in items])
        if max_len < 50:
            join_str = ", "
        else:
            join_str = ",\n" + "  " * (level + 1)

        return '[' + join_str.join(items) + ']'
    else:
        return f"{v}"


def _parse_conf_value(v):
    """
    Convert a user-input string into the config value it denotes.
    We support bool, int (dec and 0xHEX), and empty string as 'None'.
    """
    if v.lower() == "true":
        return True
    elif v.lower() == "false":
        return False
    elif v == str(_softint(v)):
        return int(v)
    elif v.startswith("0x") and len(v) > 2 and _softint(v[2:], base=16) is not None:
        return int(v[2:], base=16)
    elif len(v) == 0:
        return None
    return v


@Verb(keywords=['set'], completions=[Completions.CONF_KEY])
class SetConf(Command):
    """
    Set or retrieve a config variable of the debugger

        Syntax: set [keyname [[=] value]]

    * If called with no arguments, this prints the entire config.
    * If called with just a setting name ("set foo"), print the setting value.
    * If called with "set keyname val", "set keyname = val", or "set keyname=val" then it
      updates the configuration with that value. If numeric, 'val' is assumed to be in
      base 10 unless it is prefixed with "0x".
    * If called with "set keyname =", will unset the setting (set it to None).

    Successful updates to the config are performed silently, and are persisted to a
    conf file in the user's home dir.

    e.g.: set dbg.hyperlinks False
    """

    @classmethod
    def add_arguments(cls, parser):
        parser.add_argument('args', nargs='*')

    def execute(self, context):
        argv = self.args

        if len(argv) == 0:
            context.write_line("Configurable debugger settings:")
            context.write_line("-------------------------------")
            for (k, v) in context.get_full_config():
                context.write_line(f"{k} = {_fmt_value(v)}")
            return

        if len(argv) == 1 and len(argv[0].split("=", 1)) == 1:
            # Got something of the form `set x`; just print value of x.
            k = argv[0]
            context.write_line(f"{k} = {_fmt_value(context.get_conf(k))}")
            return

        if len(argv) == 1:
            # `set k=v` format
            (k, v) = argv[0].split("=", 1)
        else:
            k = argv[0]
            start = 1
            if argv[start] == "=": # allow 'set x y' or 'set x = y' format.
                start = start + 1
            v = " ".join(argv[start:])

        context.set_conf(k.strip(), _parse_conf_value(v.strip()))


@Verb(keywords=['help', '?'], completions=[Completions.KW])
class Help(Command):
    """
    Print usage information

        Syntax: help [cmd]

    If given a specific command name, will print the usage info for that command.
    Otherwise, this help message lists all available commands.
    """

    @classmethod
    def add_arguments(cls, parser):
        parser.add_argument('command_name', nargs='?')

    def execute(self, context):
        if self.command_name:
            verb = context.registry.lookup(self.command_name)
            if verb is None:
                context.write_error(f"Error: No command {self.command_name} found.")
                context.write_line("Try 'help' to list all available commands.")
                return
            context.write_line(verb.long_help)
            return

        context.write_line("Commands")
        context.write_line("--------")
        for verb in context.registry.verbs():
            if verb.display_help:
                context.write_line(verb.short_help)

        context.write_line("")
        context.write_line("Separate multiple commands on one line with ';'. " +
                           "Lines starting with '#' are ignored.")
        context.write_line("While dbg.hyperlinks is on, output marks things you can follow with " +
                           "[aN]; each such alias lasts until its command ends.")
        context.write_line("")
        context.write_line("For more information, type: help <command>")


@Verb(keywords=['q', 'quit', 'exit'])
class Quit(Command):
    """
    Quit the debugger console
    """

    def execute(self, context):
        context.should_quit = True


ALL_COMMANDS = [
    CaptureDump,
    ClearAliases,
    ClrStack,
    CreateAlias,
    Define,
    DumpHeap,
    DumpObject,
    ExecuteAlias,
    HeapQuery,
    Help,
    ListAliases,
    ListDefines,
    ListNearest,
    ListThreads,
    LoadDump,
    ObjectReferrers,
    Quit,
    RemoveAlias,
    SetConf,
    SwitchThread,
    Undefine,
]


def build_registry():
    """
    Return a CommandRegistry over all the commands above.
    """
    return CommandRegistry(ALL_COMMANDS)
