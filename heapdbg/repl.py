# (c) Copyright 2022 Aaron Kimball

import os
import os.path
import readline
import signal
import traceback

from sortedcontainers import SortedList

from heapdbg.commands import Completions
import heapdbg.term as term


def _starting_with(items, prefix):
    return [item for item in items if item.startswith(prefix)]


class ReplAutoComplete(object):
    """
    readline tab-completion for the heapdbg console.

    The first token of a command completes to a verb; later tokens complete according
    to the `completions` list the verb declares in its @Verb decorator.
    """

    def __init__(self, context):
        self._context = context
        self._last_request = None   # (prefix, line buffer, state) answered last.
        self._suggestions = None    # Suggestion list computed for _last_request.

        self._by_class = {
            Completions.KW: self._keywords,
            Completions.ALIAS: self._aliases,
            Completions.SYM: self._symbols,
            Completions.TYPE: self._types,
            Completions.THREAD: self._threads,
            Completions.CONF_KEY: self._conf_keys,
        }

    def clear_cache(self):
        self._last_request = None
        self._suggestions = None

    def _keywords(self, prefix):
        return self._context.registry.keywords_by_prefix(prefix)

    def _aliases(self, prefix):
        return self._context.aliases.names_by_prefix(prefix)

    def _symbols(self, prefix):
        return self._context.symbol_cache.syms_by_prefix(prefix)

    def _types(self, prefix):
        index = self._context.heap_index
        return _starting_with(index.type_names(), prefix) if index is not None else []

    def _threads(self, prefix):
        runtime = self._context.runtime
        if runtime is None:
            return []
        return _starting_with([str(t.managed_thread_id) for t in runtime.threads], prefix)

    def _conf_keys(self, prefix):
        return _starting_with(self._context.get_conf_keys(), prefix)

    @staticmethod
    def _paths(prefix):
        """
        Complete a filesystem path. Directories end in '/' so the next [tab] descends
        into them; files end in ' ' to move on to the next token.
        """
        (head, tail) = os.path.split(prefix or '')
        searchdir = os.path.abspath(head or '.')
        if not os.path.isdir(searchdir):
            return []

        out = []
        for name in sorted(os.listdir(searchdir)):
            if not name.startswith(tail):
                continue
            path = os.path.join(head, name)
            if os.path.isdir(path):
                out.append(path + os.path.sep)
            else:
                out.append(path + ' ')
        return out

    def _suggest(self, tokens, prefix):
        if len(tokens) <= 1:
            return [kw + ' ' for kw in self._keywords(prefix)]

        completion_sets = self._context.registry.completions_for(tokens[0])
        arg_pos = len(tokens) - 2  # Index of the token being completed, after the verb.
        if completion_sets is None or arg_pos >= len(completion_sets):
            return []

        completion_set = completion_sets[arg_pos]
        if isinstance(completion_set, list):
            # An explicit list of choices.
            return [choice + ' ' for choice in SortedList(_starting_with(completion_set, prefix))]
        elif completion_set == Completions.NONE:
            return []
        elif completion_set == Completions.PATH:
            return self._paths(prefix)

        completer = self._by_class.get(completion_set)
        if completer is None:
            raise Exception(f"Unknown completion set: '{completion_set}'")
        return [item + ' ' for item in completer(prefix)]

    def suggest_for_line(self, line_buffer, prefix):
        """
        Return the completions for `prefix`, the token being typed at the end of
        `line_buffer`. Only the text after the last ';' is considered.
        """
        current_cmd = line_buffer.split(';')[-1]
        tokens = current_cmd.split()
        if not tokens or current_cmd[-1].isspace():
            tokens.append('')  # Starting a new token.
        return self._suggest(tokens, prefix)

    def complete(self, prefix, state):
        """
        readline completer entry point: return suggestion number `state` for `prefix`,
        or None when there are no more.
        """
        try:
            line_buffer = term.get_line_buffer()

            # readline asks for state 0, 1, 2, ... in turn; compute the list only once.
            if self._suggestions is None or self._last_request != (prefix, line_buffer, state - 1):
                self._suggestions = self.suggest_for_line(line_buffer, prefix) + [None]
            self._last_request = (prefix, line_buffer, state)

            return self._suggestions[state]
        except Exception as e:
            # readline discards exceptions raised by the completer.
            print(f'\nException in autocomplete: {e}')
            if self._context.get_conf("dbg.verbose"):
                traceback.print_tb(e.__traceback__)
            raise


class Repl(object):
    """
    The interactive prompt: reads lines with readline and dispatches them to the
    execution context until the user quits.
    """

    def __init__(self, context):
        self._context = context
        self._interrupts = 0 # Consecutive ^C presses at the prompt.

        signal.signal(signal.SIGINT, signal.default_int_handler)

        self._completer = ReplAutoComplete(context)
        readline.parse_and_bind('set bell-style none')
        readline.parse_and_bind('tab: complete')
        readline.set_completer_delims(" \t\r\n'\";")
        readline.set_completer(self._completer.complete)

        # The context calls back now with the configured history file, and again
        # whenever `set dbg.historyfile` changes it.
        self._history_filename = None
        context.set_history_change_hook(self._use_history_file)

    def _use_history_file(self, filename):
        if filename is None:
            self._history_filename = None
            return

        filename = os.path.normpath(filename)
        if filename == self._history_filename and os.path.exists(filename):
            return

        self._history_filename = filename
        if os.path.exists(filename):
            readline.read_history_file(filename)
            self._context.verboseprint("Loaded history from file: ", filename)
        else:
            self._context.verboseprint("Creating new history file: ", filename)
            with open(filename, 'w'):
                pass

    def _save_history_line(self):
        if self._history_filename is None:
            return

        try:
            readline.append_history_file(1, self._history_filename)
        except OSError as e:
            term.write(f'Error writing to history file: {e}. History will not be saved.', term.WARN)
            term.write('You can try a new file with: set dbg.historyfile = <filename>', term.WARN)
            self._history_filename = None

    def _on_prompt_interrupt(self):
        print('') # End the line showing '^C'.
        self._interrupts += 1
        if self._interrupts >= 3:
            print("Use 'q' to exit the debugger.")
            print("Try 'help' to list all available commands.")
            self._interrupts = 0

    def loop_input_body(self):
        """
        Read and run one input line. Returns True when the session should end.
        """
        self._completer.clear_cache()
        try:
            line = term.readline_input()
        except KeyboardInterrupt:
            self._on_prompt_interrupt()
            return False
        except EOFError:
            print('') # ^D
            return True

        self._interrupts = 0
        if line.strip():
            self._save_history_line()

        try:
            self._context.execute_command(line)
        except KeyboardInterrupt:
            print('')
            term.write("Command interrupted.", term.WARN)

        return self._context.should_quit

    def loop(self):
        """
        Run until the user quits. Returns the process exit status.
        """
        while not self.loop_input_body():
            pass

        return 0
