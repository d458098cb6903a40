# (c) Copyright 2022 Aaron Kimball
"""
Command capability, command results, and the command registry.

A command is a class derived from `Command` and tagged with the `@Verb` decorator:

    @Verb(keywords=['!do'], completions=[Completions.NONE])
    class DumpObject(Command):
        '''
        Display a heap object

            Syntax: !do <address>
        '''

        @classmethod
        def add_arguments(cls, parser):
            parser.add_argument('address')

        def execute(self, context):
            ...

The registry is built explicitly at startup from a fixed list of such classes
(see builtin_commands.ALL_COMMANDS); nothing is discovered at import time.
"""

import inspect

from sortedcontainers import SortedDict, SortedList

import heapdbg.term as term


class CommandParseError(Exception):
    """
    The tokens of a command line do not describe a valid command invocation
    (unknown verb, malformed arguments, or a request for help).
    """
    pass


class InvalidOperationError(Exception):
    """
    An operation was attempted in a session state that does not support it, e.g. a
    dump-only operation with no dump loaded, or a heap command with no heap.
    """
    pass


class Completions(object):
    """
    Enumeration of valid autocomplete token classes.
    These can be used as entries in the `completions` list argument to @Verb, and
    are interpreted by the ReplAutoComplete to query the right set of possibilities.
    """
    NONE = ''                   # A token that is uncompletable. Used as 'filler' in the
                                # completions list, before later completable token positions.
    KW = 'kw'                   # Another command keyword that starts with the token as prefix.
    ALIAS = 'alias'             # An alias name.
    SYM = 'sym'                 # A symbol name that starts with the token as prefix.
    TYPE = 'type'               # A heap type name.
    THREAD = 'thread'           # A managed thread id.
    CONF_KEY = 'conf_key'       # A configuration key.
    PATH = 'path'               # A file path.


class CommandResult(object):
    """
    Outcome of executing one command: success, or failure with a category (the
    fault's class name) and a message.
    """

    def __init__(self, succeeded, category=None, message=None, exception=None):
        self.succeeded = succeeded
        self.category = category
        self.message = message
        self.exception = exception

    @staticmethod
    def ok():
        return CommandResult(True)

    @staticmethod
    def failure(category, message):
        return CommandResult(False, category, message)

    @staticmethod
    def from_exception(e):
        return CommandResult(False, type(e).__name__, str(e), e)

    def __bool__(self):
        return self.succeeded

    def __repr__(self):
        if self.succeeded:
            return 'CommandResult(ok)'
        return f'CommandResult({self.category}: {self.message!r})'


class Command(object):
    """
    Base class for executable commands.

    Instances are created from parsed arguments: every keyword argument to the
    constructor becomes an attribute of the command.
    """

    verb_info = None    # Set by the @Verb decorator.

    def __init__(self, **kwargs):
        for (k, v) in kwargs.items():
            setattr(self, k, v)

    @classmethod
    def add_arguments(cls, parser):
        """
        Declare this command's arguments on an argparse.ArgumentParser.
        The default is a command that takes no arguments.
        """
        pass

    @classmethod
    def from_args(cls, namespace):
        """
        Construct a command instance from an argparse.Namespace.
        """
        return cls(**vars(namespace))

    def execute(self, context):
        """
        Run the command against the CommandExecutionContext. May return a
        CommandResult; returning None means success. May raise anything.
        """
        raise NotImplementedError()

    def __repr__(self):
        attrs = ', '.join(f'{k}={v!r}' for (k, v) in sorted(vars(self).items()))
        return f'{self.__class__.__name__}({attrs})'


def run_command(cmd, context):
    """
    Execute `cmd` and return its CommandResult. Any Exception raised by the command is
    converted into a failure result rather than propagated.
    """
    try:
        result = cmd.execute(context)
    except Exception as e:
        return CommandResult.from_exception(e)

    if result is None:
        return CommandResult.ok()
    return result


class Verb(object):
    """
    Class decorator that tags a Command subclass with the keyword(s) that invoke it.
    Registers the class's docstring as its help text, and the first non-empty line of the
    docstring as its short help text shown by the 'help' command.

    @param keywords is a list of keywords that trigger the command.
    @param help_keywords additional keywords to display in the command summary.
    @param display_help does this show up in the command summary?
    @param completions list of Completions classes for successive argument positions.
    """

    def __init__(self, keywords, help_keywords=None, display_help=True, completions=None):
        if not isinstance(keywords, list):
            raise Exception("Expected syntax @Verb(keywords=[...])")

        if len(keywords) == 0:
            raise Exception("Must supply one or more keywords to @Verb.")

        self.keywords = keywords
        self.help_keywords = help_keywords or []
        self.display_help = display_help
        self.completions = completions
        self.command_cls = None
        self.short_help = ''
        self.long_help = ''

    @property
    def name(self):
        """ The primary keyword. """
        return self.keywords[0]

    def __call__(self, cls):
        self.command_cls = cls
        cls.verb_info = self

        all_keywords = []
        all_keywords.extend(self.keywords)
        all_keywords.extend(self.help_keywords)

        if len(all_keywords) > 1:
            keywordsIntro = f"{all_keywords[0]} ({', '.join(all_keywords[1:])})"
        else:
            keywordsIntro = f"{all_keywords[0]}"

        # Get the docstring and eliminate class-level indentation.
        docstring = inspect.cleandoc(cls.__doc__ or '')
        # Split into lines; if one line matches `Syntax: <foo>`, make that line bold.
        docstr_lines = docstring.split("\n")
        for i in range(0, len(docstr_lines)):
            if docstr_lines[i].strip().startswith("Syntax:"):
                docstr_lines[i] = term.fmt(docstr_lines[i], term.BOLD)
                break # Only need to bold one syntax line.
        docstring = "\n".join(docstr_lines)

        self.long_help = f"    {keywordsIntro}\n\n{docstring}"

        first_real_line = None
        for line in docstr_lines:
            if len(line.strip()) > 0:
                first_real_line = line.strip()
                break
        if first_real_line:
            self.short_help = f'{keywordsIntro} -- {first_real_line}'
        else:
            self.short_help = f'{keywordsIntro}'

        return cls


class CommandRegistry(object):
    """
    The set of known command classes, indexed by keyword.

    Keywords are matched case-insensitively.
    """

    def __init__(self, command_classes):
        self._cmd_map = {}              # Lookup from all (lower-cased) keywords to Verb instances.
        self._cmd_index = SortedDict()  # Verb instances keyed by primary keyword only.
        self._cmd_list = SortedList()   # Sorted list of all keywords.

        for cls in command_classes:
            self.register(cls)

    def register(self, cls):
        verb = cls.verb_info
        if verb is None or verb.command_cls is not cls:
            raise Exception(f"Command class {cls.__name__} is not tagged with @Verb")

        for kw in verb.keywords:
            key = kw.lower()
            if key in self._cmd_map:
                raise Exception(f"Keyword '{kw}' used multiple times")
            self._cmd_map[key] = verb
            self._cmd_list.add(kw)

        self._cmd_index[verb.name] = verb

    def __len__(self):
        return len(self._cmd_index)

    def __contains__(self, keyword):
        return keyword.lower() in self._cmd_map

    def lookup(self, keyword):
        """
        Return the Verb bound to `keyword`, or None.
        """
        return self._cmd_map.get(keyword.lower())

    def verbs(self):
        """
        Return the Verb instances in order of primary keyword.
        """
        return list(self._cmd_index.values())

    def keywords_by_prefix(self, prefix):
        """
        Return all keywords that start with `prefix`, in sorted order.
        """
        if prefix is None or len(prefix) == 0:
            return list(self._cmd_list)

        last_char = prefix[-1]
        next_char = chr(ord(last_char) + 1)
        nextfix = prefix[0:-1] + next_char
        return list(self._cmd_list.irange(prefix, nextfix, inclusive=(True, False)))

    def completions_for(self, keyword):
        """
        Return the list of completion token classes accepted after `keyword`.
        """
        verb = self.lookup(keyword)
        if verb is None:
            return None
        return verb.completions
