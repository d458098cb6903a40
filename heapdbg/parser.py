# (c) Copyright 2022 Aaron Kimball
#
# Turns a tokenized command line into a Command instance.

import argparse

from heapdbg.commands import CommandParseError


class _CommandArgumentParser(argparse.ArgumentParser):
    """
    ArgumentParser for a single command verb.

    Usage, help and error text go to the supplied output function instead of
    stdout/stderr, and instead of exiting the process the parser raises
    CommandParseError.
    """

    def __init__(self, *args, output=None, **kwargs):
        self._output = output
        super().__init__(*args, **kwargs)

    def _print_message(self, message, file=None):
        if message and self._output is not None:
            self._output(message)

    def exit(self, status=0, message=None):
        # Reached after --help, or from error() below.
        if message:
            self._print_message(message)
        raise CommandParseError(message or f'{self.prog}: exit requested')

    def error(self, message):
        self.print_usage()
        self.exit(2, f'{self.prog}: error: {message}\n')


class CommandParser(object):
    """
    General argument parser over all the commands of a CommandRegistry.

    The first token selects the command verb (case-insensitively); the remaining
    tokens are parsed against the arguments the command class declares in its
    add_arguments() method.
    """

    def __init__(self, registry, output=None):
        """
        @param registry the CommandRegistry to resolve verbs against.
        @param output function accepting a string; receives usage/help/error text.
        """
        self._registry = registry
        self._output = output
        self._parsers = {}   # Cache of argparse parsers, keyed by primary keyword.

    def _parser_for(self, verb):
        parser = self._parsers.get(verb.name)
        if parser is None:
            parser = _CommandArgumentParser(prog=verb.name, description=verb.short_help,
                                            output=self._output, allow_abbrev=False)
            verb.command_cls.add_arguments(parser)
            self._parsers[verb.name] = parser
        return parser

    def parse_or_raise(self, tokens):
        """
        Return a new Command instance for `tokens`, or raise CommandParseError.
        """
        if not tokens:
            raise CommandParseError("No command given")

        verb = self._registry.lookup(tokens[0])
        if verb is None:
            raise CommandParseError(f"Unknown command '{tokens[0]}'; try 'help'.")

        namespace = self._parser_for(verb).parse_args(tokens[1:])
        return verb.command_cls.from_args(namespace)

    def parse(self, tokens):
        """
        Return a new Command instance for `tokens`, or None if they do not parse.

        Apart from whatever usage or help text the parser emits, failure is silent.
        """
        try:
            return self.parse_or_raise(tokens)
        except CommandParseError as e:
            if tokens and self._registry.lookup(tokens[0]) is None and self._output:
                # argparse has not reported anything for an unknown verb.
                self._output(f'{e}\n')
            return None
