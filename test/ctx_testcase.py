# (c) Copyright 2022 Aaron Kimball

import os.path
import unittest

from heapdbg.context import CommandExecutionContext
import heapdbg.term as term

FIXTURE_DIR = os.path.join(os.path.dirname(os.path.abspath(__file__)), 'fixtures')

# Configuration for test contexts; nothing is read from or written to the user's home dir.
TEST_CONFIG = {
    'dbg.colors': False,
    'dbg.historyfile': None,
}


def fixture_path(filename):
    return os.path.join(FIXTURE_DIR, filename)


class RecordingPrinter(term.Printer):
    """
    Printer that remembers everything written to it, for inspection by tests.
    """

    def __init__(self):
        super().__init__()
        self.messages = []      # List of (MsgLevel, text) in the order received.
        self.commands_ended = 0
        self.close_count = 0

    def _emit(self, text, level):
        self.messages.append((level, text))

    def command_ended(self):
        self.commands_ended += 1

    def close(self):
        self.close_count += 1
        super().close()

    def text(self, level=None):
        """
        Return all text received (at `level`, if given) concatenated together.
        """
        return ''.join([t for (lvl, t) in self.messages if level is None or lvl == level])

    def links(self):
        return [t for (lvl, t) in self.messages if lvl == term.MsgLevel.LINK]

    def reset(self):
        self.messages = []
        self.commands_ended = 0


class ContextTestCase(unittest.TestCase):
    """
    TestCase that builds a fresh CommandExecutionContext around a RecordingPrinter
    for each test.

    Set `dump_filename` in a subclass to the name of a file in test/fixtures/ to
    open that snapshot in each new context.
    """

    dump_filename = None

    def __init__(self, methodName='runTest'):
        super().__init__(methodName)

    def make_context(self, registry=None, **conf):
        config = dict(TEST_CONFIG)
        config.update(conf)
        printer = RecordingPrinter()
        context = CommandExecutionContext(printer, registry=registry, force_config=config)
        if self.dump_filename:
            context.open_dump(fixture_path(self.dump_filename))
        return (context, printer)

    def setUp(self):
        (self.context, self.printer) = self.make_context()

    def tearDown(self):
        self.context.close()

    def run_cmd(self, line):
        """
        Execute `line` and return only the command output it produced.
        """
        self.printer.reset()
        self.context.execute_command(line)
        return self.printer.text(term.MsgLevel.OUTPUT)

    def assertNoErrors(self):
        self.assertEqual(self.printer.text(term.MsgLevel.ERR), '')

    def assertFailed(self, category):
        errors = self.printer.text(term.MsgLevel.ERR)
        self.assertIn(f'Exception during command execution -- {category}:', errors)
        self.assertIn('Proceed at your own risk', errors)
