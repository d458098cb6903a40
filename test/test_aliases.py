#!/usr/bin/env python3
# (c) Copyright 2022 Aaron Kimball

import unittest

from heapdbg.aliases import AliasError, AliasTable, is_reserved_name
import heapdbg.term as term
from ctx_testcase import ContextTestCase


class TestAliasTable(unittest.TestCase):

    def test_temporary_names(self):
        table = AliasTable()
        self.assertEqual(table.add_temporary('!do 1000'), 'a0')
        self.assertEqual(table.add_temporary('!do 1020'), 'a1')
        self.assertEqual(table.temporary_count(), 2)
        self.assertEqual(table.get('a1'), '!do 1020')

        self.assertEqual(table.remove_temporary(), 2)
        self.assertEqual(table.temporary_count(), 0)
        self.assertNotIn('a0', table)
        self.assertNotIn('a1', table)

        # Numbering continues after a bulk removal; names are never reused.
        self.assertEqual(table.add_temporary('!threads'), 'a2')

    def test_counters_are_per_table(self):
        first = AliasTable()
        second = AliasTable()
        first.add_temporary('q')
        first.add_temporary('q')
        self.assertEqual(second.add_temporary('q'), 'a0')

    def test_reserved_names(self):
        self.assertTrue(is_reserved_name('a0'))
        self.assertTrue(is_reserved_name('a123'))
        self.assertFalse(is_reserved_name('a'))
        self.assertFalse(is_reserved_name('abc'))
        self.assertFalse(is_reserved_name('a1b'))

        table = AliasTable()
        with self.assertRaises(AliasError):
            table.add('a3', '!threads')
        with self.assertRaises(AliasError):
            table.add('', '!threads')
        table.add('a3x', '!threads')
        self.assertEqual(table.get('a3x'), '!threads')

    def test_persistent_survives_temporary_removal(self):
        table = AliasTable()
        table.add('objs', '!dumpheap')
        table.add_temporary('!do 1000')
        self.assertEqual(table.persistent_count(), 1)
        table.remove_temporary()
        self.assertEqual(table.get('objs'), '!dumpheap')
        self.assertEqual(table.clear_persistent(), 1)
        self.assertEqual(len(table), 0)

    def test_remove(self):
        table = AliasTable()
        table.add('x', 'q')
        table.remove('x')
        self.assertNotIn('x', table)
        with self.assertRaises(AliasError):
            table.remove('x')

    def test_expand(self):
        table = AliasTable()
        table.add('obj', '!do %1; !refs %1')
        self.assertEqual(table.expand('obj', ['1020']), '!do 1020; !refs 1020')
        with self.assertRaises(AliasError):
            table.expand('obj', [])
        with self.assertRaises(AliasError):
            table.expand('nosuch')

    def test_names_by_prefix(self):
        table = AliasTable()
        for name in ['big', 'bigger', 'bog', 'small']:
            table.add(name, 'q')
        self.assertEqual(table.names_by_prefix('big'), ['big', 'bigger'])
        self.assertEqual(table.names_by_prefix('b'), ['big', 'bigger', 'bog'])
        self.assertEqual(len(table.names_by_prefix('')), 4)


class TestAliasCommands(ContextTestCase):

    def test_newalias(self):
        self.context.execute_command('.newalias foo !do 0x1234')
        self.assertNoErrors()
        self.assertEqual(self.context.aliases.get('foo'), '!do 0x1234')
        self.assertFalse(self.context.aliases.is_temporary('foo'))

    def test_newalias_keeps_flag_tokens(self):
        self.context.execute_command('.newalias types !dumpheap --stat --type System')
        self.assertEqual(self.context.aliases.get('types'), '!dumpheap --stat --type System')

    def test_newalias_errors(self):
        self.context.execute_command('.newalias a7 q')
        self.assertFailed('AliasError')
        self.assertNotIn('a7', self.context.aliases)

        self.printer.reset()
        self.context.execute_command('.newalias empty')
        self.assertFailed('AliasError')

    def test_execute_alias(self):
        self.context.execute_command('.newalias def1 .define x = %1')
        self.context.execute_command('% def1 42')
        self.assertNoErrors()
        self.assertEqual(self.context.defines, ['x = 42'])

    def test_execute_alias_with_separator(self):
        self.context.aliases.add('two', '.listdefines; .listdefines')
        self.context.execute_command('% two')
        self.assertEqual(self.printer.text(term.MsgLevel.OUTPUT), 'No definitions.\n' * 2)
        # The outer command plus the two commands of the expansion.
        self.assertEqual(self.printer.commands_ended, 3)

    def test_execute_alias_errors(self):
        self.context.execute_command('% nosuch')
        self.assertFailed('AliasError')

        self.printer.reset()
        self.context.execute_command('.newalias needsarg .define y = %1')
        self.context.execute_command('% needsarg')
        self.assertFailed('AliasError')
        self.assertEqual(self.context.defines, [])

    def test_recursive_alias(self):
        self.context.aliases.add('loop', '% loop')
        self.context.execute_command('% loop')
        self.assertFailed('AliasError')
        self.assertEqual(self.context.dispatch_depth, 0)

        # The session carries on.
        self.assertEqual(self.run_cmd('.listdefines'), 'No definitions.\n')

    def test_rmalias(self):
        self.context.execute_command('.newalias foo q')
        self.context.execute_command('.rmalias foo')
        self.assertNoErrors()
        self.assertNotIn('foo', self.context.aliases)

        self.context.execute_command('.rmalias foo')
        self.assertFailed('AliasError')

    def test_clearalias(self):
        self.context.execute_command('.newalias foo q; .newalias bar q')
        self.context.execute_command('.clearalias')
        self.assertIn('Removed 2 aliases.', self.printer.text(term.MsgLevel.INFO))
        self.assertEqual(len(self.context.aliases), 0)

    def test_clearalias_flags_exclusive(self):
        self.context.execute_command('.newalias foo q')
        self.context.execute_command('.clearalias --temporary --all')
        self.assertNoErrors()
        self.assertIn('foo', self.context.aliases)

    def test_listalias(self):
        self.assertEqual(self.run_cmd('.listalias'), 'No aliases defined.\n')
        self.context.execute_command('.newalias foo !threads')
        out = self.run_cmd('.listalias')
        self.assertIn('foo', out)
        self.assertIn('!threads', out)


if __name__ == "__main__":
    unittest.main(verbosity=2)
