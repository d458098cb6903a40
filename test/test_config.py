#!/usr/bin/env python3
# (c) Copyright 2022 Aaron Kimball

import os
import os.path
import tempfile
import unittest
from unittest import mock

import heapdbg.serialize as serialize
import heapdbg.term as term
from ctx_testcase import ContextTestCase


class TestConfig(ContextTestCase):

    def test_defaults(self):
        self.assertEqual(self.context.get_conf('dbg.alias.warn'), 100)
        self.assertTrue(self.context.get_conf('dbg.hyperlinks'))
        self.assertTrue(self.context.hyperlink_output)
        self.assertFalse(self.context.get_conf('dbg.verbose'))
        self.assertEqual(self.context.get_conf('dbg.conf.formatversion'),
                         serialize.DBG_CONF_FMT_VERSION)

    def test_unknown_key(self):
        with self.assertRaises(KeyError):
            self.context.get_conf('dbg.nosuch')
        with self.assertRaises(KeyError):
            self.context.set_conf('dbg.nosuch', 1)

    def test_set_command(self):
        self.context.execute_command('set dbg.alias.warn = 5')
        self.assertEqual(self.context.get_conf('dbg.alias.warn'), 5)

        self.context.execute_command('set dbg.hyperlinks false')
        self.assertFalse(self.context.hyperlink_output)

        self.context.execute_command('set dbg.alias.warn=0x10')
        self.assertEqual(self.context.get_conf('dbg.alias.warn'), 16)

        self.context.execute_command('set dbg.symbolpath /tmp/syms')
        self.assertEqual(self.context.symbol_path, '/tmp/syms')

        self.context.execute_command('set dbg.symbolpath =')
        self.assertIsNone(self.context.symbol_path)
        self.assertNoErrors()

    def test_show_config(self):
        self.assertEqual(self.run_cmd('set dbg.alias.warn'), 'dbg.alias.warn = 100\n')
        out = self.run_cmd('set')
        for key in self.context.get_conf_keys():
            self.assertIn(key, out)

        self.run_cmd('set dbg.nosuch 1')
        self.assertFailed('KeyError')

    def test_forced_config_not_persisted(self):
        with mock.patch.object(serialize, 'persist_config_file') as persist:
            self.context.set_conf('dbg.diag', True)
            self.context.execute_command('set dbg.alias.warn 7')
        persist.assert_not_called()

    def test_verbose(self):
        self.context.execute_command('.listdefines')
        self.assertEqual(self.printer.text(term.MsgLevel.DEBUG), '')

        self.context.set_conf('dbg.verbose', True)
        self.context.execute_command('.listdefines')
        self.assertIn('Executing ListDefines()', self.printer.text(term.MsgLevel.DEBUG))

    def test_colors(self):
        self.context.set_conf('dbg.colors', True)
        self.assertTrue(term.use_colors())
        self.context.set_conf('dbg.colors', False)
        self.assertFalse(term.use_colors())
        self.assertEqual(term.fmt('x', term.ERR), 'x')

    def test_history_hook(self):
        calls = []
        self.context.set_history_change_hook(calls.append)
        self.assertEqual(calls, [None])

        self.context.set_conf('dbg.historyfile', '~/heapdbg_test_history')
        self.assertEqual(calls[-1], os.path.expanduser('~/heapdbg_test_history'))


class TestSerialize(unittest.TestCase):

    def test_config_file(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            filename = os.path.join(tmpdir, 'test.conf')
            data = {
                'dbg.verbose': True,
                'dbg.alias.warn': 12,
                'dbg.symbolpath': None,
                'nested': {'a': [1, 2, (3, 4)], 5: b'\x00\x01'},
            }
            serialize.persist_config_file(filename, 'config', data)

            loaded = serialize.load_config_file(filename, 'config', {'dbg.colors': True})
            self.assertEqual(loaded['dbg.verbose'], True)
            self.assertEqual(loaded['dbg.alias.warn'], 12)
            self.assertIsNone(loaded['dbg.symbolpath'])
            self.assertEqual(loaded['nested'], {'a': [1, 2, [3, 4]], 5: b'\x00\x01'})
            # Defaults fill in anything the file does not set.
            self.assertEqual(loaded['dbg.colors'], True)

    def test_newer_format_ignored(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            filename = os.path.join(tmpdir, 'future.conf')
            with open(filename, 'w') as f:
                f.write(f"formatversion = {serialize.DBG_CONF_FMT_VERSION + 1}\n")
                f.write("config = {'dbg.verbose': True}\n")

            with mock.patch('builtins.print'):
                loaded = serialize.load_config_file(filename, 'config', {'dbg.verbose': False})
            self.assertEqual(loaded, {'dbg.verbose': False})

    def test_unparseable_file(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            filename = os.path.join(tmpdir, 'broken.conf')
            with open(filename, 'w') as f:
                f.write("config = {'dbg.verbose': \n")

            with mock.patch('builtins.print'):
                loaded = serialize.load_config_file(filename, 'config', {'dbg.verbose': False})
            self.assertEqual(loaded, {'dbg.verbose': False})


if __name__ == "__main__":
    unittest.main(verbosity=2)
