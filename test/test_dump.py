#!/usr/bin/env python3
# (c) Copyright 2022 Aaron Kimball

import os
import os.path
import tempfile
import unittest

from heapdbg.commands import InvalidOperationError
import heapdbg.dump as dump
import heapdbg.serialize as serialize
import heapdbg.term as term
from ctx_testcase import ContextTestCase, fixture_path


class TestLoadDump(unittest.TestCase):

    def test_load_fixture(self):
        target = dump.load_dump(fixture_path('small.dump'))
        self.assertEqual(target.process_id, 4242)
        self.assertEqual(target.filename, os.path.realpath(fixture_path('small.dump')))
        self.assertEqual([t.managed_thread_id for t in target.runtime.threads], [1, 5])
        self.assertEqual(len(target.heap), 5)
        self.assertEqual(len(target.symbols), 2)

        main_thread = target.runtime.thread_by_id(1)
        self.assertEqual(main_thread.name, 'Main')
        self.assertEqual(len(main_thread.frames), 2)
        self.assertIsNone(main_thread.frames[1].method)

        node = target.heap.get_object(0x1020)
        self.assertEqual(node.type_name, 'MyApp.Node')
        self.assertEqual(node.fields, {'next': 0x1040, 'name': 0x1000})

        index = target.heap_index()
        self.assertIs(index, target.heap_index())
        self.assertEqual(index.referrers(0x1000), [0x1020, 0x1040])
        self.assertEqual(index.type_names(),
                         ['MyApp.Cache', 'MyApp.Node', 'System.Byte[]', 'System.String'])

    def test_load_errors(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            with self.assertRaises(dump.DumpFormatError):
                dump.load_dump(os.path.join(tmpdir, 'missing.dump'))

            no_schema = os.path.join(tmpdir, 'no_schema.dump')
            serialize.persist_config_file(no_schema, dump.SERIALIZED_STATE_KEY,
                                          {'process_id': 1})
            with self.assertRaises(dump.DumpFormatError):
                dump.load_dump(no_schema)

            future = os.path.join(tmpdir, 'future.dump')
            serialize.persist_config_file(future, dump.SERIALIZED_STATE_KEY,
                                          {dump.DUMP_SCHEMA_KEY: dump.DUMP_SCHEMA_VER + 1})
            with self.assertRaises(dump.DumpFormatError):
                dump.load_dump(future)

            malformed = os.path.join(tmpdir, 'malformed.dump')
            serialize.persist_config_file(malformed, dump.SERIALIZED_STATE_KEY,
                                          {dump.DUMP_SCHEMA_KEY: dump.DUMP_SCHEMA_VER,
                                           'objects': [{'address': 16}]})
            with self.assertRaises(dump.DumpFormatError):
                dump.load_dump(malformed)


class TestDumpCommands(ContextTestCase):

    dump_filename = 'small.dump'

    def test_open_dump(self):
        self.assertEqual(self.context.process_id, 4242)
        self.assertEqual(self.context.current_thread.name, 'Main')
        self.assertEqual(len(self.context.symbol_cache), 2)
        self.assertIsNotNone(self.context.heap_index)

    def test_create_dump_target(self):
        target = self.context.create_dump_target()
        self.assertIsNot(target, self.context.target)
        self.assertEqual(len(target.heap), 5)

    def test_capture_and_reload(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            filename = os.path.join(tmpdir, 'copy.dump')
            self.context.execute_command(f'.dump {filename}')
            self.assertNoErrors()
            self.assertTrue(os.path.exists(filename))

            self.context.execute_command('~ 5')
            self.context.execute_command(f'.load {filename}')
            self.assertNoErrors()
            self.assertIn('Process 4242: 2 threads, 5 objects (2176 bytes).',
                          self.printer.text(term.MsgLevel.INFO))
            self.assertEqual(self.context.dump_file, os.path.realpath(filename))
            self.assertEqual(self.context.current_managed_thread_id, 1)

            obj = self.context.heap.get_object(0x1000)
            self.assertEqual(obj.fields, {'length': 5, 'value': 'hello'})
            (sym, offset) = self.context.symbol_cache.nearest_sym(0x7f0000002010)
            self.assertEqual(sym.name, 'MyApp.Worker.Run')
            self.assertEqual(offset, 0x10)

    def test_load_missing(self):
        self.context.execute_command('.load no/such/file.dump')
        self.assertFailed('DumpFormatError')
        # The previous dump stays loaded.
        self.assertEqual(len(self.context.heap), 5)


class TestNoDump(ContextTestCase):

    def test_create_dump_target_requires_dump(self):
        with self.assertRaises(InvalidOperationError):
            self.context.create_dump_target()


if __name__ == "__main__":
    unittest.main(verbosity=2)
