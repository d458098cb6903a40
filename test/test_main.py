#!/usr/bin/env python3
# (c) Copyright 2022 Aaron Kimball

import contextlib
import io
import os.path
import tempfile
import unittest

import heapdbg
from ctx_testcase import fixture_path


class TestMain(unittest.TestCase):

    def _main(self, argv):
        out = io.StringIO()
        with contextlib.redirect_stdout(out):
            ret = heapdbg.main(argv)
        return (ret, out.getvalue())

    def test_commands_then_quit(self):
        (ret, out) = self._main(['-z', fixture_path('small.dump'), '--nohyperlinks',
                                 '-c', '!dumpheap --type String; q'])
        self.assertEqual(ret, 0)
        self.assertIn('0000000000001000', out)
        self.assertIn('Total 1 objects, 32 bytes', out)
        self.assertNotIn('[a0]', out)

    def test_input_file(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            filename = os.path.join(tmpdir, 'cmds.txt')
            with open(filename, 'w') as f:
                f.write('# list the threads\n')
                f.write('!threads\n')
                f.write('\n')
                f.write('~ 5; k\n')

            (ret, out) = self._main(['-z', fixture_path('small.dump'), '-i', filename])
        self.assertEqual(ret, 0)
        self.assertIn('"Main"', out)
        self.assertIn('Thread #5', out)

    def test_bad_dump(self):
        (ret, out) = self._main(['-z', 'no/such/file.dump', '-c', 'q'])
        self.assertEqual(ret, 1)
        self.assertIn('No such dump file', out)

    def test_version(self):
        with self.assertRaises(SystemExit):
            self._main(['--version'])


if __name__ == "__main__":
    unittest.main(verbosity=2)
