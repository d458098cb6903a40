# (c) Copyright 2022 Aaron Kimball

import argparse
import sys

from .context import CommandExecutionContext
from .dump import DumpFormatError
from .term import ConsolePrinter
from .version import DBG_VERSION_STR, FULL_DBG_VERSION_STR

__version__ = DBG_VERSION_STR

def _parseArgs(argv):
    parser = argparse.ArgumentParser(description="Interactive console for managed heap snapshots")
    parser.add_argument("-z", "--dump", metavar="dump_file")
    parser.add_argument("-c", "--commands", metavar="commands",
                        help="';'-separated commands to run before the prompt appears")
    parser.add_argument("-i", "--input", metavar="input_file",
                        help="run the commands in this file (one per line) and exit")
    parser.add_argument("--nohyperlinks", action="store_true",
                        help="do not emit [aN] command references in output")
    parser.add_argument("--diag", action="store_true",
                        help="report time and memory used by each command")
    parser.add_argument("--symbolpath", metavar="path")
    parser.add_argument("-v", "--version", action="version", version=FULL_DBG_VERSION_STR)

    return parser.parse_args(argv)

def _run_input_file(context, filename):
    with open(filename, 'r') as f:
        for line in f:
            context.execute_command(line.rstrip('\n'))
            if context.should_quit:
                break

def main(argv=None):
    if argv is None:
        argv = sys.argv[1:]

    args = _parseArgs(argv)

    context = CommandExecutionContext(ConsolePrinter())
    ret = 0
    try:
        # Command-line overrides apply to this session only.
        if args.nohyperlinks:
            context.set_conf('dbg.hyperlinks', False, persist=False)
        if args.diag:
            context.set_conf('dbg.diag', True, persist=False)
        if args.symbolpath is not None:
            context.set_conf('dbg.symbolpath', args.symbolpath, persist=False)

        if args.dump:
            try:
                context.open_dump(args.dump)
            except DumpFormatError as e:
                context.write_error(str(e))
                return 1

        if args.commands:
            context.execute_command(args.commands)

        if args.input:
            _run_input_file(context, args.input)
        elif not context.should_quit:
            # Deferred import; readline setup is only needed for an interactive session.
            from .repl import Repl
            repl = Repl(context)
            ret = repl.loop()
    finally:
        context.close()

    return ret
