# (c) Copyright 2022 Aaron Kimball
#
# Methods for capturing and reloading managed process state snapshots.

import os.path

import heapdbg.serialize as serialize
from heapdbg.runtime import Heap, HeapIndex, HeapObject, ManagedThread, Runtime, StackFrame
from heapdbg.symbol import Symbol, SymbolCache

SERIALIZED_STATE_KEY = 'state'

DUMP_SCHEMA_KEY = 'dump_schema'
DUMP_SCHEMA_VER = 1


class DumpFormatError(Exception):
    """ The dump file is missing, unreadable, or written with an unsupported schema. """
    pass


class DumpTarget(object):
    """
    A loaded snapshot: the runtime (threads + heap) and symbols it recorded.
    """

    def __init__(self, filename, process_id, runtime, symbols):
        self.filename = filename
        self.process_id = process_id
        self.runtime = runtime
        self.heap = runtime.heap
        self.symbols = symbols
        self._heap_index = None

    def heap_index(self):
        """ Build the heap index on first use. """
        if self._heap_index is None:
            self._heap_index = HeapIndex(self.heap)
        return self._heap_index


def capture_dump(runtime, dump_filename, process_id=0, symbol_cache=None):
    """
    Store the threads, heap objects, and cached symbols of `runtime` in a file locally.
    """

    threads = []
    for thread in runtime.threads:
        frames = [{'ip': f.ip, 'sp': f.sp, 'method': f.method} for f in thread.frames]
        threads.append({
            'managed_id': thread.managed_thread_id,
            'os_id': thread.os_thread_id,
            'name': thread.name,
            'state': thread.state,
            'frames': frames,
        })

    objects = []
    for obj in runtime.heap.objects():
        objects.append({
            'address': obj.address,
            'type': obj.type_name,
            'size': obj.size,
            'fields': dict(obj.fields),
        })

    symbols = []
    if symbol_cache is not None:
        for sym in symbol_cache:
            symbols.append({'name': sym.name, 'addr': sym.addr, 'size': sym.size,
                            'module': sym.module})

    # Gather together the components we need to serialize.
    out = {}
    out['process_id'] = process_id
    out['threads'] = threads
    out['objects'] = objects
    out['symbols'] = symbols
    out[DUMP_SCHEMA_KEY] = DUMP_SCHEMA_VER

    serialize.persist_config_file(dump_filename, SERIALIZED_STATE_KEY, out)


def load_dump(filename):
    """
    Load a dump file and return a DumpTarget around its contents.
    """

    if not os.path.exists(filename):
        raise DumpFormatError(f"No such dump file: {filename}")

    # Load the data out of the file...
    dump_data = serialize.load_config_file(filename, SERIALIZED_STATE_KEY)

    schema = dump_data.get(DUMP_SCHEMA_KEY)
    if schema is None:
        raise DumpFormatError(f"Not a heap snapshot: {filename}")
    elif schema > DUMP_SCHEMA_VER:
        raise DumpFormatError(f"Cannot load dump schema with version={schema}")

    try:
        threads = []
        for t in dump_data.get('threads', []):
            frames = [StackFrame(f['ip'], f['sp'], f.get('method')) for f in t.get('frames', [])]
            threads.append(ManagedThread(t['managed_id'], t['os_id'], t.get('name'),
                                         t.get('state', ''), frames))

        objects = []
        for o in dump_data.get('objects', []):
            objects.append(HeapObject(o['address'], o['type'], o['size'], o.get('fields')))

        symbols = SymbolCache()
        for s in dump_data.get('symbols', []):
            symbols.add(Symbol(s['name'], s['addr'], s.get('size', 0), s.get('module')))
    except (KeyError, TypeError) as e:
        raise DumpFormatError(f"Malformed dump file {filename}: {e}") from e

    runtime = Runtime(threads, Heap(objects))
    return DumpTarget(os.path.realpath(filename), dump_data.get('process_id', 0), runtime,
                      symbols)
