# (c) Copyright 2022 Aaron Kimball
#
# Data model for the managed runtime state of the debugged process:
# threads and their stacks, heap objects, and indexes over the heap.

from sortedcontainers import SortedDict


class StackFrame(object):
    """
    A single managed stack frame: instruction pointer, stack pointer and (optionally)
    the method name as recorded when the frame was captured.
    """

    def __init__(self, ip, sp, method=None):
        self.ip = ip
        self.sp = sp
        self.method = method

    def __repr__(self):
        return f'{self.sp:016x} {self.ip:016x} {self.method or "<unknown>"}'


class ManagedThread(object):
    """
    A managed thread in the target process.
    """

    def __init__(self, managed_thread_id, os_thread_id, name=None, state='', frames=None):
        self.managed_thread_id = managed_thread_id
        self.os_thread_id = os_thread_id
        self.name = name
        self.state = state
        self.frames = frames or []

    def __repr__(self):
        name = f' "{self.name}"' if self.name else ''
        return f'#{self.managed_thread_id} (OSID {self.os_thread_id:x}){name} {self.state}'


class HeapObject(object):
    """
    An object on the managed heap.

    `fields` maps field name to value. A field whose value is the address of another
    heap object is a reference field; see Heap.is_reference().
    """

    def __init__(self, address, type_name, size, fields=None):
        self.address = address
        self.type_name = type_name
        self.size = size
        self.fields = fields or {}

    def __repr__(self):
        return f'{self.address:016x} {self.size:>8} {self.type_name}'


class Heap(object):
    """
    The managed heap: all live objects keyed by address.
    """

    def __init__(self, objects=None):
        self._objects = SortedDict()
        for obj in objects or []:
            self._objects[obj.address] = obj

    def __len__(self):
        return len(self._objects)

    def objects(self):
        """ Iterate over heap objects in address order. """
        return iter(self._objects.values())

    def get_object(self, address):
        return self._objects.get(address)

    def is_reference(self, value):
        """ True if `value` is the address of an object on this heap. """
        return isinstance(value, int) and not isinstance(value, bool) and value in self._objects

    def total_size(self):
        return sum(obj.size for obj in self._objects.values())

    def query(self, expression, defines=None):
        """
        Yield the heap objects for which `expression` evaluates truthy.

        The expression is a python expression evaluated once per object with these
        names bound: `obj` (the HeapObject), `address`, `type`, `size`, `fields`,
        `heap` (this Heap). Each entry in `defines` is executed first, once, and
        whatever names it binds are visible to the expression.

        Raises SyntaxError for a malformed expression or define; any exception raised
        while evaluating the expression propagates to the caller.
        """
        env = {}
        for define in defines or []:
            exec(define, env, env)

        code = compile(expression, '<query>', 'eval')
        for obj in self._objects.values():
            scope = dict(env)
            scope['obj'] = obj
            scope['address'] = obj.address
            scope['type'] = obj.type_name
            scope['size'] = obj.size
            scope['fields'] = obj.fields
            scope['heap'] = self
            if eval(code, scope):
                yield obj


class HeapIndex(object):
    """
    Precomputed indexes over a Heap: objects grouped by type name, and the reverse
    reference graph (which objects point at a given address).
    """

    def __init__(self, heap):
        self._heap = heap
        self._by_type = SortedDict()
        self._referrers = {}

        for obj in heap.objects():
            self._by_type.setdefault(obj.type_name, []).append(obj.address)
            for value in obj.fields.values():
                if heap.is_reference(value):
                    self._referrers.setdefault(value, []).append(obj.address)

    def type_names(self):
        return list(self._by_type.keys())

    def referrers(self, address):
        """ Return the addresses of objects holding a reference to `address`. """
        return list(self._referrers.get(address, []))

    def type_stats(self):
        """
        Return a list of (type_name, count, total_size) in order of increasing total_size.
        """
        stats = []
        for (type_name, addrs) in self._by_type.items():
            total = sum(self._heap.get_object(addr).size for addr in addrs)
            stats.append((type_name, len(addrs), total))
        stats.sort(key=lambda stat: (stat[2], stat[0]))
        return stats


class Runtime(object):
    """
    The managed runtime of the target: its threads and its heap.
    """

    def __init__(self, threads=None, heap=None):
        self.threads = threads or []
        self.heap = heap if heap is not None else Heap()

    def thread_by_id(self, managed_thread_id):
        for thread in self.threads:
            if thread.managed_thread_id == managed_thread_id:
                return thread
        return None
