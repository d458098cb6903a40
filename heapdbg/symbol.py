# (c) Copyright 2022 Aaron Kimball

from sortedcontainers import SortedDict, SortedList


class Symbol(object):
    """
    An internal symbol table entry; represents a single named code or data location
    in the debugged process (e.g. a JIT-compiled method body).
    """

    def __init__(self, name, addr, size=0, module=None):
        self.name = name
        self.addr = addr
        self.size = size
        self.module = module

    def contains(self, addr):
        """ True if `addr` falls inside this symbol's extent. """
        if self.size <= 0:
            return addr == self.addr
        return self.addr <= addr < self.addr + self.size

    def __repr__(self):
        name = f'{self.name}'
        if self.module:
            name = f'{self.module}!{self.name}'

        return f'{name} @ {self.addr:x} <len={self.size}>'


class SymbolCache(object):
    """
    Cache of resolved symbols for the current session, indexed by address and by name.
    """

    def __init__(self):
        self._addr_to_symbol = SortedDict()
        self._symbols = SortedDict()

    def __len__(self):
        return len(self._symbols)

    def __iter__(self):
        """ Iterate over symbols in address order. """
        return iter(self._addr_to_symbol.values())

    def clear(self):
        self._addr_to_symbol.clear()
        self._symbols.clear()

    def add(self, sym):
        self._addr_to_symbol[sym.addr] = sym
        self._symbols[sym.name] = sym
        return sym

    def lookup_sym(self, name):
        """
        Given a symbol name, return the Symbol with its information (or None).
        """
        return self._symbols.get(name)

    def nearest_sym(self, addr):
        """
        Return (symbol, offset) for the symbol at or immediately preceding `addr`, or
        (None, None) if there is no symbol at a lower address.
        """
        idx = self._addr_to_symbol.bisect_right(addr)
        if idx == 0:
            return (None, None)

        sym_addr = self._addr_to_symbol.keys()[idx - 1]
        sym = self._addr_to_symbol[sym_addr]
        return (sym, addr - sym_addr)

    def syms_by_prefix(self, prefix):
        """
        Return all symbol names that start with the specified prefix.
        """
        if prefix is None or len(prefix) == 0:
            nextfix = None  # Empty str prefix means return all symbols.
        else:
            # Increment the last char of the string to get the first possible symbol
            # after the matching set.
            last_char = prefix[-1]
            next_char = chr(ord(last_char) + 1)
            nextfix = prefix[0:-1] + next_char

        out = SortedList()
        out.update(self._symbols.irange(prefix, nextfix, inclusive=(True, False)))
        return out
