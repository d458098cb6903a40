# (c) Copyright 2022 Aaron Kimball
"""
Alias table: maps short names to command text.

Persistent aliases are created and removed by the user (`.newalias`, `.rmalias`,
`.clearalias`). Temporary aliases are generated by the execution context whenever it
writes a hyperlink; they are named `a0`, `a1`, ... and are dropped in bulk after each
top-level command. The `a<digits>` namespace is reserved for temporary aliases.
"""

import re

from sortedcontainers import SortedDict

TEMPORARY_ALIAS_PREFIX = 'a'
_TEMPORARY_NAME_RE = re.compile(r'^a[0-9]+$')

# Positional parameter reference inside an alias expansion: %1, %2, ...
_PARAM_RE = re.compile(r'%([0-9]+)')


class AliasError(Exception):
    """ Invalid alias name, or reference to an alias that does not exist. """
    pass


def is_reserved_name(name):
    """
    Return True if `name` belongs to the temporary alias namespace.
    """
    return _TEMPORARY_NAME_RE.match(name) is not None


class AliasTable(object):
    """
    Mapping from alias name to expansion text.
    """

    def __init__(self):
        self._aliases = SortedDict()
        self._temporary = []        # Names of outstanding temporary aliases, in creation order.
        self._temporary_counter = 0 # Next temporary alias number. Never reset within a session.

    def __len__(self):
        return len(self._aliases)

    def __contains__(self, name):
        return name in self._aliases

    def __iter__(self):
        return iter(self._aliases)

    def __repr__(self):
        lines = []
        for (name, expansion) in self._aliases.items():
            marker = '*' if self.is_temporary(name) else ' '
            lines.append(f'{marker} {name:<12} {expansion}')
        return '\n'.join(lines)

    def get(self, name, default=None):
        return self._aliases.get(name, default)

    def items(self):
        """ (name, expansion) pairs in name order. """
        return self._aliases.items()

    def names(self):
        return list(self._aliases.keys())

    def names_by_prefix(self, prefix):
        """
        Return the alias names that start with `prefix`, in sorted order.
        """
        if not prefix:
            return list(self._aliases.keys())

        # Everything in [prefix, prefix-with-last-char-incremented) shares the prefix.
        nextfix = prefix[0:-1] + chr(ord(prefix[-1]) + 1)
        return list(self._aliases.irange(prefix, nextfix, inclusive=(True, False)))

    def add(self, name, command_text):
        """
        Create or replace a persistent alias.
        """
        if not name:
            raise AliasError("Alias name cannot be empty")
        if is_reserved_name(name):
            raise AliasError(f"Alias names of the form '{TEMPORARY_ALIAS_PREFIX}<number>' " +
                             f"are reserved for hyperlinks: {name}")
        self._aliases[name] = command_text

    def remove(self, name):
        """
        Remove an alias (persistent or temporary). Raises AliasError if it does not exist.
        """
        try:
            del self._aliases[name]
        except KeyError:
            raise AliasError(f"No such alias: {name}") from None

        if name in self._temporary:
            self._temporary.remove(name)

    def is_temporary(self, name):
        return name in self._temporary

    def temporary_count(self):
        return len(self._temporary)

    def persistent_count(self):
        return len(self._aliases) - len(self._temporary)

    def add_temporary(self, command_text):
        """
        Register `command_text` under a freshly generated temporary alias name and return
        that name.
        """
        name = f'{TEMPORARY_ALIAS_PREFIX}{self._temporary_counter}'
        self._temporary_counter += 1
        self._aliases[name] = command_text
        self._temporary.append(name)
        return name

    def remove_temporary(self):
        """
        Remove every outstanding temporary alias. Returns the number removed.
        """
        count = len(self._temporary)
        for name in self._temporary:
            self._aliases.pop(name, None)
        self._temporary.clear()
        return count

    def clear_persistent(self):
        """
        Remove every persistent alias; temporary aliases are kept. Returns the number removed.
        """
        persistent = [name for name in self._aliases if not self.is_temporary(name)]
        for name in persistent:
            del self._aliases[name]
        return len(persistent)

    def clear_all(self):
        count = len(self._aliases)
        self._aliases.clear()
        self._temporary.clear()
        return count

    def expand(self, name, params=None):
        """
        Return the command text for alias `name`, with %1, %2, ... replaced by the
        corresponding entries of `params`.
        """
        try:
            expansion = self._aliases[name]
        except KeyError:
            raise AliasError(f"No such alias: {name}") from None

        params = params or []

        def _substitute(match):
            idx = int(match.group(1))
            if idx < 1 or idx > len(params):
                raise AliasError(f"Alias '{name}' expects parameter %{idx}, " +
                                 f"but {len(params)} were given")
            return params[idx - 1]

        return _PARAM_RE.sub(_substitute, expansion)
