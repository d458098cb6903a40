# (c) Copyright 2022 Aaron Kimball
#
# Reading and writing of the python-literal files used for user configuration
# and heap snapshot dumps. A file holds `formatversion = <n>` and one
# `<map_name> = {...}` assignment whose value is a literal dict.

import ast
import os

DBG_CONF_FMT_VERSION = 1


def _read_assignments(text):
    """
    Return a dict of `name = <literal>` assignments in `text`.
    Raises SyntaxError or ValueError if text holds anything else.
    """
    out = {}
    for stmt in ast.parse(text).body:
        if not isinstance(stmt, ast.Assign) or len(stmt.targets) != 1 or \
                not isinstance(stmt.targets[0], ast.Name):
            raise ValueError(f"Unexpected statement at line {stmt.lineno}")
        out[stmt.targets[0].id] = ast.literal_eval(stmt.value)
    return out


def load_config_file(filename, map_name='config', defaults=None):
    """
        Read the map named `map_name` from a config or dump file.

        Values in the file are layered on top of a copy of `defaults` (if given). A file
        that cannot be parsed, or was written by a newer format version, contributes
        nothing; a warning is printed instead.
    """
    new_conf = dict(defaults or {})

    with open(filename, "r") as f:
        text = f.read()

    try:
        assignments = _read_assignments(text)
    except (SyntaxError, ValueError) as e:
        print(f"Warning: error parsing config file '{filename}': {e}")
        return new_conf

    fmtver = assignments.get('formatversion')
    if not isinstance(fmtver, int) or fmtver > DBG_CONF_FMT_VERSION:
        print(f"Error: Cannot read config file '{filename}' with version {fmtver}")
        return new_conf

    loaded = assignments.get(map_name)
    if not isinstance(loaded, dict):
        print(f"Error in format for config file '{filename}'")
        return new_conf

    new_conf.update(loaded)
    return new_conf


def _format_value(v, level=1):
    """
        Return the python-literal text for v. Dicts are written one entry per line,
        indented by `level`.
    """
    if v is None or isinstance(v, (str, int, float, bool)):
        return repr(v)
    elif isinstance(v, (bytes, bytearray)):
        return repr(bytes(v))
    elif isinstance(v, (list, tuple)):
        return '[' + ''.join(_format_value(elem, level) + ', ' for elem in v) + ']'
    elif isinstance(v, dict):
        pad = '  ' * (level + 1)
        entries = [f'{pad}{_format_value(k, level + 1)}: {_format_value(val, level + 1)},\n'
                   for (k, val) in v.items()]
        return '{\n' + ''.join(entries) + '  ' * level + '}'

    # Anything else is written as the map of its public data attributes.
    print("Warning: unknown type serialization '%s'" % str(type(v)))
    attrs = dict([(k, val) for (k, val) in vars(v).items()
                  if not k.startswith('_') and not callable(val)])
    return _format_value(attrs, level)


def persist_config_file(filename, map_name, data):
    """
        Write `data` out as the map named `map_name`.
    """
    filename = os.path.expanduser(filename)
    with open(filename, "w") as f:
        f.write(f"formatversion = {DBG_CONF_FMT_VERSION}\n")
        f.write(f"{map_name} = {{\n")
        for (k, v) in data.items():
            f.write(f"  {k!r}: {_format_value(v)},\n")
        f.write("}\n")
