import re
from typing import Any, Mapping, Sequence

from ..classes.db_cursor import Params


# Define a regex for preventing against injection
_SAFE_IDENT:re.Pattern = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

# A part the caller already quoted: "..." with any internal " doubled
_QUOTED_IDENT:re.Pattern = re.compile(r'^"(?:[^"]|"")+"$')


def _split_identifier(name:str) -> list[str]:
    """Split a dotted path on the dots that are outside double quotes, e.g. '"my.schema".fn' -> ['"my.schema"', 'fn']."""

    parts:list[str] = []
    buf:list[str] = []
    in_quotes:bool = False
    i:int = 0

    while i < len(name):
        ch = name[i]

        # Doubled quote inside a quoted part is a literal "
        if ch == '"' and in_quotes and name[i + 1:i + 2] == '"':
            buf.append('""')
            i += 2
            continue

        if ch == '"':
            in_quotes = not in_quotes
            buf.append(ch)
        elif ch == '.' and not in_quotes:
            parts.append(''.join(buf).strip())
            buf = []
        else:
            buf.append(ch)
        i += 1

    if in_quotes:
        raise ValueError(f"Unbalanced quotes in identifier: {name!r}")

    parts.append(''.join(buf).strip())
    return parts


def quote_name(name:str) -> str:
    """Quote a single identifier (no dotted path). Safe names are left unquoted, the rest become "name" with
    internal " doubled -> "" """
    name = (name or "").strip()
    if not name:
        raise ValueError("Empty identifier")
    return name if _SAFE_IDENT.fullmatch(name) else quote_cursor_name(name)


def quote_identifier(identifier:str|Sequence[str]) -> str:
    """Safely quote an identifier or dotted path (schema.function).

        - str: parts already written as "..." are kept as given (so "GetReport" keeps its case), dots inside quotes
          do not split, safe bare parts are left unquoted and unsafe bare parts are quoted
        - tuple/list of parts: each part is an exact name and is always quoted, e.g. ("my.schema", "GetReport")
    """

    # Exact parts
    if not isinstance(identifier, str):
        parts:list[str] = list(identifier or [])
        if not parts or any(p is None or p == "" for p in parts):
            raise ValueError(f"Invalid identifier: {identifier!r}")
        return ".".join(quote_cursor_name(p) for p in parts)

    # Clean the identifier of whitespace
    name:str = (identifier or "").strip()

    # Make sure the identifier wasn't empty or just whitespace
    if not name:
        raise ValueError("Empty identifier")

    quoted_parts:list[str] = []
    for p in _split_identifier(name):
        if p == "":
            raise ValueError(f"Invalid identifier: {identifier!r}")

        # Already quoted by the caller
        if _QUOTED_IDENT.fullmatch(p):
            quoted_parts.append(p)

        # A stray quote in a bare part (e.g. ab"c") cannot be quoted unambiguously
        elif '"' in p:
            raise ValueError(f"Invalid identifier: {identifier!r}")

        else:
            quoted_parts.append(quote_name(p))

    return ".".join(quoted_parts)


def quote_cursor_name(name:str) -> str:
    """Quote a refcursor name. Always quoted, since the server generates names like <unnamed portal 1>."""
    if name is None:
        raise ValueError("Refcursor name cannot be None")
    return f'"{name.replace(chr(34), chr(34)*2)}"'


def fetch_statement(name:str, fetch_size:int|None=None) -> str:
    """FETCH statement for the given refcursor: FETCH ALL when [fetch_size] is None, otherwise one page of [fetch_size]."""
    if fetch_size is None:
        return f'FETCH ALL FROM {quote_cursor_name(name)}'
    return f'FETCH FORWARD {int(fetch_size)} FROM {quote_cursor_name(name)}'


def build_function_call(function_name:str|Sequence[str], params:Params=None) -> tuple[str, Params]:
    """Build the SELECT that calls a stored function and returns its refcursor(s), along with the params to bind.
    [function_name] follows quote_identifier(): a dotted path (quoted parts kept as given) or a tuple of exact parts.

        - None: no arguments, e.g. SELECT * FROM get_report()
        - Sequence: positional placeholders, e.g. SELECT * FROM get_report(%s,%s)
        - Mapping: named notation, e.g. SELECT * FROM get_report(year => %(year)s)

    NOTE: %s-style placeholders are understood by both psycopg2 and psycopg.
    """

    function_id:str = quote_identifier(function_name)

    # No arguments
    if params is None or (not isinstance(params, (str, bytes)) and len(params) == 0):
        return f'SELECT * FROM {function_id}()', None

    # Named arguments
    if isinstance(params, Mapping):
        args:str = ','.join(f'{quote_name(str(k))} => %({k})s' for k in params.keys())
        return f'SELECT * FROM {function_id}({args})', dict(params)

    # A lone string would otherwise be bound one character per placeholder
    if isinstance(params, (str, bytes)):
        raise TypeError(f"params must be a sequence or mapping, not {type(params).__name__}")

    placeholders:str = ','.join(['%s'] * len(params))
    return f'SELECT * FROM {function_id}({placeholders})', tuple(params)


def names_from_rows(rows:list[Any]) -> list[str]:
    """Flatten the rows returned by the function call into refcursor names, row-major.
    A SETOF refcursor function gives one name per row; a function with several OUT refcursors gives one row with a
    name per column."""

    names:list[str] = []
    for row in rows:
        values = row.values() if isinstance(row, Mapping) else row
        names.extend(str(v) for v in values if v is not None)
    return names
