"""
Quoting and escaping for dynamically assembled SQLite statements.

Every identifier or literal that ends up inside statement text passes
through this module. SQLite quotes identifiers with double quotes and
literals with single quotes; the only control character inside either is
the quote character itself, which is doubled. Backslash has no meaning in
SQLite string syntax and passes through unchanged. Python strings are
sequences of code points, so multi-byte characters are never split or
mistaken for a quote byte.
"""

import math
import re
from typing import Any, List

from table_log.errors import InvalidIdentifier


def _reject_nul(text: str, what: str) -> None:
    # sqlite3 refuses statement text containing NUL
    if "\x00" in text:
        raise ValueError(f"{what} must not contain a NUL character")


def quote_identifier(text: str) -> str:
    """
    Return text as a double-quoted SQLite identifier.

    Args:
        text: Raw identifier (table, column, schema or trigger name)

    Returns:
        The quoted identifier, safe to embed in statement text
    """
    if not text:
        raise InvalidIdentifier("identifier must not be empty")
    if "\x00" in text:
        raise InvalidIdentifier("identifier must not contain a NUL character", identifier=text)
    return '"' + text.replace('"', '""') + '"'


def quote_qualified(schema: str, name: str) -> str:
    """Return a schema-qualified, quoted relation name."""
    return f"{quote_identifier(schema)}.{quote_identifier(name)}"


def quote_literal(text: str) -> str:
    """
    Return text as a single-quoted SQLite string literal.

    Args:
        text: Raw string value

    Returns:
        The quoted literal; ``unquote_literal`` reverses it exactly
    """
    _reject_nul(text, "literal")
    return "'" + text.replace("'", "''") + "'"


# Declared type names as the catalog reports them: INTEGER, VARCHAR(255),
# DOUBLE PRECISION, NUMERIC(10, 2)
_TYPE_NAME = re.compile(
    r"[A-Za-z_][A-Za-z0-9_ ]*"
    r"(\(\s*[+-]?\d+(\.\d+)?\s*(,\s*[+-]?\d+(\.\d+)?\s*)?\))?"
)


def check_type_name(text: str) -> str:
    """Return a declared column type, or raise if it is not a plain type name."""
    if not _TYPE_NAME.fullmatch(text.strip()):
        raise InvalidIdentifier("unsupported declared column type", type=text)
    return text.strip()


def _unquote(text: str, quote: str) -> str:
    if len(text) < 2 or text[0] != quote or text[-1] != quote:
        raise ValueError(f"not a {quote}-quoted token: {text!r}")

    body = text[1:-1]
    result = []
    i = 0
    while i < len(body):
        char = body[i]
        if char == quote:
            # an inner quote must be doubled
            if i + 1 >= len(body) or body[i + 1] != quote:
                raise ValueError(f"unescaped quote in token: {text!r}")
            i += 1
        result.append(char)
        i += 1
    return "".join(result)


def unquote_literal(text: str) -> str:
    """Reverse ``quote_literal``."""
    return _unquote(text, "'")


def unquote_identifier(text: str) -> str:
    """Reverse ``quote_identifier``."""
    return _unquote(text, '"')


def sql_value(value: Any) -> str:
    """
    Render a Python value as an SQLite literal.

    Used where a statement cannot take bound parameters (DDL). Supports the
    value types sqlite3 returns: None, int, float, str and bytes.
    """
    if value is None:
        return "NULL"
    if isinstance(value, bool):
        return "1" if value else "0"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        if math.isnan(value) or math.isinf(value):
            raise ValueError(f"cannot render non-finite float {value!r}")
        return repr(value)
    if isinstance(value, (bytes, bytearray, memoryview)):
        return "X'" + bytes(value).hex().upper() + "'"
    if isinstance(value, str):
        return quote_literal(value)
    raise TypeError(f"Unsupported literal type: {type(value)}")


def split_identifier(text: str) -> List[str]:
    """
    Split a possibly schema-qualified name on dots.

    Double-quoted parts may contain dots and doubled quotes; unquoted parts
    are taken verbatim (SQLite names are case-insensitive, so no folding is
    done). At most two parts are accepted.

    Raises:
        InvalidIdentifier: For empty parts, unbalanced quotes or more than
            two parts
    """
    parts: List[str] = []
    i = 0
    n = len(text)

    while True:
        if i < n and text[i] == '"':
            # quoted part: scan to the closing quote
            j = i + 1
            buf = []
            while True:
                if j >= n:
                    raise InvalidIdentifier("unterminated quoted identifier", identifier=text)
                if text[j] == '"':
                    if j + 1 < n and text[j + 1] == '"':
                        buf.append('"')
                        j += 2
                        continue
                    break
                buf.append(text[j])
                j += 1
            part = "".join(buf)
            i = j + 1
        else:
            j = text.find(".", i)
            if j < 0:
                j = n
            part = text[i:j].strip()
            if '"' in part:
                raise InvalidIdentifier("misplaced quote in identifier", identifier=text)
            i = j

        if not part:
            raise InvalidIdentifier("empty identifier part", identifier=text)
        parts.append(part)

        if i >= n:
            break
        if text[i] != ".":
            raise InvalidIdentifier("invalid syntax for relation name", identifier=text)
        i += 1

    if len(parts) > 2:
        raise InvalidIdentifier("too many dotted parts in relation name", identifier=text)

    return parts
