"""
Identifier validation and quoting.

Every schema, table and column name that ends up in generated SQL goes
through ``quote_identifier``. Names coming from the system catalog may
contain characters outside the plain identifier class; those are admitted
with ``trusted=True`` since the database itself reported them.
"""

import re

from .errors import InvalidIdentifier

QUOTE_CHAR = '"'

_VALID_NAME = re.compile(r"^[A-Za-z_][A-Za-z_0-9$]*$")


def is_valid_identifier(name: str) -> bool:
    return isinstance(name, str) and bool(_VALID_NAME.match(name))


def quote_identifier(name: str, trusted: bool = False) -> str:
    """Wrap ``name`` in double quotes, doubling any embedded quote.

    Untrusted names must match ``[A-Za-z_][A-Za-z_0-9$]*``.
    """
    if not isinstance(name, str) or not name:
        raise InvalidIdentifier(f"Invalid identifier: {name!r}")
    if not trusted and not _VALID_NAME.match(name):
        raise InvalidIdentifier(f"Invalid identifier: {name!r}")
    if "\x00" in name:
        raise InvalidIdentifier(f"Invalid identifier: {name!r}")
    escaped = name.replace(QUOTE_CHAR, QUOTE_CHAR * 2)
    return f"{QUOTE_CHAR}{escaped}{QUOTE_CHAR}"


def quote_qualified(schema: str, table: str, trusted: bool = False) -> str:
    """Quote a ``schema.table`` pair."""
    return (
        f"{quote_identifier(schema, trusted)}."
        f"{quote_identifier(table, trusted)}"
    )
