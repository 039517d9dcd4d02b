"""Capture type tag -> storage column type mapping."""

from __future__ import annotations

from enum import Enum

# Logical storage types and their SQLite declarations.
SQL_TYPES = {
    "text": "TEXT",
    "string": "VARCHAR(255)",
    "integer": "INTEGER",
    "double": "DOUBLE",
    "datetime": "DATETIME",
    "date": "DATE",
}

_TAG_MAP = {
    "text": "text",
    "eval": "text",
    "string": "string",
    "integer": "integer",
    "int": "integer",
    "sec": "double",
    "msec": "double",
    "duration": "double",
    "float": "double",
    "double": "double",
    "timestamp": "datetime",
    "datetime": "datetime",
    "date": "date",
}


def column_type(tag) -> str:
    """Map a capture type tag to a logical storage type.

    The lookup is case-insensitive.  Unrecognized tags (and ``None``) fall
    back to ``"string"``.  Enum members are matched on their value, then
    their name.

    Examples:
        column_type("msec")  -> "double"
        column_type("INT")   -> "integer"
        column_type("path")  -> "string"
    """
    if tag is None:
        return "string"
    candidates = [tag.value, tag.name] if isinstance(tag, Enum) else [tag]
    for candidate in candidates:
        mapped = _TAG_MAP.get(str(candidate).strip().lower())
        if mapped:
            return mapped
    return "string"


def sql_type(logical_type: str) -> str:
    """Return the SQLite column declaration for a logical storage type."""
    return SQL_TYPES.get(logical_type, SQL_TYPES["string"])
