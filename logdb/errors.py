"""Exception hierarchy for the request log database.

Every error raised here is fatal for the run that hits it.  Transient
"database is locked" conditions never show up as one of these unless the
retry policy gives up (``ContentionError``).
"""

from __future__ import annotations


class LogDBError(Exception):
    """Base class for all request-log-db errors."""


class SchemaError(LogDBError):
    """Malformed format description or failed table/index creation."""


class PersistenceError(LogDBError):
    """A unit or warning could not be written to the store.

    Args:
        message: What went wrong.
        line_number: First line number of the offending unit, when known.
    """

    def __init__(self, message: str, line_number: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.line_number = line_number

    def __str__(self) -> str:
        if self.line_number is not None:
            return f"{self.message} (line {self.line_number})"
        return self.message


class IntegrityViolation(PersistenceError):
    """Constraint violation on commit (unexpected NULL, bad foreign key)."""


class UnknownLineTypeError(PersistenceError):
    """A parsed line names a line type the schema registry does not know."""


class ContentionError(PersistenceError):
    """The store stayed busy/locked for every allowed retry attempt."""
