"""
Record assembler — persist one parsed unit as one transaction.

For every unit the assembler writes one ``requests`` row and one child row
per parsed line into that line type's table.  The request and all its
children are committed together or not at all: a concurrent reader never
sees a request with only some of its lines.

Captured fields that are not real columns of the line table are dropped
(format drift between runs must not break ingestion).  After a successful
commit the file watermark is moved to the supplied values; it reaches the
store at the next flush.
"""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass, field
from datetime import date, datetime, time
from decimal import Decimal
from typing import Any

from logdb.database import transaction
from logdb.errors import IntegrityViolation, PersistenceError, UnknownLineTypeError
from logdb.file_progress import FileProgressTracker
from logdb.formats import RESERVED_LINE_COLUMNS, ParsedUnit
from logdb.retry import RetryPolicy
from logdb.schema import SchemaRegistry

logger = logging.getLogger(__name__)


def adapt_value(value: Any) -> Any:
    """Convert a captured value into something sqlite3 can bind."""
    if value is None or isinstance(value, (int, float, str, bytes)):
        return value
    if isinstance(value, datetime):
        return value.isoformat(sep=" ")
    if isinstance(value, (date, time)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return float(value)
    return str(value)


@dataclass
class PendingRow:
    """A child row waiting for its request id."""

    sql: str
    values: list[Any]


@dataclass
class AggregateResult:
    """What one aggregate() call wrote."""

    request_id: int
    line_count: int
    dropped_fields: dict[str, list[str]] = field(default_factory=dict)


class RecordAssembler:
    """Turns ParsedUnits into committed request + line rows."""

    def __init__(self, conn: sqlite3.Connection, registry: SchemaRegistry,
                 file_tracker: FileProgressTracker,
                 retry_policy: RetryPolicy | None = None):
        self.conn = conn
        self.registry = registry
        self.file_tracker = file_tracker
        self.retry_policy = retry_policy or RetryPolicy()
        self.units_persisted = 0
        self.lines_persisted = 0
        self.fields_dropped = 0
        self._request_sql = registry.requests.insert_sql(
            ["first_line_number", "last_line_number", "content_hash"]
        )

    def build_rows(self, unit: ParsedUnit) -> tuple[list[PendingRow], dict[str, list[str]]]:
        """Build the pending child rows for *unit*.

        Only file ids are resolved against the store; nothing else is written.

        Returns:
            (pending rows, {line_type: [dropped field names]})
        """
        pending: list[PendingRow] = []
        dropped: dict[str, list[str]] = {}
        for line in unit.lines:
            line_number = line.line_number
            if line_number is None:
                line_number = unit.first_line_number
            if not self.registry.has_line_type(line.line_type):
                raise UnknownLineTypeError(
                    f"Unknown line type: {line.line_type!r}", line_number
                )
            table = self.registry.line_table(line.line_type)
            handle = self.file_tracker.resolve(line.filename or unit.filename)
            kept, lost = table.filter_fields(line.fields, RESERVED_LINE_COLUMNS)
            if lost:
                dropped.setdefault(line.line_type, []).extend(lost)
            cols = ["line_number", "file_id", *kept]
            values = [line_number, handle.id, *(adapt_value(v) for v in kept.values())]
            pending.append(PendingRow(
                sql=table.insert_sql(["request_id", *cols]),
                values=values,
            ))
        return pending, dropped

    def _persist(self, unit: ParsedUnit, pending: list[PendingRow]) -> int:
        with transaction(self.conn, immediate=True):
            cursor = self.conn.execute(
                self._request_sql,
                (unit.first_line_number, unit.last_line_number, unit.content_hash),
            )
            request_id = cursor.lastrowid
            for row in pending:
                self.conn.execute(row.sql, [request_id, *row.values])
        return request_id

    def aggregate(self, unit: ParsedUnit, earliest_uncommitted_line: int | None = None,
                  earliest_uncommitted_pos: int | None = None) -> AggregateResult:
        """Persist *unit* and advance its file watermark.

        Args:
            unit: The parsed request.
            earliest_uncommitted_line: Line number the reader has durably
                flushed up to; may trail the unit's own lines.
            earliest_uncommitted_pos: Byte position matching that line.

        Raises:
            UnknownLineTypeError: A line names a type not in the registry.
            IntegrityViolation: A constraint failed on commit.
            ContentionError: The store stayed locked for every retry.
            PersistenceError: Any other store error.
        """
        if unit.filename is None:
            raise PersistenceError("Unit has no source filename", unit.first_line_number)

        try:
            pending, dropped = self.build_rows(unit)
            request_id = self.retry_policy.call(self._persist, unit, pending)
        except sqlite3.IntegrityError as e:
            raise IntegrityViolation(
                f"Integrity error while saving request: {e}", unit.first_line_number
            ) from e
        except sqlite3.Error as e:
            raise PersistenceError(
                f"Store error while saving request: {e}", unit.first_line_number
            ) from e

        self.file_tracker.advance(unit.filename, earliest_uncommitted_line,
                                  earliest_uncommitted_pos)

        for line_type, names in dropped.items():
            logger.debug("Dropped unknown fields for %s: %s", line_type, sorted(set(names)))
            self.fields_dropped += len(names)
        self.units_persisted += 1
        self.lines_persisted += len(pending)
        return AggregateResult(request_id=request_id, line_count=len(pending),
                               dropped_fields=dropped)
