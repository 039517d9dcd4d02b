"""Warning sink — one ``warnings`` row per parser warning, written at once."""

from __future__ import annotations

import logging
import sqlite3
from enum import Enum

from logdb.database import transaction
from logdb.errors import IntegrityViolation
from logdb.retry import RetryPolicy
from logdb.schema import SchemaRegistry

logger = logging.getLogger(__name__)

MAX_WARNING_TYPE_LENGTH = 30


def _kind_to_str(kind) -> str:
    if isinstance(kind, Enum):
        kind = kind.value if isinstance(kind.value, str) else kind.name
    return str(kind)[:MAX_WARNING_TYPE_LENGTH]


class WarningSink:
    """Append-only writer for the ``warnings`` table.

    Each warning is committed on its own, outside any request transaction,
    so it survives even when the unit it belongs to fails later.
    """

    def __init__(self, conn: sqlite3.Connection, registry: SchemaRegistry,
                 retry_policy: RetryPolicy | None = None):
        self.conn = conn
        self.table = registry.warnings
        self.retry_policy = retry_policy or RetryPolicy()
        self.count = 0
        self._sql = self.table.insert_sql(["warning_type", "message", "line_number"])

    def record(self, kind, message: str | None, line_number: int | None = None) -> int:
        """Insert one warning row and commit it.

        Returns:
            The new row id.
        """
        params = (_kind_to_str(kind), message, line_number)
        try:
            row_id = self.retry_policy.call(self._insert, params)
        except sqlite3.IntegrityError as e:
            raise IntegrityViolation(f"Cannot record warning: {e}", line_number) from e
        self.count += 1
        logger.debug("Warning %s at line %s: %s", params[0], line_number, message)
        return row_id

    def _insert(self, params: tuple) -> int:
        with transaction(self.conn, immediate=True):
            cursor = self.conn.execute(self._sql, params)
        return cursor.lastrowid
