"""Database utilities for the request log store.

Provides reusable functions for:
- Opening the SQLite store with the pragmas the aggregator relies on
- Introspecting tables, columns and indexes (for idempotent setup)
- Explicit transactions around one unit of work
"""

import logging
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, List, Set, Union

logger = logging.getLogger(__name__)

DEFAULT_BUSY_TIMEOUT_MS = 2000


def connect_store(db_path: Union[Path, str],
                  busy_timeout_ms: int = DEFAULT_BUSY_TIMEOUT_MS) -> sqlite3.Connection:
    """Open (or create) the SQLite store.

    Settings:
    - WAL mode so an external reader/writer can share the file
    - NORMAL synchronous mode for speed without data loss
    - foreign_keys ON so child rows must reference real requests/files
    - busy_timeout so SQLite itself waits briefly before reporting "locked"

    Args:
        db_path: Filesystem path, or ":memory:" for a throwaway store.
        busy_timeout_ms: How long SQLite waits on a lock before giving up.

    Returns:
        sqlite3.Connection with row_factory set to sqlite3.Row.
    """
    target = str(db_path)
    if target != ":memory:":
        Path(target).parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(target, timeout=busy_timeout_ms / 1000.0)
    conn.row_factory = sqlite3.Row
    if target != ":memory:":
        conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("PRAGMA synchronous=NORMAL")
    conn.execute("PRAGMA temp_store=MEMORY")
    conn.execute("PRAGMA foreign_keys=ON")
    conn.execute(f"PRAGMA busy_timeout={int(busy_timeout_ms)}")
    logger.debug("Opened store %s", target)
    return conn


def quote_identifier(name: str) -> str:
    """Quote a table/column name for use in SQL."""
    return '"' + name.replace('"', '""') + '"'


def list_tables(conn: sqlite3.Connection) -> Set[str]:
    """Return the names of all user tables in the store."""
    rows = conn.execute(
        "SELECT name FROM sqlite_master WHERE type='table' "
        "AND name NOT LIKE 'sqlite_%'"
    ).fetchall()
    return {r[0] for r in rows}


def get_table_columns(conn: sqlite3.Connection, table: str) -> List[Dict[str, object]]:
    """Get column information for a table, in declaration order.

    Returns:
        List of dicts with keys: name, type, notnull, dflt_value, pk
    """
    rows = conn.execute(f"PRAGMA table_info({quote_identifier(table)})").fetchall()
    return [
        {"name": r[1], "type": r[2], "notnull": bool(r[3]), "dflt_value": r[4], "pk": r[5]}
        for r in rows
    ]


def list_indexes(conn: sqlite3.Connection, table: str) -> Set[str]:
    """Return the names of the explicit indexes defined on *table*."""
    rows = conn.execute(
        "SELECT name FROM sqlite_master WHERE type='index' AND tbl_name=? "
        "AND name NOT LIKE 'sqlite_%'",
        (table,)
    ).fetchall()
    return {r[0] for r in rows}


def get_table_count(conn: sqlite3.Connection, table: str) -> int:
    """Get row count for a table."""
    result = conn.execute(f"SELECT COUNT(*) FROM {quote_identifier(table)}").fetchone()
    return result[0] if result else 0


@contextmanager
def transaction(conn: sqlite3.Connection, immediate: bool = False):
    """Run the enclosed statements as one explicit transaction.

    Commits on normal exit, rolls back and re-raises on any exception.
    ``immediate=True`` takes the write lock up front, so contention shows
    up at BEGIN instead of half way through the unit.
    """
    conn.execute("BEGIN IMMEDIATE" if immediate else "BEGIN")
    try:
        yield conn
        conn.commit()
    except BaseException:
        conn.rollback()
        raise
