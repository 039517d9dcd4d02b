"""
Database aggregator — the lifecycle the parsing pipeline drives.

    agg = DatabaseAggregator(config, format_description)
    agg.prepare()                        # connect + ensure schema
    done = agg.existing_files()          # where each file left off
    for unit, line, pos in parsed_units:
        agg.aggregate(unit, line, pos)   # one transaction per unit
    agg.warning("unparseable_line", "...", 42)
    count = agg.finalize()               # flush progress, close

Existing stores are reused: prepare() only adds what is missing, so a second
run resumes into the same database.  Pass ``rebuild=True`` in the config to
start from an empty file instead.
"""

from __future__ import annotations

import logging
import sqlite3
from pathlib import Path

from logdb.assembler import AggregateResult, RecordAssembler
from logdb.config import AggregatorConfig
from logdb.database import connect_store, get_table_count
from logdb.errors import LogDBError, PersistenceError
from logdb.file_progress import FileProgressTracker, FileWatermark
from logdb.formats import FormatDescription, ParsedUnit
from logdb.schema import REQUESTS_TABLE, SchemaRegistry, ensure_schema
from logdb.warning_sink import WarningSink

logger = logging.getLogger(__name__)


class DatabaseAggregator:
    """Persists parsed requests into a SQLite store derived from the format."""

    def __init__(self, config: AggregatorConfig, format_description: FormatDescription):
        self.config = config
        self.format_description = format_description
        self.retry_policy = config.retry_policy()
        self.conn: sqlite3.Connection | None = None
        self.registry: SchemaRegistry | None = None
        self.files: FileProgressTracker | None = None
        self.assembler: RecordAssembler | None = None
        self.warnings: WarningSink | None = None
        self.request_count: int | None = None
        self._units_since_flush = 0

    # ── lifecycle ─────────────────────────────────────────────────────────

    def prepare(self) -> SchemaRegistry:
        """Open the store and make sure the schema matches the format."""
        db_path = self.config.db_path
        if self.config.rebuild and str(db_path) != ":memory:":
            for suffix in ("", "-wal", "-shm"):
                stale = Path(f"{db_path}{suffix}")
                if stale.exists():
                    stale.unlink()
                    logger.info("Removed existing database file for rebuild: %s", stale)

        self.conn = connect_store(db_path, busy_timeout_ms=self.config.busy_timeout_ms)
        try:
            self.registry = ensure_schema(self.conn, self.format_description,
                                          verbose=self.config.debug)
        except Exception:
            self.close()
            raise
        self.files = FileProgressTracker(self.conn, self.retry_policy)
        self.assembler = RecordAssembler(self.conn, self.registry, self.files,
                                         self.retry_policy)
        self.warnings = WarningSink(self.conn, self.registry, self.retry_policy)
        return self.registry

    def _require_prepared(self) -> None:
        if self.conn is None:
            raise PersistenceError("Aggregator used before prepare() or after finalize()")

    def existing_files(self) -> dict[str, FileWatermark]:
        """Filename -> last committed (line number, position)."""
        self._require_prepared()
        return self.files.existing_files()

    def aggregate(self, unit: ParsedUnit, earliest_uncommitted_line: int | None = None,
                  earliest_uncommitted_pos: int | None = None) -> AggregateResult:
        """Persist one unit; flush file progress every ``flush_interval`` units."""
        self._require_prepared()
        result = self.assembler.aggregate(unit, earliest_uncommitted_line,
                                          earliest_uncommitted_pos)
        self._units_since_flush += 1
        interval = self.config.flush_interval
        if interval and self._units_since_flush >= interval:
            self.flush()
        return result

    def warning(self, kind, message: str | None, line_number: int | None = None) -> int:
        """Record a parser warning immediately."""
        self._require_prepared()
        return self.warnings.record(kind, message, line_number)

    def flush(self) -> int:
        """Write file progress back to the store now."""
        self._require_prepared()
        self._units_since_flush = 0
        return self.files.flush_all()

    def finalize(self) -> int:
        """Flush progress, count persisted requests and release the store.

        The connection is released even when the flush fails.

        Returns:
            Total number of rows in the ``requests`` table.
        """
        self._require_prepared()
        try:
            self.flush()
            self.request_count = get_table_count(self.conn, REQUESTS_TABLE)
        finally:
            self.close()
        logger.info("%d requests in %s", self.request_count, self.config.db_path)
        return self.request_count

    def abort(self) -> None:
        """Stop after a fatal error: keep committed progress, skip the summary.

        Units that committed before the failure get their watermarks
        written so a re-run skips them; the failed unit was rolled back and
        never advanced one.  A failing flush is logged, not raised.
        """
        if self.conn is None:
            return
        try:
            self.flush()
        except (LogDBError, sqlite3.Error) as e:
            logger.warning("Could not save file progress on abort: %s", e)
        finally:
            self.close()

    def close(self) -> None:
        """Release the connection without flushing."""
        if self.conn is not None:
            self.conn.close()
            self.conn = None

    def __enter__(self) -> "DatabaseAggregator":
        self.prepare()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if exc_type is None:
            self.finalize()
        else:
            self.abort()

    # ── counters / report ─────────────────────────────────────────────────

    @property
    def units_persisted(self) -> int:
        return self.assembler.units_persisted if self.assembler else 0

    def report_lines(self) -> list[str]:
        """Short human-readable report of what was written."""
        count = self.request_count if self.request_count is not None else self.units_persisted
        return [
            "Request database created",
            "A database file has been created with all parsed request information.",
            f"{count} requests have been added to the database.",
            "To execute queries on this database, run the following command:",
            f"  $ sqlite3 {self.config.db_path}",
        ]
