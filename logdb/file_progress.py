"""
File progress tracking — what makes ingestion resumable.

One ``files`` row per source file holds the last line number and byte
position known to be durably committed.  Rows are created the first time a
file is referenced (and committed straight away, so child rows can point at
a stable id); watermarks move forward in memory as units commit and are
written back by flush_all() at shutdown or at periodic flush points.

On restart the parser asks existing_files() where each file left off and
skips what is already in the store.
"""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass
from typing import NamedTuple

from logdb.database import transaction
from logdb.retry import RetryPolicy
from logdb.schema import FILES_TABLE

logger = logging.getLogger(__name__)


class FileWatermark(NamedTuple):
    """Durable read progress for one file."""

    line_number: int
    position: int


@dataclass
class FileHandle:
    """In-memory copy of one ``files`` row."""

    id: int
    filename: str
    last_line_number: int = 0
    last_position: int = 0
    dirty: bool = False

    @property
    def watermark(self) -> FileWatermark:
        return FileWatermark(self.last_line_number, self.last_position)

    def advance(self, line_number: int | None, position: int | None) -> bool:
        """Move the watermark forward.  Never moves it back.

        Returns True if anything changed.
        """
        changed = False
        if line_number is not None and line_number > self.last_line_number:
            self.last_line_number = line_number
            changed = True
        if position is not None and position > self.last_position:
            self.last_position = position
            changed = True
        if changed:
            self.dirty = True
        return changed


class FileProgressTracker:
    """Cache of ``files`` rows keyed by filename."""

    def __init__(self, conn: sqlite3.Connection, retry_policy: RetryPolicy | None = None):
        self.conn = conn
        self.retry_policy = retry_policy or RetryPolicy()
        self._handles: dict[str, FileHandle] = {}

    def __contains__(self, filename: str) -> bool:
        return filename in self._handles

    def resolve(self, filename: str) -> FileHandle:
        """Return the handle for *filename*, creating its row on first use."""
        handle = self._handles.get(filename)
        if handle is None:
            handle = self.retry_policy.call(self._load_or_create, filename)
            self._handles[filename] = handle
        return handle

    def _load_or_create(self, filename: str) -> FileHandle:
        # Look up and insert under one write lock so a concurrent run
        # cannot register the same filename in between.
        with transaction(self.conn, immediate=True):
            row = self.conn.execute(
                f"SELECT id, last_line_number, last_position FROM {FILES_TABLE} "
                "WHERE filename = ?",
                (filename,)
            ).fetchone()
            if row is None:
                cursor = self.conn.execute(
                    f"INSERT INTO {FILES_TABLE} (filename, last_line_number, last_position) "
                    "VALUES (?, 0, 0)",
                    (filename,)
                )
                logger.debug("Registered file %s as id %d", filename, cursor.lastrowid)
                return FileHandle(id=cursor.lastrowid, filename=filename)
        return FileHandle(
            id=row[0],
            filename=filename,
            last_line_number=row[1] or 0,
            last_position=row[2] or 0,
        )

    def advance(self, file: str | FileHandle, line_number: int | None,
                position: int | None) -> FileHandle:
        """Move the watermark of *file* (a filename or handle) forward, in memory."""
        handle = file if isinstance(file, FileHandle) else self.resolve(file)
        if not handle.advance(line_number, position):
            logger.debug("Watermark for %s not advanced (%s, %s) <= %s",
                         handle.filename, line_number, position, handle.watermark)
        return handle

    def flush_all(self) -> int:
        """Write every changed watermark back to the store.

        Returns:
            Number of file rows updated.
        """
        dirty = [h for h in self._handles.values() if h.dirty]
        if not dirty:
            return 0
        self.retry_policy.call(self._write, dirty)
        for handle in dirty:
            handle.dirty = False
        logger.debug("Flushed progress for %d file(s)", len(dirty))
        return len(dirty)

    def _write(self, handles: list[FileHandle]) -> None:
        # MAX() keeps the stored watermark monotonic even if another run
        # against the same store got further.
        with transaction(self.conn, immediate=True):
            self.conn.executemany(
                f"UPDATE {FILES_TABLE} SET "
                "last_line_number = MAX(last_line_number, ?), "
                "last_position = MAX(last_position, ?) "
                "WHERE id = ?",
                [(h.last_line_number, h.last_position, h.id) for h in handles]
            )

    def existing_files(self) -> dict[str, FileWatermark]:
        """Map every known filename to its last committed watermark.

        Reads the store and overlays any unflushed in-memory progress.
        """
        rows = self.conn.execute(
            f"SELECT filename, last_line_number, last_position FROM {FILES_TABLE}"
        ).fetchall()
        result = {r[0]: FileWatermark(r[1] or 0, r[2] or 0) for r in rows}
        for handle in self._handles.values():
            stored = result.get(handle.filename, FileWatermark(0, 0))
            result[handle.filename] = FileWatermark(
                max(stored.line_number, handle.last_line_number),
                max(stored.position, handle.last_position),
            )
        return result
