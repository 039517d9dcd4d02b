"""
Pytest fixtures for request log database tests.

Provides reusable fixtures: format descriptions, temporary SQLite stores,
a prepared schema registry, and helpers to build parsed units.
"""

import sqlite3
import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from logdb.database import connect_store  # noqa: E402
from logdb.file_progress import FileProgressTracker  # noqa: E402
from logdb.formats import FormatDescription, ParsedLine, ParsedUnit  # noqa: E402
from logdb.retry import RetryPolicy  # noqa: E402
from logdb.schema import ensure_schema  # noqa: E402


ACCESS_FORMAT = {
    "line_types": {
        "access": [
            {"name": "status", "type": "int"},
            {"name": "duration", "type": "sec"},
        ],
    },
}

RAILS_FORMAT = {
    "line_types": {
        "processing": [
            {"name": "controller", "type": "string", "indexed": True},
            {"name": "action", "type": "string"},
            {"name": "ip", "type": "string"},
            {"name": "timestamp", "type": "timestamp",
             "provides": {"hour": "integer"}},
        ],
        "completed": [
            {"name": "duration", "type": "msec"},
            {"name": "status", "type": "integer", "indexed": True},
            {"name": "url", "type": "text"},
        ],
    },
}


def no_sleep(_seconds):
    """Stand-in for time.sleep so retry tests run instantly."""


@pytest.fixture()
def access_format():
    return FormatDescription.from_dict(ACCESS_FORMAT)


@pytest.fixture()
def rails_format():
    return FormatDescription.from_dict(RAILS_FORMAT)


@pytest.fixture()
def db_path(tmp_path):
    return tmp_path / "requests.sqlite"


@pytest.fixture()
def store(db_path):
    """Open a fresh on-disk store; closed after the test."""
    conn = connect_store(db_path)
    yield conn
    conn.close()


@pytest.fixture()
def retry_policy():
    return RetryPolicy(interval=0.01, max_attempts=5, sleep=no_sleep)


@pytest.fixture()
def access_registry(store, access_format):
    return ensure_schema(store, access_format)


@pytest.fixture()
def rails_registry(store, rails_format):
    return ensure_schema(store, rails_format)


@pytest.fixture()
def tracker(store, access_registry, retry_policy):
    return FileProgressTracker(store, retry_policy)


def make_access_unit(first, statuses, filename="a.log", durations=None, **extra):
    """Build a unit of access lines, one per status, numbered from *first*."""
    durations = durations or [0.5] * len(statuses)
    lines = [
        ParsedLine(
            line_type="access",
            filename=filename,
            line_number=first + i,
            fields={"status": status, "duration": duration, **extra},
        )
        for i, (status, duration) in enumerate(zip(statuses, durations))
    ]
    return ParsedUnit(
        first_line_number=first,
        last_line_number=first + len(statuses) - 1,
        lines=lines,
    )


def count_rows(conn: sqlite3.Connection, table: str) -> int:
    return conn.execute(f'SELECT COUNT(*) FROM "{table}"').fetchone()[0]
