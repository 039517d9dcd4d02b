"""
logdb — persist parsed request-log lines into a SQLite store whose schema is
derived at runtime from the log format description.

Re-exports key entry points so callers can do::

    from logdb import DatabaseAggregator, AggregatorConfig, FormatDescription
"""

from logdb.aggregator import DatabaseAggregator
from logdb.assembler import AggregateResult, RecordAssembler
from logdb.config import AggregatorConfig, Config
from logdb.errors import (
    ContentionError,
    IntegrityViolation,
    LogDBError,
    PersistenceError,
    SchemaError,
    UnknownLineTypeError,
)
from logdb.file_progress import FileHandle, FileProgressTracker, FileWatermark
from logdb.formats import Capture, FormatDescription, LineDefinition, ParsedLine, ParsedUnit
from logdb.retry import RetryPolicy, is_busy
from logdb.schema import Column, SchemaRegistry, TableSchema, ensure_schema
from logdb.types import column_type, sql_type
from logdb.warning_sink import WarningSink

__all__ = [
    # Lifecycle
    "DatabaseAggregator",
    "AggregatorConfig",
    "Config",
    # Input types
    "Capture",
    "LineDefinition",
    "FormatDescription",
    "ParsedLine",
    "ParsedUnit",
    # Components
    "ensure_schema",
    "SchemaRegistry",
    "TableSchema",
    "Column",
    "RecordAssembler",
    "AggregateResult",
    "FileProgressTracker",
    "FileHandle",
    "FileWatermark",
    "WarningSink",
    "RetryPolicy",
    "is_busy",
    "column_type",
    "sql_type",
    # Errors
    "LogDBError",
    "SchemaError",
    "PersistenceError",
    "IntegrityViolation",
    "UnknownLineTypeError",
    "ContentionError",
]
