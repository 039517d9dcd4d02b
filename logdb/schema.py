"""
Schema synthesis — turn a format description into SQLite tables.

Layout produced in the store:

    requests               one row per persisted unit
    warnings               one row per parser warning
    files                  one row per source file (read progress)
    <line_type>_lines      one table per line type in the format

Every line table starts with ``request_id, line_number, file_id`` followed by
one column per capture and one per "provided" derived field.  ``request_id``
is always indexed; captures flagged ``indexed`` get their own index.

Setup is idempotent.  Tables that already exist are never dropped or
truncated; they only converge: declared columns that are missing are added
with ALTER TABLE and missing indexes are created.  Each table is built in its
own transaction so a failure never leaves a half-built table behind.

Instead of generating a model class per line type, ensure_schema() returns a
SchemaRegistry of static TableSchema descriptors, built from the live table
definitions, which the assembler and warning sink use to build rows.
"""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping

from logdb.database import (
    get_table_columns,
    list_indexes,
    list_tables,
    quote_identifier,
    transaction,
)
from logdb.errors import SchemaError, UnknownLineTypeError
from logdb.formats import FormatDescription, LineDefinition
from logdb.types import column_type, sql_type

logger = logging.getLogger(__name__)

REQUESTS_TABLE = "requests"
WARNINGS_TABLE = "warnings"
FILES_TABLE = "files"


def line_table_name(line_type: str) -> str:
    return f"{line_type}_lines"


# ── Descriptors ───────────────────────────────────────────────────────────────


@dataclass
class Column:
    """One column of a table descriptor."""

    name: str
    type: str                      # SQLite declaration, e.g. "INTEGER"
    nullable: bool = True
    default: str | None = None     # SQL literal
    references: str | None = None  # "table(column)"

    def to_sql(self, for_alter: bool = False) -> str:
        parts = [quote_identifier(self.name), self.type]
        # ALTER TABLE ADD COLUMN cannot add NOT NULL without a default
        if not self.nullable and (not for_alter or self.default is not None):
            parts.append("NOT NULL")
        if self.default is not None:
            parts.append(f"DEFAULT {self.default}")
        if self.references:
            parts.append(f"REFERENCES {self.references}")
        return " ".join(parts)


@dataclass
class TableSchema:
    """Static description of one table: ordered columns plus indexes."""

    name: str
    columns: list[Column] = field(default_factory=list)
    indexes: list[tuple[str, list[str]]] = field(default_factory=list)
    unique: list[list[str]] = field(default_factory=list)

    def column_names(self) -> list[str]:
        return [c.name for c in self.columns]

    def create_table_sql(self) -> str:
        defs = ["id INTEGER PRIMARY KEY AUTOINCREMENT"]
        defs += [c.to_sql() for c in self.columns if c.name != "id"]
        defs += [
            "UNIQUE (" + ", ".join(quote_identifier(c) for c in cols) + ")"
            for cols in self.unique
        ]
        return f"CREATE TABLE {quote_identifier(self.name)} (\n    " + ",\n    ".join(defs) + "\n)"

    def create_index_sql(self, index_name: str, cols: list[str]) -> str:
        return (
            f"CREATE INDEX {quote_identifier(index_name)} "
            f"ON {quote_identifier(self.name)} ("
            + ", ".join(quote_identifier(c) for c in cols) + ")"
        )

    def insert_sql(self, cols: Iterable[str]) -> str:
        cols = list(cols)
        return (
            f"INSERT INTO {quote_identifier(self.name)} ("
            + ", ".join(quote_identifier(c) for c in cols)
            + ") VALUES (" + ", ".join("?" for _ in cols) + ")"
        )

    def filter_fields(self, values: Mapping[str, Any],
                      reserved: Iterable[str] = ("id",)) -> tuple[dict[str, Any], list[str]]:
        """Split *values* into (known columns, dropped keys).

        Keys naming a *reserved* column are dropped too; those columns are
        filled in by the caller.
        """
        known = set(self.column_names()) - set(reserved)
        kept: dict[str, Any] = {}
        dropped: list[str] = []
        for key, value in values.items():
            if key in known:
                kept[key] = value
            else:
                dropped.append(key)
        return kept, dropped


def _index_name(table: str, cols: list[str]) -> str:
    return f"idx_{table}_{'_'.join(cols)}"


# ── Fixed tables ──────────────────────────────────────────────────────────────


def requests_schema() -> TableSchema:
    return TableSchema(
        name=REQUESTS_TABLE,
        columns=[
            Column("first_line_number", "INTEGER"),
            Column("last_line_number", "INTEGER"),
            Column("content_hash", "VARCHAR(40)"),
        ],
        indexes=[(_index_name(REQUESTS_TABLE, ["content_hash"]), ["content_hash"])],
    )


def warnings_schema() -> TableSchema:
    return TableSchema(
        name=WARNINGS_TABLE,
        columns=[
            Column("warning_type", "VARCHAR(30)", nullable=False),
            Column("message", "TEXT"),
            Column("line_number", "INTEGER"),
        ],
    )


def files_schema() -> TableSchema:
    return TableSchema(
        name=FILES_TABLE,
        columns=[
            Column("filename", "TEXT", nullable=False),
            Column("last_line_number", "INTEGER", nullable=False, default="0"),
            Column("last_position", "INTEGER", nullable=False, default="0"),
        ],
        unique=[["filename"]],
    )


def line_schema(definition: LineDefinition) -> TableSchema:
    """Build the descriptor for ``<line_type>_lines`` from its captures."""
    name = line_table_name(definition.name)
    columns = [
        Column("request_id", "INTEGER", nullable=False,
               references=f"{REQUESTS_TABLE}(id)"),
        Column("line_number", "INTEGER"),
        Column("file_id", "INTEGER", references=f"{FILES_TABLE}(id)"),
    ]
    indexes = [(_index_name(name, ["request_id"]), ["request_id"])]
    for capture in definition.captures:
        columns.append(Column(capture.name, sql_type(column_type(capture.type))))
        if capture.indexed:
            indexes.append((_index_name(name, [capture.name]), [capture.name]))
    for capture in definition.captures:
        for derived, tag in capture.provides.items():
            columns.append(Column(derived, sql_type(column_type(tag))))
    return TableSchema(name=name, columns=columns, indexes=indexes)


# ── Registry ──────────────────────────────────────────────────────────────────


@dataclass
class SchemaRegistry:
    """Live table descriptors for one run.

    Created by ensure_schema() and passed explicitly to whatever writes
    rows; discarded when the run ends.
    """

    requests: TableSchema
    warnings: TableSchema
    files: TableSchema
    line_tables: dict[str, TableSchema] = field(default_factory=dict)
    created: list[str] = field(default_factory=list)

    def has_line_type(self, line_type: str) -> bool:
        return line_type in self.line_tables

    def line_table(self, line_type: str) -> TableSchema:
        try:
            return self.line_tables[line_type]
        except KeyError:
            raise UnknownLineTypeError(f"Unknown line type: {line_type!r}") from None

    def line_types(self) -> list[str]:
        return list(self.line_tables)

    def table_names(self) -> list[str]:
        fixed = [self.requests.name, self.warnings.name, self.files.name]
        return fixed + [t.name for t in self.line_tables.values()]


# ── Synthesis ─────────────────────────────────────────────────────────────────


def _converge_table(conn: sqlite3.Connection, declared: TableSchema,
                    existing_tables: set[str], verbose: bool) -> bool:
    """Create *declared* if absent, else add its missing columns/indexes.

    Returns True if the table was created by this call.
    """
    log = logger.info if verbose else logger.debug
    created = declared.name not in existing_tables
    statements: list[str] = []

    if created:
        statements.append(declared.create_table_sql())
        statements += [declared.create_index_sql(n, cols) for n, cols in declared.indexes]
    else:
        live_cols = {c["name"] for c in get_table_columns(conn, declared.name)}
        for col in declared.columns:
            if col.name not in live_cols:
                statements.append(
                    f"ALTER TABLE {quote_identifier(declared.name)} "
                    f"ADD COLUMN {col.to_sql(for_alter=True)}"
                )
        live_indexes = list_indexes(conn, declared.name)
        statements += [
            declared.create_index_sql(n, cols)
            for n, cols in declared.indexes if n not in live_indexes
        ]

    if not statements:
        log("Table %s already up to date", declared.name)
        return False

    try:
        with transaction(conn):
            for sql in statements:
                log("%s", sql)
                conn.execute(sql)
    except sqlite3.Error as e:
        raise SchemaError(f"Failed to set up table {declared.name}: {e}") from e

    if created:
        existing_tables.add(declared.name)
        log("Created table %s", declared.name)
    return created


def _live_schema(conn: sqlite3.Connection, declared: TableSchema) -> TableSchema:
    """Descriptor reflecting the columns the table really has now."""
    declared_by_name = {c.name: c for c in declared.columns}
    columns = []
    for info in get_table_columns(conn, declared.name):
        if info["pk"]:
            continue
        columns.append(declared_by_name.get(info["name"]) or Column(
            info["name"], info["type"] or "", nullable=not info["notnull"],
        ))
    live_indexes = list_indexes(conn, declared.name)
    return TableSchema(
        name=declared.name,
        columns=columns,
        indexes=[(n, cols) for n, cols in declared.indexes if n in live_indexes],
        unique=declared.unique,
    )


def ensure_schema(conn: sqlite3.Connection, format_description: FormatDescription,
                  verbose: bool = False) -> SchemaRegistry:
    """Create whatever tables/indexes the format needs and return the registry.

    Args:
        conn: Open store connection (no transaction in progress).
        format_description: Line types and their captures.
        verbose: Log every DDL statement at INFO instead of DEBUG.

    Raises:
        SchemaError: Malformed format description, or any SQLite error while
            creating a table or index.  Never retried.
    """
    format_description.validate()
    try:
        existing = list_tables(conn)
    except sqlite3.Error as e:
        raise SchemaError(f"Cannot read table list: {e}") from e

    created: list[str] = []
    fixed = [requests_schema(), warnings_schema(), files_schema()]
    lines = {
        name: line_schema(definition)
        for name, definition in format_description.line_definitions.items()
    }

    for declared in [*fixed, *lines.values()]:
        if _converge_table(conn, declared, existing, verbose):
            created.append(declared.name)

    registry = SchemaRegistry(
        requests=_live_schema(conn, fixed[0]),
        warnings=_live_schema(conn, fixed[1]),
        files=_live_schema(conn, fixed[2]),
        line_tables={name: _live_schema(conn, t) for name, t in lines.items()},
        created=created,
    )
    logger.info("Schema ready: %d tables (%d created)",
                len(registry.table_names()), len(created))
    return registry
