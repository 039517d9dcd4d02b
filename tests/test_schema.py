"""
Schema synthesis tests — table layout, indexes, idempotency, convergence and
transactional table creation.
"""

import sqlite3

import pytest

from logdb.database import connect_store, get_table_columns, list_indexes, list_tables
from logdb.errors import SchemaError, UnknownLineTypeError
from logdb.formats import FormatDescription
from logdb.schema import ensure_schema


def _columns(conn, table):
    return [(c["name"], c["type"].lower()) for c in get_table_columns(conn, table)]


def _schema_snapshot(conn):
    rows = conn.execute(
        "SELECT type, name, tbl_name, sql FROM sqlite_master "
        "WHERE name NOT LIKE 'sqlite_%' ORDER BY type, name"
    ).fetchall()
    return [tuple(r) for r in rows]


class TestAccessExample:
    """The one-line-type example: access with status:int, duration:sec."""

    def test_tables_created(self, store, access_registry):
        assert list_tables(store) == {"requests", "warnings", "files", "access_lines"}

    def test_access_lines_columns(self, store, access_registry):
        assert _columns(store, "access_lines") == [
            ("id", "integer"),
            ("request_id", "integer"),
            ("line_number", "integer"),
            ("file_id", "integer"),
            ("status", "integer"),
            ("duration", "double"),
        ]

    def test_fixed_tables_layout(self, store, access_registry):
        assert [c for c, _ in _columns(store, "requests")] == [
            "id", "first_line_number", "last_line_number", "content_hash"]
        assert [c for c, _ in _columns(store, "warnings")] == [
            "id", "warning_type", "message", "line_number"]
        assert [c for c, _ in _columns(store, "files")] == [
            "id", "filename", "last_line_number", "last_position"]

    def test_request_id_always_indexed(self, store, access_registry):
        assert "idx_access_lines_request_id" in list_indexes(store, "access_lines")

    def test_registry_contents(self, access_registry):
        assert access_registry.line_types() == ["access"]
        assert access_registry.created == ["requests", "warnings", "files", "access_lines"]
        table = access_registry.line_table("access")
        assert table.name == "access_lines"
        assert table.column_names() == [
            "request_id", "line_number", "file_id", "status", "duration"]

    def test_unknown_line_type_lookup(self, access_registry):
        assert not access_registry.has_line_type("completed")
        with pytest.raises(UnknownLineTypeError):
            access_registry.line_table("completed")


class TestCapturesAndProvides:
    """Indexed captures and derived fields."""

    def test_indexed_capture_gets_index(self, store, rails_registry):
        assert list_indexes(store, "processing_lines") == {
            "idx_processing_lines_request_id",
            "idx_processing_lines_controller",
        }
        assert list_indexes(store, "completed_lines") == {
            "idx_completed_lines_request_id",
            "idx_completed_lines_status",
        }

    def test_provides_become_columns(self, store, rails_registry):
        cols = dict(_columns(store, "processing_lines"))
        assert cols["timestamp"] == "datetime"
        assert cols["hour"] == "integer"
        # derived fields follow all captures
        names = [c for c, _ in _columns(store, "processing_lines")]
        assert names.index("hour") == len(names) - 1

    def test_type_mapping_applied(self, store, rails_registry):
        cols = dict(_columns(store, "completed_lines"))
        assert cols["duration"] == "double"
        assert cols["url"] == "text"
        assert cols["status"] == "integer"
        assert dict(_columns(store, "processing_lines"))["controller"] == "varchar(255)"


class TestIdempotentSetup:
    """Calling ensure_schema() repeatedly converges on the same schema."""

    def test_second_call_is_noop(self, store, rails_format):
        ensure_schema(store, rails_format)
        before = _schema_snapshot(store)

        registry = ensure_schema(store, rails_format)

        assert _schema_snapshot(store) == before
        assert registry.created == []

    def test_existing_data_kept(self, db_path, access_format):
        conn = connect_store(db_path)
        ensure_schema(conn, access_format)
        conn.execute("INSERT INTO requests (first_line_number, last_line_number) VALUES (1, 2)")
        conn.commit()
        conn.close()

        conn = connect_store(db_path)
        ensure_schema(conn, access_format)
        assert conn.execute("SELECT COUNT(*) FROM requests").fetchone()[0] == 1
        conn.close()

    def test_new_line_type_added_to_existing_store(self, store, access_format):
        ensure_schema(store, access_format)
        wider = FormatDescription.from_dict({
            "access": [{"status": "int"}, {"duration": "sec"}],
            "error": [{"name": "message", "type": "text"}],
        })

        registry = ensure_schema(store, wider)

        assert registry.created == ["error_lines"]
        assert "error_lines" in list_tables(store)

    def test_missing_column_added(self, store, access_format):
        ensure_schema(store, access_format)
        wider = FormatDescription.from_dict({"access": [
            {"status": "int"},
            {"duration": "sec"},
            {"name": "path", "type": "string", "indexed": True},
        ]})

        registry = ensure_schema(store, wider)

        assert "path" in registry.line_table("access").column_names()
        assert "idx_access_lines_path" in list_indexes(store, "access_lines")

    def test_removed_capture_keeps_column(self, store, access_format):
        ensure_schema(store, access_format)
        narrower = FormatDescription.from_dict({"access": [{"status": "int"}]})

        registry = ensure_schema(store, narrower)

        # columns are never dropped; the live registry still knows them
        assert "duration" in registry.line_table("access").column_names()


class TestSchemaFailures:
    """Creation errors are fatal and leave no partial table behind."""

    def test_index_failure_rolls_back_table(self, store):
        # An index with the name we need already exists on another table.
        store.execute("CREATE TABLE other (x INTEGER)")
        store.execute("CREATE INDEX idx_access_lines_status ON other (x)")
        fmt = FormatDescription.from_dict(
            {"access": [{"name": "status", "type": "int", "indexed": True}]}
        )

        with pytest.raises(SchemaError, match="access_lines"):
            ensure_schema(store, fmt)

        assert "access_lines" not in list_tables(store)
        # tables set up before the failure are complete and usable
        assert {"requests", "warnings", "files"} <= list_tables(store)
        assert not store.in_transaction

    def test_name_clash_with_view(self, store):
        store.execute("CREATE VIEW access_lines AS SELECT 1 AS x")
        fmt = FormatDescription.from_dict({"access": [{"status": "int"}]})

        with pytest.raises(SchemaError):
            ensure_schema(store, fmt)

    def test_invalid_format_rejected_before_touching_store(self, store):
        fmt = FormatDescription.from_dict({"access": [{"status": "int"}]})
        fmt.line_definitions["access"].captures[0].name = "request_id"

        with pytest.raises(SchemaError):
            ensure_schema(store, fmt)
        assert list_tables(store) == set()

    def test_closed_connection(self, db_path, access_format):
        conn = connect_store(db_path)
        conn.close()
        with pytest.raises((SchemaError, sqlite3.ProgrammingError)):
            ensure_schema(conn, access_format)
