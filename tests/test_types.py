"""
Type mapper tests — capture type tags to storage column types.
"""

from enum import Enum

import pytest

from logdb.types import column_type, sql_type


class TestColumnType:
    """Tests for column_type()."""

    @pytest.mark.parametrize("tag, expected", [
        ("text", "text"),
        ("eval", "text"),
        ("string", "string"),
        ("integer", "integer"),
        ("int", "integer"),
        ("sec", "double"),
        ("msec", "double"),
        ("duration", "double"),
        ("float", "double"),
        ("double", "double"),
        ("timestamp", "datetime"),
        ("datetime", "datetime"),
        ("date", "date"),
    ])
    def test_known_tags(self, tag, expected):
        assert column_type(tag) == expected

    def test_case_insensitive(self):
        assert column_type("MSEC") == "double"
        assert column_type("Integer") == "integer"

    def test_unrecognized_falls_back_to_string(self):
        assert column_type("path") == "string"
        assert column_type("ip_address") == "string"
        assert column_type(None) == "string"

    def test_enum_tag(self):
        class Tag(Enum):
            SEC = "sec"
            WEIRD = 3

        assert column_type(Tag.SEC) == "double"
        assert column_type(Tag.WEIRD) == "string"


class TestSqlType:
    """Tests for sql_type()."""

    def test_declarations(self):
        assert sql_type("integer") == "INTEGER"
        assert sql_type("double") == "DOUBLE"
        assert sql_type("text") == "TEXT"
        assert sql_type("string") == "VARCHAR(255)"
        assert sql_type("datetime") == "DATETIME"
        assert sql_type("date") == "DATE"

    def test_unknown_logical_type(self):
        assert sql_type("blob") == "VARCHAR(255)"
