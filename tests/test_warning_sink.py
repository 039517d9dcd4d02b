"""
Warning sink tests.
"""

from enum import Enum

import pytest

from logdb.assembler import RecordAssembler
from logdb.errors import IntegrityViolation
from logdb.warning_sink import WarningSink

from conftest import count_rows, make_access_unit


class WarningKind(Enum):
    UNPARSEABLE = "unparseable_line"
    UNCLOSED = 7


@pytest.fixture()
def sink(store, access_registry, retry_policy):
    return WarningSink(store, access_registry, retry_policy)


class TestWarningSink:
    """Each warning is its own committed row."""

    def test_record(self, store, sink):
        row_id = sink.record("unparseable_line", "garbage at line 42", 42)

        row = store.execute(
            "SELECT id, warning_type, message, line_number FROM warnings"
        ).fetchone()
        assert tuple(row) == (row_id, "unparseable_line", "garbage at line 42", 42)
        assert sink.count == 1
        assert not store.in_transaction

    def test_long_kind_truncated(self, store, sink):
        sink.record("x" * 45, "too long")
        kind = store.execute("SELECT warning_type FROM warnings").fetchone()[0]
        assert kind == "x" * 30

    def test_enum_kind(self, store, sink):
        sink.record(WarningKind.UNPARSEABLE, "a")
        sink.record(WarningKind.UNCLOSED, "b")
        kinds = [r[0] for r in store.execute("SELECT warning_type FROM warnings ORDER BY id")]
        assert kinds == ["unparseable_line", "UNCLOSED"]

    def test_message_and_line_optional(self, store, sink):
        sink.record("no_footer", None)
        row = store.execute("SELECT message, line_number FROM warnings").fetchone()
        assert tuple(row) == (None, None)

    def test_missing_kind_is_integrity_violation(self, store, sink, monkeypatch):
        monkeypatch.setattr("logdb.warning_sink._kind_to_str", lambda kind: None)

        with pytest.raises(IntegrityViolation) as info:
            sink.record("ignored", "no kind", 3)

        assert info.value.line_number == 3
        assert sink.count == 0
        assert count_rows(store, "warnings") == 0
        assert not store.in_transaction

    def test_none_kind_stringified(self, store, sink):
        sink.record(None, "kind was None")
        assert store.execute("SELECT warning_type FROM warnings").fetchone()[0] == "None"

    def test_survives_failed_unit(self, store, access_registry, tracker, retry_policy, sink):
        assembler = RecordAssembler(store, access_registry, tracker, retry_policy)
        store.execute(
            "CREATE TRIGGER simulated_fault BEFORE INSERT ON access_lines "
            "BEGIN SELECT RAISE(ABORT, 'simulated fault'); END"
        )
        sink.record("odd_line", "seen before the unit failed", 1)

        with pytest.raises(IntegrityViolation):
            assembler.aggregate(make_access_unit(1, [200]), 1, 10)

        assert count_rows(store, "warnings") == 1
        assert count_rows(store, "requests") == 0
