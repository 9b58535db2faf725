"""
Unit tests for change-log entry parsing.
"""

import json

import pytest

from dbops.restorekit.replay.changelog import ChangeLogEntry, ChangeLogParseError, Operation


class TestChangeLogEntry:
    """Tests for ChangeLogEntry.parse / from_dict."""

    def test_parse_producer_format(self):
        line = json.dumps(
            {
                "id": "8812",
                "table": "items",
                "row_id": "1",
                "op": "UPDATE",
                "old": {"id": 1, "name": "A"},
                "new": {"id": 1, "name": "B"},
                "ts": "2026-01-05T10:00:00Z",
            }
        )

        entry = ChangeLogEntry.parse(line)

        assert entry.entry_id == "8812"
        assert entry.table == "items"
        assert entry.row_id == "1"
        assert entry.operation is Operation.UPDATE
        assert entry.before == {"id": 1, "name": "A"}
        assert entry.after == {"id": 1, "name": "B"}
        assert entry.timestamp == "2026-01-05T10:00:00Z"

    def test_parse_long_form_aliases(self):
        entry = ChangeLogEntry.from_dict(
            {
                "entryId": 3,
                "table": "items",
                "rowId": 42,
                "operation": "delete",
                "before": {"id": 42},
                "after": None,
            }
        )

        assert entry.entry_id == "3"
        assert entry.row_id == "42"
        assert entry.operation is Operation.DELETE
        assert entry.after is None

    def test_unknown_operation_is_preserved(self):
        entry = ChangeLogEntry.from_dict({"table": "items", "row_id": "1", "op": "TRUNCATE"})

        assert not entry.is_known_operation
        assert entry.operation == "TRUNCATE"

    @pytest.mark.parametrize(
        "line",
        [
            "not json",
            "[1, 2, 3]",
            '"items"',
            "{",
        ],
    )
    def test_invalid_lines(self, line):
        with pytest.raises(ChangeLogParseError):
            ChangeLogEntry.parse(line)

    def test_missing_fields_keep_table(self):
        """The table name is reported when it could be read."""
        with pytest.raises(ChangeLogParseError) as exc_info:
            ChangeLogEntry.from_dict({"table": "items", "op": "INSERT"})

        assert exc_info.value.table == "items"
        assert "row_id" in str(exc_info.value)

    def test_payload_must_be_object(self):
        with pytest.raises(ChangeLogParseError):
            ChangeLogEntry.from_dict({"table": "items", "row_id": "1", "op": "INSERT", "new": [1]})

    def test_parse_error_is_value_error(self):
        with pytest.raises(ValueError):
            ChangeLogEntry.parse("{}")

    def test_to_dict(self):
        entry = ChangeLogEntry.from_dict(
            {"id": "1", "table": "items", "row_id": "1", "op": "insert", "new": {"id": 1}}
        )
        assert entry.to_dict() == {
            "id": "1",
            "table": "items",
            "row_id": "1",
            "op": "INSERT",
            "old": None,
            "new": {"id": 1},
            "ts": None,
        }
