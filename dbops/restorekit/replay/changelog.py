"""
Change-log entry format.

Change logs are produced by the database's change-capture trigger and
exported as UTF-8 JSONL files, one row mutation per line:

    {"id": "8812", "table": "items", "row_id": "1", "op": "UPDATE",
     "old": {"id": 1, "name": "A"}, "new": {"id": 1, "name": "B"},
     "ts": "2026-01-05T10:00:00Z"}

The long-form keys entry_id/entryId, rowId, operation, before, after and
timestamp are accepted as aliases.

Invariants:
    - Entries are replayed in file order; the producer's append order is trusted
    - entry_id is informational and never used for ordering
    - An unknown operation string is preserved so replay can report it
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from enum import Enum
from typing import Any


class Operation(Enum):
    """Row mutation kinds."""

    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


class ChangeLogParseError(ValueError):
    """A change-log line is not a valid entry.

    Attributes:
        table: Table name, if it could be read before parsing failed
        row_id: Row id, if it could be read
    """

    def __init__(self, message: str, table: str | None = None, row_id: str | None = None) -> None:
        super().__init__(message)
        self.table = table
        self.row_id = row_id


_ALIASES = {
    "entry_id": ("id", "entry_id", "entryId"),
    "table": ("table", "table_name"),
    "row_id": ("row_id", "rowId"),
    "operation": ("op", "operation"),
    "before": ("old", "before", "old_data"),
    "after": ("new", "after", "new_data"),
    "timestamp": ("ts", "timestamp", "created_at"),
}


def _pick(data: dict[str, Any], field_name: str) -> Any:
    for key in _ALIASES[field_name]:
        if key in data:
            return data[key]
    return None


@dataclass(frozen=True)
class ChangeLogEntry:
    """One row mutation.

    Attributes:
        entry_id: Producer-assigned identifier (not used for ordering)
        table: Target table name
        row_id: Primary key of the affected row, as a string
        operation: Operation, or the raw string if unrecognized
        before: Row state before the change (None for INSERT)
        after: Row state after the change (None for DELETE)
        timestamp: Capture time as written by the producer
    """

    entry_id: str | None
    table: str
    row_id: str
    operation: Operation | str
    before: dict[str, Any] | None
    after: dict[str, Any] | None
    timestamp: str | None = None

    @property
    def is_known_operation(self) -> bool:
        return isinstance(self.operation, Operation)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ChangeLogEntry:
        """Create from a decoded JSON object.

        Raises:
            ChangeLogParseError: If required fields are missing or mistyped
        """
        table = _pick(data, "table")
        row_id = _pick(data, "row_id")
        op = _pick(data, "operation")

        missing = [
            name
            for name, value in (("table", table), ("row_id", row_id), ("op", op))
            if value is None or value == ""
        ]
        if missing:
            raise ChangeLogParseError(
                f"Missing required fields: {missing}",
                table=table if isinstance(table, str) else None,
                row_id=str(row_id) if row_id is not None else None,
            )

        if not isinstance(table, str):
            raise ChangeLogParseError(f"Field 'table' must be a string, got {type(table).__name__}")
        if not isinstance(row_id, (str, int)) or isinstance(row_id, bool):
            raise ChangeLogParseError(
                f"Field 'row_id' must be a string or integer, got {type(row_id).__name__}",
                table=table,
            )

        before = _pick(data, "before")
        after = _pick(data, "after")
        for name, value in (("old", before), ("new", after)):
            if value is not None and not isinstance(value, dict):
                raise ChangeLogParseError(
                    f"Field '{name}' must be an object or null", table=table, row_id=str(row_id)
                )

        op_text = str(op).upper()
        try:
            operation: Operation | str = Operation(op_text)
        except ValueError:
            operation = str(op)

        entry_id = _pick(data, "entry_id")
        timestamp = _pick(data, "timestamp")

        return cls(
            entry_id=str(entry_id) if entry_id is not None else None,
            table=table,
            row_id=str(row_id),
            operation=operation,
            before=before,
            after=after,
            timestamp=str(timestamp) if timestamp is not None else None,
        )

    @classmethod
    def parse(cls, line: str) -> ChangeLogEntry:
        """Parse one JSONL line.

        Raises:
            ChangeLogParseError: If the line is not a JSON object or lacks fields
        """
        try:
            data = json.loads(line)
        except json.JSONDecodeError as e:
            raise ChangeLogParseError(f"Invalid JSON: {e}") from e

        if not isinstance(data, dict):
            raise ChangeLogParseError(f"Expected a JSON object, got {type(data).__name__}")

        return cls.from_dict(data)

    def to_dict(self) -> dict[str, Any]:
        """Convert to the producer's wire format."""
        return {
            "id": self.entry_id,
            "table": self.table,
            "row_id": self.row_id,
            "op": self.operation.value if isinstance(self.operation, Operation) else self.operation,
            "old": self.before,
            "new": self.after,
            "ts": self.timestamp,
        }
