"""
Incremental replay engine.

Applies change-log files, line by line, on top of a restored snapshot.
Every line is independent: a bad line is recorded as a ReplayError and
replay continues with the next one.

Per-line rules:
    - malformed line (invalid UTF-8, bad JSON, missing table/row_id/op) -> error, skip
    - table not in the registry -> error, skip
    - INSERT -> upsert(after)
    - UPDATE -> merge after into the row; a missing row is not an error
    - DELETE -> delete the row; a missing row is not an error
    - any other op -> error, skip
    - a store failure for one entry -> error, skip

Invariants:
    - Lines are applied in file order
    - applied_count counts entries that reached the store without error,
      including those whose target row was absent
    - skipped_count == number of errors
    - Blank lines count as neither

How to change safely:
    - Never abort a file because of one entry; only the orchestrator decides
      what is fatal
    - Replaying the same file twice must leave the store unchanged the second time
"""

from __future__ import annotations

import logging
import time
from collections.abc import Iterable
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

from ..errors import StoreError
from ..store.registry import EntityRegistry
from ..store.relational_store import MutationOutcome
from .changelog import ChangeLogEntry, ChangeLogParseError, Operation

logger = logging.getLogger(__name__)

UNKNOWN_TABLE = "unknown"


@dataclass(frozen=True)
class ReplayError:
    """A recoverable per-entry failure.

    Attributes:
        table: Target table, or "unknown" if the line could not be read
        row_id: Target row id, if known
        message: What went wrong
        source: Change-log file the entry came from
        line_number: 1-based line number within source
    """

    table: str
    row_id: str | None
    message: str
    source: str | None = None
    line_number: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "table": self.table,
            "row_id": self.row_id,
            "message": self.message,
            "source": self.source,
            "line_number": self.line_number,
        }

    def __str__(self) -> str:
        location = f"{self.source}:{self.line_number} " if self.source else ""
        return f"{location}{self.table}/{self.row_id or '?'}: {self.message}"


@dataclass
class ReplayResult:
    """Counters for one or more replayed change logs."""

    applied_count: int = 0
    skipped_count: int = 0
    absent_count: int = 0
    errors: list[ReplayError] = field(default_factory=list)

    def record_error(self, error: ReplayError) -> None:
        self.errors.append(error)
        self.skipped_count += 1

    def merge(self, other: ReplayResult) -> None:
        """Add another result's counters and errors to this one."""
        self.applied_count += other.applied_count
        self.skipped_count += other.skipped_count
        self.absent_count += other.absent_count
        self.errors.extend(other.errors)


class ReplayEngine:
    """Applies change-log entries through an EntityRegistry.

    Example:
        >>> engine = ReplayEngine(EntityRegistry.from_store(store))
        >>> result = await engine.apply_file(Path("/tmp/audit_2026-01-05.jsonl"))
        >>> print(result.applied_count, result.errors)
    """

    def __init__(self, registry: EntityRegistry) -> None:
        self.registry = registry

    async def apply_file(self, path: Path, source: str | None = None) -> ReplayResult:
        """Replay a change-log file from disk.

        The file is streamed, never loaded whole.

        Args:
            path: Local JSONL file
            source: Name to report in errors (defaults to the file name)
        """
        path = Path(path)
        # Binary so each line is decoded on its own in apply_log
        with open(path, "rb") as f:
            return await self.apply_log(f, source=source or path.name)

    async def apply_log(
        self, lines: Iterable[str | bytes], source: str | None = None
    ) -> ReplayResult:
        """Replay change-log lines in order.

        Byte lines are decoded as strict UTF-8; a line that does not decode
        is an error like any other malformed line.

        Args:
            lines: JSONL lines as str or bytes (trailing newlines allowed)
            source: Name to report in errors

        Returns:
            ReplayResult for these lines
        """
        start_time = time.time()
        result = ReplayResult()

        for line_number, raw in enumerate(lines, start=1):
            try:
                line = raw.decode("utf-8") if isinstance(raw, bytes) else raw
            except UnicodeDecodeError as e:
                error: ReplayError | None = ReplayError(
                    table=UNKNOWN_TABLE,
                    row_id=None,
                    message=f"Line is not valid UTF-8 ({e.reason} at byte {e.start})",
                )
            else:
                line = line.strip()
                if not line:
                    continue
                error = await self._apply_line(line, result)

            if error is not None:
                error = replace(error, source=source, line_number=line_number)
                result.record_error(error)
                logger.warning(f"Skipped change-log entry: {error}")

        logger.info(
            f"Replayed change log {source or '<lines>'}",
            extra={
                "source": source,
                "applied": result.applied_count,
                "absent": result.absent_count,
                "skipped": result.skipped_count,
                "duration_ms": int((time.time() - start_time) * 1000),
            },
        )
        return result

    async def _apply_line(self, line: str, result: ReplayResult) -> ReplayError | None:
        """Apply one line; return the error instead of raising."""
        try:
            entry = ChangeLogEntry.parse(line)
        except ChangeLogParseError as e:
            return ReplayError(table=e.table or UNKNOWN_TABLE, row_id=e.row_id, message=str(e))

        handle = self.registry.resolve(entry.table)
        if handle is None:
            return ReplayError(
                table=entry.table, row_id=entry.row_id, message=f"Unknown table: {entry.table}"
            )

        try:
            key = handle.normalize_key(entry.row_id)
        except ValueError as e:
            return ReplayError(table=entry.table, row_id=entry.row_id, message=str(e))

        try:
            if entry.operation is Operation.INSERT:
                if entry.after is None:
                    return self._missing_payload(entry)
                outcome = await handle.upsert(key, entry.after)
            elif entry.operation is Operation.UPDATE:
                if entry.after is None:
                    return self._missing_payload(entry)
                outcome = await handle.update(key, entry.after)
            elif entry.operation is Operation.DELETE:
                outcome = await handle.delete(key)
            else:
                return ReplayError(
                    table=entry.table,
                    row_id=entry.row_id,
                    message=f"Unrecognized operation: {entry.operation}",
                )
        except StoreError as e:
            return ReplayError(table=entry.table, row_id=entry.row_id, message=f"Store error: {e}")

        result.applied_count += 1
        if outcome is MutationOutcome.ABSENT:
            result.absent_count += 1
            logger.debug(
                f"{entry.operation.value} on absent row {entry.table}/{entry.row_id}, nothing changed"
            )
        return None

    @staticmethod
    def _missing_payload(entry: ChangeLogEntry) -> ReplayError:
        return ReplayError(
            table=entry.table,
            row_id=entry.row_id,
            message=f"{entry.operation.value} entry has no 'new' row data",
        )
