"""
SQLite relational store that recovery writes into.

Every registered entity is one table keyed by its row id, holding the full
row as JSON:

    <entity>:
        - row_key PRIMARY KEY (no type affinity; int and str keys are distinct)
        - payload_json TEXT (the full row, including its "id")
        - updated_at INTEGER (Unix ms)

Snapshot file format (produced by the backup job):
    gzip-compressed (or plain) JSON document
    {"version": "1.0", "createdAt": "...", "tables": [...], "data": {table: [row, ...]}}

Invariants:
    - bulk_restore replaces the selected tables in one transaction
    - A dry-run bulk_restore never opens the database
    - update/delete report a missing row as MutationOutcome.ABSENT, never raise
    - Row keys always go through normalize_row_id

How to change safely:
    - Keep payload_json a superset of the original row; replay merges into it
    - Test bulk_restore with snapshots from older backup job versions
"""

from __future__ import annotations

import gzip
import json
import logging
import sqlite3
import time
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

from ..config import StorageConfig
from ..errors import ConfigError, RestoreError, StoreError, UnknownTableError
from .registry import EntitySpec, normalize_row_id

logger = logging.getLogger(__name__)

GZIP_MAGIC = b"\x1f\x8b"


class MutationOutcome(Enum):
    """What a single-row mutation did."""

    APPLIED = "applied"
    ABSENT = "absent"  # target row did not exist, nothing changed


@dataclass
class SnapshotInfo:
    """Summary of a loaded snapshot.

    Attributes:
        version: Snapshot format version
        created_at: Creation time recorded by the backup job
        tables: Tables listed in the snapshot header
        restored: Row count per restored entity
        skipped_tables: Snapshot tables with no registered entity
        dry_run: Rows were counted but not written
    """

    version: str | None
    created_at: str | None
    tables: list[str] = field(default_factory=list)
    restored: dict[str, int] = field(default_factory=dict)
    skipped_tables: list[str] = field(default_factory=list)
    dry_run: bool = False

    @property
    def total_rows(self) -> int:
        return sum(self.restored.values())


def _open_snapshot(path: Path):
    with open(path, "rb") as f:
        magic = f.read(2)
    if magic == GZIP_MAGIC:
        return gzip.open(path, "rt", encoding="utf-8")
    return open(path, encoding="utf-8")


def load_snapshot_document(path: Path) -> dict[str, Any]:
    """Read and parse a snapshot file.

    Raises:
        RestoreError: If the file is unreadable or not a snapshot document
    """
    try:
        with _open_snapshot(Path(path)) as f:
            document = json.load(f)
    except (OSError, EOFError, UnicodeDecodeError, json.JSONDecodeError) as e:
        raise RestoreError(f"Unreadable snapshot {Path(path).name}: {e}") from e

    if not isinstance(document, dict) or not isinstance(document.get("data"), dict):
        raise RestoreError(f"Snapshot {Path(path).name} has no 'data' object")
    return document


def read_snapshot_tables(path: Path) -> list[str]:
    """Get the table names listed in a snapshot header.

    Falls back to the keys of "data" for snapshots without a header list.
    """
    document = load_snapshot_document(path)
    tables = document.get("tables")
    if isinstance(tables, list):
        return [str(t) for t in tables]
    return sorted(document["data"])


class TableHandle:
    """Typed access to one entity table.

    Obtained from RelationalStore.handle() or an EntityRegistry; never
    constructed by replay code.
    """

    def __init__(self, store: RelationalStore, spec: EntitySpec) -> None:
        self.store = store
        self.spec = spec

    @property
    def name(self) -> str:
        return self.spec.name

    def normalize_key(self, raw: int | str) -> int | str:
        """Convert a raw row id into this entity's key type."""
        return normalize_row_id(raw, self.spec.key_type)

    async def upsert(self, key: int | str, payload: dict[str, Any]) -> MutationOutcome:
        """Create the row, or merge payload into it if it exists.

        Args:
            key: Normalized row key
            payload: Full row state

        Returns:
            MutationOutcome.APPLIED
        """
        with self.store._transaction() as conn:
            row = self._select(conn, key)
            if row is None:
                data = dict(payload)
                data.setdefault("id", key)
                conn.execute(
                    f'INSERT INTO "{self.name}" (row_key, payload_json, updated_at) VALUES (?, ?, ?)',
                    (key, json.dumps(data), _now_ms()),
                )
            else:
                data = {**row, **payload}
                self._write(conn, key, data)
        return MutationOutcome.APPLIED

    async def update(self, key: int | str, payload: dict[str, Any]) -> MutationOutcome:
        """Merge payload into an existing row (PATCH semantics).

        Returns:
            APPLIED if the row existed, ABSENT otherwise
        """
        with self.store._transaction() as conn:
            row = self._select(conn, key)
            if row is None:
                return MutationOutcome.ABSENT
            self._write(conn, key, {**row, **payload})
        return MutationOutcome.APPLIED

    async def delete(self, key: int | str) -> MutationOutcome:
        """Delete a row.

        Returns:
            APPLIED if a row was deleted, ABSENT if it did not exist
        """
        with self.store._transaction() as conn:
            cursor = conn.execute(f'DELETE FROM "{self.name}" WHERE row_key = ?', (key,))
            deleted = cursor.rowcount > 0
        return MutationOutcome.APPLIED if deleted else MutationOutcome.ABSENT

    async def get(self, key: int | str) -> dict[str, Any] | None:
        """Get a row by key, or None if not found."""
        with self.store._get_connection() as conn:
            return self._select(conn, key)

    async def all_rows(self) -> list[dict[str, Any]]:
        """Get every row, ordered by key."""
        with self.store._get_connection() as conn:
            cursor = conn.execute(f'SELECT payload_json FROM "{self.name}" ORDER BY row_key')
            return [json.loads(row[0]) for row in cursor.fetchall()]

    async def count(self) -> int:
        with self.store._get_connection() as conn:
            return conn.execute(f'SELECT COUNT(*) FROM "{self.name}"').fetchone()[0]

    def _select(self, conn: sqlite3.Connection, key: int | str) -> dict[str, Any] | None:
        cursor = conn.execute(
            f'SELECT payload_json FROM "{self.name}" WHERE row_key = ?',
            (key,),
        )
        row = cursor.fetchone()
        return json.loads(row[0]) if row else None

    def _write(self, conn: sqlite3.Connection, key: int | str, data: dict[str, Any]) -> None:
        conn.execute(
            f'UPDATE "{self.name}" SET payload_json = ?, updated_at = ? WHERE row_key = ?',
            (json.dumps(data), _now_ms(), key),
        )

    def __repr__(self) -> str:
        return f"TableHandle({self.name!r}, key_type={self.spec.key_type.value})"


class RelationalStore:
    """SQLite database holding the recoverable entities.

    Thread safety:
        Each operation opens its own connection.
        SQLite handles concurrent access via WAL mode.

    Example:
        >>> store = RelationalStore("/var/lib/restorekit/data.db", [EntitySpec("items")])
        >>> await store.initialize()
        >>> info = await store.bulk_restore(Path("/tmp/backup.json.gz"))
        >>> await store.handle("items").update(1, {"name": "B"})
    """

    def __init__(
        self,
        database_path: str | Path,
        entities: Iterable[EntitySpec],
        wal_mode: bool = True,
        busy_timeout_ms: int = 5000,
    ) -> None:
        """Initialize the store.

        Args:
            database_path: SQLite database file
            entities: Recoverable entities
            wal_mode: Enable SQLite WAL mode
            busy_timeout_ms: SQLite busy timeout

        Raises:
            ConfigError: If no entity is declared or names collide
        """
        self.database_path = Path(database_path)
        self.wal_mode = wal_mode
        self.busy_timeout_ms = busy_timeout_ms
        self._specs: dict[str, EntitySpec] = {}

        for spec in entities:
            if spec.name.lower() in (n.lower() for n in self._specs):
                raise ConfigError(f"Table '{spec.name}' is declared twice")
            self._specs[spec.name] = spec

        if not self._specs:
            raise ConfigError("At least one table must be declared (RECOVERY_TABLES)")

        self._handles = {name: TableHandle(self, spec) for name, spec in self._specs.items()}

    @classmethod
    def from_config(cls, storage_config: StorageConfig, tables: Iterable[str]) -> RelationalStore:
        """Create a store from StorageConfig and RECOVERY_TABLES entries."""
        return cls(
            database_path=storage_config.database_path,
            entities=[EntitySpec.parse(t) for t in tables],
            wal_mode=storage_config.wal_mode,
            busy_timeout_ms=storage_config.busy_timeout_ms,
        )

    @property
    def entities(self) -> list[EntitySpec]:
        return list(self._specs.values())

    def handle(self, table: str) -> TableHandle:
        """Get the handle for a declared table.

        Raises:
            UnknownTableError: If the table is not declared
        """
        try:
            return self._handles[table]
        except KeyError:
            raise UnknownTableError(f"Table not registered: {table}")

    @contextmanager
    def _get_connection(self) -> Iterator[sqlite3.Connection]:
        """Open a configured connection.

        Raises:
            StoreError: On any SQLite failure
        """
        self.database_path.parent.mkdir(parents=True, exist_ok=True)

        try:
            conn = sqlite3.connect(
                str(self.database_path),
                timeout=self.busy_timeout_ms / 1000.0,
                isolation_level=None,  # Autocommit by default, explicit transactions
            )
        except sqlite3.Error as e:
            raise StoreError(f"Cannot open database {self.database_path}: {e}") from e

        try:
            conn.execute(f"PRAGMA busy_timeout = {self.busy_timeout_ms}")
            if self.wal_mode:
                conn.execute("PRAGMA journal_mode = WAL")
            conn.execute("PRAGMA synchronous = NORMAL")

            yield conn
        except sqlite3.Error as e:
            raise StoreError(str(e)) from e
        finally:
            conn.close()

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        with self._get_connection() as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
                conn.execute("COMMIT")
            except Exception:
                conn.execute("ROLLBACK")
                raise

    def _create_schema(self, conn: sqlite3.Connection) -> None:
        for name in self._specs:
            conn.execute(
                f"""
                CREATE TABLE IF NOT EXISTS "{name}" (
                    row_key PRIMARY KEY,
                    payload_json TEXT NOT NULL DEFAULT '{{}}',
                    updated_at INTEGER NOT NULL
                )
                """
            )

    async def initialize(self) -> None:
        """Create the database file and entity tables if they don't exist."""
        with self._get_connection() as conn:
            self._create_schema(conn)
        logger.info(
            "Initialized relational store",
            extra={"database_path": str(self.database_path), "tables": list(self._specs)},
        )

    def _resolve_spec(self, table: str) -> EntitySpec | None:
        spec = self._specs.get(table)
        if spec is None:
            folded = {n.lower(): s for n, s in self._specs.items()}
            spec = folded.get(table.lower())
        return spec

    async def bulk_restore(
        self,
        snapshot_path: Path,
        tables: Iterable[str] | None = None,
        dry_run: bool = False,
    ) -> SnapshotInfo:
        """Replace the content of the selected tables with a snapshot.

        Selected tables missing from the snapshot end up empty. Snapshot
        tables without a declared entity are skipped. Declared tables that
        are not selected keep their rows.

        Args:
            snapshot_path: Local snapshot file
            tables: Entities to restore (every declared entity if None)
            dry_run: Parse and count rows without writing anything

        Returns:
            SnapshotInfo with per-table row counts

        Raises:
            RestoreError: If the snapshot is malformed (nothing is changed)
            UnknownTableError: If a selected table is not declared
            StoreError: If SQLite fails (the transaction is rolled back)
        """
        selected = self.select_tables(tables)
        document = load_snapshot_document(snapshot_path)
        data: dict[str, Any] = document["data"]

        info = SnapshotInfo(
            version=document.get("version"),
            created_at=document.get("createdAt"),
            tables=[str(t) for t in document.get("tables") or data.keys()],
            dry_run=dry_run,
        )

        rows_by_table: dict[str, list[tuple[int | str, str]]] = {name: [] for name in selected}
        for table, rows in data.items():
            spec = self._resolve_spec(table)
            if spec is None:
                info.skipped_tables.append(table)
                continue
            if spec.name not in selected:
                continue
            if not isinstance(rows, list):
                raise RestoreError(f"Snapshot table '{table}' is not a list of rows")
            rows_by_table[spec.name].extend(self._prepare_rows(spec, table, rows))

        if info.skipped_tables:
            logger.warning(
                f"Snapshot tables without a registered entity were skipped: {info.skipped_tables}"
            )

        if dry_run:
            info.restored = {name: len(rows) for name, rows in rows_by_table.items()}
            logger.info(
                "Bulk restore dry run, nothing written",
                extra={"snapshot": Path(snapshot_path).name, "rows": info.total_rows},
            )
            return info

        now = _now_ms()
        with self._transaction() as conn:
            self._create_schema(conn)
            for name, rows in rows_by_table.items():
                conn.execute(f'DELETE FROM "{name}"')
                conn.executemany(
                    f'INSERT INTO "{name}" (row_key, payload_json, updated_at) VALUES (?, ?, {now})',
                    rows,
                )
                info.restored[name] = len(rows)

        logger.info(
            "Bulk restore completed",
            extra={
                "snapshot": Path(snapshot_path).name,
                "rows": info.total_rows,
                "tables": len(info.restored),
            },
        )
        return info

    def select_tables(self, tables: Iterable[str] | None) -> list[str]:
        """Resolve table names to declared entity names (all if None).

        Raises:
            UnknownTableError: If a name is not declared
        """
        if tables is None:
            return list(self._specs)
        selected = []
        for table in tables:
            spec = self._resolve_spec(table)
            if spec is None:
                raise UnknownTableError(f"Table not registered: {table}")
            if spec.name not in selected:
                selected.append(spec.name)
        return selected


    def _prepare_rows(
        self,
        spec: EntitySpec,
        table: str,
        rows: list[Any],
    ) -> list[tuple[int | str, str]]:
        prepared = []
        for index, row in enumerate(rows):
            if not isinstance(row, dict) or row.get("id") is None:
                raise RestoreError(f"Snapshot row {index} of '{table}' has no 'id'")
            try:
                key = normalize_row_id(row["id"], spec.key_type)
            except ValueError as e:
                raise RestoreError(f"Snapshot row {index} of '{table}': {e}") from e
            prepared.append((key, json.dumps(row)))
        return prepared

    async def backup_existing(self, suffix: str = ".pre-recovery") -> Path | None:
        """Copy the current database aside using the SQLite backup API.

        Returns:
            Path of the copy, or None if there is no database yet
        """
        if not self.database_path.exists():
            return None

        backup_path = self.database_path.with_name(self.database_path.name + suffix)
        try:
            source = sqlite3.connect(str(self.database_path))
            dest = sqlite3.connect(str(backup_path))
            try:
                source.backup(dest)
            finally:
                source.close()
                dest.close()
        except sqlite3.Error as e:
            raise StoreError(f"Failed to back up {self.database_path}: {e}") from e

        logger.info(f"Backed up existing database to {backup_path}")
        return backup_path

    async def verify_integrity(self) -> None:
        """Run PRAGMA integrity_check.

        Raises:
            StoreError: If the check does not report "ok"
        """
        with self._get_connection() as conn:
            result = conn.execute("PRAGMA integrity_check").fetchone()[0]
        if result != "ok":
            raise StoreError(f"Database integrity check failed: {result}")
        logger.info("Database integrity check passed")

    async def table_stats(self) -> dict[str, int]:
        """Get row counts per declared table."""
        with self._get_connection() as conn:
            self._create_schema(conn)
            return {
                name: conn.execute(f'SELECT COUNT(*) FROM "{name}"').fetchone()[0]
                for name in self._specs
            }


def _now_ms() -> int:
    return int(time.time() * 1000)
