"""
Relational store that recovery restores into.

This module provides:
- RelationalStore: SQLite database with one table per recoverable entity
- TableHandle: typed upsert/update/delete for one entity
- EntityRegistry: table name -> TableHandle, built once at startup

Invariants:
    - Missing rows are reported as MutationOutcome.ABSENT, not raised
    - bulk_restore is all-or-nothing
"""

from .registry import EntityRegistry, EntitySpec, KeyType, normalize_row_id
from .relational_store import (
    MutationOutcome,
    RelationalStore,
    SnapshotInfo,
    TableHandle,
    load_snapshot_document,
    read_snapshot_tables,
)

__all__ = [
    "EntityRegistry",
    "EntitySpec",
    "KeyType",
    "MutationOutcome",
    "RelationalStore",
    "SnapshotInfo",
    "TableHandle",
    "load_snapshot_document",
    "normalize_row_id",
    "read_snapshot_tables",
]
