"""
Full snapshot restore.

Invariants:
    - Restore is all-or-nothing from the caller's point of view
    - Restore always precedes incremental replay
"""

from .snapshot_restorer import SnapshotRestorer, fetch_snapshot, inspect_snapshot

__all__ = ["SnapshotRestorer", "fetch_snapshot", "inspect_snapshot"]
