"""
restorekit - Point-in-time recovery from full snapshots plus change logs.

This package rebuilds a relational database from artifacts kept in an
object store:
- Full snapshots (gzip JSON dumps of every table)
- Incremental change logs (``audit_*.jsonl``, one row mutation per line)

Architecture:
    ┌──────────────┐    ┌────────────┐    ┌──────────────────┐
    │ Object store │───▶│ Classifier │───▶│ SnapshotRestorer │──┐
    │   (S3)       │    └────────────┘    └──────────────────┘  │
    └──────────────┘          │                                  ▼
                              │           ┌──────────────────┐  ┌─────────┐
                              └──────────▶│   ReplayEngine   │─▶│ SQLite  │
                                          └──────────────────┘  └─────────┘

Invariants:
    - The latest full snapshot is always restored first
    - Incrementals are applied oldest first, one file at a time
    - Replay is idempotent, so re-running recovery is the resume path
    - Retention cleanup never runs while a recovery is in progress

How to change safely:
    - Keep the change-log wire format backward compatible
    - Test recovery against snapshots produced by older releases
    - Add new artifact kinds with their own naming prefix
"""

from ._version import __version__

__all__ = ["__version__"]
