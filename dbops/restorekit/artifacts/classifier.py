"""
Artifact classification and recovery planning.

Artifacts in the backup folder come in two kinds, told apart by name:
    - Incremental change logs: name starts with the incremental prefix
      (default "audit_"), e.g. audit_2026-01-05T03-00-00.jsonl
    - Full snapshots: everything else, e.g. backup_2026-01-04T02-00-00.json.gz

Invariants:
    - select_latest_snapshot never returns an incremental
    - select_incrementals_since returns artifacts strictly newer than the
      cutoff, sorted oldest first
    - Ties on created_at are broken by name, never by store order:
      the greatest name wins for snapshots, ascending name for incrementals

How to change safely:
    - Incrementals sort ascending while snapshots pick the maximum; swapping
      either silently corrupts the restored state, keep the tests green
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime

from .base import Artifact

DEFAULT_INCREMENTAL_PREFIX = "audit_"


def is_incremental(artifact: Artifact, prefix: str = DEFAULT_INCREMENTAL_PREFIX) -> bool:
    """Whether an artifact is a change log by naming convention."""
    return artifact.name.startswith(prefix)


def select_latest_snapshot(
    artifacts: Iterable[Artifact],
    prefix: str = DEFAULT_INCREMENTAL_PREFIX,
) -> Artifact | None:
    """Pick the newest full snapshot.

    Args:
        artifacts: Candidate artifacts (any order)
        prefix: Incremental-log name prefix

    Returns:
        The snapshot with the greatest (created_at, name), or None if the
        folder has no snapshot
    """
    snapshots = [a for a in artifacts if not is_incremental(a, prefix)]
    if not snapshots:
        return None
    return max(snapshots, key=lambda a: (a.created_at, a.name))


def select_snapshot(
    artifacts: Iterable[Artifact],
    name: str | None = None,
    prefix: str = DEFAULT_INCREMENTAL_PREFIX,
) -> Artifact | None:
    """Pick a full snapshot by name, or the latest one if name is None.

    Change logs never match, even when asked for by name.
    """
    if name is None:
        return select_latest_snapshot(artifacts, prefix)
    matches = [a for a in artifacts if a.name == name and not is_incremental(a, prefix)]
    if not matches:
        return None
    return max(matches, key=lambda a: a.created_at)


def select_incrementals_since(

    artifacts: Iterable[Artifact],
    cutoff: datetime,
    prefix: str = DEFAULT_INCREMENTAL_PREFIX,
) -> list[Artifact]:
    """List change logs created after a cutoff, oldest first.

    Args:
        artifacts: Candidate artifacts (any order)
        cutoff: Exclusive lower bound on created_at
        prefix: Incremental-log name prefix

    Returns:
        Incrementals with created_at > cutoff, ascending by (created_at, name)
    """
    incrementals = [a for a in artifacts if is_incremental(a, prefix) and a.created_at > cutoff]
    return sorted(incrementals, key=lambda a: (a.created_at, a.name))


@dataclass
class RecoveryPlan:
    """Artifacts selected for one recovery run.

    Attributes:
        snapshot: Full snapshot to restore, None if the folder has none
        incrementals: Change logs to replay, oldest first
    """

    snapshot: Artifact | None
    incrementals: list[Artifact] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return self.snapshot is None


def build_plan(
    artifacts: Iterable[Artifact],
    prefix: str = DEFAULT_INCREMENTAL_PREFIX,
) -> RecoveryPlan:
    """Build a recovery plan from a folder listing.

    Args:
        artifacts: Every artifact in the backup folder
        prefix: Incremental-log name prefix

    Returns:
        RecoveryPlan; incrementals is empty when no snapshot exists
    """
    artifacts = list(artifacts)
    snapshot = select_latest_snapshot(artifacts, prefix)
    if snapshot is None:
        return RecoveryPlan(snapshot=None)
    return RecoveryPlan(
        snapshot=snapshot,
        incrementals=select_incrementals_since(artifacts, snapshot.created_at, prefix),
    )
