"""
Retention cleanup for the backup folder.

Deletes every artifact (snapshot or change log) older than the retention
window. Deletions are independent: one failure is recorded and the rest
still run.

Invariants:
    - Only artifacts with created_at < now - retention_days are touched
    - A failed deletion never blocks the others
    - Cleanup never overlaps a recovery run (MaintenanceLock)

How to change safely:
    - Never widen the cutoff; a too-aggressive cleanup deletes the only
      snapshot a recovery could use
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

from ..errors import ArtifactStoreError
from ..lock import MaintenanceLock
from .base import Artifact, ArtifactStore

logger = logging.getLogger(__name__)


@dataclass
class CleanupResult:
    """Result of a retention cleanup.

    Attributes:
        deleted_count: Number of artifacts deleted
        deleted_names: Names of deleted artifacts
        errors: "<name>: <message>" for every failed deletion
        cutoff: Artifacts created before this time were candidates
        dry_run: Whether deletions were skipped
    """

    deleted_count: int = 0
    deleted_names: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    cutoff: datetime | None = None
    dry_run: bool = False

    @property
    def success(self) -> bool:
        return not self.errors


class RetentionCleaner:
    """Deletes artifacts older than a retention window.

    Attributes:
        store: Artifact store holding the backup folder
        lock: Lock shared with the recovery orchestrator
        max_concurrent: Maximum concurrent deletions

    Example:
        >>> cleaner = RetentionCleaner(store, lock)
        >>> result = await cleaner.cleanup(retention_days=30)
        >>> print(result.deleted_names)
    """

    def __init__(
        self,
        store: ArtifactStore,
        lock: MaintenanceLock | None = None,
        max_concurrent: int = 4,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        """Initialize the cleaner.

        Args:
            store: Artifact store
            lock: Maintenance lock (a private one if omitted)
            max_concurrent: Maximum concurrent deletions
            clock: Time source returning an aware UTC datetime
        """
        self.store = store
        self.lock = lock or MaintenanceLock()
        self.max_concurrent = max_concurrent
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    async def cleanup(self, retention_days: int, dry_run: bool = False) -> CleanupResult:
        """Delete artifacts older than retention_days.

        Args:
            retention_days: Retention window in days
            dry_run: List candidates without deleting them

        Returns:
            CleanupResult with deleted names and per-artifact errors

        Raises:
            ArtifactListError: If the folder cannot be listed
            RecoveryInProgressError: If a recovery run holds the lock
        """
        async with self.lock.hold("retention cleanup", wait=False):
            cutoff = self.clock() - timedelta(days=retention_days)
            candidates = await self.store.list(created_before=cutoff)

            logger.info(
                "Starting retention cleanup",
                extra={
                    "retention_days": retention_days,
                    "cutoff": cutoff.isoformat(),
                    "candidates": len(candidates),
                    "dry_run": dry_run,
                },
            )

            result = CleanupResult(cutoff=cutoff, dry_run=dry_run)
            if dry_run:
                result.deleted_names = sorted(a.name for a in candidates)
                return result

            semaphore = asyncio.Semaphore(self.max_concurrent)
            outcomes = await asyncio.gather(
                *(self._delete_one(artifact, semaphore) for artifact in candidates)
            )

            for artifact, error in zip(candidates, outcomes):
                if error is None:
                    result.deleted_names.append(artifact.name)
                else:
                    result.errors.append(f"{artifact.name}: {error}")

            result.deleted_count = len(result.deleted_names)

            logger.info(
                "Retention cleanup finished",
                extra={"deleted": result.deleted_count, "errors": len(result.errors)},
            )
            return result

    async def _delete_one(self, artifact: Artifact, semaphore: asyncio.Semaphore) -> str | None:
        """Delete one artifact, returning an error message instead of raising."""
        async with semaphore:
            try:
                await self.store.delete(artifact.id)
            except ArtifactStoreError as e:
                logger.warning(f"Failed to delete {artifact.name}: {e}")
                return str(e)

        logger.debug("Deleted artifact", extra={"artifact": artifact.name})
        return None
