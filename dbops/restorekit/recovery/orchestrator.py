"""
Recovery orchestrator for restorekit.

Sequences one recovery run:
1. List the backup folder and select the latest full snapshot
2. Restore the snapshot into the relational store
3. List change logs newer than the snapshot
4. Download and replay them one at a time, oldest first
5. Verify database integrity

State machine:

    START -> SNAPSHOT_SELECTED -> RESTORING -> RESTORED
          -> ENUMERATING_INCREMENTALS -> REPLAYING -> DONE
                                      -> REPLAY_SKIPPED -> DONE
    (any step) -> FATAL

Fatal conditions:
    - Folder listing fails
    - No full snapshot exists (nothing is modified)
    - Snapshot download or load fails (store state undefined)
    - A change-log download fails (replay stops before that file)
    - Integrity check fails after replay

Invariants:
    - recover() always returns a RecoveryResult, it never raises for a
      fatal condition
    - Change logs are replayed strictly sequentially, in created_at order
    - Fatal steps are never retried; re-running recover() is the resume path
    - Recovery and retention cleanup never overlap (MaintenanceLock)

How to change safely:
    - Add states additively and keep _transition() the only writer of state
    - Per-entry problems belong to the replay engine, never make them fatal here
"""

from __future__ import annotations

import logging
import tempfile
import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any

from ..artifacts.base import Artifact, ArtifactStore
from ..artifacts.classifier import (
    DEFAULT_INCREMENTAL_PREFIX,
    RecoveryPlan,
    build_plan,
    select_incrementals_since,
    select_latest_snapshot,
)
from ..config import ServiceConfig
from ..errors import ArtifactDownloadError, NoSnapshotError, RestoreKitError
from ..lock import MaintenanceLock
from ..replay.engine import ReplayEngine, ReplayError
from ..restore.snapshot_restorer import SnapshotRestorer
from ..store.registry import EntityRegistry
from ..store.relational_store import RelationalStore

logger = logging.getLogger(__name__)


class RecoveryState(Enum):
    """Recovery run states."""

    START = "start"
    SNAPSHOT_SELECTED = "snapshot_selected"
    RESTORING = "restoring"
    RESTORED = "restored"
    ENUMERATING_INCREMENTALS = "enumerating_incrementals"
    REPLAY_SKIPPED = "replay_skipped"
    REPLAYING = "replaying"
    DONE = "done"
    FATAL = "fatal"


@dataclass
class RecoveryResult:
    """Final report of a recovery run.

    Attributes:
        state: Final state (DONE or FATAL)
        applied_count: Change-log entries applied
        skipped_count: Change-log entries skipped with an error
        absent_count: UPDATE/DELETE entries whose row did not exist
        errors: Recoverable per-entry errors
        fatal_reason: Why the run aborted, if it did
        failed_during: State the run was in when it aborted
        snapshot_name: Snapshot selected for restore
        snapshot_restored: Whether the snapshot load completed
        snapshot_rows: Rows loaded from the snapshot
        files_applied: Change logs fully replayed
        files_total: Change logs selected for replay
        table_stats: Row count per table after the run
        target_time: Operator-requested recovery point (informational)
        duration_ms: Wall-clock duration
    """

    state: RecoveryState = RecoveryState.START
    applied_count: int = 0
    skipped_count: int = 0
    absent_count: int = 0
    errors: list[ReplayError] = field(default_factory=list)
    fatal_reason: str | None = None
    failed_during: RecoveryState | None = None
    snapshot_name: str | None = None
    snapshot_restored: bool = False
    snapshot_rows: int = 0
    files_applied: int = 0
    files_total: int = 0
    table_stats: dict[str, int] = field(default_factory=dict)
    target_time: datetime | None = None
    duration_ms: int = 0

    @property
    def success(self) -> bool:
        return self.state is RecoveryState.DONE

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "state": self.state.value,
            "success": self.success,
            "applied_count": self.applied_count,
            "skipped_count": self.skipped_count,
            "absent_count": self.absent_count,
            "errors": [e.to_dict() for e in self.errors],
            "fatal_reason": self.fatal_reason,
            "failed_during": self.failed_during.value if self.failed_during else None,
            "snapshot_name": self.snapshot_name,
            "snapshot_restored": self.snapshot_restored,
            "snapshot_rows": self.snapshot_rows,
            "files_applied": self.files_applied,
            "files_total": self.files_total,
            "table_stats": dict(self.table_stats),
            "target_time": self.target_time.isoformat() if self.target_time else None,
            "duration_ms": self.duration_ms,
        }


class RecoveryOrchestrator:
    """Runs snapshot restore plus incremental replay.

    Example:
        >>> orchestrator = RecoveryOrchestrator(artifact_store, relational_store)
        >>> result = await orchestrator.recover()
        >>> if not result.success:
        ...     print(result.fatal_reason)
    """

    def __init__(
        self,
        artifact_store: ArtifactStore,
        relational_store: RelationalStore,
        registry: EntityRegistry | None = None,
        lock: MaintenanceLock | None = None,
        incremental_prefix: str = DEFAULT_INCREMENTAL_PREFIX,
        verify: bool = True,
        backup_existing: bool = True,
        work_dir: str | Path | None = None,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            artifact_store: Connected store holding the backup folder
            relational_store: Database to recover into
            registry: Table registry (built from relational_store if omitted)
            lock: Lock shared with retention cleanup
            incremental_prefix: Name prefix of change-log artifacts
            verify: Run an integrity check after replay
            backup_existing: Copy the current database aside before restoring
            work_dir: Parent of the scratch directory (system temp dir if None)
        """
        self.artifact_store = artifact_store
        self.relational_store = relational_store
        self.registry = registry or EntityRegistry.from_store(relational_store)
        self.lock = lock or MaintenanceLock()
        self.incremental_prefix = incremental_prefix
        self.verify = verify
        self.work_dir = work_dir
        self.restorer = SnapshotRestorer(
            artifact_store, relational_store, backup_existing=backup_existing
        )
        self.engine = ReplayEngine(self.registry)

    @classmethod
    def from_config(
        cls,
        config: ServiceConfig,
        artifact_store: ArtifactStore,
        lock: MaintenanceLock | None = None,
    ) -> RecoveryOrchestrator:
        """Create an orchestrator from ServiceConfig."""
        return cls(
            artifact_store=artifact_store,
            relational_store=RelationalStore.from_config(config.storage, config.recovery.tables),
            lock=lock or MaintenanceLock.from_config(config),
            incremental_prefix=config.recovery.incremental_prefix,
            verify=config.recovery.verify,
            backup_existing=config.recovery.backup_existing,
            work_dir=config.recovery.work_dir,
        )

    async def plan(self) -> RecoveryPlan:
        """Compute what a recovery run would use, without changing anything.

        Raises:
            ArtifactListError: If the backup folder cannot be listed
        """
        artifacts = await self.artifact_store.list()
        return build_plan(artifacts, self.incremental_prefix)

    async def recover(self, target_time: datetime | None = None) -> RecoveryResult:
        """Execute a recovery run.

        Waits for a running retention cleanup to finish first.

        Args:
            target_time: Operator-requested recovery point. Only logged and
                compared with the snapshot time; the latest snapshot plus
                every newer change log is always applied.

        Returns:
            RecoveryResult in state DONE or FATAL
        """
        start_time = time.time()
        result = RecoveryResult(target_time=target_time)

        async with self.lock.hold("recovery"):
            logger.info(
                "Starting recovery",
                extra={"target_time": target_time.isoformat() if target_time else None},
            )
            try:
                with tempfile.TemporaryDirectory(prefix="restorekit-", dir=self.work_dir) as tmp:
                    await self._run(result, Path(tmp))
            except RestoreKitError as e:
                self._fail(result, str(e))
            except Exception as e:
                logger.error(f"Unexpected recovery failure: {e}", exc_info=True)
                self._fail(result, f"Unexpected error: {e}")

        result.duration_ms = int((time.time() - start_time) * 1000)
        logger.info(
            f"Recovery finished: {result.state.value}",
            extra={
                "state": result.state.value,
                "snapshot": result.snapshot_name,
                "files_applied": result.files_applied,
                "files_total": result.files_total,
                "applied": result.applied_count,
                "skipped": result.skipped_count,
                "duration_ms": result.duration_ms,
            },
        )
        return result

    async def _run(self, result: RecoveryResult, work_dir: Path) -> None:
        artifacts = await self.artifact_store.list()
        snapshot = select_latest_snapshot(artifacts, self.incremental_prefix)
        if snapshot is None:
            raise NoSnapshotError("No full snapshot found in the backup folder")

        self._transition(result, RecoveryState.SNAPSHOT_SELECTED)
        result.snapshot_name = snapshot.name
        self._check_target_time(snapshot, result.target_time)

        self._transition(result, RecoveryState.RESTORING)
        info = await self.restorer.restore(snapshot, work_dir)
        result.snapshot_restored = True
        result.snapshot_rows = info.total_rows
        self._transition(result, RecoveryState.RESTORED)

        self._transition(result, RecoveryState.ENUMERATING_INCREMENTALS)
        # Listed again so change logs exported during the restore are included
        candidates = await self.artifact_store.list(name_prefix=self.incremental_prefix)
        incrementals = select_incrementals_since(
            candidates, snapshot.created_at, self.incremental_prefix
        )
        result.files_total = len(incrementals)

        if not incrementals:
            self._transition(result, RecoveryState.REPLAY_SKIPPED)
            logger.info("No change logs newer than the snapshot")
        else:
            self._transition(result, RecoveryState.REPLAYING)
            for artifact in incrementals:
                await self._replay_one(artifact, work_dir, result)

        if self.verify:
            await self.relational_store.verify_integrity()
        result.table_stats = await self.relational_store.table_stats()

        self._transition(result, RecoveryState.DONE)

    async def _replay_one(self, artifact: Artifact, work_dir: Path, result: RecoveryResult) -> None:
        local_path = work_dir / artifact.name
        try:
            await self.artifact_store.download(artifact.id, local_path)
        except ArtifactDownloadError as e:
            raise ArtifactDownloadError(
                f"Cannot fetch change log {artifact.name} "
                f"({result.files_applied} of {result.files_total} applied): {e}"
            ) from e

        try:
            replayed = await self.engine.apply_file(local_path, source=artifact.name)
        finally:
            local_path.unlink(missing_ok=True)

        result.applied_count += replayed.applied_count
        result.skipped_count += replayed.skipped_count
        result.absent_count += replayed.absent_count
        result.errors.extend(replayed.errors)
        result.files_applied += 1

    def _check_target_time(self, snapshot: Artifact, target_time: datetime | None) -> None:
        if target_time is None:
            return
        if target_time.tzinfo is not None and snapshot.created_at > target_time:
            logger.warning(
                f"Snapshot {snapshot.name} is newer than the requested target time; "
                "recovering to the latest state anyway",
                extra={
                    "snapshot_created_at": snapshot.created_at.isoformat(),
                    "target_time": target_time.isoformat(),
                },
            )

    def _transition(self, result: RecoveryResult, state: RecoveryState) -> None:
        logger.debug(f"Recovery state {result.state.value} -> {state.value}")
        result.state = state

    def _fail(self, result: RecoveryResult, reason: str) -> None:
        logger.error(
            f"Recovery aborted: {reason}",
            extra={"failed_during": result.state.value, "files_applied": result.files_applied},
        )
        result.failed_during = result.state
        result.fatal_reason = reason
        result.state = RecoveryState.FATAL
