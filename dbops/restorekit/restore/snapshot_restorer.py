"""
Snapshot restorer for restorekit.

Downloads a full snapshot artifact and loads it into the relational store,
replacing whatever the store held before. This is always the first
mutating step of a recovery run.

Invariants:
    - Either the store ends up equal to the snapshot or RestoreError is raised
    - The existing database is copied aside before it is overwritten
      (when backup_existing is enabled)
    - The downloaded snapshot file is removed afterwards
    - A dry run never touches the database file

How to change safely:
    - Keep reading snapshots from older backup job versions
    - Recovery runs always restore every table; a table subset is only
      used by the standalone restore command
"""

from __future__ import annotations

import logging
import time
from collections.abc import Iterable
from pathlib import Path

from ..artifacts.base import Artifact, ArtifactStore
from ..errors import ArtifactDownloadError, RestoreError, StoreError
from ..store.relational_store import RelationalStore, SnapshotInfo, read_snapshot_tables

logger = logging.getLogger(__name__)


class SnapshotRestorer:
    """Loads a full snapshot into the relational store.

    Attributes:
        artifact_store: Store holding the snapshot
        relational_store: Target database
        backup_existing: Copy the current database aside first

    Example:
        >>> restorer = SnapshotRestorer(artifact_store, relational_store)
        >>> info = await restorer.restore(snapshot, work_dir)
        >>> print(info.restored)
    """

    def __init__(
        self,
        artifact_store: ArtifactStore,
        relational_store: RelationalStore,
        backup_existing: bool = True,
    ) -> None:
        self.artifact_store = artifact_store
        self.relational_store = relational_store
        self.backup_existing = backup_existing

    async def restore(
        self,
        snapshot: Artifact,
        work_dir: Path,
        tables: Iterable[str] | None = None,
        dry_run: bool = False,
    ) -> SnapshotInfo:
        """Download and load a snapshot.

        Args:
            snapshot: Full snapshot artifact
            work_dir: Scratch directory for the download
            tables: Entities to restore (every declared entity if None)
            dry_run: Validate and count rows without touching the database

        Returns:
            SnapshotInfo describing what was (or would be) loaded

        Raises:
            RestoreError: If the snapshot cannot be fetched or loaded
            UnknownTableError: If a selected table is not declared
        """
        start_time = time.time()
        tables = self.relational_store.select_tables(tables)
        local_path = await fetch_snapshot(self.artifact_store, snapshot, work_dir)

        try:
            if dry_run:
                info = await self.relational_store.bulk_restore(
                    local_path, tables=tables, dry_run=True
                )
            else:
                if self.backup_existing:
                    await self.relational_store.backup_existing()
                await self.relational_store.initialize()
                info = await self.relational_store.bulk_restore(local_path, tables=tables)
        except StoreError as e:
            raise RestoreError(f"Failed to load snapshot {snapshot.name}: {e}") from e
        finally:
            local_path.unlink(missing_ok=True)

        logger.info(
            f"{'Checked' if dry_run else 'Restored'} snapshot: {snapshot.name}",
            extra={
                "snapshot": snapshot.name,
                "snapshot_created_at": snapshot.created_at.isoformat(),
                "rows": info.total_rows,
                "dry_run": dry_run,
                "duration_ms": int((time.time() - start_time) * 1000),
            },
        )
        return info


async def fetch_snapshot(artifact_store: ArtifactStore, snapshot: Artifact, work_dir: Path) -> Path:
    """Download a snapshot into work_dir.

    Raises:
        RestoreError: If the download fails
    """
    local_path = Path(work_dir) / snapshot.name
    try:
        await artifact_store.download(snapshot.id, local_path)
    except ArtifactDownloadError as e:
        raise RestoreError(f"Cannot fetch snapshot {snapshot.name}: {e}") from e
    return local_path


async def inspect_snapshot(
    artifact_store: ArtifactStore, snapshot: Artifact, work_dir: Path
) -> list[str]:
    """Download a snapshot and return the tables listed in its header.

    Raises:
        RestoreError: If the snapshot cannot be fetched or read
    """
    local_path = await fetch_snapshot(artifact_store, snapshot, work_dir)
    try:
        return read_snapshot_tables(local_path)
    finally:
        local_path.unlink(missing_ok=True)
