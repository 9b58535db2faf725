"""
In-memory artifact store implementation for testing.

This module provides a simple in-memory backup folder for:
- Unit tests
- Integration tests of full recovery runs
- Local development without an object store

Invariants:
    - All data is lost on process exit
    - created_at is strictly increasing in upload order, like a real store
    - Failure injection affects only the artifacts it names

How to change safely:
    - This is test-only code, changes don't affect production
    - Keep interface compatible with the ArtifactStore protocol
    - Add features to help with testing scenarios
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from pathlib import Path

from ..errors import (
    ArtifactDeleteError,
    ArtifactDownloadError,
    ArtifactListError,
    ArtifactStoreError,
)
from .base import Artifact, ArtifactStore, UploadResult

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class StoredObject:
    """Artifact metadata plus content."""

    artifact: Artifact
    folder: str
    content: bytes = field(repr=False, default=b"")


class InMemoryArtifactStore(ArtifactStore):
    """In-memory implementation of ArtifactStore for testing.

    Attributes:
        folder: Default folder for list/upload
        clock: Callable returning the current UTC time

    Example:
        >>> store = InMemoryArtifactStore()
        >>> await store.connect()
        >>> store.put("backup_2026-01-04.json.gz", snapshot_bytes)
        >>> [a.name for a in await store.list()]
        ['backup_2026-01-04.json.gz']
    """

    def __init__(
        self,
        folder: str = "backups",
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        """Initialize in-memory store.

        Args:
            folder: Default folder name
            clock: Time source used to stamp uploads
        """
        self.folder = folder
        self.clock = clock
        self._objects: dict[str, StoredObject] = {}
        self._connected = False
        self._lock = asyncio.Lock()
        self._last_created_at: datetime | None = None
        self._fail_list: Exception | None = None
        self._fail_downloads: dict[str, Exception] = {}
        self._fail_deletes: dict[str, Exception] = {}
        self.download_log: list[str] = []
        self.delete_log: list[str] = []

    @property
    def is_connected(self) -> bool:
        return self._connected

    async def connect(self) -> None:
        """Connect (no-op for in-memory)."""
        self._connected = True
        logger.debug("InMemoryArtifactStore connected")

    async def close(self) -> None:
        """Close (keeps data, unlike a real disconnect there is nothing to release)."""
        self._connected = False
        logger.debug("InMemoryArtifactStore closed")

    def _require_connection(self) -> None:
        if not self._connected:
            raise ArtifactStoreError("Not connected")

    def _next_created_at(self) -> datetime:
        now = self.clock()
        if self._last_created_at is not None and now <= self._last_created_at:
            now = self._last_created_at + timedelta(microseconds=1)
        self._last_created_at = now
        return now

    async def list(
        self,
        folder: str | None = None,
        *,
        created_before: datetime | None = None,
        name_prefix: str | None = None,
    ) -> list[Artifact]:
        """List artifacts in a folder."""
        self._require_connection()
        if self._fail_list is not None:
            raise ArtifactListError(f"Failed to list backup folder: {self._fail_list}")

        folder = folder if folder is not None else self.folder
        async with self._lock:
            return [
                obj.artifact
                for obj in self._objects.values()
                if obj.folder == folder
                and (name_prefix is None or obj.artifact.name.startswith(name_prefix))
                and (created_before is None or obj.artifact.created_at < created_before)
            ]

    async def upload(
        self,
        local_path: Path,
        name: str,
        folder: str | None = None,
    ) -> UploadResult:
        """Upload a local file."""
        self._require_connection()
        content = Path(local_path).read_bytes()
        artifact = self.put(name, content, folder=folder)
        return UploadResult(
            id=artifact.id,
            web_view_link=artifact.web_view_link,
            content_hash=hashlib.md5(content).hexdigest(),
        )

    async def download(self, artifact_id: str, dest_path: Path) -> None:
        """Write an artifact's content to dest_path."""
        self._require_connection()
        self.download_log.append(artifact_id)

        if artifact_id in self._fail_downloads:
            raise ArtifactDownloadError(
                f"Failed to download {artifact_id}: {self._fail_downloads[artifact_id]}"
            )

        obj = self._objects.get(artifact_id)
        if obj is None:
            raise ArtifactDownloadError(f"Artifact not found: {artifact_id}")

        dest_path = Path(dest_path)
        dest_path.parent.mkdir(parents=True, exist_ok=True)
        dest_path.write_bytes(obj.content)

    async def delete(self, artifact_id: str) -> None:
        """Delete an artifact."""
        self._require_connection()

        if artifact_id in self._fail_deletes:
            raise ArtifactDeleteError(
                f"Failed to delete {artifact_id}: {self._fail_deletes[artifact_id]}"
            )

        async with self._lock:
            if self._objects.pop(artifact_id, None) is None:
                raise ArtifactDeleteError(f"Artifact not found: {artifact_id}")
            self.delete_log.append(artifact_id)

    # Testing helpers

    def put(
        self,
        name: str,
        content: bytes,
        created_at: datetime | None = None,
        folder: str | None = None,
    ) -> Artifact:
        """Store an artifact directly (testing helper).

        Args:
            name: Artifact name
            content: Artifact bytes
            created_at: Explicit creation time (store clock if omitted)
            folder: Folder name (default folder if omitted)

        Returns:
            The stored Artifact
        """
        folder = folder if folder is not None else self.folder
        artifact = Artifact(
            id=f"{folder}/{name}",
            name=name,
            created_at=created_at or self._next_created_at(),
            size_bytes=len(content),
            web_view_link=f"memory://{folder}/{name}",
        )
        self._objects[artifact.id] = StoredObject(artifact=artifact, folder=folder, content=content)
        return artifact

    def names(self) -> list[str]:
        """Get all stored artifact names (testing helper)."""
        return sorted(obj.artifact.name for obj in self._objects.values())

    def fail_list(self, exception: Exception | None) -> None:
        """Make list() fail until reset with None (testing helper)."""
        self._fail_list = exception

    def fail_download(self, artifact_id: str, exception: Exception) -> None:
        """Make downloads of one artifact fail (testing helper)."""
        self._fail_downloads[artifact_id] = exception

    def fail_delete(self, artifact_id: str, exception: Exception) -> None:
        """Make deletions of one artifact fail (testing helper)."""
        self._fail_deletes[artifact_id] = exception

    def clear_failures(self) -> None:
        """Remove every injected failure (testing helper)."""
        self._fail_list = None
        self._fail_downloads.clear()
        self._fail_deletes.clear()
