"""
Base protocol and types for the artifact store abstraction.

An artifact store holds the backup folder: full snapshots and incremental
change logs. This module defines the ArtifactStore protocol that every
backend implements, plus the Artifact and UploadResult types.

Invariants:
    - Artifact.created_at is assigned by the store, never by the caller
    - Artifact.id is opaque; only the store that produced it can resolve it
    - list() returns every matching artifact, not one page

How to change safely:
    - Protocol changes require updating all implementations
    - Add new methods as optional with default implementations
"""

from __future__ import annotations

from abc import abstractmethod
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from ..config import S3Config


@dataclass(frozen=True)
class Artifact:
    """One object in the backup folder.

    Attributes:
        id: Store-assigned identifier (S3 object key)
        name: Base name; encodes the artifact kind by prefix
        created_at: Creation timestamp assigned by the store (UTC)
        size_bytes: Size in bytes, informational only
        web_view_link: Optional URL for humans
    """

    id: str
    name: str
    created_at: datetime
    size_bytes: int = 0
    web_view_link: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "id": self.id,
            "name": self.name,
            "created_at": self.created_at.isoformat(),
            "size_bytes": self.size_bytes,
            "web_view_link": self.web_view_link,
        }

    def __str__(self) -> str:
        return f"{self.name} ({self.created_at.isoformat()})"


@dataclass(frozen=True)
class UploadResult:
    """Result of an upload.

    Attributes:
        id: Identifier of the stored artifact
        web_view_link: Optional URL for humans
        content_hash: Store-reported content hash
    """

    id: str
    web_view_link: str | None
    content_hash: str | None


@runtime_checkable
class ArtifactStore(Protocol):
    """Protocol for backup folder backends.

    Timeout contract:
        Every network call is bounded. A call that exceeds its bound
        raises the timeout subclass of that operation's error, e.g.
        ArtifactDownloadTimeoutError for download().

    Example:
        >>> async with S3ArtifactStore(s3_config) as store:
        ...     artifacts = await store.list()
        ...     await store.download(artifacts[0].id, Path("/tmp/snap.json.gz"))
    """

    @abstractmethod
    async def connect(self) -> None:
        """Open the connection to the backend."""
        ...

    @abstractmethod
    async def close(self) -> None:
        """Release backend resources."""
        ...

    @abstractmethod
    async def list(
        self,
        folder: str | None = None,
        *,
        created_before: datetime | None = None,
        name_prefix: str | None = None,
    ) -> list[Artifact]:
        """List artifacts in a folder.

        Args:
            folder: Folder to list (backend default if None)
            created_before: Only artifacts created strictly before this time
            name_prefix: Only artifacts whose name starts with this prefix

        Returns:
            Matching artifacts, in no guaranteed order

        Raises:
            ArtifactListError: If the folder cannot be listed
        """
        ...

    @abstractmethod
    async def upload(
        self,
        local_path: Path,
        name: str,
        folder: str | None = None,
    ) -> UploadResult:
        """Upload a local file as a new artifact.

        Raises:
            ArtifactUploadError: If the upload fails
        """
        ...

    @abstractmethod
    async def download(self, artifact_id: str, dest_path: Path) -> None:
        """Stream an artifact's full content to a local file.

        Raises:
            ArtifactDownloadError: If the artifact cannot be fetched
        """
        ...

    @abstractmethod
    async def delete(self, artifact_id: str) -> None:
        """Delete an artifact.

        Raises:
            ArtifactDeleteError: If the deletion fails
        """
        ...

    async def __aenter__(self) -> ArtifactStore:
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()


def create_artifact_store(s3_config: "S3Config") -> ArtifactStore:
    """Factory function to create the production artifact store.

    Args:
        s3_config: S3 configuration

    Returns:
        S3-backed ArtifactStore
    """
    from .s3 import S3ArtifactStore

    return S3ArtifactStore(s3_config)
