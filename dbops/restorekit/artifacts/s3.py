"""
S3 artifact store for restorekit.

The backup folder is an S3 prefix. Artifacts are the objects directly
under it:
    s3://<bucket>/<prefix>/<name>

Snapshots and change logs live side by side; the classifier tells them
apart by name. created_at is the object's LastModified timestamp.

Invariants:
    - Every call is bounded by operation_timeout_seconds; downloads are
      bounded per chunk read so transfer size never causes a timeout
    - Downloads go to a ".part" file and are renamed only when complete
    - botocore errors never leak; they are wrapped per operation

How to change safely:
    - Keep key layout stable, older artifacts must stay listable
    - Test against MinIO before changing pagination or streaming code
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any
from urllib.parse import quote

from aiobotocore.config import AioConfig
from aiobotocore.session import AioSession, get_session
from botocore.exceptions import BotoCoreError, ClientError

from ..config import S3Config
from ..errors import (
    ArtifactDeleteError,
    ArtifactDeleteTimeoutError,
    ArtifactDownloadError,
    ArtifactDownloadTimeoutError,
    ArtifactListError,
    ArtifactListTimeoutError,
    ArtifactStoreError,
    ArtifactUploadError,
    ArtifactUploadTimeoutError,
)
from .base import Artifact, ArtifactStore, UploadResult

logger = logging.getLogger(__name__)

DOWNLOAD_CHUNK_SIZE = 1024 * 1024


class S3ArtifactStore(ArtifactStore):
    """ArtifactStore backed by an S3 bucket prefix.

    Attributes:
        s3_config: S3 configuration
        folder: Default folder (prefix) for list/upload

    Example:
        >>> async with S3ArtifactStore(S3Config.from_env()) as store:
        ...     for artifact in await store.list():
        ...         print(artifact.name, artifact.created_at)
    """

    def __init__(self, s3_config: S3Config, session: AioSession | None = None) -> None:
        """Initialize the store.

        Args:
            s3_config: S3 configuration
            session: Optional aiobotocore session (a new one is created if omitted)
        """
        self.s3_config = s3_config
        self.folder = s3_config.backup_prefix.strip("/")
        self._session = session
        self._s3_ctx = None
        self._s3_client = None

    @property
    def is_connected(self) -> bool:
        return self._s3_client is not None

    async def connect(self) -> None:
        """Initialize S3 client."""
        if self._s3_client:
            return

        if self._session is None:
            self._session = get_session()

        client_kwargs: dict[str, Any] = {
            "region_name": self.s3_config.region,
            "config": AioConfig(
                connect_timeout=self.s3_config.connect_timeout_seconds,
                read_timeout=self.s3_config.read_timeout_seconds,
                retries={"max_attempts": self.s3_config.max_attempts, "mode": "standard"},
            ),
        }

        if self.s3_config.endpoint_url:
            client_kwargs["endpoint_url"] = self.s3_config.endpoint_url

        if self.s3_config.access_key_id:
            client_kwargs["aws_access_key_id"] = self.s3_config.access_key_id
            client_kwargs["aws_secret_access_key"] = self.s3_config.secret_access_key

        self._s3_ctx = self._session.create_client("s3", **client_kwargs)
        self._s3_client = await self._s3_ctx.__aenter__()
        logger.debug(
            "S3 artifact store connected",
            extra={"bucket": self.s3_config.bucket, "folder": self.folder},
        )

    async def close(self) -> None:
        """Close S3 client."""
        if self._s3_client:
            await self._s3_ctx.__aexit__(None, None, None)
            self._s3_client = None
            self._s3_ctx = None

    def _client(self) -> Any:
        if self._s3_client is None:
            raise ArtifactStoreError("S3 artifact store is not connected")
        return self._s3_client

    def _folder_prefix(self, folder: str | None) -> str:
        folder = (folder if folder is not None else self.folder).strip("/")
        return f"{folder}/" if folder else ""

    def _web_view_link(self, key: str) -> str:
        if self.s3_config.endpoint_url:
            base = self.s3_config.endpoint_url.rstrip("/")
            return f"{base}/{self.s3_config.bucket}/{quote(key)}"
        return f"https://{self.s3_config.bucket}.s3.{self.s3_config.region}.amazonaws.com/{quote(key)}"

    async def list(
        self,
        folder: str | None = None,
        *,
        created_before: datetime | None = None,
        name_prefix: str | None = None,
    ) -> list[Artifact]:
        """List artifacts directly under the folder prefix."""
        try:
            return await asyncio.wait_for(
                self._list(self._folder_prefix(folder), created_before, name_prefix),
                timeout=self.s3_config.operation_timeout_seconds,
            )
        except asyncio.TimeoutError:
            raise ArtifactListTimeoutError(
                f"Listing {self.s3_config.bucket}/{self._folder_prefix(folder)} timed out"
            )
        except (ClientError, BotoCoreError) as e:
            raise ArtifactListError(f"Failed to list backup folder: {e}") from e

    async def _list(
        self,
        prefix: str,
        created_before: datetime | None,
        name_prefix: str | None,
    ) -> list[Artifact]:
        artifacts = []
        paginator = self._client().get_paginator("list_objects_v2")

        async for page in paginator.paginate(Bucket=self.s3_config.bucket, Prefix=prefix):
            for obj in page.get("Contents", []):
                key = obj["Key"]
                name = key[len(prefix) :]
                # Nested keys and folder markers are not artifacts of this folder
                if not name or "/" in name:
                    continue
                if name_prefix and not name.startswith(name_prefix):
                    continue

                created_at = obj["LastModified"]
                if created_at.tzinfo is None:
                    created_at = created_at.replace(tzinfo=timezone.utc)
                if created_before is not None and not created_at < created_before:
                    continue

                artifacts.append(
                    Artifact(
                        id=key,
                        name=name,
                        created_at=created_at,
                        size_bytes=obj.get("Size", 0),
                        web_view_link=self._web_view_link(key),
                    )
                )

        return artifacts

    async def upload(
        self,
        local_path: Path,
        name: str,
        folder: str | None = None,
    ) -> UploadResult:
        """Upload a local file under the folder prefix."""
        key = f"{self._folder_prefix(folder)}{name}"
        try:
            with open(local_path, "rb") as f:
                body = f.read()

            response = await asyncio.wait_for(
                self._client().put_object(
                    Bucket=self.s3_config.bucket,
                    Key=key,
                    Body=body,
                    ContentType="application/octet-stream",
                ),
                timeout=self.s3_config.operation_timeout_seconds,
            )
        except asyncio.TimeoutError:
            raise ArtifactUploadTimeoutError(f"Upload of {name} timed out")
        except (ClientError, BotoCoreError, OSError) as e:
            raise ArtifactUploadError(f"Failed to upload {name}: {e}") from e

        logger.info(
            "Uploaded artifact",
            extra={"s3_key": key, "size_bytes": len(body)},
        )

        return UploadResult(
            id=key,
            web_view_link=self._web_view_link(key),
            content_hash=(response.get("ETag") or "").strip('"') or None,
        )

    async def download(self, artifact_id: str, dest_path: Path) -> None:
        """Stream an object to dest_path.

        The timeout bounds the request and each chunk read, not the whole
        transfer, so large snapshots only fail when the stream stalls.
        """
        dest_path = Path(dest_path)
        part_path = dest_path.with_name(dest_path.name + ".part")
        try:
            await self._download(artifact_id, part_path)
            part_path.replace(dest_path)
        except asyncio.TimeoutError:
            part_path.unlink(missing_ok=True)
            raise ArtifactDownloadTimeoutError(f"Download of {artifact_id} stalled")
        except (ClientError, BotoCoreError, OSError) as e:
            part_path.unlink(missing_ok=True)
            raise ArtifactDownloadError(f"Failed to download {artifact_id}: {e}") from e

    async def _download(self, key: str, part_path: Path) -> None:
        timeout = self.s3_config.operation_timeout_seconds
        response = await asyncio.wait_for(
            self._client().get_object(Bucket=self.s3_config.bucket, Key=key),
            timeout=timeout,
        )

        part_path.parent.mkdir(parents=True, exist_ok=True)
        async with response["Body"] as stream:
            with open(part_path, "wb") as f:
                while True:
                    chunk = await asyncio.wait_for(
                        stream.read(DOWNLOAD_CHUNK_SIZE), timeout=timeout
                    )
                    if not chunk:
                        break
                    f.write(chunk)


    async def delete(self, artifact_id: str) -> None:
        """Delete an object."""
        try:
            await asyncio.wait_for(
                self._client().delete_object(Bucket=self.s3_config.bucket, Key=artifact_id),
                timeout=self.s3_config.operation_timeout_seconds,
            )
        except asyncio.TimeoutError:
            raise ArtifactDeleteTimeoutError(f"Delete of {artifact_id} timed out")
        except (ClientError, BotoCoreError) as e:
            raise ArtifactDeleteError(f"Failed to delete {artifact_id}: {e}") from e
