"""
Exception hierarchy for restorekit.

Fatal conditions of a recovery run are raised as exceptions and turned
into a FATAL RecoveryResult by the orchestrator. Recoverable replay
problems are never raised; they are collected as ReplayError records.

How to change safely:
    - New exceptions must derive from RestoreKitError
    - Keep operation-specific store errors under ArtifactStoreError so
      callers can catch the whole family
"""

from __future__ import annotations


class RestoreKitError(Exception):
    """Base exception for restorekit."""

    pass


class ConfigError(RestoreKitError, ValueError):
    """Configuration is missing or invalid."""

    pass


class ArtifactStoreError(RestoreKitError):
    """Base exception for object store operations."""

    pass


class ArtifactListError(ArtifactStoreError):
    """Listing artifacts failed."""

    pass


class ArtifactDownloadError(ArtifactStoreError):
    """Downloading an artifact failed."""

    pass


class ArtifactUploadError(ArtifactStoreError):
    """Uploading an artifact failed."""

    pass


class ArtifactDeleteError(ArtifactStoreError):
    """Deleting an artifact failed."""

    pass


class ArtifactStoreTimeoutError(ArtifactStoreError):
    """An object store call exceeded its timeout.

    Raised through the operation-specific subclasses below, so a timed
    out download is still an ArtifactDownloadError.
    """

    pass


class ArtifactListTimeoutError(ArtifactListError, ArtifactStoreTimeoutError):
    pass


class ArtifactDownloadTimeoutError(ArtifactDownloadError, ArtifactStoreTimeoutError):
    pass


class ArtifactUploadTimeoutError(ArtifactUploadError, ArtifactStoreTimeoutError):
    pass


class ArtifactDeleteTimeoutError(ArtifactDeleteError, ArtifactStoreTimeoutError):
    pass


class StoreError(RestoreKitError):
    """Relational store operation failed."""

    pass


class UnknownTableError(StoreError, KeyError):
    """No entity is registered under the requested table name."""

    pass


class RestoreError(RestoreKitError):
    """A full snapshot could not be fetched or loaded."""

    pass


class NoSnapshotError(RestoreKitError):
    """No full snapshot exists in the backup folder."""

    pass


class RecoveryInProgressError(RestoreKitError):
    """A maintenance operation is already holding the lock."""

    pass
