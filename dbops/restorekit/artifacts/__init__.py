"""
Backup folder access for restorekit.

This module provides:
- ArtifactStore protocol with S3 and in-memory backends
- Classification of snapshots vs. incremental change logs
- Retention cleanup

Invariants:
    - Snapshots and change logs share one folder, told apart by name prefix
    - Incrementals are always handed out oldest first
"""

from .base import Artifact, ArtifactStore, UploadResult, create_artifact_store
from .classifier import (
    DEFAULT_INCREMENTAL_PREFIX,
    RecoveryPlan,
    build_plan,
    is_incremental,
    select_incrementals_since,
    select_latest_snapshot,
    select_snapshot,
)
from .memory import InMemoryArtifactStore
from .retention import CleanupResult, RetentionCleaner
from .s3 import S3ArtifactStore

__all__ = [
    # Protocol and types
    "Artifact",
    "ArtifactStore",
    "UploadResult",
    "create_artifact_store",
    # Classification
    "DEFAULT_INCREMENTAL_PREFIX",
    "RecoveryPlan",
    "build_plan",
    "is_incremental",
    "select_incrementals_since",
    "select_latest_snapshot",
    "select_snapshot",
    # Retention
    "CleanupResult",
    "RetentionCleaner",
    # Implementations
    "InMemoryArtifactStore",
    "S3ArtifactStore",
]
