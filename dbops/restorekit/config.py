"""
Configuration management for restorekit.

All configuration is done via environment variables - no config files.
This module provides typed configuration classes with validation.

Invariants:
    - All settings have sensible defaults for local development
    - Production deployments MUST set explicit values for S3_BUCKET and DATABASE_PATH
    - Secrets are never logged or exposed in error messages

How to change safely:
    - Add new settings with defaults that maintain backward compatibility
    - Deprecate settings by logging warnings but continuing to support them
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field

from .errors import ConfigError

logger = logging.getLogger(__name__)


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name, str(default))
    try:
        return int(raw)
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got '{raw}'")


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name, str(default))
    try:
        return float(raw)
    except ValueError:
        raise ConfigError(f"{name} must be a number, got '{raw}'")


@dataclass(frozen=True)
class S3Config:
    """S3 configuration for the backup folder.

    Attributes:
        bucket: S3 bucket name
        region: AWS region
        endpoint_url: Custom endpoint URL (for MinIO)
        backup_prefix: Prefix ("folder") holding snapshots and change logs
        access_key_id: AWS access key ID (optional, uses AWS credential chain)
        secret_access_key: AWS secret access key (optional)
        connect_timeout_seconds: Socket connect timeout per request
        read_timeout_seconds: Socket read timeout per request
        operation_timeout_seconds: Upper bound for one list/download/delete call
        max_attempts: botocore retry attempts per request
    """

    bucket: str = "restorekit-backups"
    region: str = "us-east-1"
    endpoint_url: str | None = None
    backup_prefix: str = "backups"
    access_key_id: str | None = None
    secret_access_key: str | None = None
    connect_timeout_seconds: float = 10.0
    read_timeout_seconds: float = 60.0
    operation_timeout_seconds: float = 300.0
    max_attempts: int = 3

    @classmethod
    def from_env(cls) -> S3Config:
        """Load configuration from environment variables."""
        return cls(
            bucket=os.getenv("S3_BUCKET", "restorekit-backups"),
            region=os.getenv("S3_REGION", os.getenv("AWS_REGION", "us-east-1")),
            endpoint_url=os.getenv("S3_ENDPOINT"),
            backup_prefix=os.getenv("S3_BACKUP_PREFIX", "backups"),
            access_key_id=os.getenv("AWS_ACCESS_KEY_ID"),
            secret_access_key=os.getenv("AWS_SECRET_ACCESS_KEY"),
            connect_timeout_seconds=_env_float("S3_CONNECT_TIMEOUT_SECONDS", 10.0),
            read_timeout_seconds=_env_float("S3_READ_TIMEOUT_SECONDS", 60.0),
            operation_timeout_seconds=_env_float("S3_OPERATION_TIMEOUT_SECONDS", 300.0),
            max_attempts=_env_int("S3_MAX_ATTEMPTS", 3),
        )


@dataclass(frozen=True)
class StorageConfig:
    """Local relational store configuration.

    Attributes:
        database_path: SQLite database file restored into
        busy_timeout_ms: SQLite busy timeout in milliseconds
        wal_mode: SQLite WAL journal mode enabled
    """

    database_path: str = "/var/lib/restorekit/data.db"
    busy_timeout_ms: int = 5000
    wal_mode: bool = True

    @classmethod
    def from_env(cls) -> StorageConfig:
        """Load configuration from environment variables."""
        return cls(
            database_path=os.getenv("DATABASE_PATH", "/var/lib/restorekit/data.db"),
            busy_timeout_ms=_env_int("SQLITE_BUSY_TIMEOUT_MS", 5000),
            wal_mode=_env_bool("SQLITE_WAL_MODE", "true"),
        )


@dataclass(frozen=True)
class RecoveryConfig:
    """Recovery run configuration.

    Attributes:
        tables: Entity specs ("name" or "name:key_type") for the table registry
        incremental_prefix: Name prefix marking change-log artifacts
        verify: Run an integrity check after replay
        backup_existing: Copy the current database aside before restoring
        work_dir: Scratch directory for downloads (system temp dir if unset)
        lock_path: Maintenance lock file (DATABASE_PATH + ".lock" if unset)
    """

    tables: tuple[str, ...] = ()
    incremental_prefix: str = "audit_"
    verify: bool = True
    backup_existing: bool = True
    work_dir: str | None = None
    lock_path: str | None = None

    @classmethod
    def from_env(cls) -> RecoveryConfig:
        """Load configuration from environment variables."""
        raw_tables = os.getenv("RECOVERY_TABLES", "")
        return cls(
            tables=tuple(t.strip() for t in raw_tables.split(",") if t.strip()),
            incremental_prefix=os.getenv("RECOVERY_INCREMENTAL_PREFIX", "audit_"),
            verify=_env_bool("RECOVERY_VERIFY", "true"),
            backup_existing=_env_bool("RECOVERY_BACKUP_EXISTING", "true"),
            work_dir=os.getenv("RECOVERY_WORK_DIR"),
            lock_path=os.getenv("RECOVERY_LOCK_PATH"),
        )


@dataclass(frozen=True)
class RetentionConfig:
    """Retention cleanup configuration.

    Attributes:
        retention_days: Artifacts older than this many days are deleted
        max_concurrent: Maximum concurrent deletions
    """

    retention_days: int = 7
    max_concurrent: int = 4

    @classmethod
    def from_env(cls) -> RetentionConfig:
        """Load configuration from environment variables."""
        return cls(
            retention_days=_env_int("BACKUP_RETENTION_DAYS", 7),
            max_concurrent=_env_int("RETENTION_MAX_CONCURRENT", 4),
        )


@dataclass(frozen=True)
class ObservabilityConfig:
    """Logging configuration.

    Attributes:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_format: Log format (json, text)
    """

    log_level: str = "INFO"
    log_format: str = "text"

    @classmethod
    def from_env(cls) -> ObservabilityConfig:
        """Load configuration from environment variables."""
        return cls(
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_format=os.getenv("LOG_FORMAT", "text"),
        )


@dataclass
class ServiceConfig:
    """Complete restorekit configuration.

    Attributes:
        s3: Backup folder configuration
        storage: Relational store configuration
        recovery: Recovery run configuration
        retention: Retention cleanup configuration
        observability: Logging configuration
    """

    s3: S3Config = field(default_factory=S3Config)
    storage: StorageConfig = field(default_factory=StorageConfig)
    recovery: RecoveryConfig = field(default_factory=RecoveryConfig)
    retention: RetentionConfig = field(default_factory=RetentionConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    @classmethod
    def from_env(cls) -> ServiceConfig:
        """Load complete configuration from environment variables.

        Returns:
            ServiceConfig with all sections populated from environment.

        Raises:
            ConfigError: If required configuration is missing or invalid.
        """
        config = cls(
            s3=S3Config.from_env(),
            storage=StorageConfig.from_env(),
            recovery=RecoveryConfig.from_env(),
            retention=RetentionConfig.from_env(),
            observability=ObservabilityConfig.from_env(),
        )

        config.validate()
        return config

    def validate(self) -> None:
        """Validate configuration consistency.

        Raises:
            ConfigError: If configuration is invalid.
        """
        if not self.s3.bucket:
            raise ConfigError("S3_BUCKET is required")
        if self.s3.operation_timeout_seconds <= 0:
            raise ConfigError("S3_OPERATION_TIMEOUT_SECONDS must be positive")
        if not self.storage.database_path:
            raise ConfigError("DATABASE_PATH is required")
        if not self.recovery.incremental_prefix:
            raise ConfigError("RECOVERY_INCREMENTAL_PREFIX must not be empty")
        if self.retention.retention_days < 0:
            raise ConfigError("BACKUP_RETENTION_DAYS must not be negative")
        if self.retention.max_concurrent < 1:
            raise ConfigError("RETENTION_MAX_CONCURRENT must be at least 1")
        if self.observability.log_format not in ("json", "text"):
            raise ConfigError(
                f"Invalid LOG_FORMAT '{self.observability.log_format}'. Must be one of: json, text"
            )

    def log_config(self) -> None:
        """Log configuration (redacting secrets)."""
        logger.info(
            "Configuration loaded",
            extra={
                "s3_bucket": self.s3.bucket,
                "s3_prefix": self.s3.backup_prefix,
                "s3_endpoint": self.s3.endpoint_url,
                "s3_credentials": "explicit" if self.s3.access_key_id else "default-chain",
                "database_path": self.storage.database_path,
                "tables": list(self.recovery.tables),
                "incremental_prefix": self.recovery.incremental_prefix,
                "lock_path": self.recovery.lock_path or self.storage.database_path + ".lock",
                "retention_days": self.retention.retention_days,
                "log_level": self.observability.log_level,
            },
        )
