"""
Unit tests for environment configuration.
"""

import logging

import pytest

from dbops.restorekit.config import (
    RecoveryConfig,
    RetentionConfig,
    S3Config,
    ServiceConfig,
    StorageConfig,
)
from dbops.restorekit.errors import ConfigError

ENV_VARS = [
    "S3_BUCKET",
    "S3_REGION",
    "AWS_REGION",
    "S3_ENDPOINT",
    "S3_BACKUP_PREFIX",
    "AWS_ACCESS_KEY_ID",
    "AWS_SECRET_ACCESS_KEY",
    "S3_OPERATION_TIMEOUT_SECONDS",
    "DATABASE_PATH",
    "SQLITE_WAL_MODE",
    "RECOVERY_TABLES",
    "RECOVERY_INCREMENTAL_PREFIX",
    "RECOVERY_VERIFY",
    "RECOVERY_LOCK_PATH",
    "BACKUP_RETENTION_DAYS",
    "RETENTION_MAX_CONCURRENT",
    "LOG_LEVEL",
    "LOG_FORMAT",
]


class TestServiceConfig:
    """Tests for loading configuration from the environment."""

    @pytest.fixture(autouse=True)
    def clean_env(self, monkeypatch):
        for name in ENV_VARS:
            monkeypatch.delenv(name, raising=False)

    def test_defaults(self):
        config = ServiceConfig.from_env()

        assert config.s3.bucket == "restorekit-backups"
        assert config.s3.region == "us-east-1"
        assert config.s3.backup_prefix == "backups"
        assert config.storage.wal_mode is True
        assert config.recovery.tables == ()
        assert config.recovery.incremental_prefix == "audit_"
        assert config.recovery.verify is True
        assert config.recovery.lock_path is None
        assert config.retention.retention_days == 7
        assert config.observability.log_format == "text"

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("S3_BUCKET", "prod-backups")
        monkeypatch.setenv("AWS_REGION", "eu-west-1")
        monkeypatch.setenv("S3_ENDPOINT", "http://minio:9000")
        monkeypatch.setenv("DATABASE_PATH", "/data/app.db")
        monkeypatch.setenv("SQLITE_WAL_MODE", "false")
        monkeypatch.setenv("RECOVERY_TABLES", "items, users:text,,")
        monkeypatch.setenv("RECOVERY_VERIFY", "false")
        monkeypatch.setenv("RECOVERY_LOCK_PATH", "/run/restorekit.lock")
        monkeypatch.setenv("BACKUP_RETENTION_DAYS", "30")
        monkeypatch.setenv("LOG_FORMAT", "json")

        config = ServiceConfig.from_env()

        assert config.s3.bucket == "prod-backups"
        assert config.s3.region == "eu-west-1"
        assert config.s3.endpoint_url == "http://minio:9000"
        assert config.storage.database_path == "/data/app.db"
        assert config.storage.wal_mode is False
        assert config.recovery.tables == ("items", "users:text")
        assert config.recovery.verify is False
        assert config.recovery.lock_path == "/run/restorekit.lock"
        assert config.retention.retention_days == 30
        assert config.observability.log_format == "json"

    def test_s3_region_takes_precedence(self, monkeypatch):
        monkeypatch.setenv("AWS_REGION", "eu-west-1")
        monkeypatch.setenv("S3_REGION", "ap-south-1")
        assert S3Config.from_env().region == "ap-south-1"

    def test_invalid_integer(self, monkeypatch):
        monkeypatch.setenv("BACKUP_RETENTION_DAYS", "a week")
        with pytest.raises(ConfigError, match="BACKUP_RETENTION_DAYS"):
            ServiceConfig.from_env()

    def test_invalid_float(self, monkeypatch):
        monkeypatch.setenv("S3_OPERATION_TIMEOUT_SECONDS", "soon")
        with pytest.raises(ConfigError):
            ServiceConfig.from_env()

    def test_config_error_is_value_error(self, monkeypatch):
        monkeypatch.setenv("LOG_FORMAT", "xml")
        with pytest.raises(ValueError):
            ServiceConfig.from_env()

    @pytest.mark.parametrize(
        "config",
        [
            ServiceConfig(s3=S3Config(bucket="")),
            ServiceConfig(s3=S3Config(operation_timeout_seconds=0)),
            ServiceConfig(storage=StorageConfig(database_path="")),
            ServiceConfig(recovery=RecoveryConfig(incremental_prefix="")),
            ServiceConfig(retention=RetentionConfig(retention_days=-1)),
            ServiceConfig(retention=RetentionConfig(max_concurrent=0)),
        ],
    )
    def test_validate_rejects(self, config):
        with pytest.raises(ConfigError):
            config.validate()

    def test_log_config_redacts_secrets(self, monkeypatch, caplog):
        monkeypatch.setenv("AWS_ACCESS_KEY_ID", "AKIAEXAMPLE")
        monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", "very-secret")
        config = ServiceConfig.from_env()

        with caplog.at_level(logging.INFO):
            config.log_config()

        [record] = [r for r in caplog.records if r.getMessage() == "Configuration loaded"]
        assert record.s3_credentials == "explicit"
        assert "very-secret" not in str(record.__dict__)
        assert "AKIAEXAMPLE" not in str(record.__dict__)
