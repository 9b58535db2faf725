"""
Integration tests for the restorekit CLI.

The S3 store is swapped for the in-memory store; everything else
(config loading, SQLite, replay, exit codes) runs for real.
"""

import asyncio
import fcntl
import gzip
import json
import logging
from datetime import datetime, timedelta, timezone

import json_log_formatter
import pytest

from dbops.restorekit.artifacts.memory import InMemoryArtifactStore
from dbops.restorekit.config import ObservabilityConfig, ServiceConfig
from dbops.restorekit.store.registry import EntitySpec
from dbops.restorekit.store.relational_store import RelationalStore
from dbops.restorekit.tools import recover as cli

NOW = datetime.now(timezone.utc)


def snapshot_bytes(data):
    return gzip.compress(json.dumps({"version": "1.0", "data": data}).encode("utf-8"))


@pytest.fixture
def artifact_store(monkeypatch):
    store = InMemoryArtifactStore()
    monkeypatch.setattr(cli, "create_artifact_store", lambda s3_config: store)
    monkeypatch.setattr(cli, "setup_logging", lambda config, verbose=False: None)
    return store


@pytest.fixture
def database_path(tmp_path, monkeypatch):
    path = tmp_path / "data.db"
    monkeypatch.setenv("DATABASE_PATH", str(path))
    monkeypatch.setenv("RECOVERY_TABLES", "items")
    monkeypatch.setenv("RECOVERY_WORK_DIR", str(tmp_path))
    monkeypatch.setenv("SQLITE_WAL_MODE", "false")
    monkeypatch.setenv("LOG_FORMAT", "text")
    monkeypatch.delenv("BACKUP_RETENTION_DAYS", raising=False)
    monkeypatch.delenv("RECOVERY_LOCK_PATH", raising=False)
    return path


def run_cli(*argv):
    with pytest.raises(SystemExit) as exc_info:
        cli.main(list(argv))
    return exc_info.value.code


class TestRecoverCommand:
    """Tests for `restorekit recover`."""

    def test_success(self, artifact_store, database_path, capsys):
        artifact_store.put(
            "backup_1.json.gz",
            snapshot_bytes({"items": [{"id": 1, "name": "A"}]}),
            NOW - timedelta(hours=2),
        )
        artifact_store.put(
            "audit_1.jsonl",
            b'{"table": "items", "row_id": "1", "op": "UPDATE", "new": {"name": "B"}}\n',
            NOW - timedelta(hours=1),
        )

        code = run_cli("recover", "--target-time", "2026-01-05T10:00:00Z")

        out = capsys.readouterr().out
        assert code == 0
        assert "Recovery completed (done)" in out
        assert "Entries applied: 1" in out
        assert "Target time: 2026-01-05T10:00:00+00:00" in out

        store = RelationalStore(database_path, [EntitySpec("items")], wal_mode=False)
        assert asyncio.run(store.handle("items").get(1)) == {"id": 1, "name": "B"}

    def test_no_snapshot(self, artifact_store, database_path, capsys):
        code = run_cli("recover", "--no-verify")

        captured = capsys.readouterr()
        assert code == 1
        assert "Recovery FAILED (fatal)" in captured.out
        assert "No full snapshot" in captured.err

    def test_invalid_target_time(self, artifact_store, database_path, capsys):
        assert run_cli("recover", "--target-time", "yesterday") == 2

    def test_missing_tables(self, artifact_store, database_path, monkeypatch, capsys):
        monkeypatch.setenv("RECOVERY_TABLES", "")

        assert run_cli("recover") == 2
        assert "RECOVERY_TABLES" in capsys.readouterr().err

    def test_invalid_config(self, artifact_store, database_path, monkeypatch, capsys):
        monkeypatch.setenv("LOG_FORMAT", "xml")

        assert run_cli("recover") == 2
        assert "LOG_FORMAT" in capsys.readouterr().err


class TestCleanupCommand:
    """Tests for `restorekit cleanup`."""

    def test_cleanup(self, artifact_store, database_path, capsys):
        artifact_store.put("backup_old.json.gz", b"", NOW - timedelta(days=40))
        artifact_store.put("backup_new.json.gz", b"", NOW - timedelta(days=10))

        code = run_cli("cleanup", "--retention-days", "30")

        assert code == 0
        assert artifact_store.names() == ["backup_new.json.gz"]
        assert "Deleted 1 artifact(s)" in capsys.readouterr().out

    def test_cleanup_uses_configured_retention(self, artifact_store, database_path, capsys):
        artifact_store.put("backup_old.json.gz", b"", NOW - timedelta(days=8))

        assert run_cli("cleanup", "--dry-run") == 0
        assert "Would delete 1 artifact(s)" in capsys.readouterr().out
        assert artifact_store.names() == ["backup_old.json.gz"]

    def test_cleanup_with_failed_deletion(self, artifact_store, database_path, capsys):
        stuck = artifact_store.put("backup_old.json.gz", b"", NOW - timedelta(days=40))
        artifact_store.fail_delete(stuck.id, RuntimeError("access denied"))

        code = run_cli("cleanup", "--retention-days", "30")

        assert code == 1
        assert "backup_old.json.gz: " in capsys.readouterr().out

    def test_cleanup_refused_while_recovery_holds_lock(
        self, artifact_store, database_path, capsys
    ):
        artifact_store.put("backup_old.json.gz", b"", NOW - timedelta(days=40))
        lock_path = database_path.with_name("data.db.lock")

        with open(lock_path, "a+") as held:
            fcntl.flock(held, fcntl.LOCK_EX)
            held.write("recovery (pid 1)\n")
            held.flush()
            code = run_cli("cleanup", "--retention-days", "30")

        assert code == 1
        assert "recovery (pid 1) is in progress" in capsys.readouterr().err
        assert artifact_store.names() == ["backup_old.json.gz"]


class TestRestoreCommand:
    """Tests for `restorekit restore`."""

    @pytest.fixture
    def two_tables(self, database_path, monkeypatch):
        monkeypatch.setenv("RECOVERY_TABLES", "items,users")
        store = RelationalStore(
            database_path, [EntitySpec("items"), EntitySpec("users")], wal_mode=False
        )
        asyncio.run(store.initialize())
        asyncio.run(store.handle("items").upsert(9, {"id": 9}))
        asyncio.run(store.handle("users").upsert(9, {"id": 9}))
        return store

    def test_restore_table_subset(self, artifact_store, two_tables, capsys):
        artifact_store.put(
            "backup_1.json.gz",
            snapshot_bytes({"items": [{"id": 1}], "users": [{"id": 2}]}),
            NOW - timedelta(hours=1),
        )

        code = run_cli("restore", "--tables", "users")

        out = capsys.readouterr().out
        assert code == 0
        assert "Restored snapshot backup_1.json.gz" in out
        assert "Table users: 1 rows" in out
        assert "Table items" not in out
        assert asyncio.run(two_tables.handle("users").all_rows()) == [{"id": 2}]
        assert asyncio.run(two_tables.handle("items").all_rows()) == [{"id": 9}]

    def test_restore_dry_run(self, artifact_store, database_path, capsys):
        artifact_store.put(
            "backup_1.json.gz",
            snapshot_bytes({"items": [{"id": 1}, {"id": 2}]}),
            NOW - timedelta(hours=1),
        )

        code = run_cli("restore", "--dry-run")

        out = capsys.readouterr().out
        assert code == 0
        assert "Would restore snapshot backup_1.json.gz" in out
        assert "Table items: 2 rows" in out
        assert not database_path.exists()

    def test_restore_named_snapshot(self, artifact_store, database_path, capsys):
        artifact_store.put(
            "backup_old.json.gz", snapshot_bytes({"items": [{"id": 1}]}), NOW - timedelta(days=2)
        )
        artifact_store.put(
            "backup_new.json.gz", snapshot_bytes({"items": []}), NOW - timedelta(days=1)
        )

        assert run_cli("restore", "--snapshot", "backup_old.json.gz") == 0

        store = RelationalStore(database_path, [EntitySpec("items")], wal_mode=False)
        assert asyncio.run(store.handle("items").count()) == 1

    def test_restore_missing_snapshot(self, artifact_store, database_path, capsys):
        artifact_store.put("audit_1.jsonl", b"", NOW)

        assert run_cli("restore", "--snapshot", "audit_1.jsonl") == 1
        assert "Snapshot not found: audit_1.jsonl" in capsys.readouterr().err

    def test_restore_unknown_table(self, artifact_store, database_path, capsys):
        assert run_cli("restore", "--tables", "orders") == 2
        assert "orders" in capsys.readouterr().err


class TestTablesCommand:
    """Tests for `restorekit tables`."""

    def test_lists_snapshot_header(self, artifact_store, database_path, monkeypatch, capsys):
        monkeypatch.setenv("RECOVERY_TABLES", "")
        document = {"version": "1.0", "tables": ["items", "users"], "data": {}}
        artifact_store.put(
            "backup_1.json.gz",
            gzip.compress(json.dumps(document).encode("utf-8")),
            NOW - timedelta(hours=1),
        )

        assert run_cli("tables") == 0

        out = capsys.readouterr().out
        assert "Snapshot: backup_1.json.gz" in out
        assert "  items\n  users\n" in out

    def test_no_snapshot(self, artifact_store, database_path, capsys):
        assert run_cli("tables") == 1
        assert "No full snapshot found" in capsys.readouterr().err


class TestListCommand:
    """Tests for `restorekit list`."""

    def test_list(self, artifact_store, database_path, capsys):
        artifact_store.put("backup_1.json.gz", b"", NOW - timedelta(hours=2))
        artifact_store.put("audit_1.jsonl", b"", NOW - timedelta(hours=1))

        assert run_cli("list") == 0

        out = capsys.readouterr().out
        assert "Snapshot: backup_1.json.gz" in out
        assert "Change logs: 1" in out

    def test_list_empty(self, artifact_store, database_path, capsys):
        assert run_cli("list") == 1
        assert "No full snapshot found" in capsys.readouterr().out


class TestSetupLogging:
    """Tests for setup_logging."""

    @pytest.fixture(autouse=True)
    def restore_root_logger(self):
        root = logging.getLogger()
        handlers, level = root.handlers[:], root.level
        yield
        root.handlers = handlers
        root.setLevel(level)

    def test_json_format(self):
        config = ServiceConfig(observability=ObservabilityConfig(log_format="json"))

        cli.setup_logging(config)

        [handler] = logging.getLogger().handlers
        assert isinstance(handler.formatter, json_log_formatter.JSONFormatter)
        assert logging.getLogger("botocore").level == logging.WARNING

    def test_verbose_forces_debug(self):
        cli.setup_logging(ServiceConfig(), verbose=True)
        assert logging.getLogger().level == logging.DEBUG
