"""
restorekit command-line tool.

Subcommands:
    recover  Restore the latest snapshot and replay newer change logs
    restore  Load one snapshot (optionally a table subset) without replay
    tables   Show the tables listed in a snapshot header
    cleanup  Delete backup artifacts older than the retention window
    list     Show the snapshot and change logs a recovery would use

Usage:
    restorekit recover [--target-time ISO] [--no-verify] [-v]
    restorekit restore [--snapshot NAME] [--tables a,b] [--dry-run]
    restorekit tables [--snapshot NAME]
    restorekit cleanup [--retention-days N] [--dry-run]
    restorekit list

All connection settings come from the environment (see config.py).

Exit codes:
    0  Success
    1  Recovery aborted, another maintenance run holds the lock, or at
       least one cleanup deletion failed
    2  Invalid arguments or configuration

Invariants:
    - The recovery report is always printed, also when the run aborted
    - Fatal reasons go to stderr
"""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import logging
import sys
import tempfile
from datetime import datetime, timezone
from pathlib import Path

import json_log_formatter

from ..artifacts.base import Artifact, ArtifactStore, create_artifact_store
from ..artifacts.classifier import build_plan, select_snapshot
from ..artifacts.retention import CleanupResult, RetentionCleaner
from ..config import ServiceConfig
from ..errors import ConfigError, NoSnapshotError, RestoreKitError, UnknownTableError
from ..lock import MaintenanceLock
from ..recovery.orchestrator import RecoveryOrchestrator, RecoveryResult
from ..restore.snapshot_restorer import SnapshotRestorer, inspect_snapshot
from ..store.relational_store import RelationalStore, SnapshotInfo

logger = logging.getLogger(__name__)


def setup_logging(config: ServiceConfig, verbose: bool = False) -> None:
    """Configure logging based on configuration.

    Args:
        config: Service configuration
        verbose: Force DEBUG level
    """
    level = getattr(logging, config.observability.log_level.upper(), logging.INFO)
    if verbose:
        level = logging.DEBUG

    if config.observability.log_format == "json":
        formatter = json_log_formatter.JSONFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers = [handler]

    # Reduce noise from libraries
    logging.getLogger("botocore").setLevel(logging.WARNING)
    logging.getLogger("aiobotocore").setLevel(logging.WARNING)


def parse_target_time(raw: str) -> datetime:
    """Parse an ISO-8601 timestamp; naive values are taken as UTC."""
    try:
        value = datetime.fromisoformat(raw.strip().replace("Z", "+00:00"))
    except ValueError:
        raise argparse.ArgumentTypeError(f"Invalid ISO-8601 time: {raw!r}")
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


def parse_table_list(raw: str) -> list[str]:
    tables = [t.strip() for t in raw.split(",") if t.strip()]
    if not tables:
        raise argparse.ArgumentTypeError("Expected at least one table name")
    return tables


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="restorekit",
        description="Recover a database from backup snapshots and change logs",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Verbose output")
    subparsers = parser.add_subparsers(dest="command", required=True)

    recover = subparsers.add_parser("recover", help="Restore snapshot and replay change logs")
    recover.add_argument(
        "--target-time",
        type=parse_target_time,
        help="Requested recovery point (ISO-8601, informational)",
    )
    recover.add_argument("--no-verify", action="store_true", help="Skip integrity check")
    recover.add_argument(
        "-v", "--verbose", action="store_true", default=argparse.SUPPRESS, help="Verbose output"
    )

    restore = subparsers.add_parser("restore", help="Load one snapshot without change logs")
    restore.add_argument("--snapshot", help="Snapshot name (default: latest)")
    restore.add_argument(
        "--tables",
        type=parse_table_list,
        help="Comma-separated tables to restore (default: all of RECOVERY_TABLES)",
    )
    restore.add_argument("--dry-run", action="store_true", help="Validate and count rows only")

    tables = subparsers.add_parser("tables", help="List the tables in a snapshot")
    tables.add_argument("--snapshot", help="Snapshot name (default: latest)")

    cleanup = subparsers.add_parser("cleanup", help="Delete artifacts past retention")
    cleanup.add_argument(
        "--retention-days",
        type=int,
        help="Retention window in days (default: BACKUP_RETENTION_DAYS)",
    )
    cleanup.add_argument("--dry-run", action="store_true", help="List without deleting")

    subparsers.add_parser("list", help="Show the recovery plan")
    return parser


def print_recovery_report(result: RecoveryResult) -> None:
    """Print the final recovery report to stdout."""
    print(f"Recovery {'completed' if result.success else 'FAILED'} ({result.state.value})")
    print(f"  Snapshot: {result.snapshot_name or 'none'}")
    print(f"  Snapshot restored: {'yes' if result.snapshot_restored else 'no'}")
    print(f"  Change logs applied: {result.files_applied}/{result.files_total}")
    print(f"  Entries applied: {result.applied_count} ({result.absent_count} on absent rows)")
    print(f"  Entries skipped: {result.skipped_count}")
    if result.target_time:
        print(f"  Target time: {result.target_time.isoformat()}")
    for table, rows in sorted(result.table_stats.items()):
        print(f"  Table {table}: {rows} rows")
    for error in result.errors:
        print(f"  Error: {error}")
    print(f"  Duration: {result.duration_ms}ms")


def print_restore_report(snapshot: Artifact, info: SnapshotInfo) -> None:
    print(f"{'Would restore' if info.dry_run else 'Restored'} snapshot {snapshot.name}")
    for table, rows in sorted(info.restored.items()):
        print(f"  Table {table}: {rows} rows")
    for table in info.skipped_tables:
        print(f"  Skipped unregistered table: {table}")


def print_cleanup_report(result: CleanupResult) -> None:
    verb = "Would delete" if result.dry_run else "Deleted"
    print(f"{verb} {len(result.deleted_names)} artifact(s) created before {result.cutoff.isoformat()}")
    for name in result.deleted_names:
        print(f"  {name}")
    for error in result.errors:
        print(f"  Error: {error}")


async def run_recover(args: argparse.Namespace, config: ServiceConfig) -> int:
    async with create_artifact_store(config.s3) as store:
        orchestrator = RecoveryOrchestrator.from_config(config, store)
        if args.no_verify:
            orchestrator.verify = False
        result = await orchestrator.recover(target_time=args.target_time)

    print_recovery_report(result)
    if not result.success:
        print(f"Recovery aborted: {result.fatal_reason}", file=sys.stderr)
        return 1
    return 0


async def run_cleanup(args: argparse.Namespace, config: ServiceConfig) -> int:
    retention_days = (
        args.retention_days if args.retention_days is not None else config.retention.retention_days
    )
    if retention_days < 0:
        raise ConfigError("--retention-days must not be negative")

    async with create_artifact_store(config.s3) as store:
        cleaner = RetentionCleaner(
            store,
            lock=MaintenanceLock.from_config(config),
            max_concurrent=config.retention.max_concurrent,
        )
        result = await cleaner.cleanup(retention_days, dry_run=args.dry_run)

    print_cleanup_report(result)
    return 0 if result.success else 1


async def run_list(args: argparse.Namespace, config: ServiceConfig) -> int:
    async with create_artifact_store(config.s3) as store:
        artifacts = await store.list()
    plan = build_plan(artifacts, config.recovery.incremental_prefix)

    if plan.is_empty:
        print("No full snapshot found")
        return 1

    print(f"Snapshot: {plan.snapshot}")
    print(f"Change logs: {len(plan.incrementals)}")
    for artifact in plan.incrementals:
        print(f"  {artifact}")
    return 0


async def _find_snapshot(store: ArtifactStore, config: ServiceConfig, name: str | None) -> Artifact:
    artifacts = await store.list()
    snapshot = select_snapshot(artifacts, name, config.recovery.incremental_prefix)
    if snapshot is None:
        raise NoSnapshotError(f"Snapshot not found: {name}" if name else "No full snapshot found")
    return snapshot


async def run_restore(args: argparse.Namespace, config: ServiceConfig) -> int:
    relational_store = RelationalStore.from_config(config.storage, config.recovery.tables)
    try:
        tables = relational_store.select_tables(args.tables)
    except UnknownTableError as e:
        raise ConfigError(f"--tables: {e.args[0]}") from e

    lock = MaintenanceLock.from_config(config)
    guard = contextlib.nullcontext() if args.dry_run else lock.hold("snapshot restore")

    async with create_artifact_store(config.s3) as store:
        async with guard:
            snapshot = await _find_snapshot(store, config, args.snapshot)
            restorer = SnapshotRestorer(
                store, relational_store, backup_existing=config.recovery.backup_existing
            )
            with tempfile.TemporaryDirectory(
                prefix="restorekit-", dir=config.recovery.work_dir
            ) as tmp:
                info = await restorer.restore(
                    snapshot, Path(tmp), tables=tables, dry_run=args.dry_run
                )

    print_restore_report(snapshot, info)
    return 0


async def run_tables(args: argparse.Namespace, config: ServiceConfig) -> int:
    async with create_artifact_store(config.s3) as store:
        snapshot = await _find_snapshot(store, config, args.snapshot)
        with tempfile.TemporaryDirectory(prefix="restorekit-", dir=config.recovery.work_dir) as tmp:
            tables = await inspect_snapshot(store, snapshot, Path(tmp))

    print(f"Snapshot: {snapshot}")
    for table in tables:
        print(f"  {table}")
    return 0


COMMANDS = {
    "recover": run_recover,
    "restore": run_restore,
    "tables": run_tables,
    "cleanup": run_cleanup,
    "list": run_list,
}


def main(argv: list[str] | None = None) -> None:
    """CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        config = ServiceConfig.from_env()
    except ConfigError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(2)

    setup_logging(config, verbose=args.verbose)
    config.log_config()

    try:
        exit_code = asyncio.run(COMMANDS[args.command](args, config))
    except ConfigError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(2)
    except RestoreKitError as e:
        logger.error(f"{args.command} failed: {e}")
        print(f"{args.command} failed: {e}", file=sys.stderr)
        sys.exit(1)

    sys.exit(exit_code)


if __name__ == "__main__":
    main()
