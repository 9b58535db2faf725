"""
Maintenance lock shared by recovery and retention cleanup.

Cleanup deletes artifacts; a recovery run that is about to select one of
them must not race with it. Both operations hold this lock for their
whole run.

With a lock file the exclusion also holds between processes: the file is
locked with flock(2), so a `restorekit cleanup` started while another
process runs `restorekit recover` sees the lock. The file contains the
name and pid of the current holder.

Invariants:
    - At most one maintenance operation runs per lock file at a time
    - Without a lock file the lock only excludes tasks of one process
    - The OS releases the file lock when the holding process dies

How to change safely:
    - Keep the asyncio lock in front of the file lock; flock(2) does not
      exclude two holders sharing one open file
    - Never block the event loop waiting for the file lock
"""

from __future__ import annotations

import asyncio
import fcntl
import logging
import os
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path
from typing import IO, TYPE_CHECKING

from .errors import RecoveryInProgressError

if TYPE_CHECKING:
    from .config import ServiceConfig

logger = logging.getLogger(__name__)

LOCK_SUFFIX = ".lock"


class MaintenanceLock:
    """Mutual exclusion between recovery and cleanup.

    Example:
        >>> lock = MaintenanceLock("/var/lib/restorekit/data.db.lock")
        >>> async with lock.hold("recovery"):
        ...     ...
    """

    def __init__(self, path: str | Path | None = None, poll_interval: float = 0.5) -> None:
        """Create a maintenance lock.

        Args:
            path: Lock file shared with other processes (process-local if None)
            poll_interval: Seconds between attempts while waiting for another process
        """
        self.path = Path(path) if path is not None else None
        self.poll_interval = poll_interval
        self._lock = asyncio.Lock()
        self._holder: str | None = None

    @classmethod
    def from_config(cls, config: ServiceConfig) -> MaintenanceLock:
        """Lock on RECOVERY_LOCK_PATH, or next to the database file."""
        path = config.recovery.lock_path or config.storage.database_path + LOCK_SUFFIX
        return cls(path)

    @property
    def holder(self) -> str | None:
        """Name of the operation holding the lock in this process, if any."""
        return self._holder

    def locked(self) -> bool:
        return self._lock.locked()

    @asynccontextmanager
    async def hold(self, operation: str, wait: bool = True) -> AsyncIterator[None]:
        """Hold the lock for the duration of an operation.

        Args:
            operation: Name recorded as the holder
            wait: Wait for the current holder instead of failing

        Raises:
            RecoveryInProgressError: If wait is False and the lock is held
        """
        if not wait and self._lock.locked():
            raise RecoveryInProgressError(
                f"Cannot start {operation}: {self._holder} is in progress"
            )

        if self._lock.locked():
            logger.info(f"Waiting for {self._holder} to finish before {operation}")

        async with self._lock:
            lock_file = await self._acquire_file(operation, wait) if self.path else None
            self._holder = operation
            try:
                yield
            finally:
                self._holder = None
                if lock_file is not None:
                    self._release_file(lock_file)

    async def _acquire_file(self, operation: str, wait: bool) -> IO[str]:
        assert self.path is not None
        self.path.parent.mkdir(parents=True, exist_ok=True)
        # "a+" so a failed attempt never truncates the holder's record
        lock_file = open(self.path, "a+", encoding="utf-8")
        waiting = False
        try:
            while True:
                try:
                    fcntl.flock(lock_file, fcntl.LOCK_EX | fcntl.LOCK_NB)
                    break
                except BlockingIOError:
                    other = _read_holder(lock_file)
                    if not wait:
                        raise RecoveryInProgressError(
                            f"Cannot start {operation}: {other} is in progress"
                        )
                    if not waiting:
                        logger.info(
                            f"Waiting for {other} to finish before {operation}",
                            extra={"lock_path": str(self.path)},
                        )
                        waiting = True
                    await asyncio.sleep(self.poll_interval)

            lock_file.seek(0)
            lock_file.truncate()
            lock_file.write(f"{operation} (pid {os.getpid()})\n")
            lock_file.flush()
        except BaseException:
            lock_file.close()
            raise

        logger.debug(f"Acquired maintenance lock {self.path} for {operation}")
        return lock_file

    @staticmethod
    def _release_file(lock_file: IO[str]) -> None:
        try:
            lock_file.seek(0)
            lock_file.truncate()
            fcntl.flock(lock_file, fcntl.LOCK_UN)
        finally:
            lock_file.close()


def _read_holder(lock_file: IO[str]) -> str:
    lock_file.seek(0)
    return lock_file.read().strip() or "another maintenance operation"
