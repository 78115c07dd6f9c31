# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
DBU Run Lock - Host-wide mutual exclusion between backup and restore runs.

A single non-blocking attempt at an exclusive advisory lock on a file.
Contention is reported immediately; the caller never waits.
"""

import fcntl
import os
from pathlib import Path

import structlog

from dbu.config import DEFAULT_LOCK_FILE
from dbu.exceptions import AlreadyLockedError, PreconditionError

logger = structlog.get_logger()


class RunLock:
    """Held advisory lock; release() is idempotent."""

    def __init__(self, path: str, fd: int) -> None:
        self.path = path
        self._fd: int | None = fd

    @property
    def held(self) -> bool:
        return self._fd is not None

    def release(self) -> None:
        if self._fd is None:
            return
        fd, self._fd = self._fd, None
        try:
            fcntl.flock(fd, fcntl.LOCK_UN)
        finally:
            os.close(fd)
        logger.debug("run_lock_released", path=self.path)

    def __enter__(self) -> "RunLock":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()


def acquire_lock(path: str = "") -> RunLock:
    """
    Try once to take the run lock.

    Args:
        path: Lock file path; defaults to <tempdir>/dbu.lock. The file
            and its parent directory are created when absent.

    Returns:
        The held RunLock

    Raises:
        AlreadyLockedError: If another run holds the lock
        PreconditionError: If the lock file cannot be opened
    """
    path = path or DEFAULT_LOCK_FILE
    try:
        Path(path).parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(path, os.O_RDWR | os.O_CREAT, 0o600)
    except OSError as e:
        raise PreconditionError(f"Cannot open lock file: {e}", details={"path": path}) from e

    try:
        fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
    except BlockingIOError as e:
        os.close(fd)
        raise AlreadyLockedError(
            f"Another backup/restore is already running (lock: {path})",
            details={"path": path},
        ) from e
    except OSError as e:
        os.close(fd)
        raise PreconditionError(f"Cannot lock {path}: {e}", details={"path": path}) from e

    logger.debug("run_lock_acquired", path=path)
    return RunLock(path, fd)


def release_lock(lock: RunLock | None) -> None:
    """Release lock if it is set; None is a no-op."""
    if lock is not None:
        lock.release()
