# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
DBU SQLite Adapter - Backs up the database file itself.

No external tools are needed. Restore refuses to overwrite an existing
file unless drop_existing is set, and fsyncs before reporting success.
"""

import os
from pathlib import Path

import aiofiles
import structlog

from dbu.adapters.base import Adapter, Capabilities
from dbu.config import BackupConfig, DatabaseConfig, RestoreConfig
from dbu.exceptions import AdapterError
from dbu.manifest import Manifest

logger = structlog.get_logger()


class FileDumpStream:
    """Reads a database file."""

    def __init__(self, handle) -> None:
        self._handle = handle
        self._closed = False

    async def read(self, size: int = -1) -> bytes:
        return await self._handle.read(size)

    async def wait(self) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if not self._closed:
            self._closed = True
            await self._handle.close()


class FileRestoreStream:
    """Writes a database file; close() flushes it to disk."""

    def __init__(self, handle, path: str) -> None:
        self._handle = handle
        self.path = path
        self._closed = False

    async def write(self, data: bytes) -> None:
        await self._handle.write(data)

    async def close(self) -> None:
        if self._closed:
            return
        await self._handle.flush()
        os.fsync(self._handle.fileno())
        await self.aclose()

    async def wait(self) -> None:
        """Completion is reached once close() has synced the file."""
        if not self._closed:
            raise AdapterError("SQLite restore ended before all data was written", details={"path": self.path})

    async def aclose(self) -> None:
        if not self._closed:
            self._closed = True
            await self._handle.close()


def _require_path(db: DatabaseConfig) -> str:
    if not db.sqlite_path:
        raise AdapterError("sqlite_path is required")
    return db.sqlite_path


class SQLiteAdapter(Adapter):
    """SQLite database files."""

    name = "sqlite"

    def capabilities(self) -> Capabilities:
        return Capabilities()

    async def validate(self, db: DatabaseConfig) -> None:
        path = _require_path(db)
        # A restore may target a file that does not exist yet
        if not Path(path).exists() and not Path(path).parent.is_dir():
            raise AdapterError(f"SQLite database not found: {path}", details={"path": path})

    async def dump(self, db: DatabaseConfig, backup: BackupConfig):
        path = _require_path(db)
        self._require_full(backup)
        try:
            handle = await aiofiles.open(path, "rb")
        except OSError as e:
            raise AdapterError(f"Cannot open SQLite database: {e}", details={"path": path}) from e
        logger.info("sqlite_dump_started", path=path)
        return FileDumpStream(handle)

    async def restore(self, db: DatabaseConfig, restore: RestoreConfig, manifest: Manifest):
        path = _require_path(db)
        if not restore.drop_existing and Path(path).exists():
            raise AdapterError(
                "SQLite file already exists; enable drop_existing to overwrite",
                details={"path": path},
            )
        try:
            Path(path).parent.mkdir(parents=True, exist_ok=True)
            fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
            handle = await aiofiles.open(fd, "wb")
        except OSError as e:
            raise AdapterError(f"Cannot open SQLite database for restore: {e}", details={"path": path}) from e
        logger.info("sqlite_restore_started", path=path)
        return FileRestoreStream(handle, path)
