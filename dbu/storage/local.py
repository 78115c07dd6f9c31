# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
DBU Local Storage - Artifacts as files below a root directory.

Objects are written to "<path>.part" and renamed into place only after
the stream completed, so a failed transfer never leaves a visible
partial artifact.
"""

import os
from datetime import datetime, UTC
from pathlib import Path
from typing import Dict, List

import aiofiles
import structlog

from dbu.exceptions import ObjectNotFoundError, StorageError
from dbu.storage.base import ObjectInfo, Storage
from dbu.transforms.base import CHUNK_SIZE, ByteReader

logger = structlog.get_logger()

PART_SUFFIX = ".part"


class _FileReader:
    def __init__(self, handle) -> None:
        self._handle = handle

    async def read(self, size: int = -1) -> bytes:
        return await self._handle.read(size)

    async def aclose(self) -> None:
        await self._handle.close()


class LocalStorage(Storage):
    """Filesystem backend rooted at a directory."""

    name = "local"

    def __init__(self, root: str | Path) -> None:
        self.root = Path(root)

    def _path(self, key: str) -> Path:
        parts = [p for p in key.split("/") if p]
        if not parts or any(p in (".", "..") for p in parts):
            raise StorageError(f"Invalid object key: {key!r}", details={"key": key})
        return self.root.joinpath(*parts)

    def _key(self, path: Path) -> str:
        return path.relative_to(self.root).as_posix()

    async def put(
        self,
        key: str,
        reader: ByteReader,
        size_hint: int = -1,
        metadata: Dict[str, str] | None = None,
    ) -> None:
        path = self._path(key)
        temp_path = path.with_name(path.name + PART_SUFFIX)
        written = 0

        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            async with aiofiles.open(temp_path, "wb") as f:
                while True:
                    chunk = await reader.read(CHUNK_SIZE)
                    if not chunk:
                        break
                    await f.write(chunk)
                    written += len(chunk)
                await f.flush()
                os.fsync(f.fileno())
            os.replace(temp_path, path)
        except OSError as e:
            temp_path.unlink(missing_ok=True)
            raise StorageError(
                f"Failed to write object: {e}",
                details={"key": key, "path": str(path)},
            ) from e
        except BaseException:
            temp_path.unlink(missing_ok=True)
            raise

        logger.debug("object_written", key=key, path=str(path), size=written)

    async def get(self, key: str):
        path = self._path(key)
        try:
            handle = await aiofiles.open(path, "rb")
        except FileNotFoundError as e:
            raise ObjectNotFoundError(f"Object not found: {key}", details={"key": key}) from e
        except OSError as e:
            raise StorageError(f"Failed to open object: {e}", details={"key": key}) from e
        return _FileReader(handle)

    async def stat(self, key: str) -> ObjectInfo:
        path = self._path(key)
        try:
            st = path.stat()
        except FileNotFoundError as e:
            raise ObjectNotFoundError(f"Object not found: {key}", details={"key": key}) from e
        except OSError as e:
            raise StorageError(f"Failed to stat object: {e}", details={"key": key}) from e
        return ObjectInfo(
            key=key,
            size=st.st_size,
            modified=datetime.fromtimestamp(st.st_mtime, UTC),
        )

    async def list(self, prefix: str) -> List[ObjectInfo]:
        if not self.root.exists():
            return []

        objects: List[ObjectInfo] = []
        for dirpath, _dirnames, filenames in os.walk(self.root):
            for filename in filenames:
                if filename.endswith(PART_SUFFIX):
                    continue
                path = Path(dirpath) / filename
                key = self._key(path)
                if not key.startswith(prefix):
                    continue
                try:
                    st = path.stat()
                except FileNotFoundError:
                    # Removed while listing
                    continue
                objects.append(
                    ObjectInfo(
                        key=key,
                        size=st.st_size,
                        modified=datetime.fromtimestamp(st.st_mtime, UTC),
                    )
                )

        objects.sort(key=lambda o: o.key)
        return objects

    async def delete(self, key: str) -> None:
        path = self._path(key)
        try:
            path.unlink()
        except FileNotFoundError as e:
            raise ObjectNotFoundError(f"Object not found: {key}", details={"key": key}) from e
        except OSError as e:
            raise StorageError(f"Failed to delete object: {e}", details={"key": key}) from e
        logger.debug("object_deleted", key=key)
