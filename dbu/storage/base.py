# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
DBU Storage Base - Object store contract shared by every backend.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Protocol

from dbu.exceptions import ObjectNotFoundError
from dbu.transforms.base import ByteReader

MANIFEST_SUFFIX = ".manifest.json"


@dataclass
class ObjectInfo:
    """Metadata of a stored object."""

    key: str
    size: int
    modified: datetime  # UTC, timezone-aware
    etag: str | None = None
    metadata: Dict[str, str] = field(default_factory=dict)

    @property
    def is_manifest(self) -> bool:
        return self.key.endswith(MANIFEST_SUFFIX)


class ObjectReader(Protocol):
    """Readable object body; aclose() releases the underlying handle."""

    async def read(self, size: int = -1) -> bytes: ...

    async def aclose(self) -> None: ...


class Storage(ABC):
    """
    Content-addressable object store.

    Keys are "/"-separated strings. Missing objects raise
    ObjectNotFoundError; other failures raise StorageError.
    """

    name: str = ""

    @abstractmethod
    async def put(
        self,
        key: str,
        reader: ByteReader,
        size_hint: int = -1,
        metadata: Dict[str, str] | None = None,
    ) -> None:
        """Store everything reader yields until end of stream under key."""

    @abstractmethod
    async def get(self, key: str) -> ObjectReader:
        """Open the object at key for reading."""

    @abstractmethod
    async def stat(self, key: str) -> ObjectInfo:
        """Return metadata of the object at key."""

    @abstractmethod
    async def list(self, prefix: str) -> List[ObjectInfo]:
        """List objects whose key starts with prefix."""

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Delete the object at key."""

    async def exists(self, key: str) -> bool:
        try:
            await self.stat(key)
        except ObjectNotFoundError:
            return False
        return True

    async def aclose(self) -> None:
        """Release backend resources."""
