# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
DBU Manifest - Metadata record stored next to each artifact.

A manifest is written once, after its artifact is persisted and sized.
Writing is best effort (a failure is logged, never raised) and reading
is tolerant: a missing or corrupt manifest yields Manifest.empty().
"""

import json
from dataclasses import dataclass, field
from datetime import datetime, UTC
from typing import Any, Dict, List

import structlog
from ulid import ULID

from dbu.keys import manifest_key
from dbu.storage.base import Storage
from dbu.transforms.base import BytesReader, read_exact

logger = structlog.get_logger()

# Manifests are small; anything larger is treated as corrupt
MAX_MANIFEST_BYTES = 1024 * 1024

MANIFEST_METADATA = {"dbu-manifest": "true"}


@dataclass(frozen=True)
class Manifest:
    """Immutable description of one artifact."""

    id: str
    key: str
    database_type: str
    database: str
    backup_type: str
    compression: str
    encryption: bool
    created_at: datetime | None
    size_bytes: int
    tables: List[str] = field(default_factory=list)
    collections: List[str] = field(default_factory=list)
    tool_version: str = ""

    @classmethod
    def empty(cls) -> "Manifest":
        return cls(
            id="",
            key="",
            database_type="",
            database="",
            backup_type="",
            compression="",
            encryption=False,
            created_at=None,
            size_bytes=0,
        )

    @property
    def is_empty(self) -> bool:
        return not self.key

    def to_dict(self) -> Dict[str, Any]:
        """Canonical field order; empty tables/collections are omitted."""
        data: Dict[str, Any] = {
            "id": self.id,
            "key": self.key,
            "database_type": self.database_type,
            "database": self.database,
            "backup_type": self.backup_type,
            "compression": self.compression,
            "encryption": self.encryption,
            "created_at": _format_time(self.created_at),
            "size_bytes": self.size_bytes,
        }
        if self.tables:
            data["tables"] = list(self.tables)
        if self.collections:
            data["collections"] = list(self.collections)
        data["tool_version"] = self.tool_version
        return data

    def to_json(self) -> bytes:
        return json.dumps(self.to_dict(), indent=2).encode("utf-8")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Manifest":
        encryption = data.get("encryption", False)
        if not isinstance(encryption, bool):
            raise ValueError(f"manifest encryption must be a boolean, got {encryption!r}")
        return cls(
            id=str(data.get("id", "")),
            key=str(data.get("key", "")),
            database_type=str(data.get("database_type", "")),
            database=str(data.get("database", "")),
            backup_type=str(data.get("backup_type", "")),
            compression=str(data.get("compression", "")),
            encryption=encryption,
            created_at=_parse_time(data.get("created_at")),
            size_bytes=int(data.get("size_bytes", 0)),
            tables=[str(t) for t in data.get("tables") or []],
            collections=[str(c) for c in data.get("collections") or []],
            tool_version=str(data.get("tool_version", "")),
        )


def _format_time(value: datetime | None) -> str:
    if value is None:
        return ""
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).isoformat().replace("+00:00", "Z")


def _parse_time(value: Any) -> datetime | None:
    if not value:
        return None
    parsed = datetime.fromisoformat(str(value))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def build_manifest(
    key: str,
    database_type: str,
    database: str,
    backup_type: str,
    compression: str,
    encryption: bool,
    created_at: datetime,
    size_bytes: int,
    tables: List[str] | None = None,
    collections: List[str] | None = None,
    tool_version: str = "",
    manifest_id: str | None = None,
) -> Manifest:
    """
    Build the manifest for a persisted artifact.

    Pure apart from id generation; pass manifest_id for a fixed id.

    Returns:
        Manifest with a fresh ULID id unless one was given
    """
    return Manifest(
        id=manifest_id or str(ULID()),
        key=key,
        database_type=database_type,
        database=database,
        backup_type=backup_type,
        compression=compression,
        encryption=encryption,
        created_at=created_at,
        size_bytes=size_bytes,
        tables=list(tables or []),
        collections=list(collections or []),
        tool_version=tool_version,
    )


class ManifestStore:
    """Reads and writes manifests next to their artifacts."""

    def __init__(self, storage: Storage) -> None:
        self.storage = storage

    async def store(self, manifest: Manifest) -> bool:
        """
        Write manifest to "<artifact key>.manifest.json".

        Returns:
            True on success; False after logging the failure
        """
        payload = manifest.to_json()
        key = manifest_key(manifest.key)
        try:
            await self.storage.put(
                key,
                BytesReader(payload),
                size_hint=len(payload),
                metadata=MANIFEST_METADATA,
            )
        except Exception as e:
            logger.warning("manifest_write_failed", key=key, error=str(e))
            return False

        logger.debug("manifest_written", key=key, manifest_id=manifest.id)
        return True

    async def load(self, key: str) -> Manifest:
        """
        Read the manifest of the artifact at key.

        Returns:
            The manifest, or Manifest.empty() when it is missing or unreadable
        """
        mkey = manifest_key(key)
        try:
            body = await self.storage.get(mkey)
            try:
                payload = await read_exact(body, MAX_MANIFEST_BYTES + 1)
            finally:
                await body.aclose()
            if len(payload) > MAX_MANIFEST_BYTES:
                raise ValueError("manifest too large")
            data = json.loads(payload)
            if not isinstance(data, dict):
                raise ValueError("manifest is not a JSON object")
            return Manifest.from_dict(data)
        except Exception as e:
            logger.warning("manifest_unavailable", key=mkey, error=str(e))
            return Manifest.empty()
