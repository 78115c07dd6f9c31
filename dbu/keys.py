# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
DBU Keys - Deterministic, time-ordered artifact keys.

Layout:

    [prefix/]db-type/db-name/YYYYMMDDThhmmssZ_backup-type.extension

The timestamp is fixed-width UTC, so keys of one database sort
chronologically as plain strings.
"""

from datetime import datetime, UTC
from typing import Tuple

from dbu.config import Compression
from dbu.storage.base import MANIFEST_SUFFIX

TIMESTAMP_FORMAT = "%Y%m%dT%H%M%SZ"
BASE_EXTENSION = "backup"

_COMPRESSION_EXTENSIONS = {
    Compression.GZIP: "gz",
    Compression.ZSTD: "zst",
}
_ENCRYPTION_EXTENSION = "enc"


def build_prefix(prefix: str, db_type: str, db_name: str) -> str:
    """
    Build the listing prefix for one database.

    Empty parts are skipped and slashes around prefix are trimmed.

    Example:
        build_prefix("/prod/", "postgres", "app") -> "prod/postgres/app"
    """
    parts = [prefix.strip("/"), db_type, db_name]
    return "/".join(p for p in parts if p)


def format_timestamp(when: datetime) -> str:
    """Render when in the fixed-width UTC form used inside keys."""
    if when.tzinfo is None:
        when = when.replace(tzinfo=UTC)
    return when.astimezone(UTC).strftime(TIMESTAMP_FORMAT)


def build_object_key(
    prefix: str,
    db_type: str,
    db_name: str,
    backup_type: str,
    when: datetime,
    extension: str,
) -> str:
    """
    Build the key of a new artifact.

    Pure and unvalidated: the same arguments always give the same key,
    and the result always starts with build_prefix(prefix, db_type, db_name).

    Args:
        prefix: Optional storage prefix
        db_type: Database type (postgres, mysql, ...)
        db_name: Database name
        backup_type: full, incremental or differential
        when: Backup start time (naive values are taken as UTC)
        extension: Artifact extension, e.g. "backup.zst.enc"

    Returns:
        Object key
    """
    filename = f"{format_timestamp(when)}_{backup_type}"
    extension = extension.lstrip(".")
    if extension:
        filename = f"{filename}.{extension}"

    base = build_prefix(prefix, db_type, db_name)
    return f"{base}/{filename}" if base else filename


def build_extension(compression: str | Compression, encryption: bool) -> str:
    """
    Build the extension encoding the transforms applied to an artifact.

    Example:
        build_extension("zstd", True) -> "backup.zst.enc"
    """
    parts = [BASE_EXTENSION]
    suffix = _COMPRESSION_EXTENSIONS.get(Compression(compression or "none"))
    if suffix:
        parts.append(suffix)
    if encryption:
        parts.append(_ENCRYPTION_EXTENSION)
    return ".".join(parts)


def parse_extension(key: str) -> Tuple[Compression, bool]:
    """
    Recover (compression, encrypted) from an artifact key's extension.

    Used only when neither a manifest nor the caller says how an
    artifact was written.
    """
    suffixes = key.rsplit("/", 1)[-1].split(".")[1:]
    encrypted = bool(suffixes) and suffixes[-1] == _ENCRYPTION_EXTENSION
    if encrypted:
        suffixes = suffixes[:-1]

    compression = Compression.NONE
    if suffixes:
        for algorithm, ext in _COMPRESSION_EXTENSIONS.items():
            if suffixes[-1] == ext:
                compression = algorithm
    return compression, encrypted


def manifest_key(key: str) -> str:
    """Key of the manifest sitting next to an artifact."""
    return key + MANIFEST_SUFFIX


def is_manifest_key(key: str) -> bool:
    return key.endswith(MANIFEST_SUFFIX)
