# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
DBU Retention - Deletes artifacts that fall outside the retention policy.

Artifacts are walked newest first. An artifact survives if any rule
keeps it:

- keep_last: it is among the keep_last newest
- keep_days: it was modified within the last keep_days days
- max_bytes: the remaining total size is within max_bytes

Otherwise the artifact and its manifest are deleted and its size leaves
the running total. A rule set to 0 never keeps anything.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta, UTC
from typing import List

import structlog

from dbu.config import RetentionPolicy
from dbu.keys import manifest_key
from dbu.storage.base import ObjectInfo, Storage

logger = structlog.get_logger()


@dataclass
class RetentionResult:
    """Outcome of one retention pass."""

    deleted_keys: List[str] = field(default_factory=list)
    kept_keys: List[str] = field(default_factory=list)
    bytes_freed: int = 0
    errors: List[str] = field(default_factory=list)


def sort_newest_first(objects: List[ObjectInfo]) -> List[ObjectInfo]:
    """Order artifacts by modified time, newest first; ties by key, descending."""
    return sorted(objects, key=lambda o: (o.modified, o.key), reverse=True)


def select_expired(
    objects: List[ObjectInfo],
    policy: RetentionPolicy,
    now: datetime | None = None,
) -> List[ObjectInfo]:
    """
    Decide which artifacts the policy deletes.

    Pure: nothing is deleted here. Manifests in objects are ignored.

    Args:
        objects: Listing of one database prefix
        policy: Retention policy
        now: Reference time (defaults to the current UTC time)

    Returns:
        Artifacts to delete, newest first
    """
    if policy.is_empty:
        return []

    now = now or datetime.now(UTC)
    cutoff = now - timedelta(days=policy.keep_days)
    backups = sort_newest_first([o for o in objects if not o.is_manifest])
    total = sum(o.size for o in backups)

    expired: List[ObjectInfo] = []
    for i, obj in enumerate(backups):
        if policy.keep_last > 0 and i < policy.keep_last:
            continue
        if policy.keep_days > 0 and obj.modified > cutoff:
            continue
        if policy.max_bytes > 0 and total <= policy.max_bytes:
            continue
        expired.append(obj)
        total -= obj.size

    return expired


async def apply_retention(
    storage: Storage,
    prefix: str,
    policy: RetentionPolicy,
    now: datetime | None = None,
) -> RetentionResult:
    """
    Enforce policy on every artifact under prefix.

    Per-object delete failures are logged and collected in the result;
    the pass continues with the next artifact. Listing failures raise.

    Args:
        storage: Storage backend
        prefix: Listing prefix of one database
        policy: Retention policy
        now: Reference time

    Returns:
        RetentionResult describing what was deleted
    """
    result = RetentionResult()
    if policy.is_empty:
        return result

    objects = await storage.list(prefix)
    expired = select_expired(objects, policy, now)
    expired_keys = {o.key for o in expired}
    result.kept_keys = [o.key for o in objects if not o.is_manifest and o.key not in expired_keys]

    for obj in expired:
        try:
            await storage.delete(obj.key)
            result.deleted_keys.append(obj.key)
            result.bytes_freed += obj.size
        except Exception as e:
            result.errors.append(f"{obj.key}: {e}")
            logger.warning("retention_delete_failed", key=obj.key, error=str(e))
            continue

        try:
            await storage.delete(manifest_key(obj.key))
        except Exception as e:
            logger.debug("retention_manifest_delete_failed", key=obj.key, error=str(e))

    logger.info(
        "retention_applied",
        prefix=prefix,
        examined=len(objects),
        deleted=len(result.deleted_keys),
        bytes_freed=result.bytes_freed,
        errors=len(result.errors),
    )
    return result
