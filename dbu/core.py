# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
DBU Core - Operation controller for backup, restore, validate, and list.

Each backup or restore:

1. takes the run lock (released on every exit path)
2. checks preconditions
3. runs the transfer pipeline
4. records the manifest and applies retention (backup only, best effort)
5. emits exactly one notification describing the outcome
"""

from dataclasses import dataclass, field
from datetime import datetime, UTC
from typing import Any, Callable, Dict, List, TypedDict

import structlog

from dbu.adapters import Adapter, create_adapter
from dbu.config import Compression, DBUConfig
from dbu.errors import (
    explain_missing_encryption_key,
    explain_outside_window,
    explain_unsupported_backup_type,
)
from dbu.exceptions import (
    AdapterError,
    ArtifactExistsError,
    BackupError,
    ConfigurationError,
    PreconditionError,
    RestoreError,
)
from dbu.keys import build_extension, build_object_key, build_prefix, parse_extension
from dbu.lock import RunLock, acquire_lock, release_lock
from dbu.manifest import Manifest, ManifestStore, build_manifest
from dbu.notify import Event, MultiNotifier, notifier_from_config, status_from_error
from dbu.retention import RetentionResult, apply_retention
from dbu.storage import ObjectInfo, Storage, create_storage
from dbu.transfer import TransferCoordinator
from dbu.transforms.chain import build_chain
from dbu.transforms.compressor import parse_compression
from dbu.transforms.crypto import parse_key
from dbu.window import in_window

logger = structlog.get_logger()

BACKUP_METADATA = {"dbu-backup": "true"}


@dataclass
class BackupResult:
    """Result of a successful backup."""

    key: str
    size_bytes: int
    bytes_in: int
    manifest: Manifest
    manifest_written: bool
    duration_seconds: float
    retention: RetentionResult | None = None


@dataclass
class RestoreResult:
    """Result of a restore (or a dry run)."""

    key: str
    dry_run: bool
    manifest: Manifest
    compression: str
    encrypted: bool
    bytes_restored: int = 0
    duration_seconds: float = 0.0
    warnings: List[str] = field(default_factory=list)


class DBUState(TypedDict):
    """Runtime state shared by operations."""

    storage: Storage
    adapter: Adapter | None  # None: created from config per operation
    notifier: MultiNotifier
    clock: Callable[[], datetime]
    tool_version: str
    last_run_at: datetime | None
    total_backups: int
    total_restores: int
    last_error: str | None


def _utcnow() -> datetime:
    return datetime.now(UTC)


def initialize_state(
    config: DBUConfig,
    storage: Storage | None = None,
    adapter: Adapter | None = None,
    notifier: MultiNotifier | None = None,
    clock: Callable[[], datetime] | None = None,
) -> DBUState:
    """
    Initialize runtime state for operations.

    Collaborators default to what the configuration describes; pass them
    explicitly to substitute alternatives.

    Args:
        config: DBU configuration
        storage: Storage backend override
        adapter: Database adapter override
        notifier: Notifier override
        clock: Time source override

    Returns:
        Initialized DBUState dictionary
    """
    from dbu import __version__

    return DBUState(
        storage=storage or create_storage(config.storage, user_agent=config.global_.user_agent),
        adapter=adapter,
        notifier=notifier or notifier_from_config(config.notifications),
        clock=clock or _utcnow,
        tool_version=__version__,
        last_run_at=None,
        total_backups=0,
        total_restores=0,
        last_error=None,
    )


def storage_prefix(config: DBUConfig) -> str:
    """Storage prefix combined with the backup output prefix."""
    parts = [config.storage.prefix.strip("/"), config.backup.output_prefix.strip("/")]
    return "/".join(p for p in parts if p)


def database_prefix(config: DBUConfig) -> str:
    """Listing prefix holding every artifact of the configured database."""
    return build_prefix(storage_prefix(config), config.database.type, config.database.name)


def _adapter(config: DBUConfig, state: DBUState) -> Adapter:
    if state["adapter"] is not None:
        return state["adapter"]
    return create_adapter(config.database.type, config.global_.allow_missing_tools)


async def _validate_adapter(adapter: Adapter, config: DBUConfig) -> None:
    try:
        await adapter.validate(config.database)
    except AdapterError as e:
        raise PreconditionError(
            f"Database validation failed: {e.message}",
            details={"adapter": adapter.name, **e.details},
        ) from e


def _encryption_key(key: str) -> bytes:
    if not key:
        raise ConfigurationError(explain_missing_encryption_key())
    return parse_key(key)


async def _notify(state: DBUState, event: Event) -> None:
    try:
        await state["notifier"].notify(event)
    except Exception as e:
        logger.warning("notification_delivery_failed", type=event.type, error=str(e))


async def run_backup(config: DBUConfig, state: DBUState) -> BackupResult:
    """
    Run one backup.

    Steps:
    1. Take the run lock
    2. Check the schedule window, adapter, backup type, and encryption key
    3. Refuse to overwrite an existing artifact when idempotent
    4. Stream the dump through compression/encryption into storage
    5. Write the manifest and apply retention (failures only logged)

    A notification is sent on every outcome.

    Args:
        config: DBU configuration
        state: Runtime state

    Returns:
        BackupResult with the artifact key and manifest

    Raises:
        AlreadyLockedError, PreconditionError, ArtifactExistsError,
        ConfigurationError, BackupError when the dump cannot start,
        or the first transfer error
    """
    started = state["clock"]()
    db = config.database
    key = ""
    error: BaseException | None = None
    lock: RunLock | None = None

    logger.info("backup_started", db_type=db.type, database=db.name, backup_type=config.backup.type.value)

    try:
        # Step 1: Lock
        lock = acquire_lock(config.global_.lock_file)

        # Step 2: Preconditions
        schedule = config.schedule
        if not in_window(started, schedule.window_start, schedule.window_end, schedule.timezone):
            raise PreconditionError(
                explain_outside_window(schedule.window_start, schedule.window_end, schedule.timezone)
            )

        adapter = _adapter(config, state)
        await _validate_adapter(adapter, config)

        if not adapter.capabilities().supports(config.backup.type):
            raise ConfigurationError(
                explain_unsupported_backup_type(adapter.name, config.backup.type.value)
            )

        raw_key = _encryption_key(config.backup.encryption_key) if config.backup.encryption else None
        chain = build_chain(config.backup.compression, config.backup.encryption, raw_key)

        extension = build_extension(config.backup.compression, config.backup.encryption)
        key = build_object_key(
            storage_prefix(config),
            db.type,
            db.name,
            config.backup.type.value,
            started,
            extension,
        )

        # Step 3: Idempotency
        storage = state["storage"]
        if config.backup.idempotent and await storage.exists(key):
            raise ArtifactExistsError(f"Backup already exists: {key}", details={"key": key})

        # Step 4: Transfer
        try:
            producer = await adapter.dump(db, config.backup)
        except AdapterError as e:
            raise BackupError(f"Cannot start backup: {e.message}", details=e.details) from e
        coordinator = TransferCoordinator(chain)
        try:
            transfer = await coordinator.upload(producer, storage, key, metadata=BACKUP_METADATA)
        finally:
            await producer.aclose()

        info = await storage.stat(key)

        # Step 5: Manifest and retention
        manifest = build_manifest(
            key=key,
            database_type=db.type,
            database=db.name,
            backup_type=config.backup.type.value,
            compression=config.backup.compression.value,
            encryption=config.backup.encryption,
            created_at=started,
            size_bytes=info.size,
            tables=config.backup.tables,
            collections=config.backup.collections,
            tool_version=state["tool_version"],
        )
        manifest_written = await ManifestStore(storage).store(manifest)

        retention: RetentionResult | None = None
        if not config.backup.retention.is_empty:
            try:
                retention = await apply_retention(
                    storage,
                    database_prefix(config) + "/",
                    config.backup.retention,
                    now=state["clock"](),
                )
            except Exception as e:
                logger.warning("retention_failed", error=str(e))

        duration = (state["clock"]() - started).total_seconds()
        state["total_backups"] += 1
        logger.info(
            "backup_completed",
            key=key,
            size=info.size,
            bytes_in=transfer.bytes_in,
            duration=duration,
        )
        return BackupResult(
            key=key,
            size_bytes=info.size,
            bytes_in=transfer.bytes_in,
            manifest=manifest,
            manifest_written=manifest_written,
            duration_seconds=duration,
            retention=retention,
        )

    except BaseException as e:
        error = e
        state["last_error"] = str(e)
        logger.error("backup_failed", key=key, error=str(e), error_type=type(e).__name__)
        raise

    finally:
        release_lock(lock)
        state["last_run_at"] = state["clock"]()
        await _notify(
            state,
            Event(
                type="backup",
                message=f"backup {db.name}",
                status=status_from_error(error),
                database=db.name,
                db_type=db.type,
                started_at=started,
                ended_at=state["clock"](),
                key=key,
                error=str(error) if error is not None else "",
            ),
        )


def resolve_restore_settings(
    key: str,
    manifest: Manifest,
    config: DBUConfig,
) -> tuple[Compression, bool]:
    """
    Decide how an artifact was written.

    Compression comes from the manifest, else the caller's restore
    config, else the key's extension. Encryption applies when any of the
    three says so.
    """
    ext_compression, ext_encrypted = parse_extension(key)

    if manifest.compression:
        compression = parse_compression(manifest.compression)
    elif config.restore.compression != Compression.NONE:
        compression = config.restore.compression
    else:
        compression = ext_compression

    encrypted = manifest.encryption or config.restore.encryption or ext_encrypted
    return compression, encrypted


async def run_restore(config: DBUConfig, state: DBUState, key: str) -> RestoreResult:
    """
    Restore the artifact at key into the configured database.

    The manifest is read best effort; when it is missing or corrupt the
    restore falls back to the caller's configuration and the key's
    extension. Dry runs stop after validation and manifest lookup.
    Restore is never retried.

    Args:
        config: DBU configuration
        state: Runtime state
        key: Artifact key to restore

    Returns:
        RestoreResult

    Raises:
        AlreadyLockedError, PreconditionError, ConfigurationError,
        RestoreError, or the first transfer error
    """
    started = state["clock"]()
    db = config.database
    error: BaseException | None = None
    lock: RunLock | None = None

    logger.info("restore_started", key=key, db_type=db.type, database=db.name, dry_run=config.restore.dry_run)

    try:
        if not key:
            raise RestoreError("A backup key is required for restore")

        lock = acquire_lock(config.global_.lock_file)

        adapter = _adapter(config, state)
        await _validate_adapter(adapter, config)

        storage = state["storage"]
        manifest = await ManifestStore(storage).load(key)
        warnings: List[str] = []
        if manifest.is_empty:
            warnings.append("manifest unavailable; using configured restore settings")

        compression, encrypted = resolve_restore_settings(key, manifest, config)

        if config.restore.dry_run:
            logger.info("restore_dry_run", key=key, compression=compression.value, encrypted=encrypted)
            return RestoreResult(
                key=key,
                dry_run=True,
                manifest=manifest,
                compression=compression.value,
                encrypted=encrypted,
                warnings=warnings,
            )

        raw_key = _encryption_key(config.backup.encryption_key) if encrypted else None
        chain = build_chain(compression, encrypted, raw_key)

        if config.restore.tables and not adapter.capabilities().table_restore:
            raise ConfigurationError(f"{adapter.name} does not support table-level restore")
        if config.restore.collections and not adapter.capabilities().collection_restore:
            raise ConfigurationError(f"{adapter.name} does not support collection-level restore")

        # The consumer may truncate or drop the target, so the artifact is opened first
        body = await storage.get(key)
        try:
            consumer = await adapter.restore(db, config.restore, manifest)
        except BaseException as e:
            await body.aclose()
            if isinstance(e, AdapterError):
                raise RestoreError(f"Cannot start restore: {e.message}", details=e.details) from e
            raise

        coordinator = TransferCoordinator(chain)
        try:
            transfer = await coordinator.download(body, consumer, key=key)
        finally:
            await consumer.aclose()

        duration = (state["clock"]() - started).total_seconds()
        state["total_restores"] += 1
        logger.info("restore_completed", key=key, bytes=transfer.bytes_in, duration=duration)
        return RestoreResult(
            key=key,
            dry_run=False,
            manifest=manifest,
            compression=compression.value,
            encrypted=encrypted,
            bytes_restored=transfer.bytes_in,
            duration_seconds=duration,
            warnings=warnings,
        )

    except BaseException as e:
        error = e
        state["last_error"] = str(e)
        logger.error("restore_failed", key=key, error=str(e), error_type=type(e).__name__)
        raise

    finally:
        release_lock(lock)
        state["last_run_at"] = state["clock"]()
        await _notify(
            state,
            Event(
                type="restore",
                message=f"restore {db.name}",
                status=status_from_error(error),
                database=db.name,
                db_type=db.type,
                started_at=started,
                ended_at=state["clock"](),
                key=key,
                error=str(error) if error is not None else "",
            ),
        )


async def run_backup_with_retry(config: DBUConfig, state: DBUState) -> BackupResult:
    """
    Run a backup, retrying per backup.retry_count / retry_backoff.

    Configuration errors are not retried. Each attempt sends its own
    notification.
    """
    from dbu.retry import retry

    return await retry(
        lambda: run_backup(config, state),
        attempts=config.backup.retry_count,
        backoff=config.backup.retry_backoff,
    )


async def validate_setup(config: DBUConfig, state: DBUState) -> Dict[str, Any]:
    """
    Check that the database and storage are reachable.

    Returns:
        Summary with the adapter name and the number of stored objects
    """
    adapter = _adapter(config, state)
    await _validate_adapter(adapter, config)
    objects = await state["storage"].list(database_prefix(config) + "/")
    logger.info("validation_passed", adapter=adapter.name, objects=len(objects))
    return {"adapter": adapter.name, "objects": len(objects)}


async def list_backups(config: DBUConfig, state: DBUState) -> List[ObjectInfo]:
    """List stored artifacts (manifests excluded) of the configured database, oldest first."""
    objects = await state["storage"].list(database_prefix(config) + "/")
    backups = [o for o in objects if not o.is_manifest]
    backups.sort(key=lambda o: o.key)
    return backups


async def shutdown_state(state: DBUState) -> None:
    """Cleanup resources."""
    try:
        await state["storage"].aclose()
    except Exception as e:
        logger.warning("storage_close_failed", error=str(e))

    logger.info("state_shutdown_complete")
