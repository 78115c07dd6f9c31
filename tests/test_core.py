# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Operation controller tests.

These tests verify the operation guarantees:
1. Backup then restore reproduces the database
2. Exactly one notification per operation, failed or not
3. The run lock is released on every exit path
4. Idempotency, window, capability and key checks stop a backup before any write
5. Restore tolerates a missing or corrupt manifest
6. Manifest writing, retention, and notification failures never fail a backup
"""

import json
import sqlite3
from pathlib import Path

import pytest

from dbu.adapters.base import Capabilities
from dbu.config import BackupType
from dbu.core import (
    initialize_state,
    list_backups,
    run_backup,
    run_backup_with_retry,
    run_restore,
    validate_setup,
)
from dbu.exceptions import (
    AdapterError,
    AlreadyLockedError,
    ArtifactExistsError,
    BackupError,
    ConfigurationError,
    PreconditionError,
    RestoreError,
    StorageError,
)
from dbu.lock import acquire_lock
from dbu.transforms.crypto import encode_key
from dbu.storage import LocalStorage

from tests.fakes import FIXED_NOW, FakeAdapter, MemoryStorage, RecordingNotifier, adapter_failure

KEY = encode_key(bytes(range(32)))
EXPECTED_KEY = "postgres/app/20260314T120000Z_full.backup"


def make_state(config, storage=None, adapter=None, notifier=None):
    return initialize_state(
        config,
        storage=storage if storage is not None else MemoryStorage(),
        adapter=adapter,
        notifier=notifier if notifier is not None else RecordingNotifier(),
        clock=lambda: FIXED_NOW,
    )


def create_sqlite(path: Path) -> None:
    conn = sqlite3.connect(path)
    try:
        conn.execute("CREATE TABLE users (id INTEGER PRIMARY KEY, name TEXT)")
        conn.executemany("INSERT INTO users (name) VALUES (?)", [(f"user-{i}",) for i in range(500)])
        conn.commit()
    finally:
        conn.close()


def count_users(path: Path) -> int:
    conn = sqlite3.connect(path)
    try:
        return conn.execute("SELECT COUNT(*) FROM users").fetchone()[0]
    finally:
        conn.close()


def assert_lock_free(config) -> None:
    acquire_lock(config.global_.lock_file).release()


# ============================================================================
# End to end with SQLite and local storage
# ============================================================================

@pytest.mark.asyncio
async def test_sqlite_backup_and_restore_round_trip(temp_dir: Path, make_config):
    source = temp_dir / "app.db"
    create_sqlite(source)
    target = temp_dir / "restored" / "app.db"
    target.parent.mkdir()

    config = make_config(
        database={"type": "sqlite", "database": "", "sqlite_path": str(source)},
        backup={"compression": "zstd", "encryption": True, "encryption_key": KEY},
    )
    notifier = RecordingNotifier()
    state = initialize_state(config, notifier=notifier, clock=lambda: FIXED_NOW)
    assert isinstance(state["storage"], LocalStorage)

    result = await run_backup(config, state)

    assert result.key == "sqlite/app/20260314T120000Z_full.backup.zst.enc"
    assert result.bytes_in == source.stat().st_size
    assert result.manifest_written
    assert result.manifest.compression == "zstd"
    assert result.manifest.encryption is True
    assert (temp_dir / "backups" / (result.key + ".manifest.json")).exists()
    assert source.read_bytes() not in (temp_dir / "backups" / result.key).read_bytes()

    restore_config = make_config(
        database={"type": "sqlite", "database": "", "sqlite_path": str(target)},
        backup={"encryption_key": KEY},
    )
    restored = await run_restore(restore_config, state, result.key)

    assert restored.compression == "zstd"
    assert restored.encrypted
    assert target.read_bytes() == source.read_bytes()
    assert count_users(target) == 500

    assert [(e.type, e.status) for e in notifier.events] == [("backup", "success"), ("restore", "success")]
    assert notifier.events[0].key == result.key
    assert state["total_backups"] == 1 and state["total_restores"] == 1
    assert_lock_free(config)


@pytest.mark.asyncio
async def test_sqlite_restore_refuses_to_overwrite(temp_dir: Path, make_config):
    source = temp_dir / "app.db"
    create_sqlite(source)
    config = make_config(database={"type": "sqlite", "database": "", "sqlite_path": str(source)})
    state = initialize_state(config, notifier=RecordingNotifier(), clock=lambda: FIXED_NOW)

    result = await run_backup(config, state)

    with pytest.raises(RestoreError, match="drop_existing"):
        await run_restore(config, state, result.key)

    overwrite = make_config(
        database={"type": "sqlite", "database": "", "sqlite_path": str(source)},
        restore={"drop_existing": True},
    )
    await run_restore(overwrite, state, result.key)
    assert count_users(source) == 500


@pytest.mark.asyncio
async def test_sqlite_restore_of_missing_artifact_leaves_database_intact(temp_dir: Path, make_config):
    live = temp_dir / "live.db"
    create_sqlite(live)
    before = live.read_bytes()
    config = make_config(
        database={"type": "sqlite", "database": "", "sqlite_path": str(live)},
        restore={"drop_existing": True},
    )
    state = initialize_state(config, notifier=RecordingNotifier(), clock=lambda: FIXED_NOW)

    with pytest.raises(StorageError):
        await run_restore(config, state, "sqlite/live/20260314T120000Z_full.backup.typo")

    assert live.read_bytes() == before
    assert count_users(live) == 500


# ============================================================================
# Backup failures
# ============================================================================

@pytest.mark.asyncio
async def test_sink_failure_fails_backup_with_one_failed_notification(make_config):
    config = make_config()
    notifier = RecordingNotifier()
    adapter = FakeAdapter(data=b"x" * 500_000)
    state = make_state(config, storage=MemoryStorage(fail_after=100_000), adapter=adapter, notifier=notifier)

    with pytest.raises(StorageError, match="disk full"):
        await run_backup(config, state)

    assert len(notifier.events) == 1
    event = notifier.events[0]
    assert event.status == "failed"
    assert "disk full" in event.error
    assert event.key == EXPECTED_KEY
    assert adapter.producers[0].closed
    assert state["last_error"]
    assert_lock_free(config)


@pytest.mark.asyncio
async def test_idempotent_backup_refuses_existing_artifact(make_config):
    config = make_config()
    storage = MemoryStorage()
    storage.add(EXPECTED_KEY, b"earlier backup")
    adapter = FakeAdapter(data=b"new")
    notifier = RecordingNotifier()

    with pytest.raises(ArtifactExistsError):
        await run_backup(config, make_state(config, storage=storage, adapter=adapter, notifier=notifier))

    assert storage.puts == []
    assert adapter.producers == []
    assert storage.data(EXPECTED_KEY) == b"earlier backup"
    assert [e.status for e in notifier.events] == ["failed"]


@pytest.mark.asyncio
async def test_non_idempotent_backup_overwrites(make_config):
    config = make_config(backup={"idempotent": False})
    storage = MemoryStorage()
    storage.add(EXPECTED_KEY, b"earlier backup")

    await run_backup(config, make_state(config, storage=storage, adapter=FakeAdapter(data=b"new")))

    assert storage.data(EXPECTED_KEY) == b"new"


@pytest.mark.asyncio
async def test_held_lock_fails_fast(make_config):
    config = make_config()
    adapter = FakeAdapter(data=b"x", validate_error=adapter_failure())
    notifier = RecordingNotifier()

    with acquire_lock(config.global_.lock_file):
        with pytest.raises(AlreadyLockedError):
            await run_backup(config, make_state(config, adapter=adapter, notifier=notifier))

    assert adapter.producers == []
    assert [e.status for e in notifier.events] == ["failed"]


@pytest.mark.asyncio
async def test_outside_window_is_precondition_failure(make_config):
    # FIXED_NOW is 12:00 UTC
    config = make_config(schedule={"window_start": "01:00", "window_end": "05:00"})
    storage = MemoryStorage()

    with pytest.raises(PreconditionError, match="window"):
        await run_backup(config, make_state(config, storage=storage, adapter=FakeAdapter(data=b"x")))

    assert storage.puts == []
    assert_lock_free(config)


@pytest.mark.asyncio
async def test_adapter_validation_failure_is_precondition_failure(make_config):
    config = make_config()
    with pytest.raises(PreconditionError, match="connection refused"):
        await run_backup(config, make_state(config, adapter=FakeAdapter(validate_error=adapter_failure())))
    assert_lock_free(config)


@pytest.mark.asyncio
async def test_unsupported_backup_type_is_configuration_error(make_config):
    config = make_config(backup={"type": "incremental"})
    with pytest.raises(ConfigurationError, match="incremental"):
        await run_backup(config, make_state(config, adapter=FakeAdapter(data=b"x")))

    supported = FakeAdapter(data=b"x", capabilities=Capabilities(incremental=True))
    result = await run_backup(config, make_state(config, adapter=supported))
    assert result.manifest.backup_type == BackupType.INCREMENTAL.value


@pytest.mark.asyncio
async def test_encryption_without_key_is_configuration_error(make_config):
    config = make_config(backup={"encryption": True})
    storage = MemoryStorage()
    with pytest.raises(ConfigurationError):
        await run_backup(config, make_state(config, storage=storage, adapter=FakeAdapter(data=b"x")))
    assert storage.puts == []


@pytest.mark.asyncio
async def test_producer_failure_fails_backup_and_removes_artifact(make_config):
    config = make_config()
    storage = MemoryStorage()
    adapter = FakeAdapter(data=b"half a dump", dump_wait_error=AdapterError("pg_dump exited with status 1"))

    with pytest.raises(AdapterError):
        await run_backup(config, make_state(config, storage=storage, adapter=adapter))

    assert EXPECTED_KEY not in storage.objects
    assert EXPECTED_KEY + ".manifest.json" not in storage.objects


@pytest.mark.asyncio
async def test_dump_that_cannot_start_fails_backup_with_backup_error(make_config):
    config = make_config()
    storage = MemoryStorage()
    notifier = RecordingNotifier()
    adapter = FakeAdapter(dump_error=AdapterError("pg_dump not found", details={"tool": "pg_dump"}))

    with pytest.raises(BackupError, match="Cannot start backup: pg_dump not found") as exc_info:
        await run_backup(config, make_state(config, storage=storage, adapter=adapter, notifier=notifier))

    assert exc_info.value.details == {"tool": "pg_dump"}
    assert isinstance(exc_info.value.__cause__, AdapterError)
    assert storage.puts == []
    assert [(e.type, e.status) for e in notifier.events] == [("backup", "failed")]
    assert_lock_free(config)


# ============================================================================
# Non-fatal post-success steps
# ============================================================================

@pytest.mark.asyncio
async def test_notification_failure_does_not_fail_backup(make_config):
    config = make_config()
    notifier = RecordingNotifier(fail=True)

    result = await run_backup(config, make_state(config, adapter=FakeAdapter(data=b"x"), notifier=notifier))

    assert result.key == EXPECTED_KEY
    assert len(notifier.events) == 1


@pytest.mark.asyncio
async def test_backup_writes_manifest_and_applies_retention(make_config):
    config = make_config(backup={"retention": {"keep_last": 2}})
    storage = MemoryStorage()
    old_keys = ["postgres/app/20250101T000000Z_full.backup", "postgres/app/20250201T000000Z_full.backup"]
    for i, key in enumerate(old_keys):
        storage.add(key, b"old", FIXED_NOW.replace(year=2025, month=i + 1))
        storage.add(key + ".manifest.json", b"{}", FIXED_NOW.replace(year=2025, month=i + 1))

    result = await run_backup(config, make_state(config, storage=storage, adapter=FakeAdapter(data=b"fresh")))

    manifest = json.loads(storage.data(EXPECTED_KEY + ".manifest.json"))
    assert manifest["key"] == EXPECTED_KEY
    assert manifest["size_bytes"] == 5
    assert manifest["database"] == "app"

    assert result.retention is not None
    assert result.retention.deleted_keys == [old_keys[0]]
    assert old_keys[0] not in storage.objects
    assert old_keys[0] + ".manifest.json" not in storage.objects
    assert old_keys[1] in storage.objects


@pytest.mark.asyncio
async def test_output_prefix_is_part_of_key(make_config):
    config = make_config(backup={"output_prefix": "nightly"}, storage={"prefix": "prod"})
    result = await run_backup(config, make_state(config, adapter=FakeAdapter(data=b"x")))
    assert result.key == "prod/nightly/" + EXPECTED_KEY


# ============================================================================
# Retry
# ============================================================================

class FlakyAdapter(FakeAdapter):
    def __init__(self, failures: int) -> None:
        super().__init__(data=b"payload")
        self.failures = failures

    async def validate(self, db) -> None:
        if self.failures > 0:
            self.failures -= 1
            raise adapter_failure("database starting up")


@pytest.mark.asyncio
async def test_backup_retry_recovers(make_config):
    config = make_config(backup={"retry_count": 3})
    notifier = RecordingNotifier()

    result = await run_backup_with_retry(
        config, make_state(config, adapter=FlakyAdapter(failures=2), notifier=notifier)
    )

    assert result.key == EXPECTED_KEY
    assert [e.status for e in notifier.events] == ["failed", "failed", "success"]


@pytest.mark.asyncio
async def test_configuration_errors_are_not_retried(make_config):
    config = make_config(backup={"retry_count": 3, "encryption": True})
    notifier = RecordingNotifier()

    with pytest.raises(ConfigurationError):
        await run_backup_with_retry(config, make_state(config, adapter=FakeAdapter(data=b"x"), notifier=notifier))

    assert len(notifier.events) == 1


# ============================================================================
# Restore
# ============================================================================

async def backup_then_drop_manifest(config, storage, data: bytes, manifest: bytes | None) -> str:
    result = await run_backup(config, make_state(config, storage=storage, adapter=FakeAdapter(data=data)))
    if manifest is None:
        del storage.objects[result.key + ".manifest.json"]
    else:
        storage.add(result.key + ".manifest.json", manifest)
    return result.key


@pytest.mark.asyncio
@pytest.mark.parametrize("manifest", [None, b"{corrupt", b"null"])
async def test_restore_without_usable_manifest_uses_config(make_config, manifest):
    data = b"table data " * 10_000
    storage = MemoryStorage()
    backup_config = make_config(backup={"compression": "gzip", "encryption": True, "encryption_key": KEY})
    key = await backup_then_drop_manifest(backup_config, storage, data, manifest)

    restore_config = make_config(
        backup={"encryption_key": KEY},
        restore={"compression": "gzip", "encryption": True},
    )
    adapter = FakeAdapter()
    result = await run_restore(restore_config, make_state(restore_config, storage=storage, adapter=adapter), key)

    assert bytes(adapter.consumers[0].data) == data
    assert result.warnings


@pytest.mark.asyncio
async def test_restore_falls_back_to_key_extension(make_config):
    data = b"rows " * 1000
    storage = MemoryStorage()
    key = await backup_then_drop_manifest(
        make_config(backup={"compression": "zstd", "encryption": True, "encryption_key": KEY}), storage, data, None
    )
    assert key.endswith(".backup.zst.enc")

    config = make_config(backup={"encryption_key": KEY})
    adapter = FakeAdapter()
    result = await run_restore(config, make_state(config, storage=storage, adapter=adapter), key)

    assert (result.compression, result.encrypted) == ("zstd", True)
    assert bytes(adapter.consumers[0].data) == data


@pytest.mark.asyncio
async def test_restore_dry_run_touches_nothing(make_config):
    storage = MemoryStorage()
    key = await backup_then_drop_manifest(make_config(backup={"compression": "gzip"}), storage, b"x", b"{}")

    config = make_config(restore={"dry_run": True})
    adapter = FakeAdapter()
    notifier = RecordingNotifier()
    result = await run_restore(config, make_state(config, storage=storage, adapter=adapter, notifier=notifier), key)

    assert result.dry_run
    assert adapter.consumers == []
    assert [(e.type, e.status) for e in notifier.events] == [("restore", "success")]


@pytest.mark.asyncio
async def test_restore_of_encrypted_artifact_requires_key(make_config):
    storage = MemoryStorage()
    key = await backup_then_drop_manifest(
        make_config(backup={"encryption": True, "encryption_key": KEY}), storage, b"secret", None
    )

    config = make_config()
    with pytest.raises(ConfigurationError):
        await run_restore(config, make_state(config, storage=storage, adapter=FakeAdapter()), key)
    assert_lock_free(config)


@pytest.mark.asyncio
async def test_restore_missing_artifact_fails_with_notification(make_config):
    config = make_config()
    notifier = RecordingNotifier()

    adapter = FakeAdapter()

    with pytest.raises(StorageError):
        await run_restore(config, make_state(config, adapter=adapter, notifier=notifier), "postgres/app/missing.backup")

    assert adapter.consumers == []
    assert [(e.type, e.status) for e in notifier.events] == [("restore", "failed")]
    assert_lock_free(config)


@pytest.mark.asyncio
async def test_restore_requires_key(make_config):
    config = make_config()
    with pytest.raises(RestoreError):
        await run_restore(config, make_state(config, adapter=FakeAdapter()), "")


# ============================================================================
# Validate and list
# ============================================================================

@pytest.mark.asyncio
async def test_list_backups_excludes_manifests(make_config):
    config = make_config()
    storage = MemoryStorage()
    await run_backup(config, make_state(config, storage=storage, adapter=FakeAdapter(data=b"x")))
    storage.add("postgres/other/20260101T000000Z_full.backup", b"y")

    backups = await list_backups(config, make_state(config, storage=storage))

    assert [b.key for b in backups] == [EXPECTED_KEY]


@pytest.mark.asyncio
async def test_validate_setup(make_config):
    config = make_config()
    storage = MemoryStorage()
    storage.add(EXPECTED_KEY, b"x")

    summary = await validate_setup(config, make_state(config, storage=storage, adapter=FakeAdapter()))
    assert summary == {"adapter": "fake", "objects": 1}

    with pytest.raises(PreconditionError):
        await validate_setup(config, make_state(config, adapter=FakeAdapter(validate_error=adapter_failure())))
