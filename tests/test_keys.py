# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Artifact key, run lock, and schedule window tests.
"""

from datetime import datetime, timedelta, timezone, UTC
from pathlib import Path

import pytest

from dbu.config import Compression
from dbu.exceptions import AlreadyLockedError, ConfigurationError, PreconditionError
from dbu.keys import (
    build_extension,
    build_object_key,
    build_prefix,
    is_manifest_key,
    manifest_key,
    parse_extension,
)
from dbu.lock import acquire_lock, release_lock
from dbu.window import in_window


# ============================================================================
# Keys
# ============================================================================

def test_object_key_layout():
    when = datetime(2026, 1, 2, 3, 4, 5, tzinfo=UTC)
    key = build_object_key("prod", "postgres", "app", "full", when, "backup.zst.enc")
    assert key == "prod/postgres/app/20260102T030405Z_full.backup.zst.enc"


def test_object_key_without_prefix_and_with_naive_time():
    key = build_object_key("", "sqlite", "app", "full", datetime(2026, 1, 2, 3, 4, 5), "backup")
    assert key == "sqlite/app/20260102T030405Z_full.backup"


def test_timestamps_are_normalized_to_utc():
    local = datetime(2026, 1, 2, 5, 4, 5, tzinfo=timezone(timedelta(hours=2)))
    key = build_object_key("", "mysql", "shop", "full", local, "backup")
    assert "20260102T030405Z" in key


def test_keys_start_with_database_prefix():
    when = datetime(2026, 6, 1, tzinfo=UTC)
    for prefix in ("", "prod", "/prod/", "a/b"):
        key = build_object_key(prefix, "mongodb", "events", "full", when, "backup.gz")
        assert key.startswith(build_prefix(prefix, "mongodb", "events") + "/")


def test_keys_sort_chronologically():
    base = datetime(2026, 1, 1, tzinfo=UTC)
    times = [base + timedelta(hours=h, seconds=s) for h, s in [(30, 0), (0, 59), (0, 0), (9, 1), (240, 0)]]
    keys = [build_object_key("p", "postgres", "app", "full", t, "backup") for t in times]
    assert sorted(keys) == [k for _, k in sorted(zip(times, keys))]


def test_build_prefix_trims_and_skips_empty_parts():
    assert build_prefix("/prod/", "postgres", "app") == "prod/postgres/app"
    assert build_prefix("", "postgres", "app") == "postgres/app"


@pytest.mark.parametrize(
    "compression,encrypted,extension",
    [
        ("none", False, "backup"),
        ("gzip", False, "backup.gz"),
        ("zstd", False, "backup.zst"),
        ("none", True, "backup.enc"),
        ("gzip", True, "backup.gz.enc"),
        (Compression.ZSTD, True, "backup.zst.enc"),
    ],
)
def test_extension_encodes_chain(compression, encrypted, extension):
    assert build_extension(compression, encrypted) == extension

    key = f"postgres/app/20260101T000000Z_full.{extension}"
    assert parse_extension(key) == (Compression(compression), encrypted)


def test_manifest_keys():
    key = "postgres/app/20260101T000000Z_full.backup.zst"
    assert manifest_key(key) == key + ".manifest.json"
    assert is_manifest_key(manifest_key(key))
    assert not is_manifest_key(key)


# ============================================================================
# Run lock
# ============================================================================

def test_lock_is_exclusive_and_reacquirable(temp_dir: Path):
    path = str(temp_dir / "run.lock")
    lock = acquire_lock(path)
    assert lock.held

    with pytest.raises(AlreadyLockedError):
        acquire_lock(path)

    lock.release()
    assert not lock.held

    again = acquire_lock(path)
    again.release()


def test_lock_release_is_idempotent(temp_dir: Path):
    lock = acquire_lock(str(temp_dir / "run.lock"))
    lock.release()
    lock.release()
    release_lock(lock)
    release_lock(None)


def test_lock_creates_missing_directories(temp_dir: Path):
    path = temp_dir / "nested" / "dir" / "run.lock"
    with acquire_lock(str(path)):
        assert path.exists()


def test_already_locked_is_a_precondition_failure(temp_dir: Path):
    path = str(temp_dir / "run.lock")
    with acquire_lock(path):
        with pytest.raises(PreconditionError):
            acquire_lock(path)


# ============================================================================
# Schedule window
# ============================================================================

def at(hour: int, minute: int = 0) -> datetime:
    return datetime(2026, 5, 1, hour, minute, tzinfo=UTC)


def test_empty_window_is_unrestricted():
    assert in_window(at(3), "", "")


def test_plain_window():
    assert in_window(at(2), "01:00", "05:00")
    assert in_window(at(5), "01:00", "05:00")
    assert not in_window(at(5, 1), "01:00", "05:00")
    assert not in_window(at(0, 59), "01:00", "05:00")


def test_window_wrapping_midnight():
    assert in_window(at(23, 30), "22:00", "02:00")
    assert in_window(at(1), "22:00", "02:00")
    assert not in_window(at(12), "22:00", "02:00")


def test_half_windows():
    assert in_window(at(23), "22:00", "")
    assert not in_window(at(21), "22:00", "")
    assert in_window(at(1), "", "02:00")
    assert not in_window(at(3), "", "02:00")


def test_window_timezone():
    # 23:30 UTC is 01:30 in Berlin during summer time
    assert in_window(at(23, 30), "01:00", "02:00", "Europe/Berlin")
    assert not in_window(at(23, 30), "01:00", "02:00")


def test_invalid_window_settings():
    with pytest.raises(ConfigurationError):
        in_window(at(1), "25:00", "")
    with pytest.raises(ConfigurationError):
        in_window(at(1), "1am", "")
    with pytest.raises(ConfigurationError):
        in_window(at(1), "01:00", "02:00", "Mars/Olympus")
