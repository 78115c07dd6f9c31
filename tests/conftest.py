# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Test fixtures for DBU tests.

Provides in-memory storage, a recording notifier, and test configuration
helpers. The fakes themselves live in tests/fakes.py.
"""

import tempfile
from pathlib import Path
from typing import Generator

import pytest

from dbu.builder import create_config
from dbu.config import DBUConfig

from tests.fakes import MemoryStorage, RecordingNotifier


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def memory_storage() -> MemoryStorage:
    return MemoryStorage()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def make_config(temp_dir: Path):
    """
    Build a DBUConfig for a postgres database "app" with a private lock file.

    Keyword sections are merged over the test defaults.
    """

    def _make(**sections) -> DBUConfig:
        base = {
            "global": {"lock_file": str(temp_dir / "dbu.lock")},
            "database": {"type": "postgres", "database": "app"},
            "backup": {"compression": "none", "retry_backoff": 0},
            "storage": {"local": {"path": str(temp_dir / "backups")}},
        }
        for name, values in sections.items():
            base.setdefault(name, {}).update(values)
        return create_config(**base)

    return _make
