# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
CLI tests through typer's CliRunner.

Commands run with --log-level error so stdout carries only the JSON result.
"""

import asyncio
import json
import sqlite3
from pathlib import Path

import pytest
import structlog
import typer
from typer.testing import CliRunner

from dbu import __version__
from dbu.cli import _run, app
from dbu.env import load_config

runner = CliRunner()


@pytest.fixture(autouse=True)
def isolated_env(temp_dir: Path, monkeypatch):
    """No stray config files, a private lock file, and default logging afterwards."""
    monkeypatch.chdir(temp_dir)
    monkeypatch.setenv("XDG_CONFIG_HOME", str(temp_dir / "xdg"))
    monkeypatch.setenv("DBU_GLOBAL_LOCK_FILE", str(temp_dir / "dbu.lock"))
    for name in ("DBU_CONFIG", "DBU_CONFIG_KEY"):
        monkeypatch.delenv(name, raising=False)
    yield
    structlog.reset_defaults()


@pytest.fixture
def sqlite_db(temp_dir: Path) -> Path:
    path = temp_dir / "app.db"
    with sqlite3.connect(path) as conn:
        conn.execute("CREATE TABLE notes (id INTEGER PRIMARY KEY, body TEXT)")
        conn.executemany("INSERT INTO notes (body) VALUES (?)", [("first",), ("second",)])
    return path


def invoke(*args: str):
    return runner.invoke(app, ["--log-level", "error", *args])


def test_version():
    result = invoke("version")
    assert result.exit_code == 0
    assert result.stdout.strip() == f"dbu {__version__}"


def test_backup_list_and_restore(temp_dir: Path, sqlite_db: Path):
    storage = ["--storage-path", str(temp_dir / "backups")]

    backup = invoke("--db-type", "sqlite", "--sqlite-path", str(sqlite_db), *storage, "backup", "--compression", "gzip")
    assert backup.exit_code == 0, backup.output
    payload = json.loads(backup.stdout)
    key = payload["key"]
    assert key.startswith("sqlite/app/") and key.endswith("_full.backup.gz")
    assert payload["manifest_written"] is True

    listed = invoke("--db-type", "sqlite", "--sqlite-path", str(sqlite_db), *storage, "list")
    assert listed.exit_code == 0, listed.output
    assert [b["key"] for b in json.loads(listed.stdout)["backups"]] == [key]

    dry = invoke("--db-type", "sqlite", "--sqlite-path", str(sqlite_db), *storage, "restore", "--key", key, "--dry-run")
    assert dry.exit_code == 0, dry.output
    dry_payload = json.loads(dry.stdout)
    assert dry_payload["dry_run"] is True
    assert dry_payload["compression"] == "gzip"
    assert dry_payload["bytes_restored"] == 0

    target = temp_dir / "restored.db"
    restored = invoke("--db-type", "sqlite", "--sqlite-path", str(target), *storage, "restore", "--key", key)
    assert restored.exit_code == 0, restored.output
    assert target.read_bytes() == sqlite_db.read_bytes()


def test_backup_repeated_in_same_second_is_refused_or_new(temp_dir: Path, sqlite_db: Path):
    args = ["--db-type", "sqlite", "--sqlite-path", str(sqlite_db), "--storage-path", str(temp_dir / "b")]

    first = invoke(*args, "backup", "--retry", "1")
    assert first.exit_code == 0, first.output
    second = invoke(*args, "backup", "--retry", "1")

    if second.exit_code == 0:
        assert json.loads(second.stdout)["key"] != json.loads(first.stdout)["key"]
    else:
        assert "already exists" in second.output


def test_invalid_configuration_exits_non_zero():
    result = invoke("--db-type", "oracle", "backup")
    assert result.exit_code == 1
    assert "oracle" in result.output


def test_restore_of_missing_artifact_fails(temp_dir: Path, sqlite_db: Path):
    result = invoke(
        "--db-type", "sqlite",
        "--sqlite-path", str(temp_dir / "new.db"),
        "--storage-path", str(temp_dir / "backups"),
        "restore", "--key", "sqlite/app/20260101T000000Z_full.backup",
    )
    assert result.exit_code == 1
    assert "error:" in result.output


def test_config_encrypt_generates_key(temp_dir: Path):
    plain = temp_dir / "dbu.yaml"
    plain.write_text("database:\n  type: postgres\n  database: app\n")
    sealed = temp_dir / "dbu.yaml.enc"

    result = invoke("config", "encrypt", "--input", str(plain), "--output", str(sealed))
    assert result.exit_code == 0, result.output
    payload = json.loads(result.stdout)
    assert payload["output"] == str(sealed)
    assert payload["key"].startswith("base64:")

    assert sealed.stat().st_mode & 0o777 == 0o600
    config = load_config(str(sealed), environ={"DBU_CONFIG_KEY": payload["key"]})
    assert config.database.name == "app"


def test_config_encrypt_with_given_key_does_not_echo_it(temp_dir: Path):
    plain = temp_dir / "dbu.json"
    plain.write_text('{"database": {"type": "mongodb", "database": "events"}}')
    key = "hex:" + "ab" * 32

    result = invoke("config", "encrypt", "--input", str(plain), "--output", str(temp_dir / "dbu.json.enc"), "--key", key)

    assert result.exit_code == 0, result.output
    assert "key" not in json.loads(result.stdout)


def test_config_encrypt_missing_input(temp_dir: Path):
    result = invoke("config", "encrypt", "--input", str(temp_dir / "absent.yaml"), "--output", str(temp_dir / "x.enc"))
    assert result.exit_code == 1


def test_zero_operation_timeout_disables_the_limit(make_config):
    config = make_config(**{"global": {"operation_timeout": 0}})

    async def operation(state):
        await asyncio.sleep(0.05)
        return "done"

    assert _run(config, operation) == "done"


def test_operation_timeout_exits_non_zero(make_config):
    config = make_config(**{"global": {"operation_timeout": 0.01}})

    async def operation(state):
        await asyncio.sleep(1)

    with pytest.raises(typer.Exit) as excinfo:
        _run(config, operation)
    assert excinfo.value.exit_code == 1
