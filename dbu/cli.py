# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
DBU CLI - Command line entry point.

Commands print a JSON result on stdout; logs go to stderr. Any failure
exits with a non-zero status.

    dbu --db-type sqlite --sqlite-path app.db backup --compression gzip
    dbu restore --key sqlite/app/20260101T000000Z_full.backup.zst --dry-run
    dbu config encrypt --input dbu.yaml --output dbu.yaml.enc --key base64:...
"""

import asyncio
import json
from typing import Any, Awaitable, Callable, Dict, Optional, TypeVar

import structlog
import typer

from dbu import __version__
from dbu.builder import ConfigDict, build_config, merge_config, with_value
from dbu.config import DBUConfig
from dbu.core import (
    DBUState,
    initialize_state,
    list_backups,
    run_backup,
    run_backup_with_retry,
    run_restore,
    shutdown_state,
    validate_setup,
)
from dbu.env import load_config_dict
from dbu.exceptions import DBUError
from dbu.logging_setup import configure_logging
from dbu.transforms.crypto import encrypt_config_file, generate_key

logger = structlog.get_logger()

T = TypeVar("T")

app = typer.Typer(add_completion=False, no_args_is_help=True, help="Streaming database backup and restore")
config_app = typer.Typer(help="Configuration file utilities")
app.add_typer(config_app, name="config")

# Global option -> dotted config path
_GLOBAL_OVERRIDES = {
    "db_type": "database.type",
    "db_host": "database.host",
    "db_port": "database.port",
    "db_user": "database.username",
    "db_password": "database.password",
    "db_name": "database.database",
    "sqlite_path": "database.sqlite_path",
    "storage": "storage.backend",
    "storage_path": "storage.local.path",
    "s3_endpoint": "storage.s3.endpoint",
    "s3_bucket": "storage.s3.bucket",
    "s3_access_key": "storage.s3.access_key",
    "s3_secret_key": "storage.s3.secret_key",
    "s3_region": "storage.s3.region",
    "s3_ssl": "storage.s3.use_ssl",
    "s3_path_style": "storage.s3.force_path_style",
    "encryption_key": "backup.encryption_key",
}


def _split(value: Optional[str]) -> list:
    return [v.strip() for v in (value or "").split(",") if v.strip()]


def _emit(payload: Dict[str, Any]) -> None:
    typer.echo(json.dumps(payload, indent=2, default=str))


def _fail(error: BaseException) -> None:
    message = str(error) or type(error).__name__
    typer.echo(f"error: {message}", err=True)
    raise typer.Exit(1)


def _load(ctx: typer.Context, overrides: Dict[str, Any] | None = None) -> DBUConfig:
    """Build the configuration: file and env, then global options, then command options."""
    options = ctx.obj
    try:
        config: ConfigDict = load_config_dict(options["config"])
        for name, dotted in _GLOBAL_OVERRIDES.items():
            if options.get(name) is not None:
                config = with_value(config, dotted, options[name])
        for dotted, value in (overrides or {}).items():
            if value is not None:
                config = with_value(config, dotted, value)
        if options.get("log_level"):
            config = merge_config(config, {"global": {"log_level": options["log_level"]}})
        if options.get("log_format"):
            config = merge_config(config, {"global": {"log_format": options["log_format"]}})
        built = build_config(config)
    except DBUError as e:
        _fail(e)

    configure_logging(built.global_.log_level, built.global_.log_format.value)
    return built


def _run(config: DBUConfig, operation: Callable[[DBUState], Awaitable[T]]) -> T:
    """Run one operation under the global timeout and shut the state down afterwards."""

    async def main() -> T:
        state = initialize_state(config)
        try:
            # 0 disables the timeout
            async with asyncio.timeout(config.global_.operation_timeout or None):
                return await operation(state)
        finally:
            await shutdown_state(state)

    try:
        return asyncio.run(main())
    except TimeoutError as e:
        logger.error("operation_timed_out", timeout=config.global_.operation_timeout)
        _fail(e if str(e) else TimeoutError(f"operation timed out after {config.global_.operation_timeout}s"))
    except DBUError as e:
        _fail(e)


@app.callback()
def main(
    ctx: typer.Context,
    config: Optional[str] = typer.Option(None, "--config", "-c", help="Config file (YAML, TOML or JSON; .enc for encrypted)"),
    log_level: Optional[str] = typer.Option(None, "--log-level", help="debug, info, warn or error"),
    log_format: Optional[str] = typer.Option(None, "--log-format", help="json or console"),
    db_type: Optional[str] = typer.Option(None, "--db-type", help="postgres, mysql, mongodb or sqlite"),
    db_host: Optional[str] = typer.Option(None, "--db-host"),
    db_port: Optional[int] = typer.Option(None, "--db-port"),
    db_user: Optional[str] = typer.Option(None, "--db-user"),
    db_password: Optional[str] = typer.Option(None, "--db-password"),
    db_name: Optional[str] = typer.Option(None, "--db-name"),
    sqlite_path: Optional[str] = typer.Option(None, "--sqlite-path"),
    storage: Optional[str] = typer.Option(None, "--storage", help="local or s3"),
    storage_path: Optional[str] = typer.Option(None, "--storage-path", help="Root directory for local storage"),
    s3_endpoint: Optional[str] = typer.Option(None, "--s3-endpoint"),
    s3_bucket: Optional[str] = typer.Option(None, "--s3-bucket"),
    s3_access_key: Optional[str] = typer.Option(None, "--s3-access-key"),
    s3_secret_key: Optional[str] = typer.Option(None, "--s3-secret-key"),
    s3_region: Optional[str] = typer.Option(None, "--s3-region"),
    s3_ssl: Optional[bool] = typer.Option(None, "--s3-ssl/--no-s3-ssl"),
    s3_path_style: Optional[bool] = typer.Option(None, "--s3-path-style/--no-s3-path-style"),
    encryption_key: Optional[str] = typer.Option(None, "--encryption-key", help="base64:... or hex:... 32-byte key"),
) -> None:
    """Global options shared by every command."""
    ctx.obj = {
        "config": config,
        "log_level": log_level,
        "log_format": log_format,
        "db_type": db_type,
        "db_host": db_host,
        "db_port": db_port,
        "db_user": db_user,
        "db_password": db_password,
        "db_name": db_name,
        "sqlite_path": sqlite_path,
        "storage": storage,
        "storage_path": storage_path,
        "s3_endpoint": s3_endpoint,
        "s3_bucket": s3_bucket,
        "s3_access_key": s3_access_key,
        "s3_secret_key": s3_secret_key,
        "s3_region": s3_region,
        "s3_ssl": s3_ssl,
        "s3_path_style": s3_path_style,
        "encryption_key": encryption_key,
    }


@app.command("backup")
def backup_cmd(
    ctx: typer.Context,
    tables: Optional[str] = typer.Option(None, "--tables", help="Comma-separated tables"),
    collections: Optional[str] = typer.Option(None, "--collections", help="Comma-separated collections"),
    backup_type: Optional[str] = typer.Option(None, "--type", help="full, incremental or differential"),
    compression: Optional[str] = typer.Option(None, "--compression", help="none, gzip or zstd"),
    encrypt: bool = typer.Option(False, "--encrypt", help="Encrypt the artifact"),
    retry: Optional[int] = typer.Option(None, "--retry", help="Maximum attempts"),
    retry_backoff: Optional[str] = typer.Option(None, "--retry-backoff", help="Wait between attempts, e.g. 10s"),
) -> None:
    """Back up the configured database."""
    config = _load(
        ctx,
        {
            "backup.tables": _split(tables) if tables is not None else None,
            "backup.collections": _split(collections) if collections is not None else None,
            "backup.type": backup_type,
            "backup.compression": compression,
            "backup.encryption": True if encrypt else None,
            "backup.retry_count": retry,
            "backup.retry_backoff": retry_backoff,
        },
    )
    operation = run_backup_with_retry if config.backup.retry_count > 1 else run_backup
    result = _run(config, lambda state: operation(config, state))

    payload: Dict[str, Any] = {
        "key": result.key,
        "size_bytes": result.size_bytes,
        "bytes_in": result.bytes_in,
        "manifest_id": result.manifest.id,
        "manifest_written": result.manifest_written,
        "duration_seconds": round(result.duration_seconds, 3),
    }
    if result.retention is not None:
        payload["retention"] = {
            "deleted": result.retention.deleted_keys,
            "bytes_freed": result.retention.bytes_freed,
            "errors": result.retention.errors,
        }
    _emit(payload)


@app.command("restore")
def restore_cmd(
    ctx: typer.Context,
    key: str = typer.Option(..., "--key", help="Artifact key to restore"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Validate and read the manifest only"),
    tables: Optional[str] = typer.Option(None, "--tables", help="Comma-separated tables"),
    collections: Optional[str] = typer.Option(None, "--collections", help="Comma-separated collections"),
    drop_existing: bool = typer.Option(False, "--drop-existing", help="Replace existing objects"),
) -> None:
    """Restore an artifact into the configured database."""
    config = _load(
        ctx,
        {
            "restore.dry_run": True if dry_run else None,
            "restore.tables": _split(tables) if tables is not None else None,
            "restore.collections": _split(collections) if collections is not None else None,
            "restore.drop_existing": True if drop_existing else None,
        },
    )
    result = _run(config, lambda state: run_restore(config, state, key))
    _emit(
        {
            "key": result.key,
            "dry_run": result.dry_run,
            "compression": result.compression,
            "encrypted": result.encrypted,
            "bytes_restored": result.bytes_restored,
            "manifest_id": result.manifest.id,
            "warnings": result.warnings,
        }
    )


@app.command("validate")
def validate_cmd(ctx: typer.Context) -> None:
    """Check database and storage connectivity."""
    config = _load(ctx)
    summary = _run(config, lambda state: validate_setup(config, state))
    _emit({"status": "ok", **summary})


@app.command("list")
def list_cmd(ctx: typer.Context) -> None:
    """List stored backups of the configured database."""
    config = _load(ctx)
    objects = _run(config, lambda state: list_backups(config, state))
    _emit(
        {
            "backups": [
                {"key": o.key, "size": o.size, "modified": o.modified.isoformat()}
                for o in objects
            ]
        }
    )


@config_app.command("encrypt")
def config_encrypt_cmd(
    input_path: str = typer.Option(..., "--input", help="Plaintext config file"),
    output_path: str = typer.Option(..., "--output", help="Encrypted output file"),
    key: Optional[str] = typer.Option(None, "--key", envvar="DBU_CONFIG_KEY", help="Key; generated when omitted"),
) -> None:
    """Encrypt a config file for use with DBU_CONFIG_KEY."""
    generated = not key
    key = key or generate_key()
    try:
        encrypt_config_file(input_path, output_path, key)
    except DBUError as e:
        _fail(e)
    except OSError as e:
        _fail(e)

    payload = {"output": output_path}
    if generated:
        payload["key"] = key
    _emit(payload)


@app.command("version")
def version_cmd() -> None:
    """Print the version."""
    typer.echo(f"dbu {__version__}")


if __name__ == "__main__":
    app()
