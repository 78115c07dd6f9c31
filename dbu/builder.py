# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
DBU Builder - Functional builder pattern for configuration.

This module provides pure functions for building DBUConfig objects.
Configuration is assembled as a nested dict (defaults, then file values,
then environment, then CLI flags) and only converted into frozen
dataclasses at the end by build_config().
"""

import copy
import re
from typing import Any, Callable, Dict, List

from dbu.config import (
    BackupConfig,
    BackupType,
    Compression,
    DatabaseConfig,
    DBUConfig,
    DEFAULT_LOCK_FILE,
    GlobalConfig,
    LocalStorageConfig,
    LogFormat,
    MatrixTarget,
    MattermostTarget,
    NotificationsConfig,
    RestoreConfig,
    RetentionPolicy,
    S3StorageConfig,
    ScheduleConfig,
    StorageBackend,
    StorageConfig,
    WebhookTarget,
)
from dbu.errors import explain_invalid_compression, explain_invalid_duration_env
from dbu.exceptions import ConfigurationError


# Type alias for builder functions
ConfigDict = Dict[str, Any]
BuilderFunc = Callable[[ConfigDict], ConfigDict]

_DURATION_RE = re.compile(r"^(\d+(?:\.\d+)?)(ms|s|m|h)?$")
_DURATION_UNITS = {"ms": 0.001, "s": 1, "m": 60, "h": 3600, None: 1}


def create_default_config() -> ConfigDict:
    """
    Create the default configuration dictionary.

    Returns:
        Nested dict with default values for every section
    """
    return {
        "global": {
            "log_level": "info",
            "log_format": "json",
            "lock_file": DEFAULT_LOCK_FILE,
            "operation_timeout": "2h",
            "config_passphrase": "",
            "user_agent": "",
            "allow_missing_tools": False,
        },
        "database": {
            "type": "",
            "host": "",
            "port": 0,
            "username": "",
            "password": "",
            "database": "",
            "params": {},
            "ssl_mode": "",
            "ssl_ca": "",
            "ssl_cert": "",
            "ssl_key": "",
            "connection_timeout": "0s",
            "sqlite_path": "",
        },
        "backup": {
            "type": "full",
            "compression": "zstd",
            "encryption": False,
            "encryption_key": "",
            "output_prefix": "",
            "retry_count": 3,
            "retry_backoff": "10s",
            "idempotent": True,
            "tables": [],
            "collections": [],
            "include_schema": True,
            "include_data": True,
            "retention": {"keep_last": 0, "keep_days": 0, "max_bytes": 0},
        },
        "restore": {
            "dry_run": False,
            "tables": [],
            "collections": [],
            "stop_on_error": False,
            "drop_existing": False,
            "compression": "none",
            "encryption": False,
        },
        "storage": {
            "backend": "local",
            "local": {"path": "./backups"},
            "s3": {
                "endpoint": "",
                "region": "",
                "bucket": "",
                "access_key": "",
                "secret_key": "",
                "session_token": "",
                "use_ssl": True,
                "force_path_style": False,
                "tls_insecure_skip": False,
            },
            "prefix": "",
        },
        "notifications": {"webhooks": [], "mattermost": [], "matrix": []},
        "schedule": {"window_start": "", "window_end": "", "timezone": ""},
    }


def merge_config(base: ConfigDict, overlay: ConfigDict) -> ConfigDict:
    """
    Deep-merge overlay into base and return a new dict.

    Nested dicts are merged key by key; any other value in overlay
    replaces the value in base.
    """
    merged = copy.deepcopy(base)
    for key, value in overlay.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = merge_config(merged[key], value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def with_value(config: ConfigDict, dotted_key: str, value: Any) -> ConfigDict:
    """
    Set a single value addressed by a dotted path such as "storage.s3.bucket".

    Args:
        config: Current configuration dictionary
        dotted_key: Path of the value to set
        value: New value

    Returns:
        New configuration dictionary with the value set
    """
    overlay: ConfigDict = {}
    cursor = overlay
    parts = dotted_key.split(".")
    for part in parts[:-1]:
        cursor[part] = {}
        cursor = cursor[part]
    cursor[parts[-1]] = value
    return merge_config(config, overlay)


def with_database(config: ConfigDict, db_type: str, database: str = "", **fields: Any) -> ConfigDict:
    """
    Set the database connection.

    Args:
        config: Current configuration dictionary
        db_type: postgres, mysql, mongodb or sqlite
        database: Database name
        **fields: Any other database field (host, port, username, ...)

    Returns:
        New configuration dictionary with the database section updated
    """
    return merge_config(config, {"database": {"type": db_type, "database": database, **fields}})


def with_local_storage(config: ConfigDict, path: str) -> ConfigDict:
    """Store artifacts below a local directory."""
    return merge_config(config, {"storage": {"backend": "local", "local": {"path": path}}})


def with_s3_storage(config: ConfigDict, endpoint: str, bucket: str, **fields: Any) -> ConfigDict:
    """Store artifacts in an S3-compatible bucket."""
    return merge_config(
        config,
        {"storage": {"backend": "s3", "s3": {"endpoint": endpoint, "bucket": bucket, **fields}}},
    )


def with_encryption(config: ConfigDict, key: str) -> ConfigDict:
    """Enable artifact encryption with the given key."""
    return merge_config(config, {"backup": {"encryption": True, "encryption_key": key}})


def with_compression(config: ConfigDict, compression: str) -> ConfigDict:
    """Select the artifact compression."""
    return merge_config(config, {"backup": {"compression": compression}})


def with_retention(
    config: ConfigDict,
    keep_last: int = 0,
    keep_days: int = 0,
    max_bytes: int = 0,
) -> ConfigDict:
    """
    Set the retention policy applied after each successful backup.

    Args:
        config: Current configuration dictionary
        keep_last: Always keep this many newest artifacts
        keep_days: Always keep artifacts younger than this many days
        max_bytes: Keep artifacts while the total stays under this size

    Returns:
        New configuration dictionary with the retention policy set
    """
    return merge_config(
        config,
        {"backup": {"retention": {"keep_last": keep_last, "keep_days": keep_days, "max_bytes": max_bytes}}},
    )


def with_window(config: ConfigDict, start: str, end: str, timezone: str = "") -> ConfigDict:
    """Restrict backups to a time-of-day window."""
    return merge_config(
        config,
        {"schedule": {"window_start": start, "window_end": end, "timezone": timezone}},
    )


def compose(*builders: BuilderFunc) -> BuilderFunc:
    """
    Compose builder functions left to right.

    Example:
        build = compose(
            lambda c: with_database(c, "postgres", "app"),
            lambda c: with_compression(c, "gzip"),
        )
        config = build_config(build(create_default_config()))
    """

    def composed(config: ConfigDict) -> ConfigDict:
        for builder in builders:
            config = builder(config)
        return config

    return composed


def parse_duration(value: Any, name: str = "duration") -> float:
    """
    Parse a duration into seconds.

    Accepts numbers (seconds) and strings like "500ms", "30s", "10m", "2h".
    """
    if isinstance(value, bool):
        raise ConfigurationError(explain_invalid_duration_env(name, str(value)))
    if isinstance(value, (int, float)):
        if value < 0:
            raise ConfigurationError(explain_invalid_duration_env(name, str(value)))
        return float(value)
    if isinstance(value, str):
        match = _DURATION_RE.match(value.strip().lower())
        if match:
            return float(match.group(1)) * _DURATION_UNITS[match.group(2)]
    raise ConfigurationError(explain_invalid_duration_env(name, None if value is None else str(value)))


def _enum(enum_cls: Any, value: Any, explain: Callable[[str], str] | None = None) -> Any:
    if isinstance(value, enum_cls):
        return value
    text = "none" if enum_cls is Compression and value in ("", None) else str(value).lower()
    try:
        return enum_cls(text)
    except ValueError as exc:
        message = explain(value) if explain else f"Invalid {enum_cls.__name__} value: {value!r}"
        raise ConfigurationError(message) from exc


def _list(value: Any) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [v.strip() for v in value.split(",") if v.strip()]
    return [str(v) for v in value]


def build_config(config: ConfigDict) -> DBUConfig:
    """
    Build the final immutable DBUConfig from a configuration dict.

    Missing keys fall back to defaults, so a partial dict is accepted.

    Args:
        config: Nested configuration dictionary

    Returns:
        Immutable DBUConfig instance

    Raises:
        ConfigurationError: If a value cannot be converted or fails validation
    """
    cfg = merge_config(create_default_config(), config)

    g = cfg["global"]
    global_ = GlobalConfig(
        log_level=str(g["log_level"]),
        log_format=_enum(LogFormat, g["log_format"]),
        lock_file=str(g["lock_file"] or DEFAULT_LOCK_FILE),
        operation_timeout=parse_duration(g["operation_timeout"], "global.operation_timeout"),
        config_passphrase=str(g["config_passphrase"] or ""),
        user_agent=str(g["user_agent"] or ""),
        allow_missing_tools=bool(g["allow_missing_tools"]),
    )

    d = cfg["database"]
    database = DatabaseConfig(
        type=str(d["type"] or "").lower(),
        host=str(d["host"] or ""),
        port=int(d["port"] or 0),
        username=str(d["username"] or ""),
        password=str(d["password"] or ""),
        database=str(d["database"] or ""),
        params={str(k): str(v) for k, v in (d["params"] or {}).items()},
        ssl_mode=str(d["ssl_mode"] or ""),
        ssl_ca=str(d["ssl_ca"] or ""),
        ssl_cert=str(d["ssl_cert"] or ""),
        ssl_key=str(d["ssl_key"] or ""),
        connection_timeout=parse_duration(d["connection_timeout"] or 0, "database.connection_timeout"),
        sqlite_path=str(d["sqlite_path"] or ""),
    )

    b = cfg["backup"]
    r = b["retention"] or {}
    backup = BackupConfig(
        type=_enum(BackupType, b["type"] or "full"),
        compression=_enum(Compression, b["compression"], explain_invalid_compression),
        encryption=bool(b["encryption"]),
        encryption_key=str(b["encryption_key"] or ""),
        output_prefix=str(b["output_prefix"] or ""),
        retry_count=int(b["retry_count"]),
        retry_backoff=parse_duration(b["retry_backoff"], "backup.retry_backoff"),
        idempotent=bool(b["idempotent"]),
        tables=_list(b["tables"]),
        collections=_list(b["collections"]),
        include_schema=bool(b["include_schema"]),
        include_data=bool(b["include_data"]),
        retention=RetentionPolicy(
            keep_last=int(r.get("keep_last") or 0),
            keep_days=int(r.get("keep_days") or 0),
            max_bytes=int(r.get("max_bytes") or 0),
        ),
    )

    rs = cfg["restore"]
    restore = RestoreConfig(
        dry_run=bool(rs["dry_run"]),
        tables=_list(rs["tables"]),
        collections=_list(rs["collections"]),
        stop_on_error=bool(rs["stop_on_error"]),
        drop_existing=bool(rs["drop_existing"]),
        compression=_enum(Compression, rs["compression"], explain_invalid_compression),
        encryption=bool(rs["encryption"]),
    )

    s = cfg["storage"]
    s3 = s["s3"]
    storage = StorageConfig(
        backend=_enum(StorageBackend, s["backend"]),
        local=LocalStorageConfig(path=str(s["local"]["path"] or "")),
        s3=S3StorageConfig(
            endpoint=str(s3["endpoint"] or ""),
            region=str(s3["region"] or ""),
            bucket=str(s3["bucket"] or ""),
            access_key=str(s3["access_key"] or ""),
            secret_key=str(s3["secret_key"] or ""),
            session_token=str(s3["session_token"] or ""),
            use_ssl=bool(s3["use_ssl"]),
            force_path_style=bool(s3["force_path_style"]),
            tls_insecure_skip=bool(s3["tls_insecure_skip"]),
        ),
        prefix=str(s["prefix"] or ""),
    )

    n = cfg["notifications"]
    notifications = NotificationsConfig(
        webhooks=[
            WebhookTarget(
                name=str(w.get("name", "")),
                url=str(w.get("url", "")),
                headers={str(k): str(v) for k, v in (w.get("headers") or {}).items()},
            )
            for w in n.get("webhooks") or []
        ],
        mattermost=[
            MattermostTarget(name=str(m.get("name", "")), url=str(m.get("url", "")))
            for m in n.get("mattermost") or []
        ],
        matrix=[
            MatrixTarget(
                name=str(m.get("name", "")),
                server_url=str(m.get("server_url", "")),
                access_token=str(m.get("access_token", "")),
                room_id=str(m.get("room_id", "")),
            )
            for m in n.get("matrix") or []
        ],
    )

    sc = cfg["schedule"]
    schedule = ScheduleConfig(
        window_start=str(sc["window_start"] or ""),
        window_end=str(sc["window_end"] or ""),
        timezone=str(sc["timezone"] or ""),
    )

    return DBUConfig(
        global_=global_,
        database=database,
        backup=backup,
        restore=restore,
        storage=storage,
        notifications=notifications,
        schedule=schedule,
    )


def create_config(**sections: ConfigDict) -> DBUConfig:
    """
    Convenience function to create a config from keyword sections.

    Example:
        config = create_config(
            database={"type": "sqlite", "sqlite_path": "app.db"},
            storage={"local": {"path": "/var/backups"}},
        )
    """
    return build_config(sections)
