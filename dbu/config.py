# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
DBU Configuration - Immutable configuration data structures.

All configuration is frozen (immutable) after creation to prevent
accidental modification during runtime. Each section validates itself
in __post_init__ and reports every problem at once.
"""

from dataclasses import dataclass, field, replace
from enum import Enum
from pathlib import Path
from typing import Dict, List
import re
import tempfile


class BackupType(str, Enum):
    """Kind of backup to take."""

    FULL = "full"
    INCREMENTAL = "incremental"
    DIFFERENTIAL = "differential"


class Compression(str, Enum):
    """Compression applied to the artifact stream."""

    NONE = "none"
    GZIP = "gzip"
    ZSTD = "zstd"


class StorageBackend(str, Enum):
    """Object store holding the artifacts."""

    LOCAL = "local"
    S3 = "s3"


class LogFormat(str, Enum):
    """Log renderer."""

    JSON = "json"
    CONSOLE = "console"


DATABASE_TYPES = {
    "postgres",
    "postgresql",
    "mysql",
    "mariadb",
    "mongodb",
    "mongo",
    "sqlite",
    "sqlite3",
}

LOG_LEVELS = {"debug", "info", "warn", "warning", "error"}

DEFAULT_LOCK_FILE = str(Path(tempfile.gettempdir()) / "dbu.lock")


def _validate_window_time(time_str: str) -> bool:
    """Validate HH:MM time format."""
    if not re.match(r"^\d{1,2}:\d{2}$", time_str):
        return False
    hour, minute = (int(p) for p in time_str.split(":"))
    return 0 <= hour <= 23 and 0 <= minute <= 59


def _raise_if_errors(section: str, errors: List[str]) -> None:
    if errors:
        from dbu.exceptions import ConfigurationError

        raise ConfigurationError(
            f"Invalid {section} configuration",
            details={"errors": errors},
        )


@dataclass(frozen=True)
class GlobalConfig:
    """Process-wide settings."""

    log_level: str = "info"
    log_format: LogFormat = LogFormat.JSON
    lock_file: str = DEFAULT_LOCK_FILE
    # Seconds; 0 disables the overall timeout
    operation_timeout: float = 2 * 60 * 60
    config_passphrase: str = ""
    user_agent: str = ""
    allow_missing_tools: bool = False

    def __post_init__(self) -> None:
        errors: List[str] = []
        if self.log_level.lower() not in LOG_LEVELS:
            errors.append(f"Unknown log_level: {self.log_level}")
        if self.operation_timeout < 0:
            errors.append(f"operation_timeout must be >= 0, got {self.operation_timeout}")
        _raise_if_errors("global", errors)


@dataclass(frozen=True)
class DatabaseConfig:
    """Connection settings for the database being backed up or restored."""

    type: str = ""
    host: str = ""
    port: int = 0
    username: str = ""
    password: str = ""
    database: str = ""
    params: Dict[str, str] = field(default_factory=dict)
    ssl_mode: str = ""
    ssl_ca: str = ""
    ssl_cert: str = ""
    ssl_key: str = ""
    # Seconds; 0 leaves the client default
    connection_timeout: float = 0
    sqlite_path: str = ""

    def __post_init__(self) -> None:
        errors: List[str] = []
        if self.type and self.type.lower() not in DATABASE_TYPES:
            errors.append(f"Unsupported database type: {self.type}")
        if self.port < 0 or self.port > 65535:
            errors.append(f"port must be within 0-65535, got {self.port}")
        if self.connection_timeout < 0:
            errors.append("connection_timeout must be >= 0")
        _raise_if_errors("database", errors)

    @property
    def name(self) -> str:
        """Database name used in artifact keys."""
        if self.database:
            return self.database
        if self.sqlite_path:
            return Path(self.sqlite_path).stem
        return ""


@dataclass(frozen=True)
class RetentionPolicy:
    """Retention rules; a zero value leaves that dimension unconstrained."""

    keep_last: int = 0
    keep_days: int = 0
    max_bytes: int = 0

    def __post_init__(self) -> None:
        errors: List[str] = []
        for name in ("keep_last", "keep_days", "max_bytes"):
            if getattr(self, name) < 0:
                errors.append(f"{name} must be >= 0, got {getattr(self, name)}")
        _raise_if_errors("retention", errors)

    @property
    def is_empty(self) -> bool:
        return self.keep_last == 0 and self.keep_days == 0 and self.max_bytes == 0


@dataclass(frozen=True)
class BackupConfig:
    """Settings for producing an artifact."""

    type: BackupType = BackupType.FULL
    compression: Compression = Compression.ZSTD
    encryption: bool = False
    encryption_key: str = ""
    output_prefix: str = ""
    retry_count: int = 3
    # Seconds between attempts
    retry_backoff: float = 10
    idempotent: bool = True
    tables: List[str] = field(default_factory=list)
    collections: List[str] = field(default_factory=list)
    include_schema: bool = True
    include_data: bool = True
    retention: RetentionPolicy = field(default_factory=RetentionPolicy)

    def __post_init__(self) -> None:
        errors: List[str] = []
        if self.retry_count < 0:
            errors.append(f"retry_count must be >= 0, got {self.retry_count}")
        if self.retry_backoff < 0:
            errors.append(f"retry_backoff must be >= 0, got {self.retry_backoff}")
        if not self.include_schema and not self.include_data:
            errors.append("include_schema and include_data cannot both be false")
        _raise_if_errors("backup", errors)


@dataclass(frozen=True)
class RestoreConfig:
    """Settings for restoring an artifact."""

    dry_run: bool = False
    tables: List[str] = field(default_factory=list)
    collections: List[str] = field(default_factory=list)
    stop_on_error: bool = False
    drop_existing: bool = False
    # Used when the artifact has no readable manifest
    compression: Compression = Compression.NONE
    encryption: bool = False


@dataclass(frozen=True)
class LocalStorageConfig:
    path: str = "./backups"


@dataclass(frozen=True)
class S3StorageConfig:
    endpoint: str = ""
    region: str = ""
    bucket: str = ""
    access_key: str = ""
    secret_key: str = ""
    session_token: str = ""
    use_ssl: bool = True
    force_path_style: bool = False
    tls_insecure_skip: bool = False


@dataclass(frozen=True)
class StorageConfig:
    """Where artifacts live."""

    backend: StorageBackend = StorageBackend.LOCAL
    local: LocalStorageConfig = field(default_factory=LocalStorageConfig)
    s3: S3StorageConfig = field(default_factory=S3StorageConfig)
    prefix: str = ""

    def __post_init__(self) -> None:
        errors: List[str] = []
        if self.backend == StorageBackend.LOCAL and not self.local.path:
            errors.append("storage.local.path is required for the local backend")
        _raise_if_errors("storage", errors)


@dataclass(frozen=True)
class WebhookTarget:
    name: str = ""
    url: str = ""
    headers: Dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class MattermostTarget:
    name: str = ""
    url: str = ""


@dataclass(frozen=True)
class MatrixTarget:
    name: str = ""
    server_url: str = ""
    access_token: str = ""
    room_id: str = ""


@dataclass(frozen=True)
class NotificationsConfig:
    """Notification targets; every configured target receives each event."""

    webhooks: List[WebhookTarget] = field(default_factory=list)
    mattermost: List[MattermostTarget] = field(default_factory=list)
    matrix: List[MatrixTarget] = field(default_factory=list)


@dataclass(frozen=True)
class ScheduleConfig:
    """Time-of-day window in which backups may run."""

    window_start: str = ""
    window_end: str = ""
    timezone: str = ""

    def __post_init__(self) -> None:
        errors: List[str] = []
        for name in ("window_start", "window_end"):
            value = getattr(self, name)
            if value and not _validate_window_time(value):
                errors.append(f"Invalid {name} format: {value}, expected HH:MM")
        _raise_if_errors("schedule", errors)


@dataclass(frozen=True)
class DBUConfig:
    """
    Root configuration.

    Frozen after creation; use with_updates() to derive a modified copy.
    """

    global_: GlobalConfig = field(default_factory=GlobalConfig)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    backup: BackupConfig = field(default_factory=BackupConfig)
    restore: RestoreConfig = field(default_factory=RestoreConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    notifications: NotificationsConfig = field(default_factory=NotificationsConfig)
    schedule: ScheduleConfig = field(default_factory=ScheduleConfig)

    def __post_init__(self) -> None:
        """Cross-section validation."""
        errors: List[str] = []

        if self.database.type.lower() in ("sqlite", "sqlite3") and not self.database.sqlite_path:
            errors.append("database.sqlite_path is required for sqlite")

        if self.storage.backend == StorageBackend.S3:
            if not self.storage.s3.bucket:
                errors.append("storage.s3.bucket is required for the s3 backend")
            if not self.storage.s3.endpoint:
                errors.append("storage.s3.endpoint is required for the s3 backend")

        _raise_if_errors("dbu", errors)

    def with_updates(self, **sections) -> "DBUConfig":
        """
        Create a new config with whole sections replaced.

        Since the config is frozen, this creates a new instance.
        """
        return replace(self, **sections)
