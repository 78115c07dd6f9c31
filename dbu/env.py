# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Configuration loading: files, encrypted files, and environment variables.

Precedence, lowest first:

- built-in defaults (see dbu.builder.create_default_config)
- the config file (YAML, TOML or JSON; optionally encrypted)
- DBU_<SECTION>_<FIELD> environment variables, e.g. DBU_STORAGE_S3_BUCKET
- CLI overrides applied by the caller

$VAR references in secret fields are expanded after loading, so a file
can say password: ${PGPASSWORD} without storing the secret.
"""

from __future__ import annotations

import json
import os
import tomllib
from pathlib import Path
from typing import Any, Dict, List, Mapping, Tuple

import structlog
import yaml

from dbu.builder import ConfigDict, build_config, create_default_config, merge_config, with_value
from dbu.config import DBUConfig
from dbu.errors import explain_missing_config_passphrase
from dbu.exceptions import ConfigurationError
from dbu.transforms.crypto import decrypt_config, parse_key

logger = structlog.get_logger()

ENV_PREFIX = "DBU"
CONFIG_PATH_ENV = "DBU_CONFIG"
CONFIG_KEY_ENV = "DBU_CONFIG_KEY"

CONFIG_CANDIDATES = ["dbu.yaml", "dbu.yml", "dbu.toml", "dbu.json"]
ENCRYPTED_CANDIDATES = ["dbu.yaml.enc", "dbu.yml.enc", "dbu.toml.enc"]
ENCRYPTED_SUFFIXES = (".enc", ".encrypted")

# Sections whose values are structured lists and cannot come from env vars
_ENV_EXCLUDED_SECTIONS = {"notifications"}

# Fields in which $VAR references are expanded
_EXPANDED_FIELDS = [
    "database.username",
    "database.password",
    "backup.encryption_key",
    "storage.s3.access_key",
    "storage.s3.secret_key",
    "storage.s3.session_token",
]

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off", ""}


def _user_config_dir() -> Path:
    return Path(os.environ.get("XDG_CONFIG_HOME") or Path.home() / ".config")


def resolve_config_path(path: str | None = None) -> Path | None:
    """
    Find the config file to load.

    Order: explicit path, DBU_CONFIG, dbu.{yaml,yml,toml,json} in the
    working directory, then the same names (and their .enc variants) in
    the user config directory under dbu/.

    Returns:
        The path, or None when no file exists (defaults and env only)
    """
    if path:
        return Path(path)
    env_path = os.getenv(CONFIG_PATH_ENV)
    if env_path:
        return Path(env_path)

    for candidate in CONFIG_CANDIDATES:
        if Path(candidate).is_file():
            return Path(candidate)

    base = _user_config_dir() / "dbu"
    for candidate in CONFIG_CANDIDATES + ENCRYPTED_CANDIDATES:
        p = base / candidate
        if p.is_file():
            return p
    return None


def is_encrypted_path(path: str | Path) -> bool:
    return str(path).endswith(ENCRYPTED_SUFFIXES)


def config_format(path: str | Path) -> str:
    """yaml, toml or json, judged by extension (ignoring .enc/.encrypted)."""
    name = str(path)
    for suffix in ENCRYPTED_SUFFIXES:
        if name.endswith(suffix):
            name = name[: -len(suffix)]
    if name.endswith(".toml"):
        return "toml"
    if name.endswith(".json"):
        return "json"
    return "yaml"


def parse_config_text(data: bytes, fmt: str) -> ConfigDict:
    """Parse raw config bytes in the given format into a dict."""
    try:
        if fmt == "toml":
            parsed = tomllib.loads(data.decode("utf-8"))
        elif fmt == "json":
            parsed = json.loads(data)
        else:
            parsed = yaml.safe_load(data)
    except (yaml.YAMLError, tomllib.TOMLDecodeError, json.JSONDecodeError, UnicodeDecodeError) as e:
        raise ConfigurationError(f"Cannot parse {fmt} config: {e}") from e

    if parsed is None:
        return {}
    if not isinstance(parsed, dict):
        raise ConfigurationError(f"Config root must be a mapping, got {type(parsed).__name__}")
    return parsed


def read_config_file(path: Path, environ: Mapping[str, str] | None = None) -> ConfigDict:
    """
    Read and parse one config file, decrypting it first when needed.

    The decryption key comes from DBU_CONFIG_KEY, falling back to
    DBU_GLOBAL_CONFIG_PASSPHRASE.
    """
    environ = os.environ if environ is None else environ
    try:
        data = path.read_bytes()
    except OSError as e:
        raise ConfigurationError(f"Cannot read config file {path}: {e}", details={"path": str(path)}) from e

    if is_encrypted_path(path):
        key = environ.get(CONFIG_KEY_ENV) or environ.get(f"{ENV_PREFIX}_GLOBAL_CONFIG_PASSPHRASE")
        if not key:
            raise ConfigurationError(explain_missing_config_passphrase(str(path)))
        data = decrypt_config(data, parse_key(key))
        logger.debug("config_decrypted", path=str(path))

    return parse_config_text(data, config_format(path))


def _flatten(config: ConfigDict, prefix: str = "") -> List[Tuple[str, Any]]:
    leaves: List[Tuple[str, Any]] = []
    for key, value in config.items():
        dotted = f"{prefix}.{key}" if prefix else key
        if isinstance(value, dict) and value:
            leaves.extend(_flatten(value, dotted))
        else:
            leaves.append((dotted, value))
    return leaves


def _coerce(raw: str, default: Any, name: str) -> Any:
    if isinstance(default, bool):
        lowered = raw.strip().lower()
        if lowered in _TRUE:
            return True
        if lowered in _FALSE:
            return False
        raise ConfigurationError(f"Invalid boolean for {name}: {raw!r}")
    if isinstance(default, int):
        try:
            return int(raw)
        except ValueError as e:
            raise ConfigurationError(f"Invalid integer for {name}: {raw!r}") from e
    if isinstance(default, list):
        return [p.strip() for p in raw.split(",") if p.strip()]
    if isinstance(default, dict):
        pairs = [p.split("=", 1) for p in raw.split(",") if "=" in p]
        return {k.strip(): v.strip() for k, v in pairs}
    return raw


def env_overrides(environ: Mapping[str, str] | None = None) -> ConfigDict:
    """
    Collect DBU_* environment overrides as a config overlay.

    Each default field maps to DBU_ plus its dotted path upper-cased with
    dots replaced by underscores (storage.s3.bucket -> DBU_STORAGE_S3_BUCKET).
    Values are converted to the type of the default.
    """
    environ = os.environ if environ is None else environ
    overlay: ConfigDict = {}
    for dotted, default in _flatten(create_default_config()):
        if dotted.split(".", 1)[0] in _ENV_EXCLUDED_SECTIONS:
            continue
        name = f"{ENV_PREFIX}_{dotted.replace('.', '_').upper()}"
        if name in environ:
            overlay = with_value(overlay, dotted, _coerce(environ[name], default, name))
    return overlay


def expand_secrets(config: ConfigDict) -> ConfigDict:
    """Expand $VAR references in secret-bearing fields and notification URLs."""
    for dotted in _EXPANDED_FIELDS:
        section, *rest = dotted.split(".")
        cursor = config.get(section, {})
        for part in rest[:-1]:
            cursor = cursor.get(part, {})
        value = cursor.get(rest[-1])
        if isinstance(value, str):
            cursor[rest[-1]] = os.path.expandvars(value)

    notifications = config.get("notifications", {})
    for group, fields in (
        ("webhooks", ("url",)),
        ("mattermost", ("url",)),
        ("matrix", ("server_url", "access_token", "room_id")),
    ):
        for target in notifications.get(group) or []:
            for f in fields:
                if isinstance(target.get(f), str):
                    target[f] = os.path.expandvars(target[f])
    return config


def load_config_dict(path: str | None = None, environ: Mapping[str, str] | None = None) -> ConfigDict:
    """
    Assemble the configuration dict from defaults, file, and environment.

    Args:
        path: Explicit config file path (optional)
        environ: Environment mapping (defaults to os.environ)

    Returns:
        Merged configuration dict, ready for CLI overrides and build_config()
    """
    config = create_default_config()

    resolved = resolve_config_path(path)
    if resolved is not None:
        config = merge_config(config, read_config_file(resolved, environ))
        logger.debug("config_file_loaded", path=str(resolved))

    config = merge_config(config, env_overrides(environ))
    return expand_secrets(config)


def load_config(path: str | None = None, environ: Mapping[str, str] | None = None) -> DBUConfig:
    """
    Load the immutable configuration.

    Raises:
        ConfigurationError: On unreadable, undecryptable, or invalid configuration
    """
    return build_config(load_config_dict(path, environ))


def config_from_env(**overrides: Dict[str, Any]) -> DBUConfig:
    """
    Build a configuration from defaults and DBU_* environment variables only.

    Keyword sections are merged last, e.g.
    config_from_env(database={"type": "sqlite", "sqlite_path": "app.db"}).
    """
    config = merge_config(create_default_config(), env_overrides())
    config = merge_config(config, overrides)
    return build_config(expand_secrets(config))
