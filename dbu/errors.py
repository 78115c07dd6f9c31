# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Human-friendly error message helpers for DBU.

These helpers centralize wording for common configuration errors so that
all modules present consistent, actionable messages.
"""


def explain_missing_encryption_key() -> str:
    """
    Explain that encryption is enabled but no key was configured.
    """

    return (
        "Encryption is enabled but no encryption key is configured. "
        "Set backup.encryption_key, the DBU_BACKUP_ENCRYPTION_KEY environment variable, "
        "or pass --encryption-key."
    )


def explain_invalid_encryption_key(reason: str) -> str:
    """
    Explain that the encryption key could not be parsed.
    """

    return (
        f"Invalid encryption key: {reason}. "
        "Provide 32 bytes encoded as 'base64:<...>', 'hex:<...>', or bare base64/hex."
    )


def explain_unsupported_backup_type(adapter: str, backup_type: str) -> str:
    """
    Explain that the adapter cannot perform the requested backup type.
    """

    return (
        f"The {adapter} adapter does not support {backup_type!r} backups. "
        "Use backup.type 'full' for this database."
    )


def explain_invalid_compression(value: str | None) -> str:
    """
    Explain that the compression identifier is unknown.
    """

    return (
        f"Unsupported compression: {value!r}. "
        "Expected one of: 'none', 'gzip', or 'zstd'."
    )


def explain_invalid_encryption(value: str | None) -> str:
    """
    Explain that the encryption identifier is unknown.
    """

    return (
        f"Unsupported encryption: {value!r}. "
        "Expected 'none' or 'aes-gcm'."
    )


def explain_invalid_duration_env(name: str, value: str | None) -> str:
    """
    Explain that a duration setting could not be parsed.
    """

    return (
        f"Invalid duration for {name}: {value!r}. "
        "Use a number of seconds or a value like '30s', '10m', '2h'."
    )


def explain_missing_config_passphrase(path: str) -> str:
    """
    Explain that an encrypted config file was found without a key.
    """

    return (
        f"Config file {path} is encrypted but no key was provided. "
        "Set DBU_CONFIG_KEY or global.config_passphrase."
    )


def explain_outside_window(start: str, end: str, timezone: str) -> str:
    """
    Explain that the current time is outside the backup window.
    """

    tz = timezone or "UTC"
    return (
        f"Current time is outside the backup window {start or '--:--'}-{end or '--:--'} ({tz}). "
        "Run again inside the window or clear schedule.window_start/window_end."
    )
