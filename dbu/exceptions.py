# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
DBU Exceptions - Custom exceptions for the dbu package.
"""


class DBUError(Exception):
    """Base exception for all DBU errors."""

    def __init__(self, message: str, details: dict | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


class ConfigurationError(DBUError):
    """Raised when configuration is invalid or a required setting is missing."""

    pass


class PreconditionError(DBUError):
    """Raised when an operation cannot start (validation, window, capability)."""

    pass


class AlreadyLockedError(PreconditionError):
    """Raised when another run already holds the run lock."""

    pass


class ArtifactExistsError(PreconditionError):
    """Raised when an idempotent backup finds an artifact at its key."""

    pass


class TransferError(DBUError):
    """Raised when moving bytes between producer, transforms, and storage fails."""

    pass


class TransformError(TransferError):
    """Raised when a compression or encryption layer fails to encode or decode."""

    pass


class ConduitClosedError(TransferError):
    """Raised on a conduit that was closed, possibly by the other side's failure."""

    pass


class StorageError(DBUError):
    """Raised when storage backend operations fail."""

    pass


class ObjectNotFoundError(StorageError):
    """Raised when a requested object does not exist."""

    pass


class AdapterError(DBUError):
    """Raised when a database adapter fails."""

    pass


class NotificationError(DBUError):
    """Raised when a notification target rejects an event."""

    pass


class BackupError(DBUError):
    """Raised when backup operations fail."""

    pass


class RestoreError(DBUError):
    """Raised when restore operations fail."""

    pass
