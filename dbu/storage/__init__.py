# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
DBU Storage - Object store backends for artifacts and manifests.
"""

from dbu.config import StorageBackend, StorageConfig
from dbu.exceptions import ConfigurationError
from dbu.storage.base import MANIFEST_SUFFIX, ObjectInfo, Storage
from dbu.storage.local import LocalStorage


def create_storage(config: StorageConfig, user_agent: str = "") -> Storage:
    """
    Create the storage backend selected by configuration.

    Args:
        config: Storage section of the configuration
        user_agent: Optional user agent suffix for HTTP backends

    Returns:
        A ready-to-use Storage instance

    Raises:
        ConfigurationError: If the backend is unknown or incompletely configured
    """
    if config.backend == StorageBackend.LOCAL:
        if not config.local.path:
            raise ConfigurationError("storage.local.path is required for the local backend")
        return LocalStorage(config.local.path)

    if config.backend == StorageBackend.S3:
        if not config.s3.endpoint or not config.s3.bucket:
            raise ConfigurationError(
                "S3 storage requires endpoint and bucket",
                details={"endpoint": config.s3.endpoint, "bucket": config.s3.bucket},
            )
        from dbu.storage.s3 import S3Storage

        return S3Storage(config.s3, user_agent=user_agent)

    raise ConfigurationError(f"Unsupported storage backend: {config.backend}")


__all__ = [
    "MANIFEST_SUFFIX",
    "ObjectInfo",
    "Storage",
    "LocalStorage",
    "create_storage",
]
