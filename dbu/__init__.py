# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
DBU - Streaming database backup and restore.

Dumps a database through optional compression and encryption straight into
object storage without staging the artifact on disk, records a manifest
next to each artifact, enforces retention, and restores through the
reverse pipeline. Package name: dbu.
"""

__version__ = "0.1.0"

# Configuration creation (user-facing API)
from dbu.builder import create_config
from dbu.env import config_from_env, load_config

# Core functions
from dbu.core import (
    initialize_state,
    run_backup,
    run_backup_with_retry,
    run_restore,
    validate_setup,
    list_backups,
    shutdown_state,
)

__all__ = [
    # Version
    "__version__",
    # Configuration creation
    "create_config",
    "config_from_env",
    "load_config",
    # Core orchestration functions
    "initialize_state",
    "run_backup",
    "run_backup_with_retry",
    "run_restore",
    "validate_setup",
    "list_backups",
    "shutdown_state",
]
