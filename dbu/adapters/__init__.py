# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
DBU Adapters - Database-specific dump and restore drivers.
"""

from dbu.adapters.base import Adapter, Capabilities
from dbu.exceptions import ConfigurationError


def create_adapter(db_type: str, allow_missing_tools: bool = False) -> Adapter:
    """
    Create the adapter for a database type.

    Args:
        db_type: postgres/postgresql, mysql/mariadb, mongodb/mongo, sqlite/sqlite3
        allow_missing_tools: Skip PATH checks for the vendor tools

    Returns:
        Adapter instance

    Raises:
        ConfigurationError: If db_type is empty or unknown
    """
    kind = (db_type or "").lower()

    if kind in ("postgres", "postgresql"):
        from dbu.adapters.postgres import PostgresAdapter

        return PostgresAdapter(allow_missing_tools)
    if kind in ("mysql", "mariadb"):
        from dbu.adapters.mysql import MySQLAdapter

        return MySQLAdapter(allow_missing_tools)
    if kind in ("mongodb", "mongo"):
        from dbu.adapters.mongo import MongoAdapter

        return MongoAdapter(allow_missing_tools)
    if kind in ("sqlite", "sqlite3"):
        from dbu.adapters.sqlite import SQLiteAdapter

        return SQLiteAdapter(allow_missing_tools)

    raise ConfigurationError(
        f"Unsupported database type: {db_type!r}",
        details={"supported": ["postgres", "mysql", "mongodb", "sqlite"]},
    )


__all__ = ["Adapter", "Capabilities", "create_adapter"]
