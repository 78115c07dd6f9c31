# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
DBU Postgres Adapter - pg_dump / pg_restore in custom format.

Connection settings are passed through libpq environment variables
(PGHOST, PGPASSWORD, ...) so secrets never appear in the process list.
"""

from typing import Dict, List

import structlog

from dbu.adapters.base import (
    Adapter,
    Capabilities,
    has_binary,
    run_check,
    spawn_dump,
    spawn_restore,
)
from dbu.config import BackupConfig, DatabaseConfig, RestoreConfig
from dbu.manifest import Manifest

logger = structlog.get_logger()

DEFAULT_PORT = 5432


def build_env(db: DatabaseConfig) -> Dict[str, str]:
    """libpq environment for db."""
    env = {
        "PGHOST": db.host,
        "PGPORT": str(db.port or DEFAULT_PORT),
        "PGUSER": db.username,
        "PGDATABASE": db.database,
    }
    optional = {
        "PGPASSWORD": db.password,
        "PGSSLMODE": db.ssl_mode,
        "PGSSLROOTCERT": db.ssl_ca,
        "PGSSLCERT": db.ssl_cert,
        "PGSSLKEY": db.ssl_key,
    }
    env.update({k: v for k, v in optional.items() if v})
    if db.connection_timeout > 0:
        env["PGCONNECT_TIMEOUT"] = str(int(db.connection_timeout))
    return env


def dump_args(db: DatabaseConfig, backup: BackupConfig) -> List[str]:
    args = ["pg_dump", "--format=custom", "--no-owner", "--no-privileges"]
    if backup.include_schema and not backup.include_data:
        args.append("--schema-only")
    if backup.include_data and not backup.include_schema:
        args.append("--data-only")
    for table in backup.tables:
        args.extend(["--table", table])
    args.append(db.database)
    return args


def restore_args(db: DatabaseConfig, restore: RestoreConfig) -> List[str]:
    args = ["pg_restore", "--dbname", db.database, "--no-owner", "--no-privileges"]
    if restore.drop_existing:
        args.extend(["--clean", "--if-exists"])
    if restore.stop_on_error:
        args.append("--exit-on-error")
    for table in restore.tables:
        args.extend(["--table", table])
    return args


class PostgresAdapter(Adapter):
    """PostgreSQL via pg_dump and pg_restore."""

    name = "postgres"

    def capabilities(self) -> Capabilities:
        return Capabilities(table_restore=True)

    async def validate(self, db: DatabaseConfig) -> None:
        self._require("pg_dump", "pg_restore")

        if has_binary("pg_isready"):
            await run_check(
                [
                    "pg_isready",
                    "-h", db.host,
                    "-p", str(db.port or DEFAULT_PORT),
                    "-U", db.username,
                    "-d", db.database,
                ],
                build_env(db),
            )
        elif has_binary("psql"):
            await run_check(["psql", "-c", "SELECT 1"], build_env(db))
        else:
            logger.debug("connectivity_check_skipped", adapter=self.name)

    async def dump(self, db: DatabaseConfig, backup: BackupConfig):
        self._require("pg_dump")
        self._require_full(backup)
        return await spawn_dump(dump_args(db, backup), build_env(db))

    async def restore(self, db: DatabaseConfig, restore: RestoreConfig, manifest: Manifest):
        self._require("pg_restore")
        return await spawn_restore(restore_args(db, restore), build_env(db))
