# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
DBU MySQL Adapter - mysqldump / mysql (also used for MariaDB).

The password is passed in MYSQL_PWD rather than on the command line.
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
from dbu.exceptions import AdapterError
from dbu.manifest import Manifest

logger = structlog.get_logger()

DEFAULT_PORT = 3306


def build_env(db: DatabaseConfig) -> Dict[str, str]:
    return {"MYSQL_PWD": db.password} if db.password else {}


def _connection_args(db: DatabaseConfig) -> List[str]:
    args = ["-h", db.host, "-P", str(db.port or DEFAULT_PORT), "-u", db.username]
    if db.connection_timeout > 0:
        args.append(f"--connect-timeout={int(db.connection_timeout)}")
    return args


def dump_args(db: DatabaseConfig, backup: BackupConfig) -> List[str]:
    args = ["mysqldump", "--single-transaction", "--routines", "--events", "--triggers"]
    args.extend(_connection_args(db))
    if db.ssl_mode:
        args.append(f"--ssl-mode={db.ssl_mode}")
    if db.ssl_ca:
        args.append(f"--ssl-ca={db.ssl_ca}")
    if db.ssl_cert:
        args.append(f"--ssl-cert={db.ssl_cert}")
    if db.ssl_key:
        args.append(f"--ssl-key={db.ssl_key}")
    if not backup.include_data:
        args.append("--no-data")
    if not backup.include_schema:
        args.append("--no-create-info")

    if backup.tables:
        args.append(db.database)
        args.extend(backup.tables)
    else:
        args.extend(["--databases", db.database])
    return args


def restore_args(db: DatabaseConfig) -> List[str]:
    return ["mysql", *_connection_args(db), db.database]


def check_table_selection(requested: List[str], manifest: Manifest) -> None:
    """
    Selective restore needs a dump that was limited to tables.

    A full-database dump cannot be filtered by the mysql client, so the
    manifest must list the dumped tables and include every requested one.
    """
    if not requested:
        return
    if not manifest.tables:
        raise AdapterError("Selective table restore requires a backup created with specific tables")
    missing = [t for t in requested if t not in set(manifest.tables)]
    if missing:
        raise AdapterError(
            f"Tables not present in backup: {', '.join(missing)}",
            details={"missing": missing, "available": list(manifest.tables)},
        )


class MySQLAdapter(Adapter):
    """MySQL and MariaDB via mysqldump and mysql."""

    name = "mysql"

    def capabilities(self) -> Capabilities:
        return Capabilities(table_restore=True)

    async def validate(self, db: DatabaseConfig) -> None:
        self._require("mysqldump", "mysql")

        if has_binary("mysqladmin"):
            await run_check(["mysqladmin", "ping", *_connection_args(db)], build_env(db))
        else:
            logger.debug("connectivity_check_skipped", adapter=self.name)

    async def dump(self, db: DatabaseConfig, backup: BackupConfig):
        self._require("mysqldump")
        self._require_full(backup)
        return await spawn_dump(dump_args(db, backup), build_env(db))

    async def restore(self, db: DatabaseConfig, restore: RestoreConfig, manifest: Manifest):
        self._require("mysql")
        check_table_selection(restore.tables, manifest)
        return await spawn_restore(restore_args(db), build_env(db))
