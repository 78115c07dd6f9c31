# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
DBU MongoDB Adapter - mongodump / mongorestore archives over stdio.
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


def build_env(db: DatabaseConfig) -> Dict[str, str]:
    uri = db.params.get("uri", "")
    return {"MONGODB_URI": uri} if uri else {}


def connection_args(db: DatabaseConfig) -> List[str]:
    args: List[str] = []
    if db.host:
        args.extend(["--host", db.host])
    if db.port:
        args.extend(["--port", str(db.port)])
    if db.username:
        args.extend(["--username", db.username])
    if db.password:
        args.extend(["--password", db.password])
    if db.ssl_mode and db.ssl_mode.lower() != "disable":
        args.append("--tls")
    if db.ssl_ca:
        args.extend(["--tlsCAFile", db.ssl_ca])
    if db.ssl_cert:
        args.extend(["--tlsCertificateKeyFile", db.ssl_cert])
    if "authSource" in db.params:
        args.extend(["--authenticationDatabase", db.params["authSource"]])
    return args


def dump_args(db: DatabaseConfig, backup: BackupConfig) -> List[str]:
    args = ["mongodump", "--archive", "--db", db.database, *connection_args(db)]
    for collection in backup.collections:
        args.extend(["--collection", collection])
    return args


def restore_args(db: DatabaseConfig, restore: RestoreConfig) -> List[str]:
    args = ["mongorestore", "--archive", "--db", db.database, *connection_args(db)]
    if restore.drop_existing:
        args.append("--drop")
    if restore.stop_on_error:
        args.append("--stopOnError")
    for collection in restore.collections:
        args.extend(["--nsInclude", f"{db.database}.{collection}"])
    return args


class MongoAdapter(Adapter):
    """MongoDB via mongodump and mongorestore."""

    name = "mongodb"

    def capabilities(self) -> Capabilities:
        return Capabilities(collection_restore=True)

    async def validate(self, db: DatabaseConfig) -> None:
        self._require("mongodump", "mongorestore")

        if has_binary("mongosh"):
            await run_check(
                ["mongosh", "--quiet", "--eval", "db.runCommand({ ping: 1 })"],
                build_env(db),
            )
        else:
            logger.debug("connectivity_check_skipped", adapter=self.name)

    async def dump(self, db: DatabaseConfig, backup: BackupConfig):
        self._require("mongodump")
        self._require_full(backup)
        return await spawn_dump(dump_args(db, backup), build_env(db))

    async def restore(self, db: DatabaseConfig, restore: RestoreConfig, manifest: Manifest):
        self._require("mongorestore")
        return await spawn_restore(restore_args(db, restore), build_env(db))
