# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Example: back up a SQLite database and restore it next to the original.

Run with:
    python examples/backup_sqlite.py path/to/app.db

Environment variables:
    DBU_BACKUP_DIR: Where artifacts are stored (default ./backups)
    DBU_BACKUP_ENCRYPTION_KEY: Encrypt artifacts with this key when set
"""

import asyncio
import os
import sys
from pathlib import Path

from dbu import initialize_state, list_backups, run_backup, run_restore, shutdown_state
from dbu.builder import (
    build_config,
    compose,
    create_default_config,
    with_compression,
    with_database,
    with_encryption,
    with_local_storage,
    with_retention,
    with_value,
)
from dbu.logging_setup import configure_logging


def create_dbu_config(db_path: Path):
    """
    Create the backup configuration for one SQLite file.

    Keeps the seven newest artifacts and anything younger than a month.
    """
    key = os.getenv("DBU_BACKUP_ENCRYPTION_KEY", "")

    build = compose(
        lambda c: with_database(c, "sqlite", sqlite_path=str(db_path)),
        lambda c: with_local_storage(c, os.getenv("DBU_BACKUP_DIR", "./backups")),
        lambda c: with_compression(c, "zstd"),
        lambda c: with_retention(c, keep_last=7, keep_days=30),
        lambda c: with_encryption(c, key) if key else c,
    )
    return build_config(build(create_default_config()))


async def main(db_path: Path) -> None:
    config = create_dbu_config(db_path)
    state = initialize_state(config)
    try:
        result = await run_backup(config, state)
        print(f"Backed up {db_path} to {result.key} ({result.size_bytes} bytes)")

        for obj in await list_backups(config, state):
            print(f"  {obj.key}  {obj.size}")

        # Restore into a sibling file rather than over the original
        target = db_path.with_name(db_path.stem + ".restored.db")
        restore_config = build_config(
            with_value(
                with_database(create_default_config(), "sqlite", sqlite_path=str(target)),
                "restore.drop_existing",
                True,
            )
        )
        restore_config = config.with_updates(database=restore_config.database, restore=restore_config.restore)
        restored = await run_restore(restore_config, state, result.key)
        print(f"Restored {restored.bytes_restored} bytes into {target}")
    finally:
        await shutdown_state(state)


if __name__ == "__main__":
    if len(sys.argv) != 2:
        sys.exit("usage: backup_sqlite.py path/to/app.db")
    configure_logging("info", "console")
    asyncio.run(main(Path(sys.argv[1])))
