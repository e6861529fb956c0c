from __future__ import annotations

"""Manual DB migration helper.

Usage: python db_migrate.py [STORE_PATH]

Applies the additive schema migrations to a plain (unencrypted) store.
Encrypted stores are migrated automatically whenever they are opened.
"""

import asyncio
import logging
import sys
from typing import List

from daybook import db

logger = logging.getLogger(__name__)


async def migrate(path: str = db.DB_PATH) -> List[str]:
    """Bring the store at *path* up to date; return the columns that were missing."""
    missing: List[str] = []
    if db.expand_path(path).exists():
        async with db.connect(path) as conn:
            for table, column, _stmt in db.MIGRATIONS:
                if not await db.column_exists(conn, table, column):
                    missing.append(f"{table}.{column}")
    await db.init_db(path)
    if missing:
        logger.info("Migrated %s: added %s", path, ", ".join(missing))
    else:
        logger.info("%s is up to date", path)
    return missing


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(message)s")
    asyncio.run(migrate(sys.argv[1] if len(sys.argv) > 1 else db.DB_PATH))
