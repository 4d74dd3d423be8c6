"""Create any missing tables. Run with: python -m qari.db.schema_check"""

import asyncio
import logging
from typing import List

from sqlalchemy import inspect
from sqlalchemy.ext.asyncio import AsyncEngine

from qari.core.logging import configure_logging
from qari.db.session import Base, create_all, engine

logger = logging.getLogger(__name__)


async def missing_tables(db_engine: AsyncEngine) -> List[str]:
    import qari.core.models  # noqa: F401  (register models on Base.metadata)
    import qari.auth.models  # noqa: F401

    async with db_engine.connect() as conn:
        existing = await conn.run_sync(lambda sync_conn: set(inspect(sync_conn).get_table_names()))
    return [name for name in Base.metadata.tables if name not in existing]


async def ensure_tables(db_engine: AsyncEngine) -> List[str]:
    missing = await missing_tables(db_engine)
    await create_all(db_engine)
    if missing:
        logger.info("Created missing tables: %s", ", ".join(missing))
    else:
        logger.info("All tables already exist in the database.")
    return missing


async def main() -> None:
    configure_logging()
    await ensure_tables(engine)


if __name__ == "__main__":
    asyncio.run(main())
