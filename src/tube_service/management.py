"""Utility helpers for administrative tasks."""
from __future__ import annotations

import asyncio
import logging

from sqlalchemy.ext.asyncio import AsyncEngine

from . import models  # noqa: F401  registers the tables on Base.metadata
from .database import Base, engine

logger = logging.getLogger(__name__)


async def init_database(db_engine: AsyncEngine | None = None) -> None:
    """Create the ``lists`` and ``tubes`` tables."""

    engine_to_use = db_engine or engine
    async with engine_to_use.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database schema ready at %s", engine_to_use.url)


def cli_init_database() -> None:
    """CLI wrapper executed from :mod:`python -m`."""

    logging.basicConfig(level=logging.INFO)
    asyncio.run(init_database())


if __name__ == "__main__":
    cli_init_database()
