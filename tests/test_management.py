from __future__ import annotations

from sqlalchemy import inspect

from tube_service.config import Settings
from tube_service.database import create_engine
from tube_service.management import init_database


async def test_init_database_creates_tables(test_settings: Settings) -> None:
    engine = create_engine(test_settings.database_url, echo=False)
    try:
        await init_database(engine)
        async with engine.connect() as conn:
            tables = await conn.run_sync(lambda sync_conn: inspect(sync_conn).get_table_names())
    finally:
        await engine.dispose()

    assert {"lists", "tubes"} <= set(tables)


def test_settings_normalize_log_level() -> None:
    assert Settings(environment="test", log_level="debug").log_level == "DEBUG"
