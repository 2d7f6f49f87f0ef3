from __future__ import annotations

import asyncio

from sqlalchemy import create_engine, inspect, text

from app.database import Database


def _initialise_legacy_schema(database_path: str) -> None:
    """Create a user_configs table from before API keys were stored."""

    engine = create_engine(f"sqlite:///{database_path}")
    try:
        with engine.begin() as connection:
            connection.execute(
                text(
                    """
                    CREATE TABLE user_configs (
                        user_id VARCHAR(64) PRIMARY KEY,
                        config JSON,
                        created_at DATETIME,
                        updated_at DATETIME
                    )
                    """
                )
            )
    finally:
        engine.dispose()


def _columns(database_path: str) -> set[str]:
    engine = create_engine(f"sqlite:///{database_path}")
    try:
        inspector = inspect(engine)
        return {column["name"] for column in inspector.get_columns("user_configs")}
    finally:
        engine.dispose()


def test_create_all_adds_api_key_columns(tmp_path) -> None:
    """Schema migrations should backfill the API key columns."""

    database_path = tmp_path / "legacy.db"
    _initialise_legacy_schema(str(database_path))

    database = Database(f"sqlite+aiosqlite:///{database_path}")
    asyncio.run(database.create_all())
    asyncio.run(database.dispose())

    columns = _columns(str(database_path))
    assert {"mdblist_api_key", "rpdb_api_key"} <= columns


def test_create_all_is_idempotent(tmp_path) -> None:
    database_path = tmp_path / "fresh.db"
    database = Database(f"sqlite+aiosqlite:///{database_path}")

    async def _create_twice() -> None:
        await database.create_all()
        await database.create_all()
        await database.dispose()

    asyncio.run(_create_twice())

    assert "config" in _columns(str(database_path))
