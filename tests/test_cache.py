from __future__ import annotations

import asyncio
from datetime import datetime

from sqlalchemy import create_engine, inspect, text

from app.cache import PrecomputedCache, parse_ids, similar_key
from app.database import Database


def _initialise_legacy_cache(database_path: str) -> None:
    """Create a cache table written before ``last_updated`` existed."""

    engine = create_engine(f"sqlite:///{database_path}")
    try:
        with engine.begin() as connection:
            connection.execute(
                text(
                    """
                    CREATE TABLE precomputed_recs (
                        key VARCHAR(255) PRIMARY KEY,
                        movie_ids TEXT
                    )
                    """
                )
            )
            connection.execute(
                text(
                    "INSERT INTO precomputed_recs (key, movie_ids) "
                    "VALUES ('trending', '3,1,2')"
                )
            )
    finally:
        engine.dispose()


def test_upsert_overwrites_existing_entry(tmp_path) -> None:
    database = Database(f"sqlite+aiosqlite:///{tmp_path / 'cache.db'}")
    first_run = datetime(2024, 1, 1, 12, 0)
    second_run = datetime(2024, 1, 2, 12, 0)

    async def scenario():
        await database.create_all()
        cache = PrecomputedCache(database.session_factory)
        try:
            await cache.upsert("trending", [5, 4, 3], now=first_run)
            await cache.upsert(similar_key(7), [8, 9], now=first_run)
            await cache.upsert("trending", [1, 2], now=second_run)
            return await cache.get("trending"), await cache.keys(), await cache.count()
        finally:
            await database.dispose()

    entry, keys, count = asyncio.run(scenario())

    assert entry is not None
    assert entry.ranked_ids == [1, 2]
    assert entry.last_updated == second_run
    assert keys == ["similar_7", "trending"]
    assert count == 2


def test_missing_key_returns_none(tmp_path) -> None:
    database = Database(f"sqlite+aiosqlite:///{tmp_path / 'cache.db'}")

    async def scenario():
        await database.create_all()
        try:
            return await PrecomputedCache(database.session_factory).get("similar_404")
        finally:
            await database.dispose()

    assert asyncio.run(scenario()) is None


def test_create_all_backfills_last_updated_column(tmp_path) -> None:
    """Schema migrations should add and populate the last_updated column."""

    database_path = tmp_path / "legacy.db"
    _initialise_legacy_cache(str(database_path))
    database = Database(f"sqlite+aiosqlite:///{database_path}")

    async def scenario():
        await database.create_all()
        try:
            return await PrecomputedCache(database.session_factory).get("trending")
        finally:
            await database.dispose()

    entry = asyncio.run(scenario())

    inspector_engine = create_engine(f"sqlite:///{database_path}")
    try:
        inspector = inspect(inspector_engine)
        columns = {column["name"] for column in inspector.get_columns("precomputed_recs")}
    finally:
        inspector_engine.dispose()

    assert "last_updated" in columns
    assert entry is not None
    assert entry.ranked_ids == [3, 1, 2]
    assert entry.last_updated is not None


def test_parse_ids_skips_corrupt_parts() -> None:
    assert parse_ids("1, 2,,x,3") == [1, 2, 3]
    assert parse_ids("") == []
    assert parse_ids(None) == []


def test_create_all_leaves_popularity_table_to_its_counters(tmp_path) -> None:
    database_path = tmp_path / "fresh.db"
    database = Database(f"sqlite+aiosqlite:///{database_path}")

    async def scenario():
        await database.create_all()
        await database.dispose()

    asyncio.run(scenario())

    inspector_engine = create_engine(f"sqlite:///{database_path}")
    try:
        columns = {column["name"] for column in inspect(inspector_engine).get_columns("movie_popularity")}
    finally:
        inspector_engine.dispose()

    assert columns == {"movie_id", "views", "likes", "last_updated"}
