"""Async SQLAlchemy plumbing for the catalog and recommendation cache tables."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from sqlalchemy import MetaData, inspect, text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

logger = logging.getLogger(__name__)

# Columns added after the first release, backfilled on startup.
# (table, column, ALTER statement, optional initialisation statement)
_ADDED_COLUMNS: tuple[tuple[str, str, str, str | None], ...] = (
    (
        "precomputed_recs",
        "last_updated",
        "ALTER TABLE precomputed_recs ADD COLUMN last_updated DATETIME",
        "UPDATE precomputed_recs SET last_updated = CURRENT_TIMESTAMP "
        "WHERE last_updated IS NULL",
    ),
)


class Base(DeclarativeBase):
    """Declarative base shared by the catalog and cache tables."""

    metadata = MetaData()


class Database:
    """Owns the async engine and hands out sessions to the cache and the job."""

    def __init__(self, database_url: str, *, echo: bool = False):
        self._engine: AsyncEngine = create_async_engine(database_url, echo=echo)
        self.session_factory: async_sessionmaker[AsyncSession] = async_sessionmaker(
            self._engine, expire_on_commit=False
        )

    @property
    def engine(self) -> AsyncEngine:
        return self._engine

    async def create_all(self) -> None:
        """Create missing tables, then backfill columns older databases lack."""

        async with self._engine.begin() as connection:
            await connection.run_sync(Base.metadata.create_all)
            await connection.run_sync(self._backfill_columns)

    @staticmethod
    def _backfill_columns(sync_connection) -> None:
        inspector = inspect(sync_connection)
        tables = set(inspector.get_table_names())
        for table, column, ddl, init_sql in _ADDED_COLUMNS:
            if table not in tables:
                continue
            if column in {info["name"] for info in inspector.get_columns(table)}:
                continue
            logger.info("Adding column %s.%s to existing table", table, column)
            sync_connection.execute(text(ddl))
            if init_sql:
                sync_connection.execute(text(init_sql))

    async def dispose(self) -> None:
        await self._engine.dispose()

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        async with self.session_factory() as session:
            yield session
