"""Durable key to ranked-id-list store for precomputed recommendations."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterable

from sqlalchemy import func, select
from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .db_models import PrecomputedRecommendation, utcnow

logger = logging.getLogger(__name__)

TRENDING_KEY = "trending"
SIMILAR_PREFIX = "similar_"


def similar_key(entity_id: int) -> str:
    return f"{SIMILAR_PREFIX}{entity_id}"


def join_ids(ids: Iterable[int]) -> str:
    return ",".join(str(int(value)) for value in ids)


def parse_ids(raw: str | None) -> list[int]:
    """Parse a stored comma-joined id list, skipping blank or corrupt parts."""

    if not raw:
        return []
    ids: list[int] = []
    for part in raw.split(","):
        part = part.strip()
        if not part:
            continue
        try:
            ids.append(int(part))
        except ValueError:
            logger.warning("Skipping corrupt id %r in cached list", part)
    return ids


@dataclass(slots=True)
class PrecomputedEntry:
    """A ranked id list as read back from the cache."""

    key: str
    ranked_ids: list[int]
    last_updated: datetime | None


class PrecomputedCache:
    """Read/write access to the ``precomputed_recs`` table.

    Each :meth:`upsert` commits on its own. There is no cross-key
    transaction, so readers may see a fresh ``trending`` entry next to
    ``similar_*`` entries from an earlier run.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def upsert(
        self, key: str, ranked_ids: Iterable[int], *, now: datetime | None = None
    ) -> PrecomputedEntry:
        """Insert or overwrite the list stored under ``key``."""

        ids = [int(value) for value in ranked_ids]
        stamp = now or utcnow()
        if stamp.tzinfo is not None:
            stamp = stamp.astimezone(timezone.utc).replace(tzinfo=None)
        values = {"key": key, "movie_ids": join_ids(ids), "last_updated": stamp}
        async with self._session_factory() as session:
            dialect = session.bind.dialect.name if session.bind is not None else ""
            if dialect in {"sqlite", "postgresql"}:
                insert = sqlite_insert if dialect == "sqlite" else postgresql_insert
                statement = insert(PrecomputedRecommendation).values(**values)
                statement = statement.on_conflict_do_update(
                    index_elements=[PrecomputedRecommendation.key],
                    set_={
                        "movie_ids": statement.excluded.movie_ids,
                        "last_updated": statement.excluded.last_updated,
                    },
                )
                await session.execute(statement)
            else:
                await session.merge(PrecomputedRecommendation(**values))
            await session.commit()
        return PrecomputedEntry(key=key, ranked_ids=ids, last_updated=stamp)

    async def get(self, key: str) -> PrecomputedEntry | None:
        async with self._session_factory() as session:
            record = await session.get(PrecomputedRecommendation, key)
            if record is None:
                return None
            return PrecomputedEntry(
                key=record.key,
                ranked_ids=parse_ids(record.movie_ids),
                last_updated=record.last_updated,
            )

    async def keys(self) -> list[str]:
        """Return every stored key in sorted order."""

        async with self._session_factory() as session:
            result = await session.execute(
                select(PrecomputedRecommendation.key).order_by(
                    PrecomputedRecommendation.key
                )
            )
            return [row[0] for row in result.all()]

    async def count(self) -> int:
        async with self._session_factory() as session:
            result = await session.execute(
                select(func.count()).select_from(PrecomputedRecommendation)
            )
            return int(result.scalar_one())
