"""Batch job that precomputes trending and similar-title recommendation lists.

Run once per invocation with ``cinehub-precompute`` or
``python -m app.precompute``. The job is the only writer of the
``precomputed_recs`` table; overlapping runs are not guarded against and must
be avoided operationally.
"""

from __future__ import annotations

import asyncio
import logging
import sys
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .cache import TRENDING_KEY, PrecomputedCache, similar_key
from .config import Settings, get_settings
from .database import Database
from .db_models import Movie, MoviePopularity

logger = logging.getLogger(__name__)


class PrecomputeLoadError(RuntimeError):
    """The catalog could not be read; nothing can be computed."""


@dataclass(slots=True)
class CatalogEntity:
    """A catalog row joined with its popularity counters."""

    id: int
    title: str
    genres: str | None = None
    created_at: datetime | None = None
    views: int = 0
    likes: int = 0


@dataclass(slots=True)
class PrecomputeReport:
    """Outcome of one run, for operator visibility."""

    entries_written: int = 0
    trending_ids: list[int] = field(default_factory=list)
    similar_written: int = 0
    skipped_ids: list[int] = field(default_factory=list)
    failed_ids: list[int] = field(default_factory=list)
    keys: list[str] = field(default_factory=list)


def _as_utc(value: datetime) -> datetime:
    # Naive timestamps (as SQLite returns them) are stored in UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def age_hours(created_at: datetime, now: datetime) -> float:
    """Hours between creation and ``now``, floored at zero for clock skew."""

    return max((_as_utc(now) - _as_utc(created_at)).total_seconds() / 3600, 0.0)


def trending_score(likes: int, views: int, hours: float) -> float:
    """Recency-decayed popularity: ``(likes * 2 + views) / (hours + 2)``."""

    return (likes * 2 + views) / (hours + 2)


def genre_tokens(genres: str | None) -> frozenset[str]:
    """Split a comma-separated genre string into trimmed, lower-case tokens."""

    if not genres:
        return frozenset()
    return frozenset(
        token.strip().lower() for token in genres.split(",") if token.strip()
    )


def shares_genre(first: str | None, second: str | None) -> bool:
    return bool(genre_tokens(first) & genre_tokens(second))


def rank_trending(
    entities: Sequence[CatalogEntity], now: datetime, *, limit: int
) -> list[int]:
    """Return the ids of the ``limit`` highest trending scores."""

    def _score(entity: CatalogEntity) -> float:
        # Undated rows have no recency signal and sink to the bottom.
        if entity.created_at is None:
            return 0.0
        return trending_score(entity.likes, entity.views, age_hours(entity.created_at, now))

    ranked = sorted(entities, key=_score, reverse=True)
    return [entity.id for entity in ranked[:limit]]


def rank_similar(
    entity: CatalogEntity,
    entities: Sequence[CatalogEntity],
    *,
    limit: int,
    tokens: dict[int, frozenset[str]] | None = None,
) -> list[int]:
    """Rank the other entities sharing a genre with ``entity`` by likes + views."""

    def _tokens(candidate: CatalogEntity) -> frozenset[str]:
        if tokens is not None and candidate.id in tokens:
            return tokens[candidate.id]
        return genre_tokens(candidate.genres)

    source = _tokens(entity)
    if not source:
        return []
    candidates = [
        candidate
        for candidate in entities
        if candidate.id != entity.id and source & _tokens(candidate)
    ]
    candidates.sort(key=lambda candidate: candidate.likes + candidate.views, reverse=True)
    return [candidate.id for candidate in candidates[:limit]]


class RecommendationPrecomputer:
    """Load the catalog, rank it and write the results to the cache."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        trending_limit: int = 20,
        similar_limit: int = 12,
        clock: Callable[[], datetime] | None = None,
        echo: Callable[[str], None] | None = None,
    ):
        self._session_factory = session_factory
        self._cache = PrecomputedCache(session_factory)
        self._trending_limit = trending_limit
        self._similar_limit = similar_limit
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._echo = echo or logger.info

    @property
    def cache(self) -> PrecomputedCache:
        return self._cache

    async def load(self) -> list[CatalogEntity]:
        """Read every catalog row with its counters (missing counters are 0)."""

        statement = (
            select(
                Movie.id,
                Movie.title,
                Movie.genres,
                Movie.created_at,
                MoviePopularity.views,
                MoviePopularity.likes,
            )
            .outerjoin(MoviePopularity, MoviePopularity.movie_id == Movie.id)
            .order_by(Movie.id)
        )
        try:
            async with self._session_factory() as session:
                result = await session.execute(statement)
                rows = result.all()
        except Exception as exc:
            raise PrecomputeLoadError(f"Failed to load catalog: {exc}") from exc

        return [
            CatalogEntity(
                id=row.id,
                title=row.title,
                genres=row.genres,
                created_at=row.created_at,
                views=row.views or 0,
                likes=row.likes or 0,
            )
            for row in rows
        ]

    async def run(self) -> PrecomputeReport:
        """Execute load, trending, similarity and report stages in order."""

        now = self._clock()
        report = PrecomputeReport()

        entities = await self.load()
        self._echo(f"Loaded {len(entities)} catalog entries")

        self._echo("Computing trending titles...")
        report.trending_ids = rank_trending(entities, now, limit=self._trending_limit)
        await self._cache.upsert(TRENDING_KEY, report.trending_ids, now=now)
        report.entries_written += 1
        self._echo(f"Stored top {len(report.trending_ids)} trending titles")

        self._echo("Computing similar titles...")
        tokens = {entity.id: genre_tokens(entity.genres) for entity in entities}
        for entity in entities:
            if not tokens[entity.id]:
                report.skipped_ids.append(entity.id)
                continue
            try:
                similar = rank_similar(
                    entity, entities, limit=self._similar_limit, tokens=tokens
                )
                if not similar:
                    continue
                await self._cache.upsert(similar_key(entity.id), similar, now=now)
            except Exception:
                logger.exception("Failed to precompute similar titles for %s", entity.id)
                report.failed_ids.append(entity.id)
                continue
            report.similar_written += 1
            report.entries_written += 1
            self._echo(f"  {entity.title}: {len(similar)} similar titles")

        self._echo(f"Precomputed similar titles for {report.similar_written} entries")

        report.keys = await self._cache.keys()
        self._echo(f"Entries written this run: {report.entries_written}")
        self._echo(f"Total cached entries: {len(report.keys)}")
        for key in report.keys:
            self._echo(f"  - {key}")
        if report.failed_ids:
            self._echo(f"Failed entries: {len(report.failed_ids)}")
        return report


async def run_once(config: Settings, *, echo: Callable[[str], None] = print) -> int:
    """Run the job against ``config.database_url`` and return an exit code."""

    database = Database(config.database_url)
    try:
        await database.create_all()
        precomputer = RecommendationPrecomputer(
            database.session_factory,
            trending_limit=config.trending_limit,
            similar_limit=config.similar_limit,
            echo=echo,
        )
        echo("Starting recommendations precomputation...")
        try:
            await precomputer.run()
        except PrecomputeLoadError as exc:
            logger.error("Precomputation aborted: %s", exc)
            echo(f"Precomputation aborted: {exc}")
            return 1
        echo("Precomputation complete")
        return 0
    finally:
        await database.dispose()


def main() -> int:
    """Console entrypoint; takes no arguments."""

    logging.basicConfig(level=logging.INFO)
    return asyncio.run(run_once(get_settings()))


if __name__ == "__main__":  # pragma: no cover - runtime entrypoint
    sys.exit(main())
