"""SQLAlchemy ORM models for the catalog and the recommendation cache."""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from .database import Base


def utcnow() -> datetime:
    """Naive UTC timestamp; every DateTime column here is stored in UTC."""

    return datetime.now(timezone.utc).replace(tzinfo=None)


class Movie(Base):
    """A catalog entity the precomputer ranks."""

    __tablename__ = "movies"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    title: Mapped[str] = mapped_column(String(255))
    year: Mapped[int | None] = mapped_column(Integer, nullable=True)
    # Denormalised, comma-separated (e.g. "Action,Thriller").
    genres: Mapped[str | None] = mapped_column(Text, nullable=True)
    directors: Mapped[str | None] = mapped_column(Text, nullable=True)
    cast: Mapped[str | None] = mapped_column(Text, nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    poster_url: Mapped[str | None] = mapped_column(String(512), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)


class MoviePopularity(Base):
    """Aggregated engagement counters for a movie."""

    __tablename__ = "movie_popularity"

    movie_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("movies.id"), primary_key=True
    )
    views: Mapped[int] = mapped_column(Integer, default=0)
    likes: Mapped[int] = mapped_column(Integer, default=0)
    last_updated: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, onupdate=utcnow
    )


class PrecomputedRecommendation(Base):
    """A ranked id list stored under ``trending`` or ``similar_<id>``."""

    __tablename__ = "precomputed_recs"

    key: Mapped[str] = mapped_column(String(255), primary_key=True)
    movie_ids: Mapped[str] = mapped_column(Text)
    last_updated: Mapped[datetime | None] = mapped_column(
        DateTime, default=utcnow, nullable=True
    )
