"""Typed filter state for the discovery browser."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import Any, Callable, Literal, Mapping

from pydantic import BaseModel, ConfigDict, Field, field_validator

ContentType = Literal["movie", "tv"]

Category = Literal[
    "discover",
    "trending",
    "popular",
    "top_rated",
    "upcoming",
    "now_playing",
    "airing_today",
    "on_the_air",
]

SortOption = Literal[
    "popularity.desc",
    "popularity.asc",
    "vote_average.desc",
    "vote_average.asc",
    "vote_count.desc",
    "vote_count.asc",
    "original_title.asc",
    "original_title.desc",
    "name.asc",
    "name.desc",
    "primary_release_date.desc",
    "primary_release_date.asc",
    "release_date.desc",
    "release_date.asc",
    "revenue.desc",
    "revenue.asc",
    "first_air_date.desc",
    "first_air_date.asc",
    "air_date.desc",
    "air_date.asc",
]

MonetizationType = Literal["flatrate", "free", "ads", "rent", "buy"]

DEFAULT_SORT: SortOption = "popularity.desc"
DEFAULT_CATEGORY: Category = "discover"

MOVIE_CATEGORIES: tuple[str, ...] = (
    "discover",
    "trending",
    "popular",
    "top_rated",
    "upcoming",
    "now_playing",
)
TV_CATEGORIES: tuple[str, ...] = (
    "discover",
    "trending",
    "popular",
    "top_rated",
    "airing_today",
    "on_the_air",
)

MOVIE_ONLY_FIELDS: frozenset[str] = frozenset(
    {
        "with_cast",
        "with_crew",
        "with_people",
        "primary_release_date",
        "release_date",
        "primary_release_year",
        "include_video",
        "certification_lte",
        "with_release_type",
    }
)
TV_ONLY_FIELDS: frozenset[str] = frozenset(
    {
        "with_networks",
        "first_air_date",
        "air_date",
        "first_air_date_year",
        "timezone",
        "screened_theatrically",
    }
)


class DateRange(BaseModel):
    """Inclusive ``YYYY-MM-DD`` bounds; either side may be open."""

    model_config = ConfigDict(frozen=True)

    start: str | None = None
    end: str | None = None

    @field_validator("start", "end", mode="before")
    @classmethod
    def _normalise_date(cls, value: object) -> object:
        if value is None:
            return None
        if isinstance(value, date):
            return value.isoformat()
        if isinstance(value, str):
            value = value.strip()
            if not value:
                return None
            # Only the calendar part is meaningful upstream.
            return date.fromisoformat(value[:10]).isoformat()
        return value

    def is_empty(self) -> bool:
        return self.start is None and self.end is None


class NumericRange(BaseModel):
    """Numeric bounds compiled to ``.gte`` / ``.lte`` halves."""

    model_config = ConfigDict(frozen=True)

    min: float | None = None
    max: float | None = None

    def is_empty(self) -> bool:
        return self.min is None and self.max is None


def _dedupe(values: list[Any]) -> list[Any]:
    seen: set[Any] = set()
    ordered: list[Any] = []
    for value in values:
        if value in seen:
            continue
        seen.add(value)
        ordered.append(value)
    return ordered


class FilterState(BaseModel):
    """Every user-chosen discovery constraint for one browsing context.

    Instances are immutable; edits go through :meth:`with_updates` so the
    fetch layer can hold on to a snapshot without it changing underneath.
    """

    model_config = ConfigDict(frozen=True)

    content_type: ContentType = "movie"
    category: Category = DEFAULT_CATEGORY

    with_genres: list[int] = Field(default_factory=list)
    without_genres: list[int] = Field(default_factory=list)
    with_keywords: list[int] = Field(default_factory=list)
    without_keywords: list[int] = Field(default_factory=list)

    primary_release_date: DateRange = Field(default_factory=DateRange)
    release_date: DateRange = Field(default_factory=DateRange)
    primary_release_year: int | None = None
    first_air_date: DateRange = Field(default_factory=DateRange)
    air_date: DateRange = Field(default_factory=DateRange)
    first_air_date_year: int | None = None
    timezone: str | None = None

    with_runtime: NumericRange = Field(default_factory=NumericRange)
    vote_average: NumericRange = Field(default_factory=NumericRange)
    vote_count: NumericRange = Field(default_factory=NumericRange)

    with_original_language: str | None = None
    region: str | None = None
    watch_region: str | None = None

    with_watch_providers: list[int] = Field(default_factory=list)
    with_watch_monetization_types: list[MonetizationType] = Field(
        default_factory=list
    )

    with_cast: list[int] = Field(default_factory=list)
    with_crew: list[int] = Field(default_factory=list)
    with_people: list[int] = Field(default_factory=list)
    with_companies: list[int] = Field(default_factory=list)
    with_networks: list[int] = Field(default_factory=list)
    with_release_type: list[int] = Field(default_factory=list)

    include_adult: bool | None = None
    include_video: bool | None = None
    screened_theatrically: bool | None = None
    certification_country: str | None = None
    certification: str | None = None
    certification_lte: str | None = None

    sort_by: SortOption = DEFAULT_SORT

    @field_validator(
        "with_genres",
        "without_genres",
        "with_keywords",
        "without_keywords",
        "with_watch_providers",
        "with_watch_monetization_types",
        "with_cast",
        "with_crew",
        "with_people",
        "with_companies",
        "with_networks",
        "with_release_type",
    )
    @classmethod
    def _dedupe_lists(cls, value: list[Any]) -> list[Any]:
        return _dedupe(value)

    @field_validator(
        "timezone",
        "with_original_language",
        "region",
        "watch_region",
        "certification_country",
        "certification",
        "certification_lte",
        mode="before",
    )
    @classmethod
    def _strip_blank(cls, value: object) -> object:
        if isinstance(value, str):
            value = value.strip()
            if not value:
                return None
        return value

    def with_updates(self, **changes: Any) -> "FilterState":
        """Return a validated copy with ``changes`` applied."""

        payload = self.model_dump()
        payload.update(changes)
        return FilterState.model_validate(payload)

    def reset(self) -> "FilterState":
        """Return the canonical default for the current content type."""

        return default_filters(self.content_type)

    def switch_content_type(self, content_type: ContentType) -> "FilterState":
        """Replace the state wholesale for another content type.

        Fields whose meaning depends on the content type are dropped; the
        neutral dimensions carry over.
        """

        if content_type == self.content_type:
            return self
        carried = {
            name: value
            for name, value in self.model_dump().items()
            if name not in MOVIE_ONLY_FIELDS
            and name not in TV_ONLY_FIELDS
            and name not in {"content_type", "category"}
        }
        return default_filters(content_type).with_updates(**carried)

    def is_default(self) -> bool:
        return self == default_filters(self.content_type)

    def active_fields(self) -> list[str]:
        """Names of fields that differ from the content-type default."""

        baseline = default_filters(self.content_type)
        return [
            name
            for name in type(self).model_fields
            if getattr(self, name) != getattr(baseline, name)
        ]


def default_filters(content_type: ContentType = "movie") -> FilterState:
    """Return a fresh default filter state for ``content_type``."""

    return FilterState(content_type=content_type)


def categories_for(content_type: ContentType) -> tuple[str, ...]:
    return MOVIE_CATEGORIES if content_type == "movie" else TV_CATEGORIES


@dataclass(frozen=True)
class QuickPreset:
    """A one-click filter chip merged into the current state."""

    id: str
    label: str
    description: str
    build: Callable[[date], Mapping[str, Any]] = field(repr=False)


def _this_year(today: date) -> Mapping[str, Any]:
    bounds = {"start": f"{today.year}-01-01", "end": f"{today.year}-12-31"}
    return {"primary_release_date": bounds, "first_air_date": bounds}


QUICK_PRESETS: Mapping[str, QuickPreset] = {
    preset.id: preset
    for preset in [
        QuickPreset(
            id="this-year",
            label="This Year",
            description="Released this year",
            build=_this_year,
        ),
        QuickPreset(
            id="2010s",
            label="2010s",
            description="From the 2010s decade",
            build=lambda _: {
                "primary_release_date": {"start": "2010-01-01", "end": "2019-12-31"},
                "first_air_date": {"start": "2010-01-01", "end": "2019-12-31"},
            },
        ),
        QuickPreset(
            id="highly-rated",
            label="Highly Rated",
            description="7.5+ rating with 100+ votes",
            build=lambda _: {"vote_average": {"min": 7.5}, "vote_count": {"min": 100}},
        ),
        QuickPreset(
            id="netflix",
            label="Netflix",
            description="Available on Netflix",
            build=lambda _: {"with_watch_providers": [8], "watch_region": "US"},
        ),
        QuickPreset(
            id="free-to-watch",
            label="Free",
            description="Free to watch",
            build=lambda _: {"with_watch_monetization_types": ["free", "ads"]},
        ),
    ]
}


def apply_quick_preset(
    filters: FilterState, preset_id: str, *, today: date | None = None
) -> FilterState:
    """Merge the named quick preset into ``filters``."""

    try:
        preset = QUICK_PRESETS[preset_id]
    except KeyError as exc:
        raise KeyError(f"Unknown quick preset: {preset_id}") from exc
    return filters.with_updates(**preset.build(today or date.today()))
