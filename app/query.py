"""Compile filter state into upstream discover query parameters."""

from __future__ import annotations

from datetime import date, timedelta
from typing import Iterable

from .filters import (
    DEFAULT_SORT,
    MOVIE_ONLY_FIELDS,
    TV_ONLY_FIELDS,
    ContentType,
    DateRange,
    FilterState,
    NumericRange,
)

QueryParams = dict[str, str]

# The upstream API reads "," as AND and "|" as OR; each field keeps the
# separator it has always been sent with.
COMMA_JOINED: tuple[str, ...] = (
    "with_cast",
    "with_crew",
    "with_people",
    "with_companies",
    "with_networks",
)
PIPE_JOINED: tuple[str, ...] = (
    "with_watch_providers",
    "with_watch_monetization_types",
    "with_release_type",
)
NUMERIC_RANGES: tuple[str, ...] = ("with_runtime", "vote_average", "vote_count")
DATE_RANGES: tuple[str, ...] = (
    "primary_release_date",
    "release_date",
    "first_air_date",
    "air_date",
)
YEAR_FIELDS: tuple[str, ...] = ("primary_release_year", "first_air_date_year")
SCALAR_FIELDS: tuple[tuple[str, str], ...] = (
    ("with_original_language", "with_original_language"),
    ("region", "region"),
    ("watch_region", "watch_region"),
    ("timezone", "timezone"),
    ("certification_country", "certification_country"),
    ("certification", "certification"),
    ("certification_lte", "certification.lte"),
)
BOOLEAN_FIELDS: tuple[str, ...] = (
    "include_adult",
    "include_video",
    "screened_theatrically",
)


def format_number(value: float | int) -> str:
    """Render a numeric bound without a spurious trailing ``.0``."""

    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def _join(values: Iterable[object], separator: str) -> str:
    return separator.join(str(value) for value in values)


def _applies(name: str, content_type: ContentType) -> bool:
    if name in MOVIE_ONLY_FIELDS:
        return content_type == "movie"
    if name in TV_ONLY_FIELDS:
        return content_type != "movie"
    return True


def _emit_range(params: QueryParams, name: str, bounds: NumericRange) -> None:
    if bounds.min is not None:
        params[f"{name}.gte"] = format_number(bounds.min)
    if bounds.max is not None:
        params[f"{name}.lte"] = format_number(bounds.max)


def _emit_dates(params: QueryParams, name: str, bounds: DateRange) -> None:
    if bounds.start:
        params[f"{name}.gte"] = bounds.start
    if bounds.end:
        params[f"{name}.lte"] = bounds.end


def _include_exclude(
    params: QueryParams, base: str, include: list[int], exclude: list[int]
) -> None:
    # An id on both sides contradicts itself; neither side gets it.
    contested = set(include) & set(exclude)
    kept_in = [value for value in include if value not in contested]
    kept_out = [value for value in exclude if value not in contested]
    if kept_in:
        params[f"with_{base}"] = _join(kept_in, ",")
    if kept_out:
        params[f"without_{base}"] = _join(kept_out, ",")


def compile_filters(filters: FilterState) -> QueryParams:
    """Map ``filters`` to the flat parameter set of the discover endpoint.

    Only values that differ from their empty default are emitted, so the
    default state for either content type compiles to an empty mapping.
    Ranges are passed through as given, even when ``min > max``.
    """

    content_type = filters.content_type
    params: QueryParams = {}

    _include_exclude(params, "genres", filters.with_genres, filters.without_genres)
    _include_exclude(
        params, "keywords", filters.with_keywords, filters.without_keywords
    )

    for name in NUMERIC_RANGES:
        _emit_range(params, name, getattr(filters, name))

    for name in DATE_RANGES:
        if _applies(name, content_type):
            _emit_dates(params, name, getattr(filters, name))

    for name in YEAR_FIELDS:
        value = getattr(filters, name)
        if value is not None and _applies(name, content_type):
            params[name] = str(value)

    for name in PIPE_JOINED:
        values = getattr(filters, name)
        if values and _applies(name, content_type):
            params[name] = _join(values, "|")

    for name in COMMA_JOINED:
        values = getattr(filters, name)
        if values and _applies(name, content_type):
            params[name] = _join(values, ",")

    for field_name, param in SCALAR_FIELDS:
        value = getattr(filters, field_name)
        if value and _applies(field_name, content_type):
            params[param] = value

    for name in BOOLEAN_FIELDS:
        value = getattr(filters, name)
        if value is not None and _applies(name, content_type):
            params[name] = "true" if value else "false"

    if filters.sort_by != DEFAULT_SORT:
        params["sort_by"] = filters.sort_by

    return params


def category_params(
    content_type: ContentType, category: str, *, today: date | None = None
) -> QueryParams:
    """Return the preset parameters backing a named browse category."""

    today = today or date.today()
    day = today.isoformat()

    if content_type == "movie":
        theatrical = {"with_release_type": "2|3"}
        if category == "upcoming":
            return {
                "primary_release_date.gte": day,
                "sort_by": "primary_release_date.asc",
                **theatrical,
            }
        if category == "now_playing":
            return {
                "primary_release_date.gte": (today - timedelta(days=30)).isoformat(),
                "primary_release_date.lte": day,
                "sort_by": "release_date.desc",
                **theatrical,
            }
        if category == "popular":
            return {"sort_by": "popularity.desc", **theatrical}
        if category == "trending":
            return {"sort_by": "popularity.desc", "vote_count.gte": "1000", **theatrical}
        if category == "top_rated":
            return {"sort_by": "vote_average.desc", "vote_count.gte": "500", **theatrical}
        return {}

    if category in {"airing_today", "on_the_air"}:
        return {
            "air_date.gte": day,
            "air_date.lte": (today + timedelta(days=7)).isoformat(),
            "sort_by": "popularity.desc",
        }
    if category == "popular":
        return {"sort_by": "popularity.desc"}
    if category == "top_rated":
        return {"sort_by": "vote_average.desc", "vote_count.gte": "200"}
    if category == "trending":
        try:
            year_ago = today.replace(year=today.year - 1)
        except ValueError:
            year_ago = today.replace(year=today.year - 1, day=28)
        return {"sort_by": "popularity.desc", "first_air_date.gte": year_ago.isoformat()}
    return {}


def build_discover_params(
    filters: FilterState, *, page: int = 1, today: date | None = None
) -> QueryParams:
    """Layer the compiled filters over the category preset for one page."""

    params = category_params(filters.content_type, filters.category, today=today)
    params.update(compile_filters(filters))
    params["page"] = str(page)
    return params
