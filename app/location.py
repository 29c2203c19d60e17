"""Round-trip filter state through navigable location (URL query) state."""

from __future__ import annotations

import logging
from datetime import date
from typing import Any, Mapping, get_args
from urllib.parse import parse_qsl, urlencode

from .filters import (
    DEFAULT_CATEGORY,
    DEFAULT_SORT,
    Category,
    ContentType,
    FilterState,
    MonetizationType,
    SortOption,
    default_filters,
)
from .query import (
    BOOLEAN_FIELDS,
    COMMA_JOINED,
    DATE_RANGES,
    NUMERIC_RANGES,
    PIPE_JOINED,
    SCALAR_FIELDS,
    YEAR_FIELDS,
    format_number,
)

logger = logging.getLogger(__name__)

LIST_SEPARATORS: dict[str, str] = {
    "with_genres": ",",
    "without_genres": ",",
    "with_keywords": ",",
    "without_keywords": ",",
    **{name: "," for name in COMMA_JOINED},
    **{name: "|" for name in PIPE_JOINED},
}

_SORT_OPTIONS = frozenset(get_args(SortOption))
_CATEGORIES = frozenset(get_args(Category))
_MONETIZATION = frozenset(get_args(MonetizationType))


def filters_to_location(filters: FilterState) -> dict[str, str]:
    """Serialise every non-default field, including inactive type-specific ones.

    Unlike :func:`app.query.compile_filters` nothing is gated or
    de-conflicted here: the location must restore exactly what the user had.
    """

    params: dict[str, str] = {"type": filters.content_type}
    if filters.category != DEFAULT_CATEGORY:
        params["category"] = filters.category

    for name, separator in LIST_SEPARATORS.items():
        values = getattr(filters, name)
        if values:
            params[name] = separator.join(str(value) for value in values)

    for name in NUMERIC_RANGES:
        bounds = getattr(filters, name)
        if bounds.min is not None:
            params[f"{name}.gte"] = format_number(bounds.min)
        if bounds.max is not None:
            params[f"{name}.lte"] = format_number(bounds.max)

    for name in DATE_RANGES:
        bounds = getattr(filters, name)
        if bounds.start:
            params[f"{name}.gte"] = bounds.start
        if bounds.end:
            params[f"{name}.lte"] = bounds.end

    for name in YEAR_FIELDS:
        value = getattr(filters, name)
        if value is not None:
            params[name] = str(value)

    for field_name, param in SCALAR_FIELDS:
        value = getattr(filters, field_name)
        if value:
            params[param] = value

    for name in BOOLEAN_FIELDS:
        value = getattr(filters, name)
        if value is not None:
            params[name] = "true" if value else "false"

    if filters.sort_by != DEFAULT_SORT:
        params["sort_by"] = filters.sort_by

    return params


def to_query_string(filters: FilterState) -> str:
    return urlencode(filters_to_location(filters))


def _parse_ints(raw: str, separator: str) -> list[int]:
    values: list[int] = []
    for part in raw.split(separator):
        part = part.strip()
        if part.lstrip("-").isdigit():
            values.append(int(part))
    return values


def _parse_number(raw: str | None) -> float | None:
    if raw is None or not raw.strip():
        return None
    try:
        return float(raw)
    except ValueError:
        return None


def _parse_date(raw: str | None) -> str | None:
    if not raw:
        return None
    try:
        return date.fromisoformat(raw.strip()[:10]).isoformat()
    except ValueError:
        return None


def _parse_bool(raw: str | None) -> bool | None:
    if raw is None:
        return None
    lowered = raw.strip().lower()
    if lowered == "true":
        return True
    if lowered == "false":
        return False
    return None


def location_to_filters(
    query: Mapping[str, str] | str, *, default_type: ContentType = "movie"
) -> FilterState:
    """Rebuild filter state from location query parameters.

    Unknown keys and unparseable values are ignored so a hand-edited URL
    degrades to the nearest valid state instead of failing.
    """

    if isinstance(query, str):
        params: Mapping[str, str] = dict(parse_qsl(query.lstrip("?")))
    else:
        params = query

    raw_type = params.get("type")
    content_type: ContentType = raw_type if raw_type in ("movie", "tv") else default_type  # type: ignore[assignment]
    payload: dict[str, Any] = {}

    category = params.get("category")
    if category in _CATEGORIES:
        payload["category"] = category

    for name, separator in LIST_SEPARATORS.items():
        raw = params.get(name)
        if not raw:
            continue
        if name == "with_watch_monetization_types":
            payload[name] = [
                part.strip()
                for part in raw.split(separator)
                if part.strip() in _MONETIZATION
            ]
        else:
            payload[name] = _parse_ints(raw, separator)

    for name in NUMERIC_RANGES:
        low = _parse_number(params.get(f"{name}.gte"))
        high = _parse_number(params.get(f"{name}.lte"))
        if low is not None or high is not None:
            payload[name] = {"min": low, "max": high}

    for name in DATE_RANGES:
        start = _parse_date(params.get(f"{name}.gte"))
        end = _parse_date(params.get(f"{name}.lte"))
        if start or end:
            payload[name] = {"start": start, "end": end}

    for name in YEAR_FIELDS:
        raw = params.get(name)
        if raw and raw.strip().isdigit():
            payload[name] = int(raw)

    for field_name, param in SCALAR_FIELDS:
        raw = params.get(param)
        if raw:
            payload[field_name] = raw

    for name in BOOLEAN_FIELDS:
        value = _parse_bool(params.get(name))
        if value is not None:
            payload[name] = value

    sort_by = params.get("sort_by")
    if sort_by in _SORT_OPTIONS:
        payload["sort_by"] = sort_by
    elif sort_by:
        logger.debug("Ignoring unsupported sort_by %r from location", sort_by)

    return default_filters(content_type).with_updates(**payload)
