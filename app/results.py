"""Accumulate paginated discover results into one ordered list."""

from __future__ import annotations

import logging
from typing import Any, Callable, Mapping

from pydantic import BaseModel, ConfigDict, Field, ValidationError

logger = logging.getLogger(__name__)


class Entity(BaseModel):
    """A catalog entry; everything beyond the identity key is opaque here."""

    model_config = ConfigDict(extra="allow")

    id: int | None = None
    media_type: str = "movie"

    @property
    def key(self) -> tuple[str, int] | None:
        if self.id is None:
            return None
        return (self.media_type, self.id)


class Page(BaseModel):
    """One page of results as delivered by the transport."""

    items: list[Entity] = Field(default_factory=list)
    cursor: int = 1
    has_more: bool = False

    @classmethod
    def from_payload(cls, data: Mapping[str, Any], *, media_type: str) -> "Page":
        """Build a page from a discover response body."""

        raw_items = data.get("results") or []
        items: list[Entity] = []
        for entry in raw_items:
            if not isinstance(entry, Mapping):
                continue
            item_data = dict(entry)
            item_data.setdefault("media_type", media_type)
            try:
                items.append(Entity.model_validate(item_data))
            except ValidationError as exc:
                logger.debug(
                    "Dropping malformed result %r: %s", entry.get("id"), exc.errors()[0]["msg"]
                )

        cursor = int(data.get("page") or 1)
        total_pages = int(data.get("total_pages") or cursor)
        return cls(items=items, cursor=cursor, has_more=cursor < total_pages)


class InfiniteResultStore:
    """Ordered, de-duplicated accumulation of pages for one generation."""

    def __init__(self) -> None:
        self._items: list[Entity] = []
        self._seen: set[tuple[str, int]] = set()
        self._cursor = 0
        self._has_more = True
        self._trigger: Callable[[], object] | None = None

    @property
    def items(self) -> list[Entity]:
        return list(self._items)

    @property
    def cursor(self) -> int:
        """Cursor of the latest page received, 0 before the first page."""

        return self._cursor

    @property
    def has_more(self) -> bool:
        return self._has_more

    def __len__(self) -> int:
        return len(self._items)

    def reset(self) -> None:
        self._items = []
        self._seen = set()
        self._cursor = 0
        self._has_more = True

    def add_page(self, page: Page) -> int:
        """Merge ``page`` and return how many new entries it contributed."""

        added = 0
        for item in page.items:
            key = item.key
            if key is None:
                logger.debug("Dropping result without an id from page %s", page.cursor)
                continue
            if key in self._seen:
                continue
            self._seen.add(key)
            self._items.append(item)
            added += 1
        self._cursor = page.cursor
        self._has_more = page.has_more
        return added

    def bind_trigger(self, load_more: Callable[[], object]) -> None:
        """Register the callable fired when the proximity signal allows it."""

        self._trigger = load_more

    def on_proximity(self, *, is_fetching: bool) -> bool:
        """Handle the caller's "near the end of the list" signal."""

        if self._trigger is None or not self._has_more or is_fetching:
            return False
        self._trigger()
        return True
