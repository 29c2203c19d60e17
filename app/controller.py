"""Debounced, generation-guarded fetching of discover results."""

from __future__ import annotations

import asyncio
import logging
from contextlib import suppress
from enum import Enum
from typing import Any, Awaitable, Callable, Mapping

from .config import settings
from .filters import ContentType, FilterState, default_filters
from .location import filters_to_location, location_to_filters
from .query import QueryParams, build_discover_params
from .results import InfiniteResultStore, Page

logger = logging.getLogger(__name__)

Fetcher = Callable[[ContentType, QueryParams], Awaitable[Page]]
LocationSink = Callable[[dict[str, str]], None]


class FetchState(str, Enum):
    IDLE = "idle"
    DEBOUNCING = "debouncing"
    FETCHING = "fetching"
    ERROR = "error"


class DebouncedFetchController:
    """Own the pending/applied filter registers and drive page fetches.

    ``pending`` follows every edit synchronously; ``applied`` only moves when
    the debounce window elapses quietly, on :meth:`apply`, or when the
    location is re-hydrated. Every applied transition bumps ``generation``
    and any response tagged with an older generation is dropped on arrival.
    Must be used from within a running event loop.
    """

    def __init__(
        self,
        fetch: Fetcher,
        *,
        initial: FilterState | None = None,
        store: InfiniteResultStore | None = None,
        debounce_seconds: float | None = None,
        on_location_change: LocationSink | None = None,
    ) -> None:
        self._fetch = fetch
        self.store = store or InfiniteResultStore()
        self.store.bind_trigger(self.load_more)
        self._pending = initial or default_filters()
        self._applied = self._pending
        self._generation = 0
        self._debounce_seconds = (
            settings.debounce_seconds if debounce_seconds is None else debounce_seconds
        )
        self._location_sink = on_location_change
        self._debounce_task: asyncio.Task[None] | None = None
        self._fetch_task: asyncio.Task[None] | None = None
        self._tasks: set[asyncio.Task[Any]] = set()
        self._error: BaseException | None = None
        self.stale_discards = 0

    @property
    def pending(self) -> FilterState:
        return self._pending

    @property
    def applied(self) -> FilterState:
        return self._applied

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def error(self) -> BaseException | None:
        return self._error

    @property
    def state(self) -> FetchState:
        if self._debounce_task is not None and not self._debounce_task.done():
            return FetchState.DEBOUNCING
        if self._fetch_task is not None and not self._fetch_task.done():
            return FetchState.FETCHING
        if self._error is not None:
            return FetchState.ERROR
        return FetchState.IDLE

    @property
    def is_fetching(self) -> bool:
        return self.state in (FetchState.FETCHING, FetchState.DEBOUNCING)

    # Pending edits -----------------------------------------------------

    def edit(self, **changes: Any) -> FilterState:
        """Apply field edits to ``pending`` and restart the debounce window."""

        return self.set_pending(self._pending.with_updates(**changes))

    def set_pending(self, filters: FilterState) -> FilterState:
        self._pending = filters
        self._restart_debounce()
        return filters

    def switch_content_type(self, content_type: ContentType) -> FilterState:
        return self.set_pending(self._pending.switch_content_type(content_type))

    def reset_filters(self) -> FilterState:
        return self.set_pending(self._pending.reset())

    def _restart_debounce(self) -> None:
        self._cancel_debounce()
        self._debounce_task = self._spawn(self._debounce())

    def _cancel_debounce(self) -> None:
        if self._debounce_task is not None and not self._debounce_task.done():
            self._debounce_task.cancel()
        self._debounce_task = None

    async def _debounce(self) -> None:
        await asyncio.sleep(self._debounce_seconds)
        self._debounce_task = None
        if (
            self._pending == self._applied
            and self._generation > 0
            and self._error is None
        ):
            logger.debug("Debounce elapsed with no effective change")
            return
        self._commit(self._pending)

    # Applied transitions ----------------------------------------------

    def start(self) -> int:
        """Fetch the first page for the current filters."""

        self._cancel_debounce()
        self._pending = self._applied
        return self._commit(self._applied)

    def apply(self) -> int:
        """Promote ``pending`` to ``applied`` immediately."""

        self._cancel_debounce()
        return self._commit(self._pending)

    def hydrate_from_location(self, query: Mapping[str, str] | str) -> int:
        """Adopt filters parsed from a location change (e.g. history navigation).

        Triggers at most one fetch and does not echo the state back to the
        location sink, so a navigation never starts a sync loop. A location
        that already matches the applied filters is ignored.
        """

        filters = location_to_filters(query, default_type=self._applied.content_type)
        if filters == self._applied and self._generation > 0 and self._error is None:
            # Echo of our own sink; pending edits in progress are kept.
            logger.debug("Location already matches applied filters")
            return self._generation
        self._cancel_debounce()
        self._pending = filters
        return self._commit(filters, sync_location=False)

    def _commit(self, filters: FilterState, *, sync_location: bool = True) -> int:
        self._applied = filters
        self._generation += 1
        self._error = None
        self.store.reset()
        if sync_location and self._location_sink is not None:
            self._location_sink(filters_to_location(filters))
        logger.debug("Applied filters for generation %s", self._generation)
        self._start_fetch(cursor=1)
        return self._generation

    # Pagination --------------------------------------------------------

    def load_more(self) -> bool:
        """Fetch the next page of the current generation if one is due.

        A no-op while a fetch or debounce is outstanding, so duplicate
        proximity signals cannot double-request a page. From the error state
        the failed page is retried.
        """

        state = self.state
        if state in (FetchState.FETCHING, FetchState.DEBOUNCING):
            return False
        if self._generation == 0 or not self.store.has_more:
            return False
        self._error = None
        self._start_fetch(cursor=self.store.cursor + 1)
        return True

    def on_proximity(self) -> bool:
        return self.store.on_proximity(is_fetching=self.is_fetching)

    def _start_fetch(self, *, cursor: int) -> None:
        self._fetch_task = self._spawn(
            self._run_fetch(self._generation, self._applied, cursor)
        )

    async def _run_fetch(
        self, generation: int, filters: FilterState, cursor: int
    ) -> None:
        params = build_discover_params(filters, page=cursor)
        try:
            page = await self._fetch(filters.content_type, params)
        except Exception as exc:
            if generation != self._generation:
                logger.debug(
                    "Ignoring failure from superseded generation %s", generation
                )
                return
            logger.warning(
                "Discover fetch failed for generation %s page %s: %s",
                generation,
                cursor,
                exc,
            )
            self._error = exc
            return

        if generation != self._generation:
            self.stale_discards += 1
            logger.debug(
                "Discarding page %s from generation %s (current %s)",
                cursor,
                generation,
                self._generation,
            )
            return
        self.store.add_page(page)

    # Lifecycle ---------------------------------------------------------

    def _spawn(self, coro: Awaitable[None]) -> asyncio.Task[None]:
        task = asyncio.create_task(coro)  # type: ignore[arg-type]
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def wait_idle(self) -> None:
        """Wait until no debounce timer or fetch (of any generation) is outstanding."""

        while True:
            outstanding = [task for task in self._tasks if not task.done()]
            if not outstanding:
                return
            await asyncio.wait(outstanding)

    async def aclose(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        for task in list(self._tasks):
            with suppress(asyncio.CancelledError):
                await task
        self._debounce_task = None
        self._fetch_task = None
