"""Debounced fetch controller behaviour tests."""

from __future__ import annotations

import asyncio
from typing import Callable

import pytest

from app.controller import DebouncedFetchController, FetchState
from app.filters import FilterState
from app.results import Entity, Page
from app.services.tmdb import DiscoverError

DEBOUNCE = 0.02


@pytest.fixture
def anyio_backend() -> str:
    """Force AnyIO tests to run on asyncio without requiring trio."""

    return "asyncio"


class FakeUpstream:
    """Deterministic transport: ids derive from the first genre and the page."""

    def __init__(self, *, total_pages: int = 3) -> None:
        self.total_pages = total_pages
        self.calls: list[tuple[str, dict[str, str]]] = []
        self.gates: dict[int, asyncio.Event] = {}
        self.failures: set[int] = set()

    async def __call__(self, content_type: str, params: dict[str, str]) -> Page:
        self.calls.append((content_type, dict(params)))
        call_number = len(self.calls)
        gate = self.gates.get(call_number)
        if gate is not None:
            await gate.wait()
        if call_number in self.failures:
            raise DiscoverError("upstream unavailable", status_code=503)
        page = int(params["page"])
        base = int(params.get("with_genres", "0").split(",")[0]) * 100
        # Overlap one id between consecutive pages to exercise de-duplication.
        items = [
            Entity(id=base + page, media_type=content_type),
            Entity(id=base + page + 1, media_type=content_type),
        ]
        return Page(items=items, cursor=page, has_more=page < self.total_pages)


async def _until(predicate: Callable[[], bool], timeout: float = 1.0) -> None:
    async def _poll() -> None:
        while not predicate():
            await asyncio.sleep(0.001)

    await asyncio.wait_for(_poll(), timeout)


@pytest.mark.anyio("asyncio")
async def test_rapid_edits_coalesce_into_one_fetch() -> None:
    upstream = FakeUpstream()
    locations: list[dict[str, str]] = []
    controller = DebouncedFetchController(
        upstream, debounce_seconds=DEBOUNCE, on_location_change=locations.append
    )

    for genre in (1, 2, 3):
        controller.edit(with_genres=[genre])
    controller.edit(vote_average={"min": 7})

    assert controller.state is FetchState.DEBOUNCING
    assert controller.pending.with_genres == [3]
    assert controller.applied.with_genres == []
    assert upstream.calls == []

    await controller.wait_idle()

    assert len(upstream.calls) == 1
    _, params = upstream.calls[0]
    assert params["with_genres"] == "3"
    assert params["vote_average.gte"] == "7"
    assert controller.generation == 1
    assert controller.applied == controller.pending
    assert locations == [{"type": "movie", "with_genres": "3", "vote_average.gte": "7"}]
    assert controller.state is FetchState.IDLE


@pytest.mark.anyio("asyncio")
async def test_late_response_from_old_generation_is_discarded() -> None:
    upstream = FakeUpstream()
    upstream.gates[1] = asyncio.Event()
    controller = DebouncedFetchController(upstream, debounce_seconds=DEBOUNCE)

    assert controller.start() == 1
    controller.edit(with_genres=[2])
    assert controller.apply() == 2

    await _until(lambda: len(controller.store) > 0)
    upstream.gates[1].set()
    await controller.wait_idle()

    assert [item.id for item in controller.store.items] == [201, 202]
    assert controller.stale_discards == 1
    assert controller.generation == 2


@pytest.mark.anyio("asyncio")
async def test_load_more_paginates_without_duplicates() -> None:
    upstream = FakeUpstream(total_pages=3)
    controller = DebouncedFetchController(upstream, debounce_seconds=DEBOUNCE)

    controller.start()
    await controller.wait_idle()

    assert controller.load_more() is True
    # A second trigger while the first is in flight is ignored.
    assert controller.load_more() is False
    await controller.wait_idle()
    assert controller.load_more() is True
    await controller.wait_idle()

    ids = [item.id for item in controller.store.items]
    assert ids == [1, 2, 3, 4]
    assert len(ids) == len(set(ids))
    assert [params["page"] for _, params in upstream.calls] == ["1", "2", "3"]
    assert controller.store.has_more is False
    assert controller.load_more() is False


@pytest.mark.anyio("asyncio")
async def test_load_more_is_ignored_while_debouncing() -> None:
    upstream = FakeUpstream()
    controller = DebouncedFetchController(upstream, debounce_seconds=DEBOUNCE)
    controller.start()
    await controller.wait_idle()

    controller.edit(with_genres=[4])

    assert controller.load_more() is False
    await controller.wait_idle()
    assert [params["page"] for _, params in upstream.calls] == ["1", "1"]
    assert [item.id for item in controller.store.items] == [401, 402]


@pytest.mark.anyio("asyncio")
async def test_edit_reverted_within_window_does_not_refetch() -> None:
    upstream = FakeUpstream()
    controller = DebouncedFetchController(upstream, debounce_seconds=DEBOUNCE)
    controller.start()
    await controller.wait_idle()

    controller.edit(with_genres=[9])
    controller.edit(with_genres=[])
    await controller.wait_idle()

    assert len(upstream.calls) == 1
    assert controller.generation == 1


@pytest.mark.anyio("asyncio")
async def test_failed_page_keeps_previous_results_and_can_be_retried() -> None:
    upstream = FakeUpstream()
    upstream.failures.add(2)
    controller = DebouncedFetchController(upstream, debounce_seconds=DEBOUNCE)
    controller.start()
    await controller.wait_idle()

    controller.load_more()
    await controller.wait_idle()

    assert controller.state is FetchState.ERROR
    assert isinstance(controller.error, DiscoverError)
    assert [item.id for item in controller.store.items] == [1, 2]

    assert controller.load_more() is True
    await controller.wait_idle()

    assert controller.state is FetchState.IDLE
    assert controller.error is None
    assert [params["page"] for _, params in upstream.calls] == ["1", "2", "2"]
    assert [item.id for item in controller.store.items] == [1, 2, 3]


@pytest.mark.anyio("asyncio")
async def test_reapplying_filters_clears_error() -> None:
    upstream = FakeUpstream()
    upstream.failures.add(1)
    controller = DebouncedFetchController(upstream, debounce_seconds=DEBOUNCE)
    controller.start()
    await controller.wait_idle()
    assert controller.state is FetchState.ERROR

    controller.edit(with_genres=[5])
    controller.apply()
    await controller.wait_idle()

    assert controller.state is FetchState.IDLE
    assert [item.id for item in controller.store.items] == [501, 502]


@pytest.mark.anyio("asyncio")
async def test_location_hydration_fetches_once_without_echo() -> None:
    upstream = FakeUpstream()
    locations: list[dict[str, str]] = []
    controller = DebouncedFetchController(
        upstream, debounce_seconds=DEBOUNCE, on_location_change=locations.append
    )

    controller.hydrate_from_location("type=tv&with_genres=5&with_networks=213")
    await controller.wait_idle()

    assert locations == []
    assert len(upstream.calls) == 1
    content_type, params = upstream.calls[0]
    assert content_type == "tv"
    assert params["with_networks"] == "213"
    assert controller.pending == controller.applied
    assert controller.applied == FilterState(
        content_type="tv", with_genres=[5], with_networks=[213]
    )


@pytest.mark.anyio("asyncio")
async def test_content_type_switch_clears_specific_lists() -> None:
    upstream = FakeUpstream()
    controller = DebouncedFetchController(
        upstream,
        initial=FilterState(with_cast=[500], with_genres=[1]),
        debounce_seconds=DEBOUNCE,
    )

    controller.switch_content_type("tv")
    await controller.wait_idle()

    content_type, params = upstream.calls[0]
    assert content_type == "tv"
    assert controller.applied.with_cast == []
    assert params["with_genres"] == "1"


@pytest.mark.anyio("asyncio")
async def test_proximity_signal_triggers_next_page() -> None:
    upstream = FakeUpstream()
    controller = DebouncedFetchController(upstream, debounce_seconds=DEBOUNCE)
    controller.start()

    assert controller.on_proximity() is False
    await controller.wait_idle()
    assert controller.on_proximity() is True
    await controller.wait_idle()

    assert controller.store.cursor == 2


@pytest.mark.anyio("asyncio")
async def test_aclose_cancels_outstanding_work() -> None:
    upstream = FakeUpstream()
    controller = DebouncedFetchController(upstream, debounce_seconds=10)

    controller.edit(with_genres=[1])
    await controller.aclose()

    assert upstream.calls == []
    assert controller.state is FetchState.IDLE


@pytest.mark.anyio("asyncio")
async def test_reset_filters_returns_to_type_default() -> None:
    upstream = FakeUpstream()
    controller = DebouncedFetchController(
        upstream,
        initial=FilterState(content_type="tv", with_networks=[49], with_genres=[18]),
        debounce_seconds=DEBOUNCE,
    )
    controller.start()
    await controller.wait_idle()

    controller.reset_filters()
    await controller.wait_idle()

    assert controller.applied == FilterState(content_type="tv")
    assert upstream.calls[-1] == ("tv", {"page": "1"})


@pytest.mark.anyio("asyncio")
async def test_router_echo_of_own_location_does_not_refetch() -> None:
    upstream = FakeUpstream()
    echoes: list[int] = []

    def echo_back(location: dict[str, str]) -> None:
        echoes.append(controller.hydrate_from_location(location))

    controller = DebouncedFetchController(
        upstream, debounce_seconds=DEBOUNCE, on_location_change=echo_back
    )

    controller.edit(with_genres=[3], vote_average={"min": 6.5})
    await controller.wait_idle()

    assert len(upstream.calls) == 1
    assert controller.generation == 1
    assert echoes == [1]


@pytest.mark.anyio("asyncio")
async def test_late_echo_keeps_edits_in_progress() -> None:
    upstream = FakeUpstream()
    locations: list[dict[str, str]] = []
    controller = DebouncedFetchController(
        upstream, debounce_seconds=DEBOUNCE, on_location_change=locations.append
    )
    controller.apply()
    await controller.wait_idle()

    controller.edit(with_genres=[7])
    controller.hydrate_from_location(locations[-1])

    assert controller.state is FetchState.DEBOUNCING
    assert controller.pending.with_genres == [7]
    await controller.wait_idle()
    assert [params.get("with_genres") for _, params in upstream.calls] == [None, "7"]
