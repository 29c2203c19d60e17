"""Entry point for the FastAPI discovery and recommendation service."""

from __future__ import annotations

import logging
from contextlib import AsyncExitStack, asynccontextmanager
from typing import Any

import httpx
from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware

from .cache import TRENDING_KEY, PrecomputedCache, PrecomputedEntry, similar_key
from .config import settings
from .database import Database
from .location import location_to_filters
from .query import build_discover_params
from .services.tmdb import DiscoverError, TMDBClient

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

app: FastAPI


@asynccontextmanager
async def lifespan(fastapi_app: FastAPI):
    exit_stack = AsyncExitStack()
    tmdb_http_client = await exit_stack.enter_async_context(
        httpx.AsyncClient(
            base_url=str(settings.tmdb_api_url),
            timeout=httpx.Timeout(15.0, connect=5.0),
        )
    )
    database = Database(settings.database_url)
    await database.create_all()

    tmdb: TMDBClient | None = None
    if settings.tmdb_api_key:
        tmdb = TMDBClient(settings, tmdb_http_client)
    else:
        logger.warning("TMDB_API_KEY not configured; discover proxy disabled")

    fastapi_app.state.database = database
    fastapi_app.state.cache = PrecomputedCache(database.session_factory)
    fastapi_app.state.tmdb = tmdb

    try:
        yield
    finally:  # pragma: no cover - teardown path exercised at runtime
        await database.dispose()
        await exit_stack.aclose()


def create_app() -> FastAPI:
    fastapi_app = FastAPI(
        title=settings.app_name,
        description="Filtered movie/TV discovery and precomputed recommendations",
        version="1.0.0",
        lifespan=lifespan,
    )

    fastapi_app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET"],
        allow_headers=["*"],
    )

    register_routes(fastapi_app)
    return fastapi_app


def get_cache(fastapi_app: FastAPI) -> PrecomputedCache:
    cache = getattr(fastapi_app.state, "cache", None)
    if not isinstance(cache, PrecomputedCache):
        raise RuntimeError("Recommendation cache not initialised")
    return cache


def _entry_payload(entry: PrecomputedEntry) -> dict[str, Any]:
    return {
        "key": entry.key,
        "ids": entry.ranked_ids,
        "lastUpdated": entry.last_updated.isoformat() if entry.last_updated else None,
    }


def register_routes(fastapi_app: FastAPI) -> None:
    @fastapi_app.get("/healthz")
    async def healthcheck() -> dict[str, str]:
        return {"status": "ok"}

    @fastapi_app.get("/api/recs/trending")
    async def trending() -> dict[str, Any]:
        entry = await get_cache(fastapi_app).get(TRENDING_KEY)
        if entry is None:
            raise HTTPException(status_code=404, detail="Trending list not computed yet")
        return _entry_payload(entry)

    @fastapi_app.get("/api/recs/similar/{entity_id}")
    async def similar(entity_id: str) -> dict[str, Any]:
        try:
            parsed_id = int(entity_id)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail="Invalid movie ID") from exc
        entry = await get_cache(fastapi_app).get(similar_key(parsed_id))
        if entry is None:
            raise HTTPException(
                status_code=404, detail=f"No similar titles cached for {parsed_id}"
            )
        return _entry_payload(entry)

    @fastapi_app.get("/api/discover/{content_type}")
    async def discover(request: Request, content_type: str) -> dict[str, Any]:
        if content_type not in {"movie", "tv"}:
            raise HTTPException(status_code=400, detail="Unsupported content type")
        tmdb = getattr(fastapi_app.state, "tmdb", None)
        if not isinstance(tmdb, TMDBClient):
            raise HTTPException(status_code=503, detail="Discover upstream not configured")

        query = dict(request.query_params)
        raw_page = query.pop("page", "1")
        try:
            page_number = int(raw_page)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail="Invalid page") from exc
        if page_number < 1:
            raise HTTPException(status_code=400, detail="Invalid page")

        query["type"] = content_type
        filters = location_to_filters(query)
        params = build_discover_params(filters, page=page_number)
        try:
            page = await tmdb.discover(filters.content_type, params)
        except DiscoverError as exc:
            raise HTTPException(status_code=502, detail=str(exc)) from exc

        return {
            "items": [item.model_dump() for item in page.items],
            "cursor": page.cursor,
            "hasMore": page.has_more,
            "query": params,
        }


app = create_app()
