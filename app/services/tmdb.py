"""Client for The Movie Database (TMDB) discover endpoints."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from ..config import Settings
from ..filters import ContentType
from ..query import QueryParams
from ..results import Page

logger = logging.getLogger(__name__)


class DiscoverError(RuntimeError):
    """Raised when the upstream discover request cannot produce a page."""

    def __init__(self, message: str, *, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class TMDBClient:
    """Transport for compiled discover queries.

    Timeouts and retries belong to the injected ``httpx.AsyncClient``; this
    class only shapes requests and normalises responses into pages.
    """

    def __init__(self, settings: Settings, http_client: httpx.AsyncClient):
        if not settings.tmdb_api_key:
            raise ValueError("TMDB API key is required when initialising TMDBClient")
        self._settings = settings
        self._client = http_client

    async def discover(self, content_type: ContentType, params: QueryParams) -> Page:
        """Fetch one discover page for ``content_type``."""

        endpoint = "/discover/movie" if content_type == "movie" else "/discover/tv"
        request_params: dict[str, Any] = {"language": self._settings.tmdb_language}
        if content_type == "movie" and self._settings.default_region:
            request_params["region"] = self._settings.default_region
        request_params.update(params)
        request_params["api_key"] = self._settings.tmdb_api_key

        try:
            response = await self._client.get(endpoint, params=request_params)
        except httpx.HTTPError as exc:
            logger.warning(
                "TMDB discover request for %s failed: %s",
                content_type,
                exc.__class__.__name__,
            )
            raise DiscoverError(f"TMDB discover request failed: {exc}") from exc

        if response.status_code >= 400:
            logger.warning(
                "TMDB discover for %s returned %s: %s",
                content_type,
                response.status_code,
                response.text,
            )
            raise DiscoverError(
                f"TMDB discover returned HTTP {response.status_code}",
                status_code=response.status_code,
            )

        try:
            payload = response.json()
        except ValueError as exc:
            raise DiscoverError("TMDB discover returned a non-JSON body") from exc
        if not isinstance(payload, dict):
            raise DiscoverError("TMDB discover returned an unexpected payload")
        return Page.from_payload(payload, media_type=content_type)
