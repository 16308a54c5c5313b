"""Clients for the anime, show and movie catalog gateways."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Protocol, Sequence

import httpx
from pydantic import ValidationError

from ..config import Settings
from ..errors import SourceFailure
from ..models import Genre, MediaItem, MediaKind
from .cache import ResponseCache

logger = logging.getLogger(__name__)

TOP_CACHE_TTL = 1_800
SEARCH_CACHE_TTL = 600
RECOMMENDATIONS_CACHE_TTL = 900


class CatalogSource(Protocol):
    """Catalog service returning normalized media records for one kind."""

    kind: MediaKind

    async def fetch_top(self, limit: int) -> list[MediaItem]: ...

    async def search(self, query: str, limit: int) -> list[MediaItem]: ...

    async def fetch_recommendations(
        self, genres: Sequence[Genre], limit: int
    ) -> list[MediaItem]: ...


class CatalogClient:
    """Thin wrapper around a catalog gateway speaking the ``MediaItem`` shape.

    Responses are cached per request URL. Rate limiting (429) and server
    errors are retried with exponential backoff before giving up with
    :class:`SourceFailure`.
    """

    def __init__(
        self,
        kind: MediaKind,
        settings: Settings,
        http_client: httpx.AsyncClient,
        *,
        cache: ResponseCache | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.kind = kind
        self._settings = settings
        self._client = http_client
        self._cache = cache or ResponseCache()
        self._sleep = sleep
        self._base_url = settings.catalog_url(kind)
        self._max_attempts = settings.catalog_retry_limit
        self._base_delay = settings.catalog_retry_base_delay
        self._label = kind.display_name.lower()

    def _headers(self) -> dict[str, str]:
        headers = {
            "Accept": "application/json",
            "User-Agent": f"{self._settings.app_name}/1.0 (ultimatelibrary)",
        }
        if self._settings.catalog_api_key:
            headers["X-API-Key"] = self._settings.catalog_api_key
        return headers

    async def fetch_top(self, limit: int) -> list[MediaItem]:
        return await self._get_items("/top", {"limit": limit}, ttl=TOP_CACHE_TTL)

    async def search(self, query: str, limit: int) -> list[MediaItem]:
        trimmed = query.strip()
        if not trimmed:
            return []
        return await self._get_items(
            "/search", {"q": trimmed, "limit": limit}, ttl=SEARCH_CACHE_TTL
        )

    async def fetch_recommendations(
        self, genres: Sequence[Genre], limit: int
    ) -> list[MediaItem]:
        params: dict[str, Any] = {"limit": limit}
        if genres:
            params["genres"] = ",".join(genre.name for genre in genres)
            params["genre_ids"] = ",".join(str(genre.id) for genre in genres)
        return await self._get_items(
            "/recommendations", params, ttl=RECOMMENDATIONS_CACHE_TTL
        )

    async def _get_items(
        self, path: str, params: dict[str, Any], *, ttl: float
    ) -> list[MediaItem]:
        url = f"{self._base_url}{path}"
        cache_key = str(httpx.URL(url, params=params))

        cached = await self._cache.get(cache_key)
        if cached is not None:
            try:
                return self._parse_items(cached)
            except SourceFailure:
                await self._cache.invalidate(cache_key)

        payload = await self._request(url, params)
        items = self._parse_items(payload)
        await self._cache.put(cache_key, payload, ttl=ttl)
        return items

    async def _request(self, url: str, params: dict[str, Any]) -> Any:
        last_error: SourceFailure | None = None

        for attempt in range(self._max_attempts):
            delay = self._retry_delay(attempt)
            try:
                response = await self._client.get(
                    url, params=params, headers=self._headers()
                )
            except httpx.HTTPError as exc:
                last_error = SourceFailure(
                    f"Could not reach the {self._label} service: {exc.__class__.__name__}"
                )
            else:
                status = response.status_code
                if 200 <= status < 300:
                    try:
                        return response.json()
                    except ValueError as exc:
                        raise SourceFailure(
                            f"Received an unexpected response from the {self._label} service."
                        ) from exc
                if status == 429:
                    last_error = SourceFailure(
                        f"The {self._label} service is temporarily rate limiting requests. "
                        "Please try again shortly.",
                        status_code=status,
                    )
                    delay = self._retry_after(response) or delay
                elif 500 <= status < 600:
                    last_error = SourceFailure(
                        f"The {self._label} service returned an error (code {status}).",
                        status_code=status,
                    )
                else:
                    raise SourceFailure(
                        f"The {self._label} service returned an error (code {status}).",
                        status_code=status,
                    )

            if attempt < self._max_attempts - 1:
                logger.info(
                    "Transient error talking to the %s catalog (%s). Retrying in %.1fs",
                    self._label,
                    last_error,
                    delay,
                )
                await self._sleep(delay)

        logger.warning("Giving up on %s catalog request %s: %s", self._label, url, last_error)
        raise last_error or SourceFailure(
            f"The {self._label} service returned an unexpected response."
        )

    def _retry_delay(self, attempt: int) -> float:
        return self._base_delay * (2**attempt)

    @staticmethod
    def _retry_after(response: httpx.Response) -> float | None:
        raw = response.headers.get("retry-after")
        if not raw:
            return None
        try:
            seconds = float(raw)
        except ValueError:
            return None
        return seconds if seconds >= 0 else None

    def _parse_items(self, payload: Any) -> list[MediaItem]:
        if isinstance(payload, dict):
            payload = payload.get("items", payload.get("data"))
        if not isinstance(payload, list):
            raise SourceFailure(
                f"Received an unexpected response from the {self._label} service."
            )

        items: list[MediaItem] = []
        for entry in payload:
            if not isinstance(entry, dict):
                continue
            data = {**entry}
            data.setdefault("kind", self.kind.value)
            try:
                items.append(MediaItem.model_validate(data))
            except ValidationError as exc:
                logger.warning(
                    "Skipping malformed %s catalog entry: %s", self._label, exc
                )
        return items
