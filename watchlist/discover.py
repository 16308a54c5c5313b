"""Trending lists and debounced catalog search."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable, Mapping

from .models import MediaItem, MediaKind
from .recommendations import sanitize_shows
from .services.catalog import CatalogSource

logger = logging.getLogger(__name__)

TRENDING_LIMIT = 25
SEARCH_LIMIT = 30
DEFAULT_SEARCH_DEBOUNCE = 0.4


class SearchScope(str, Enum):
    ANIME = "anime"
    SHOWS = "shows"
    MOVIES = "movies"

    @property
    def kind(self) -> MediaKind:
        return {
            SearchScope.ANIME: MediaKind.ANIME,
            SearchScope.SHOWS: MediaKind.SHOW,
            SearchScope.MOVIES: MediaKind.MOVIE,
        }[self]


@dataclass(frozen=True, slots=True)
class TrendingState:
    items: dict[MediaKind, tuple[MediaItem, ...]] = field(default_factory=dict)
    errors: dict[MediaKind, str] = field(default_factory=dict)
    is_loading: bool = False


@dataclass(frozen=True, slots=True)
class SearchState:
    scope: SearchScope = SearchScope.ANIME
    query: str = ""
    results: tuple[MediaItem, ...] = ()
    is_searching: bool = False
    error: str | None = None


Listener = Callable[["DiscoverService"], None]


class DiscoverService:
    """Owns the discover screen's trending lists and search results.

    A new search supersedes any in-flight one: only the most recent query
    may publish results.
    """

    def __init__(
        self,
        sources: Mapping[MediaKind, CatalogSource],
        *,
        debounce: float = DEFAULT_SEARCH_DEBOUNCE,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._sources = dict(sources)
        self._debounce = debounce
        self._sleep = sleep
        self._trending = TrendingState()
        self._search = SearchState()
        self._search_task: asyncio.Task[None] | None = None
        self._listeners: list[Listener] = []

    @property
    def trending(self) -> TrendingState:
        return self._trending

    @property
    def search_state(self) -> SearchState:
        return self._search

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    # Trending ---------------------------------------------------------

    async def load_trending(self) -> TrendingState:
        """Fetch the top titles for every kind concurrently."""

        self._trending = TrendingState(
            items=self._trending.items, errors={}, is_loading=True
        )
        self._publish()

        kinds = list(self._sources)
        results = await asyncio.gather(
            *(self._sources[kind].fetch_top(TRENDING_LIMIT) for kind in kinds),
            return_exceptions=True,
        )

        items = dict(self._trending.items)
        errors: dict[MediaKind, str] = {}
        for kind, result in zip(kinds, results):
            if isinstance(result, Exception):
                logger.warning("Trending fetch for %s failed: %s", kind.value, result)
                errors[kind] = str(result) or "Unable to load trending titles."
                continue
            if isinstance(result, BaseException):
                raise result
            if kind is MediaKind.SHOW:
                result = sanitize_shows(result)
            items[kind] = tuple(result[:TRENDING_LIMIT])

        self._trending = TrendingState(items=items, errors=errors, is_loading=False)
        self._publish()
        return self._trending

    # Search -----------------------------------------------------------

    def search_debounced(self, query: str) -> asyncio.Task[None]:
        """Schedule a search after the debounce delay, cancelling the previous one."""

        self._cancel_task()
        self._search = SearchState(
            scope=self._search.scope,
            query=query,
            results=self._search.results,
            is_searching=self._search.is_searching,
            error=self._search.error,
        )
        self._search_task = asyncio.get_running_loop().create_task(
            self._debounced(query)
        )
        return self._search_task

    async def _debounced(self, query: str) -> None:
        await self._sleep(self._debounce)
        await self.perform_search(query)

    async def perform_search(self, query: str) -> SearchState:
        scope = self._search.scope
        trimmed = query.strip()
        if not trimmed:
            self._search = SearchState(scope=scope, query=query)
            self._publish()
            return self._search

        self._search = SearchState(
            scope=scope,
            query=query,
            results=self._search.results,
            is_searching=True,
        )
        self._publish()

        try:
            results = await self.search(scope, trimmed)
        except Exception as exc:
            if self._is_stale(scope, query):
                return self._search
            logger.warning("Search for %r in %s failed: %s", trimmed, scope.value, exc)
            self._search = SearchState(
                scope=scope,
                query=query,
                error=str(exc) or "Search failed.",
            )
            self._publish()
            return self._search

        if self._is_stale(scope, query):
            return self._search
        self._search = SearchState(scope=scope, query=query, results=tuple(results))
        self._publish()
        return self._search

    async def search(self, scope: SearchScope, query: str) -> list[MediaItem]:
        """Run one search without touching the published search state."""

        trimmed = query.strip()
        if not trimmed:
            return []
        results = await self._sources[scope.kind].search(trimmed, SEARCH_LIMIT)
        if scope is SearchScope.SHOWS:
            results = sanitize_shows(results)
        return results[:SEARCH_LIMIT]

    def set_scope(self, scope: SearchScope) -> None:
        """Switch scope; pending searches are dropped and results cleared."""

        self._cancel_task()
        self._search = SearchState(scope=scope)
        self._publish()

    def cancel_search(self) -> None:
        self._cancel_task()
        self._search = SearchState(scope=self._search.scope)
        self._publish()

    def _is_stale(self, scope: SearchScope, query: str) -> bool:
        return self._search.scope is not scope or self._search.query != query

    def _cancel_task(self) -> None:
        task, self._search_task = self._search_task, None
        if task is not None and not task.done():
            task.cancel()

    def _publish(self) -> None:
        for listener in list(self._listeners):
            try:
                listener(self)
            except Exception:
                logger.exception("Discover listener failed")
