"""Trending and debounced search tests."""

from __future__ import annotations

import asyncio
from typing import Sequence

import pytest

from watchlist.discover import DiscoverService, SearchScope
from watchlist.errors import SourceFailure
from watchlist.models import Genre, MediaItem, MediaKind


class RecordingSource:
    def __init__(self, kind: MediaKind, items: Sequence[MediaItem] = ()) -> None:
        self.kind = kind
        self.items = list(items)
        self.queries: list[tuple[str, int]] = []
        self.top_limits: list[int] = []
        self.error: Exception | None = None

    async def fetch_top(self, limit: int) -> list[MediaItem]:
        self.top_limits.append(limit)
        if self.error is not None:
            raise self.error
        return self.items[:limit]

    async def search(self, query: str, limit: int) -> list[MediaItem]:
        self.queries.append((query, limit))
        if self.error is not None:
            raise self.error
        return [
            item.model_copy(update={"title": f"{query}:{item.title}"})
            for item in self.items[:limit]
        ]

    async def fetch_recommendations(
        self, genres: Sequence[Genre], limit: int
    ) -> list[MediaItem]:
        return []


def show(provider_id: int, *genres: str) -> MediaItem:
    return MediaItem.model_validate(
        {
            "provider_id": provider_id,
            "kind": "show",
            "title": f"Show {provider_id}",
            "genres": list(genres),
        }
    )


def anime(provider_id: int) -> MediaItem:
    return MediaItem.model_validate(
        {"provider_id": provider_id, "title": f"Anime {provider_id}"}
    )


def make_service(**kwargs) -> tuple[DiscoverService, dict[MediaKind, RecordingSource]]:
    sources = {
        MediaKind.ANIME: RecordingSource(MediaKind.ANIME, [anime(1), anime(2)]),
        MediaKind.SHOW: RecordingSource(
            MediaKind.SHOW, [show(1, "Anime"), show(2, "Drama")]
        ),
        MediaKind.MOVIE: RecordingSource(MediaKind.MOVIE),
    }
    return DiscoverService(sources, **kwargs), sources


@pytest.mark.anyio
async def test_trending_loads_every_kind_and_sanitizes_shows() -> None:
    service, sources = make_service()
    sources[MediaKind.MOVIE].error = SourceFailure("movies down")

    state = await service.load_trending()

    assert sources[MediaKind.ANIME].top_limits == [25]
    assert [item.title for item in state.items[MediaKind.SHOW]] == ["Show 2"]
    assert len(state.items[MediaKind.ANIME]) == 2
    assert state.errors == {MediaKind.MOVIE: "movies down"}
    assert not state.is_loading


@pytest.mark.anyio
async def test_debounced_search_publishes_only_latest_query() -> None:
    service, sources = make_service(debounce=0.05)
    published: list[str] = []
    service.subscribe(
        lambda svc: published.append(svc.search_state.query)
        if svc.search_state.results
        else None
    )

    first = service.search_debounced("a")
    await asyncio.sleep(0.01)
    second = service.search_debounced("ab")
    await second

    assert first.cancelled()
    assert sources[MediaKind.ANIME].queries == [("ab", 30)]
    assert published == ["ab"]
    assert [item.title for item in service.search_state.results] == [
        "ab:Anime 1",
        "ab:Anime 2",
    ]


@pytest.mark.anyio
async def test_changing_scope_resets_results_and_cancels_search() -> None:
    service, sources = make_service(debounce=0.05)
    await service.perform_search("naruto")
    assert service.search_state.results

    pending = service.search_debounced("bleach")
    service.set_scope(SearchScope.SHOWS)
    await asyncio.sleep(0.1)

    assert pending.cancelled()
    state = service.search_state
    assert state.scope is SearchScope.SHOWS
    assert state.results == ()
    assert state.query == ""
    assert not state.is_searching
    assert state.error is None


@pytest.mark.anyio
async def test_show_search_drops_anime_tagged_results() -> None:
    service, _ = make_service()
    service.set_scope(SearchScope.SHOWS)

    state = await service.perform_search("drama")

    assert [item.provider_id for item in state.results] == [2]


@pytest.mark.anyio
async def test_blank_query_clears_results_without_calling_source() -> None:
    service, sources = make_service()
    await service.perform_search("one piece")

    state = await service.perform_search("   ")

    assert state.results == ()
    assert sources[MediaKind.ANIME].queries == [("one piece", 30)]


@pytest.mark.anyio
async def test_search_failure_is_reported() -> None:
    service, sources = make_service()
    sources[MediaKind.ANIME].error = SourceFailure("anime down")

    state = await service.perform_search("monster")

    assert state.error == "anime down"
    assert state.results == ()
    assert not state.is_searching


@pytest.mark.anyio
async def test_cancel_search_clears_state() -> None:
    service, _ = make_service(debounce=0.05)
    pending = service.search_debounced("x")

    service.cancel_search()
    await asyncio.sleep(0.01)

    assert pending.cancelled()
    assert service.search_state.query == ""
