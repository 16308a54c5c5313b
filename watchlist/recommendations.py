"""Genre-biased recommendations merged from the three catalogs."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from typing import Callable, Iterable, Mapping, Sequence

from .models import Genre, LibraryEntry, MediaItem, MediaKind, utcnow
from .services.catalog import CatalogSource
from .storage import AppDefaults

logger = logging.getLogger(__name__)

PREFERRED_GENRE_COUNT = 3
DEFAULT_RECOMMENDATION_LIMIT = 10
PERSONALIZED_RECOMMENDATION_LIMIT = 20
MAX_FETCH_LIMIT = 60
DEFAULT_REFRESH_INTERVAL = timedelta(hours=24)


def preferred_genres(
    entries: Iterable[LibraryEntry], limit: int = PREFERRED_GENRE_COUNT
) -> list[Genre]:
    """Return the library's most frequent genres, most common first.

    Ties are broken by genre name so the ranking is deterministic.
    """

    counts: dict[int, tuple[str, int]] = {}
    for entry in entries:
        for genre in entry.item.genres:
            _, count = counts.get(genre.id, (genre.name, 0))
            counts[genre.id] = (genre.name, count + 1)
    ranked = sorted(counts.items(), key=lambda pair: (-pair[1][1], pair[1][0]))
    return [Genre(id=genre_id, name=name) for genre_id, (name, _) in ranked[:limit]]


def recommendation_limits(kind_entry_count: int, library_size: int) -> tuple[int, int]:
    """Return ``(target, fetch)`` limits for one kind.

    The fetch limit over-asks so enough items survive library filtering.
    """

    target = (
        PERSONALIZED_RECOMMENDATION_LIMIT
        if kind_entry_count
        else DEFAULT_RECOMMENDATION_LIMIT
    )
    fetch = min(MAX_FETCH_LIMIT, max(target * 2, target + library_size))
    return target, fetch


def sanitize_shows(items: Iterable[MediaItem]) -> list[MediaItem]:
    """Drop show results the catalog tags as anime; they belong to the anime list."""

    return [item for item in items if not item.is_anime_tagged()]


@dataclass(frozen=True, slots=True)
class RecommendationState:
    """Published recommendations for one media kind."""

    items: tuple[MediaItem, ...] = ()
    is_loading: bool = False
    error: str | None = None
    personalized: bool = False


StatesListener = Callable[[MediaKind, RecommendationState], None]


class RecommendationAggregator:
    """Builds per-kind recommendation lists from the user's library.

    Each kind is fetched concurrently and independently; a failing catalog
    keeps its previously published list rather than blanking it.
    """

    def __init__(
        self,
        sources: Mapping[MediaKind, CatalogSource],
        *,
        defaults: AppDefaults | None = None,
        refresh_interval: timedelta = DEFAULT_REFRESH_INTERVAL,
        clock: Callable[[], datetime] = utcnow,
    ):
        missing = [kind.value for kind in MediaKind if kind not in sources]
        if missing:
            raise ValueError(f"Missing catalog sources for: {', '.join(missing)}")
        self._sources = dict(sources)
        self._defaults = defaults
        self._refresh_interval = refresh_interval
        self._clock = clock
        self._states: dict[MediaKind, RecommendationState] = {
            kind: RecommendationState() for kind in MediaKind
        }
        self._listeners: list[StatesListener] = []

    def state(self, kind: MediaKind) -> RecommendationState:
        return self._states[kind]

    @property
    def states(self) -> dict[MediaKind, RecommendationState]:
        return dict(self._states)

    @property
    def is_loading(self) -> bool:
        return any(state.is_loading for state in self._states.values())

    def subscribe(self, listener: StatesListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def needs_refresh(self) -> bool:
        if self._defaults is None:
            return True
        last = self._defaults.last_recommendations_refresh()
        if last is None:
            return True
        return self._clock() - last >= self._refresh_interval

    async def refresh_if_needed(
        self, entries: Sequence[LibraryEntry], *, force: bool = False
    ) -> bool:
        """Refresh unless the last refresh is younger than the interval."""

        if not force and not self.needs_refresh():
            return False
        if self._defaults is not None:
            self._defaults.set_last_recommendations_refresh(self._clock())
        await self.refresh(entries)
        return True

    async def refresh(
        self, entries: Sequence[LibraryEntry]
    ) -> dict[MediaKind, RecommendationState]:
        library_ids = {entry.id for entry in entries}
        grouped: dict[MediaKind, list[LibraryEntry]] = {kind: [] for kind in MediaKind}
        for entry in entries:
            grouped[entry.kind].append(entry)

        logger.info(
            "Refreshing recommendations for a library of %s entries", len(library_ids)
        )
        for kind in MediaKind:
            self._replace(kind, replace(self._states[kind], is_loading=True))

        results = await asyncio.gather(
            *(
                self._refresh_kind(kind, grouped[kind], library_ids)
                for kind in MediaKind
            ),
            return_exceptions=True,
        )
        for kind, result in zip(MediaKind, results):
            if isinstance(result, BaseException):
                logger.error(
                    "Recommendation refresh for %s aborted: %r", kind.value, result
                )
                self._replace(kind, replace(self._states[kind], is_loading=False))
        return self.states

    async def _refresh_kind(
        self,
        kind: MediaKind,
        entries: Sequence[LibraryEntry],
        library_ids: set[int],
    ) -> None:
        personalized = bool(entries)
        target, fetch_limit = recommendation_limits(len(entries), len(library_ids))
        genres = preferred_genres(entries)

        try:
            items = await self._sources[kind].fetch_recommendations(genres, fetch_limit)
        except Exception as exc:
            previous = self._states[kind]
            logger.warning(
                "Recommendation fetch for %s failed: %s", kind.value, exc
            )
            if previous.items:
                self._replace(kind, replace(previous, is_loading=False))
            else:
                self._replace(
                    kind,
                    RecommendationState(
                        items=(),
                        is_loading=False,
                        error=str(exc) or "Unable to load recommendations.",
                        personalized=personalized,
                    ),
                )
            return

        if kind is MediaKind.SHOW:
            items = sanitize_shows(items)
        selected: list[MediaItem] = []
        seen: set[int] = set()
        for item in items:
            if item.id in library_ids or item.id in seen:
                continue
            seen.add(item.id)
            selected.append(item)
            if len(selected) >= target:
                break

        self._replace(
            kind,
            RecommendationState(
                items=tuple(selected),
                is_loading=False,
                error=None,
                personalized=personalized,
            ),
        )

    def _replace(self, kind: MediaKind, state: RecommendationState) -> None:
        self._states[kind] = state
        for listener in list(self._listeners):
            try:
                listener(kind, state)
            except Exception:
                logger.exception("Recommendation listener failed")
