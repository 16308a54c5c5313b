"""Entry point for the FastAPI-powered library service."""

from __future__ import annotations

import logging
from contextlib import AsyncExitStack, asynccontextmanager
from datetime import timedelta
from typing import Any

import httpx
from fastapi import FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from .config import settings
from .database import Database
from .discover import DiscoverService, SearchScope
from .episodes import EpisodeFile, build_playback_plan, load_linked_episodes
from .errors import (
    AccessDenied,
    LocalMediaError,
    NoEpisodesFound,
    NotLinked,
    ResolutionFailed,
    SourceFailure,
)
from .folder_access import FolderAccessProvider, LocalFolderAccessProvider
from .library import LibraryStore
from .models import LibraryStatus, MediaItem, MediaKind
from .progress import PlaybackProgressStore
from .recommendations import RecommendationAggregator
from .services.cache import ResponseCache
from .services.catalog import CatalogClient
from .storage import AppDefaults, JsonFileStorage

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

app: FastAPI


@asynccontextmanager
async def lifespan(_: FastAPI):
    exit_stack = AsyncExitStack()
    http_client = await exit_stack.enter_async_context(
        httpx.AsyncClient(timeout=httpx.Timeout(20.0, connect=10.0))
    )
    database = Database(settings.database_url)
    await database.create_all()

    storage = JsonFileStorage(settings.storage_path)
    defaults = AppDefaults(storage)
    library = LibraryStore(database.session_factory)
    if not defaults.has_migrated_library():
        await library.backfill_legacy_records()
        defaults.set_migrated_library()

    cache = ResponseCache()
    sources = {
        kind: CatalogClient(kind, settings, http_client, cache=cache)
        for kind in MediaKind
    }

    app.state.database = database
    app.state.library = library
    app.state.progress_store = PlaybackProgressStore(storage)
    app.state.folder_access = LocalFolderAccessProvider()
    app.state.recommendations = RecommendationAggregator(
        sources,
        defaults=defaults,
        refresh_interval=timedelta(seconds=settings.recommendations_refresh_interval),
    )
    app.state.discover = DiscoverService(
        sources, debounce=settings.search_debounce_seconds
    )

    try:
        yield
    finally:  # pragma: no cover - teardown path exercised at runtime
        await database.dispose()
        await exit_stack.aclose()


def create_app() -> FastAPI:
    fastapi_app = FastAPI(
        title=settings.app_name,
        description="Personal anime, show and movie library with local playback",
        version="1.0.0",
        lifespan=lifespan,
    )

    fastapi_app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "PUT", "PATCH", "DELETE"],
        allow_headers=["*"],
    )

    register_routes(fastapi_app)
    return fastapi_app


class StatusUpdate(BaseModel):
    status: LibraryStatus


class LibraryUpsert(BaseModel):
    item: MediaItem
    status: LibraryStatus | None = None


class FolderLinkRequest(BaseModel):
    path: str


def _state(fastapi_app: FastAPI, name: str) -> Any:
    service = getattr(fastapi_app.state, name, None)
    if service is None:
        raise RuntimeError(f"{name} not initialised")
    return service


def _local_media_http_error(exc: LocalMediaError) -> HTTPException:
    if isinstance(exc, NotLinked):
        status_code = 409
    elif isinstance(exc, AccessDenied):
        status_code = 403
    elif isinstance(exc, NoEpisodesFound):
        status_code = 404
    elif isinstance(exc, ResolutionFailed):
        status_code = 422
    else:
        status_code = 400
    return HTTPException(status_code=status_code, detail=exc.description)


def _episode_payload(episode: EpisodeFile) -> dict[str, Any]:
    return {
        "id": episode.id,
        "display_name": episode.display_name,
        "episode_number": episode.episode_number,
    }


def register_routes(fastapi_app: FastAPI) -> None:
    def library() -> LibraryStore:
        return _state(fastapi_app, "library")

    def progress_store() -> PlaybackProgressStore:
        return _state(fastapi_app, "progress_store")

    def folder_access() -> FolderAccessProvider:
        return _state(fastapi_app, "folder_access")

    async def require_entry(item_id: int):
        entry = await library().get(item_id)
        if entry is None:
            raise HTTPException(status_code=404, detail="Library entry not found")
        return entry

    async def linked_episodes(item_id: int) -> list[EpisodeFile]:
        entry = await require_entry(item_id)
        try:
            return load_linked_episodes(
                folder_access(),
                entry.linked_folder_bookmark,
                extensions=settings.video_extensions,
            )
        except LocalMediaError as exc:
            raise _local_media_http_error(exc) from exc

    @fastapi_app.get("/healthz")
    async def healthcheck() -> dict[str, str]:
        return {"status": "ok"}

    @fastapi_app.get("/library")
    async def list_library(kind: MediaKind | None = None) -> list[dict[str, Any]]:
        entries = await library().list_entries(kind)
        return [entry.model_dump(mode="json") for entry in entries]

    @fastapi_app.put("/library/{item_id}")
    async def upsert_library_entry(item_id: int, payload: LibraryUpsert) -> dict[str, Any]:
        if payload.item.id != item_id:
            raise HTTPException(status_code=400, detail="Item id does not match path")
        entry = await library().upsert(payload.item, payload.status)
        return entry.model_dump(mode="json")

    @fastapi_app.patch("/library/{item_id}/status")
    async def update_status(item_id: int, payload: StatusUpdate) -> dict[str, Any]:
        try:
            entry = await library().set_status(item_id, payload.status)
        except KeyError as exc:
            raise HTTPException(status_code=404, detail="Library entry not found") from exc
        return entry.model_dump(mode="json")

    @fastapi_app.delete("/library/{item_id}")
    async def remove_library_entry(item_id: int) -> dict[str, Any]:
        removed = await library().remove(item_id)
        if not removed:
            raise HTTPException(status_code=404, detail="Library entry not found")
        progress_store().clear(item_id)
        return {"removed": item_id}

    @fastapi_app.put("/library/{item_id}/folder")
    async def link_folder(item_id: int, payload: FolderLinkRequest) -> dict[str, Any]:
        await require_entry(item_id)
        try:
            link = folder_access().link(payload.path)
        except LocalMediaError as exc:
            raise _local_media_http_error(exc) from exc
        entry = await library().link_folder(item_id, link)
        return entry.model_dump(mode="json")

    @fastapi_app.delete("/library/{item_id}/folder")
    async def unlink_folder(item_id: int) -> dict[str, Any]:
        try:
            entry = await library().unlink_folder(item_id)
        except KeyError as exc:
            raise HTTPException(status_code=404, detail="Library entry not found") from exc
        return entry.model_dump(mode="json")

    @fastapi_app.get("/library/{item_id}/episodes")
    async def list_linked_episodes(item_id: int) -> list[dict[str, Any]]:
        episodes = await linked_episodes(item_id)
        return [_episode_payload(episode) for episode in episodes]

    @fastapi_app.get("/library/{item_id}/playback-plan")
    async def playback_plan(item_id: int) -> dict[str, Any]:
        episodes = await linked_episodes(item_id)
        progress = progress_store().load(item_id)
        plan = build_playback_plan(episodes, progress)
        return {
            "queue": [_episode_payload(episode) for episode in plan.queue],
            "base_index": plan.base_index,
            "initial_progress": (
                plan.initial_progress.model_dump(mode="json")
                if plan.initial_progress is not None
                else None
            ),
            "unsupported_fallback": (
                _episode_payload(plan.unsupported_fallback)
                if plan.unsupported_fallback is not None
                else None
            ),
        }

    @fastapi_app.get("/progress")
    async def all_progress() -> dict[str, Any]:
        return {
            str(item_id): progress.model_dump(mode="json")
            for item_id, progress in progress_store().all_progress().items()
        }

    @fastapi_app.get("/progress/{item_id}")
    async def item_progress(item_id: int) -> dict[str, Any]:
        progress = progress_store().load(item_id)
        if progress is None:
            raise HTTPException(status_code=404, detail="No saved progress")
        return progress.model_dump(mode="json")

    @fastapi_app.delete("/progress/{item_id}")
    async def clear_progress(item_id: int) -> dict[str, Any]:
        progress_store().clear(item_id)
        return {"cleared": item_id}

    @fastapi_app.get("/recommendations")
    async def recommendations(force: bool = False) -> dict[str, Any]:
        aggregator: RecommendationAggregator = _state(fastapi_app, "recommendations")
        entries = await library().list_entries()
        await aggregator.refresh_if_needed(entries, force=force)
        return {
            kind.value: {
                "title": kind.display_name,
                "items": [item.model_dump(mode="json") for item in state.items],
                "error": state.error,
                "personalized": state.personalized,
            }
            for kind, state in aggregator.states.items()
        }

    @fastapi_app.get("/trending")
    async def trending() -> dict[str, Any]:
        discover: DiscoverService = _state(fastapi_app, "discover")
        state = await discover.load_trending()
        return {
            kind.value: {
                "title": kind.display_name,
                "items": [
                    item.model_dump(mode="json") for item in state.items.get(kind, ())
                ],
                "error": state.errors.get(kind),
            }
            for kind in MediaKind
        }

    @fastapi_app.get("/search")
    async def search(
        q: str = Query(default=""), scope: SearchScope = SearchScope.ANIME
    ) -> dict[str, Any]:
        discover: DiscoverService = _state(fastapi_app, "discover")
        try:
            results = await discover.search(scope, q)
        except SourceFailure as exc:
            logger.warning("Search for %r failed: %s", q, exc)
            raise HTTPException(status_code=502, detail=str(exc)) from exc
        return {
            "scope": scope.value,
            "query": q,
            "results": [item.model_dump(mode="json") for item in results],
        }


app = create_app()


if __name__ == "__main__":  # pragma: no cover - manual execution
    import uvicorn

    uvicorn.run(
        "watchlist.main:app",
        host=settings.server_host,
        port=settings.server_port,
        reload=settings.environment == "development",
    )
