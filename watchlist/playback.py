"""Queue-based local playback with persisted resume cursors."""

from __future__ import annotations

import asyncio
import logging
import math
import time
import weakref
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Sequence

from .config import Settings, get_settings
from .episodes import EpisodeFile, PlaybackPlan
from .errors import AccessDenied, LocalMediaError, PlaybackFailed, ResolutionFailed
from .folder_access import FolderAccessProvider, is_within_folder
from .models import LibraryEntry, PlaybackProgress
from .player import MediaPlayer
from .progress import PlaybackProgressStore

logger = logging.getLogger(__name__)

DEFAULT_SAMPLE_INTERVAL = 1.0
DEFAULT_WRITE_INTERVAL = 5.0


class PlaybackState(str, Enum):
    IDLE = "idle"
    PLAYING = "playing"
    PAUSED = "paused"
    FINISHED = "finished"
    ERROR = "error"


@dataclass(frozen=True, slots=True)
class PlaybackQueueState:
    """Snapshot published to observers after every change."""

    items: tuple[EpisodeFile, ...]
    current_index: int
    state: PlaybackState
    is_playing: bool
    current_position_seconds: float
    duration_seconds: float
    last_error: str | None
    finished: bool

    @property
    def current_episode(self) -> EpisodeFile:
        return self.items[self.current_index]


StateListener = Callable[[PlaybackQueueState], None]
FallbackListener = Callable[[EpisodeFile], None]


class PlaybackQueueController:
    """Plays a fixed queue of episodes for one library title.

    The controller owns the player and, while a queue is active, the linked
    folder capability. Progress is sampled periodically and written at most
    once per ``write_interval`` seconds, except at state transitions which
    always write.
    """

    def __init__(
        self,
        item_id: int,
        title: str,
        episodes: Sequence[EpisodeFile],
        *,
        player: MediaPlayer,
        progress_store: PlaybackProgressStore,
        base_index: int = 0,
        initial_progress: PlaybackProgress | None = None,
        unsupported_fallback: EpisodeFile | None = None,
        folder_bookmark: str | None = None,
        folder_access: FolderAccessProvider | None = None,
        sample_interval: float = DEFAULT_SAMPLE_INTERVAL,
        write_interval: float = DEFAULT_WRITE_INTERVAL,
        clock: Callable[[], float] = time.monotonic,
        on_fallback: FallbackListener | None = None,
    ):
        if not episodes:
            raise ValueError("Playback queue cannot be empty")
        if folder_bookmark is not None and folder_access is None:
            raise ValueError("A folder access provider is required with a bookmark")

        self.item_id = item_id
        self.title = title
        self.base_index = base_index
        self._items = tuple(episodes)
        self._player = player
        self._progress_store = progress_store
        self._initial_progress = initial_progress
        self._unsupported_fallback = unsupported_fallback
        self._folder_bookmark = folder_bookmark
        self._folder_access = folder_access
        self._sample_interval = sample_interval
        self._write_interval = write_interval
        self._clock = clock
        self._on_fallback = on_fallback

        self._current_index = 0
        self._state = PlaybackState.IDLE
        self._position = 0.0
        self._duration = 0.0
        self._error: str | None = None
        self._finished = False
        self._fallback_requested: EpisodeFile | None = None
        self._last_saved: float | None = None
        self._sampler: asyncio.Task[None] | None = None
        self._seek_generation = 0
        self._closed = False
        self._listeners: list[StateListener] = []

        self._folder: Path | None = None
        self._folder_release: weakref.finalize | None = None

        player.set_callbacks(
            on_finished=self._handle_item_finished,
            on_failed=self._handle_item_failed,
        )
        self._acquire_folder_access()

    @classmethod
    def from_plan(
        cls,
        entry: LibraryEntry,
        plan: PlaybackPlan,
        *,
        player: MediaPlayer,
        progress_store: PlaybackProgressStore,
        folder_access: FolderAccessProvider | None = None,
        config: Settings | None = None,
        **kwargs: Any,
    ) -> "PlaybackQueueController":
        """Build a controller for ``entry`` using the configured intervals."""

        config = config or get_settings()
        return cls(
            entry.id,
            entry.item.title,
            plan.queue,
            player=player,
            progress_store=progress_store,
            base_index=plan.base_index,
            initial_progress=plan.initial_progress,
            unsupported_fallback=plan.unsupported_fallback,
            folder_bookmark=entry.linked_folder_bookmark,
            folder_access=folder_access,
            sample_interval=config.progress_sample_interval,
            write_interval=config.progress_write_interval,
            **kwargs,
        )

    # Observable state -------------------------------------------------

    @property
    def queue(self) -> tuple[EpisodeFile, ...]:
        return self._items

    @property
    def current_index(self) -> int:
        return self._current_index

    @property
    def current_episode(self) -> EpisodeFile:
        return self._items[self._current_index]

    @property
    def state(self) -> PlaybackState:
        return self._state

    @property
    def is_playing(self) -> bool:
        return self._state is PlaybackState.PLAYING

    @property
    def position(self) -> float:
        return self._position

    @property
    def duration(self) -> float:
        return self._duration

    @property
    def error(self) -> str | None:
        return self._error

    @property
    def finished(self) -> bool:
        return self._finished

    @property
    def fallback_requested(self) -> EpisodeFile | None:
        """Unsupported item to hand to a system player once the queue ends."""

        return self._fallback_requested

    @property
    def holds_folder_access(self) -> bool:
        return self._folder is not None

    def snapshot(self) -> PlaybackQueueState:
        return PlaybackQueueState(
            items=self._items,
            current_index=self._current_index,
            state=self._state,
            is_playing=self.is_playing,
            current_position_seconds=self._position,
            duration_seconds=self._duration,
            last_error=self._error,
            finished=self._finished,
        )

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def episode_number_for(self, index: int) -> int:
        """Episode number recorded in progress for the queue item at ``index``."""

        number = self._items[index].episode_number
        if number is not None:
            return number
        return self.base_index + index + 1

    # Commands ---------------------------------------------------------

    async def start(self) -> None:
        """Begin playing the current queue item, resuming saved progress."""

        if self._closed:
            raise RuntimeError("Playback controller has been closed")
        if self._state in (PlaybackState.PLAYING, PlaybackState.PAUSED):
            return
        if self._state is PlaybackState.FINISHED:
            return

        self._finished = False
        if not self._configure_current_item():
            return

        progress, self._initial_progress = self._initial_progress, None
        if progress is None:
            progress = self._progress_store.load(self.item_id)
        if (
            progress is not None
            and progress.episode_number == self.episode_number_for(self._current_index)
            and progress.offset_seconds > 0
        ):
            await self._player.seek(progress.offset_seconds)
            if self._closed or self._player.current_path is None:
                return
            self._position = progress.offset_seconds

        self._player.play()
        self._set_state(PlaybackState.PLAYING)
        self._persist(force=True)
        self._ensure_sampler()
        logger.info(
            "Started playback of %s (%s) at %s",
            self.title,
            self.current_episode.display_name,
            self._position,
        )

    def toggle_playback(self) -> None:
        if self._state is PlaybackState.PLAYING:
            self._player.pause()
            self._set_state(PlaybackState.PAUSED)
            self._persist(force=True)
        elif self._state is PlaybackState.PAUSED:
            self._player.play()
            self._set_state(PlaybackState.PLAYING)
            self._ensure_sampler()

    async def seek(self, seconds: float) -> None:
        if not math.isfinite(seconds) or self._player.current_path is None:
            return
        generation = self._seek_generation
        await self._player.seek(seconds)
        if generation != self._seek_generation or self._closed:
            return
        self._position = seconds
        self._persist(force=True)
        self._publish()

    def stop(self) -> None:
        """Write progress, release the item and folder access, return to idle."""

        self._seek_generation += 1
        self._cancel_sampler()
        holds_item = self._player.current_path is not None
        if (
            self._state is PlaybackState.IDLE
            and not holds_item
            and self._folder is None
        ):
            return

        if holds_item:
            self._persist(force=True)
            self._player.pause()
            self._player.load(None)
        self._release_folder_access()
        self._error = None
        self._set_state(PlaybackState.IDLE)

    def close(self) -> None:
        """Tear the controller down; it cannot be started again afterwards."""

        self.stop()
        self._closed = True
        self._listeners.clear()

    async def __aenter__(self) -> "PlaybackQueueController":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        self.close()

    # Periodic sampling ------------------------------------------------

    def sample(self) -> None:
        """Record the player position; writes are throttled."""

        if self._state is not PlaybackState.PLAYING:
            return
        position = self._player.position
        if not math.isfinite(position):
            return
        self._position = position
        self._duration = self._player.duration
        self._persist(force=False)
        self._publish()

    def _ensure_sampler(self) -> None:
        if self._sampler is not None and not self._sampler.done():
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        self._sampler = loop.create_task(
            _sample_loop(weakref.ref(self), self._sample_interval)
        )

    def _cancel_sampler(self) -> None:
        if self._sampler is None:
            return
        self._sampler.cancel()
        self._sampler = None

    # Player events ----------------------------------------------------

    def _handle_item_finished(self) -> None:
        if self._closed or self._state not in (
            PlaybackState.PLAYING,
            PlaybackState.PAUSED,
        ):
            return

        next_index = self._current_index + 1
        if next_index < len(self._items):
            self._current_index = next_index
            if not self._configure_current_item():
                return
            self._player.play()
            self._set_state(PlaybackState.PLAYING)
            self._persist(force=True)
            logger.info(
                "Advanced %s to %s", self.title, self.current_episode.display_name
            )
            return

        self._progress_store.clear(self.item_id)
        self._last_saved = self._clock()
        self._player.pause()
        self._cancel_sampler()
        self._finished = True
        self._set_state(PlaybackState.FINISHED)
        logger.info("Finished playback queue for %s", self.title)
        if self._unsupported_fallback is not None:
            self._fallback_requested = self._unsupported_fallback
            if self._on_fallback is not None:
                self._on_fallback(self._unsupported_fallback)

    def _handle_item_failed(self, reason: str) -> None:
        if self._closed:
            return
        self._persist(force=True)
        self._player.pause()
        self._error = PlaybackFailed(reason or "Unable to play this file.").description
        self._set_state(PlaybackState.ERROR)
        logger.warning(
            "Playback of %s failed: %s", self.current_episode.display_name, reason
        )

    # Internals --------------------------------------------------------

    def _configure_current_item(self) -> bool:
        episode = self.current_episode
        try:
            path = self._resolve_path(episode)
        except LocalMediaError as exc:
            self._player.load(None)
            self._position = 0.0
            self._duration = 0.0
            self._error = exc.description
            self._set_state(PlaybackState.ERROR)
            logger.warning("Cannot resolve %s: %s", episode.display_name, exc)
            return False

        self._player.load(path)
        self._position = 0.0
        self._duration = self._player.duration
        self._error = None
        return True

    def _resolve_path(self, episode: EpisodeFile) -> Path:
        if self._folder_bookmark is not None and self._folder is None:
            self._acquire_folder_access()
        if self._folder_bookmark is not None and self._folder is None:
            raise AccessDenied()
        if self._folder is not None and not is_within_folder(episode.path, self._folder):
            raise ResolutionFailed(
                f"{episode.display_name} is outside the linked folder."
            )
        return episode.path

    def _acquire_folder_access(self) -> None:
        if (
            self._folder is not None
            or self._folder_bookmark is None
            or self._folder_access is None
        ):
            return
        try:
            folder = self._folder_access.resolve(self._folder_bookmark)
        except LocalMediaError as exc:
            self._error = exc.description
            self._set_state(PlaybackState.ERROR)
            logger.warning("Could not acquire linked folder for %s: %s", self.title, exc)
            return
        self._folder = folder
        self._folder_release = weakref.finalize(
            self, self._folder_access.release, folder
        )

    def _release_folder_access(self) -> None:
        release, self._folder_release = self._folder_release, None
        self._folder = None
        if release is not None:
            release()

    def _persist(self, *, force: bool) -> None:
        if self._state is PlaybackState.FINISHED or self._player.current_path is None:
            return
        now = self._clock()
        if (
            not force
            and self._last_saved is not None
            and now - self._last_saved < self._write_interval
        ):
            return
        position = self._player.position
        if not math.isfinite(position):
            return
        self._last_saved = now
        progress = PlaybackProgress(
            episode_number=self.episode_number_for(self._current_index),
            offset_seconds=position,
        )
        self._progress_store.save(progress, self.item_id)

    def _set_state(self, state: PlaybackState) -> None:
        self._state = state
        self._publish()

    def _publish(self) -> None:
        if not self._listeners:
            return
        snapshot = self.snapshot()
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:
                logger.exception("Playback state listener failed")


async def _sample_loop(
    controller_ref: weakref.ReferenceType[PlaybackQueueController], interval: float
) -> None:
    # Only a weak reference is held so a dropped controller can be collected.
    while True:
        await asyncio.sleep(interval)
        controller = controller_ref()
        if controller is None:
            return
        controller.sample()
        del controller
