"""Player abstraction driven by the playback queue controller."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Callable, Protocol

FinishedCallback = Callable[[], None]
FailedCallback = Callable[[str], None]


class MediaPlayer(Protocol):
    """Minimal surface of a video player backend."""

    @property
    def position(self) -> float: ...

    @property
    def duration(self) -> float: ...

    @property
    def current_path(self) -> Path | None: ...

    def set_callbacks(
        self, *, on_finished: FinishedCallback, on_failed: FailedCallback
    ) -> None: ...

    def load(self, path: Path | None) -> None:
        """Replace the active item; ``None`` leaves the player empty."""

    def play(self) -> None: ...

    def pause(self) -> None: ...

    async def seek(self, seconds: float) -> None:
        """Reposition the active item, returning once the seek completed."""


class HeadlessPlayer:
    """In-memory player with an explicitly advanced clock.

    Nothing is decoded; position moves only through :meth:`advance`, and end
    of item or failures are reported through :meth:`finish` and :meth:`fail`.
    """

    def __init__(self, *, durations: dict[Path, float] | None = None):
        self._durations = dict(durations or {})
        self._path: Path | None = None
        self._position = 0.0
        self._playing = False
        self._on_finished: FinishedCallback | None = None
        self._on_failed: FailedCallback | None = None
        self.seek_delay = 0.0
        self.loaded: list[Path | None] = []

    @property
    def position(self) -> float:
        return self._position

    @property
    def duration(self) -> float:
        if self._path is None:
            return 0.0
        return self._durations.get(self._path, 0.0)

    @property
    def current_path(self) -> Path | None:
        return self._path

    @property
    def is_playing(self) -> bool:
        return self._playing

    def set_callbacks(
        self, *, on_finished: FinishedCallback, on_failed: FailedCallback
    ) -> None:
        self._on_finished = on_finished
        self._on_failed = on_failed

    def load(self, path: Path | None) -> None:
        self._path = path
        self._position = 0.0
        self._playing = False
        self.loaded.append(path)

    def play(self) -> None:
        if self._path is not None:
            self._playing = True

    def pause(self) -> None:
        self._playing = False

    async def seek(self, seconds: float) -> None:
        if self.seek_delay:
            await asyncio.sleep(self.seek_delay)
        self._position = max(0.0, seconds)

    def advance(self, seconds: float) -> None:
        """Move the playhead forward while playing."""

        if self._playing:
            self._position += seconds

    def finish(self) -> None:
        """Report that the active item played to its end."""

        self._playing = False
        if self.duration:
            self._position = self.duration
        if self._on_finished is not None:
            self._on_finished()

    def fail(self, reason: str) -> None:
        self._playing = False
        if self._on_failed is not None:
            self._on_failed(reason)
