"""Episode number inference and linked-folder enumeration."""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, Sequence

from .errors import NoEpisodesFound, NotLinked
from .folder_access import FolderAccessProvider, scoped_folder_access
from .models import PlaybackProgress
from .utils import natural_sort_key

logger = logging.getLogger(__name__)

VIDEO_EXTENSIONS: tuple[str, ...] = ("mp4", "mkv", "mov", "avi", "m4v")
INLINE_PLAYBACK_EXTENSIONS: frozenset[str] = frozenset({"mp4", "m4v", "mov", "avi"})
PACKAGE_SUFFIXES: frozenset[str] = frozenset(
    {".app", ".bundle", ".framework", ".photoslibrary", ".pkg", ".plugin"}
)

EXPLICIT_MARKER_RE = re.compile(
    r"(?<![a-z])(?:episode|ep|e)[\s._-]*(\d{1,3})(?!\d)", re.IGNORECASE
)
SEASON_EPISODE_RE = re.compile(r"s\d{1,2}e(\d{1,3})", re.IGNORECASE)
BARE_NUMBER_RE = re.compile(r"\b(\d{1,3})\b")


def infer_episode_number(filename: str) -> int | None:
    """Return the episode number suggested by ``filename``, if any.

    Patterns are tried in priority order: an explicit ``episode``/``ep``/``e``
    marker, ``sNNeMMM`` shorthand, then the first standalone 1-3 digit run.
    """

    for pattern in (EXPLICIT_MARKER_RE, SEASON_EPISODE_RE, BARE_NUMBER_RE):
        match = pattern.search(filename)
        if match:
            return int(match.group(1))
    return None


@dataclass(frozen=True, slots=True)
class EpisodeFile:
    """A playable file discovered inside a linked folder."""

    path: Path
    display_name: str = field(compare=False)
    episode_number: int | None = field(compare=False, default=None)

    @classmethod
    def from_path(cls, path: str | os.PathLike[str]) -> "EpisodeFile":
        resolved = Path(path)
        return cls(
            path=resolved,
            display_name=resolved.name,
            episode_number=infer_episode_number(resolved.name),
        )

    @property
    def id(self) -> str:
        return str(self.path)

    @property
    def extension(self) -> str:
        return self.path.suffix.lstrip(".").lower()


def episode_sort_key(episode: EpisodeFile) -> tuple[int, int, tuple]:
    """Numbered files first by number, then unnumbered, each by natural name."""

    if episode.episode_number is None:
        return (1, 0, natural_sort_key(episode.display_name))
    return (0, episode.episode_number, natural_sort_key(episode.display_name))


def sort_episodes(episodes: Iterable[EpisodeFile]) -> list[EpisodeFile]:
    return sorted(episodes, key=episode_sort_key)


def _is_hidden(name: str) -> bool:
    return name.startswith(".")


def _is_package(name: str) -> bool:
    return Path(name).suffix.lower() in PACKAGE_SUFFIXES


def list_episodes(
    folder: str | os.PathLike[str],
    *,
    extensions: Sequence[str] = VIDEO_EXTENSIONS,
) -> list[EpisodeFile]:
    """Recursively list playable video files below ``folder`` in episode order."""

    root = Path(folder)
    if not root.is_dir():
        raise NoEpisodesFound()

    allowed = {extension.lower().lstrip(".") for extension in extensions}
    files: list[EpisodeFile] = []
    for directory, subdirectories, filenames in os.walk(root):
        subdirectories[:] = [
            name
            for name in subdirectories
            if not _is_hidden(name) and not _is_package(name)
        ]
        for name in filenames:
            if _is_hidden(name):
                continue
            candidate = Path(directory) / name
            if not candidate.is_file():
                continue
            if candidate.suffix.lstrip(".").lower() in allowed:
                files.append(EpisodeFile.from_path(candidate))

    if not files:
        raise NoEpisodesFound()
    return sort_episodes(files)


def load_linked_episodes(
    provider: FolderAccessProvider,
    bookmark: str | None,
    *,
    extensions: Sequence[str] = VIDEO_EXTENSIONS,
) -> list[EpisodeFile]:
    """List episodes of a linked folder, holding access only while listing."""

    if bookmark is None:
        raise NotLinked()
    with scoped_folder_access(provider, bookmark) as folder:
        episodes = list_episodes(folder, extensions=extensions)
    logger.info("Listed %s episodes in linked folder %s", len(episodes), folder)
    return episodes


def supports_inline_playback(path: str | os.PathLike[str]) -> bool:
    return Path(path).suffix.lstrip(".").lower() in INLINE_PLAYBACK_EXTENSIONS


def split_queue_for_inline_playback(
    queue: Sequence[EpisodeFile],
) -> tuple[list[EpisodeFile], EpisodeFile | None]:
    """Split ``queue`` at its first file the in-app player cannot handle."""

    for index, episode in enumerate(queue):
        if not supports_inline_playback(episode.path):
            return list(queue[:index]), episode
    return list(queue), None


def resolve_start_index(
    episodes: Sequence[EpisodeFile], progress: PlaybackProgress | None
) -> int:
    """Return the queue index to resume from for ``progress``."""

    if progress is None:
        return 0
    for index, episode in enumerate(episodes):
        if episode.episode_number == progress.episode_number:
            return index
    fallback = progress.episode_number - 1
    if 0 <= fallback < len(episodes):
        return fallback
    return 0


def adjusted_progress(
    progress: PlaybackProgress | None,
    episodes: Sequence[EpisodeFile],
    start_index: int,
) -> PlaybackProgress | None:
    """Rebase ``progress`` onto the episode actually chosen to resume."""

    if progress is None:
        return None
    episode = episodes[start_index]
    episode_number = (
        episode.episode_number
        if episode.episode_number is not None
        else start_index + 1
    )
    if episode_number == progress.episode_number:
        return progress
    return PlaybackProgress(
        episode_number=episode_number, offset_seconds=progress.offset_seconds
    )


@dataclass(slots=True)
class PlaybackPlan:
    """Inputs for a playback queue resuming a title."""

    queue: list[EpisodeFile]
    base_index: int
    initial_progress: PlaybackProgress | None
    unsupported_fallback: EpisodeFile | None

    @property
    def is_playable(self) -> bool:
        return bool(self.queue)


def build_playback_plan(
    episodes: Sequence[EpisodeFile], progress: PlaybackProgress | None
) -> PlaybackPlan:
    """Derive the resume queue for a title from its episodes and cursor."""

    if not episodes:
        raise NoEpisodesFound()
    start_index = resolve_start_index(episodes, progress)
    initial = adjusted_progress(progress, episodes, start_index)
    playable, unsupported = split_queue_for_inline_playback(episodes[start_index:])
    return PlaybackPlan(
        queue=playable,
        base_index=start_index,
        initial_progress=initial,
        unsupported_fallback=unsupported,
    )
