"""Durable folder links and their scoped access lifecycle."""

from __future__ import annotations

import base64
import json
import logging
import os
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, Protocol

from .errors import AccessDenied, NotLinked, ResolutionFailed

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class FolderLink:
    """Opaque capability token plus a path meant for display only."""

    bookmark: str
    display_path: str


class FolderAccessProvider(Protocol):
    def link(self, path: str | os.PathLike[str]) -> FolderLink:
        """Create a durable capability for a user-selected folder."""

    def resolve(self, bookmark: str) -> Path:
        """Resolve ``bookmark`` and start access; pair with :meth:`release`."""

    def release(self, folder: Path) -> None:
        """Stop access previously started by :meth:`resolve`."""


class LocalFolderAccessProvider:
    """Folder capabilities for plain filesystem paths.

    Bookmarks are url-safe base64 JSON documents holding the canonical path,
    so they survive restarts. Access is granted when the folder still exists
    and is readable, and released grants are forgotten so a second release is
    a no-op.
    """

    _VERSION = 1

    def __init__(self) -> None:
        self._active: dict[Path, int] = {}

    def link(self, path: str | os.PathLike[str]) -> FolderLink:
        folder = Path(path).expanduser()
        if not folder.is_dir():
            raise NotLinked(f"{folder} is not a folder.")
        canonical = folder.resolve()
        document = json.dumps({"v": self._VERSION, "path": str(canonical)})
        bookmark = base64.urlsafe_b64encode(document.encode("utf-8")).decode("ascii")
        logger.info("Linked folder %s", canonical)
        return FolderLink(bookmark=bookmark, display_path=canonical.name or str(canonical))

    def resolve(self, bookmark: str) -> Path:
        folder = self._decode(bookmark)
        if not folder.is_dir() or not os.access(folder, os.R_OK | os.X_OK):
            raise AccessDenied()
        self._active[folder] = self._active.get(folder, 0) + 1
        return folder

    def release(self, folder: Path) -> None:
        count = self._active.get(folder)
        if count is None:
            return
        if count <= 1:
            self._active.pop(folder, None)
        else:
            self._active[folder] = count - 1

    def is_active(self, folder: Path) -> bool:
        return folder in self._active

    @staticmethod
    def _decode(bookmark: str) -> Path:
        try:
            raw = base64.urlsafe_b64decode(bookmark.encode("ascii"))
            payload = json.loads(raw.decode("utf-8"))
            return Path(payload["path"])
        except (ValueError, KeyError, TypeError, UnicodeError) as exc:
            raise ResolutionFailed() from exc


@contextmanager
def scoped_folder_access(provider: FolderAccessProvider, bookmark: str) -> Iterator[Path]:
    """Hold folder access for the duration of the ``with`` block."""

    folder = provider.resolve(bookmark)
    try:
        yield folder
    finally:
        provider.release(folder)


def is_within_folder(path: str | os.PathLike[str], folder: Path) -> bool:
    """Return whether ``path`` canonically lies under ``folder``."""

    candidate = Path(path).resolve()
    root = folder.resolve()
    return candidate == root or root in candidate.parents
