"""Persisted resume cursors for library titles."""

from __future__ import annotations

import logging
from typing import Callable

from pydantic import ValidationError

from .models import PlaybackProgress
from .storage import KeyValueStorage

logger = logging.getLogger(__name__)

ChangeListener = Callable[[], None]


class PlaybackProgressStore:
    """Key-value backed store of one :class:`PlaybackProgress` per item id.

    Every save or clear broadcasts a payload-free change notification; the
    listeners re-query the store for whatever they display.
    """

    KEY_PREFIX = "PlaybackProgress_"
    INDEX_KEY = "PlaybackProgress_Index"

    def __init__(self, storage: KeyValueStorage):
        self._storage = storage
        self._listeners: list[ChangeListener] = []

    def _key(self, item_id: int) -> str:
        return f"{self.KEY_PREFIX}{item_id}"

    def _ids(self) -> list[int]:
        raw = self._storage.get(self.INDEX_KEY)
        if not isinstance(raw, list):
            return []
        ids: list[int] = []
        for value in raw:
            try:
                ids.append(int(value))
            except (TypeError, ValueError):
                continue
        return ids

    def _add_to_index(self, item_id: int) -> None:
        ids = self._ids()
        if item_id not in ids:
            ids.append(item_id)
            self._storage.set(self.INDEX_KEY, ids)

    def _remove_from_index(self, item_id: int) -> None:
        ids = self._ids()
        if item_id in ids:
            ids.remove(item_id)
            self._storage.set(self.INDEX_KEY, ids)

    def load(self, item_id: int) -> PlaybackProgress | None:
        raw = self._storage.get(self._key(item_id))
        if raw is None:
            return None
        try:
            if isinstance(raw, str):
                return PlaybackProgress.model_validate_json(raw)
            return PlaybackProgress.model_validate(raw)
        except ValidationError:
            logger.warning("Discarding undecodable playback progress for %s", item_id)
            return None

    def save(self, progress: PlaybackProgress, item_id: int) -> None:
        self._storage.set(self._key(item_id), progress.model_dump_json())
        self._add_to_index(item_id)
        self._notify()

    def clear(self, item_id: int) -> None:
        self._storage.delete(self._key(item_id))
        self._remove_from_index(item_id)
        self._notify()

    def all_progress(self) -> dict[int, PlaybackProgress]:
        result: dict[int, PlaybackProgress] = {}
        for item_id in self._ids():
            progress = self.load(item_id)
            if progress is not None:
                result[item_id] = progress
        return result

    def subscribe(self, listener: ChangeListener) -> Callable[[], None]:
        """Register ``listener``; the returned callable unsubscribes it."""

        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener()
            except Exception:
                logger.exception("Playback progress listener failed")
