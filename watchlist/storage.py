"""Key-value persistence for small pieces of app state."""

from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from datetime import datetime
from pathlib import Path
from typing import Any, Iterable, Protocol, Sequence

logger = logging.getLogger(__name__)

KEY_PREFIX = "com.ultimatelibrary."

# (legacy key, current key) pairs carried over from earlier releases.
LEGACY_KEY_RENAMES: tuple[tuple[str, str], ...] = (
    (
        "com.codex.UltimateWatchlist.lastRecommendationsRefresh",
        "com.ultimatelibrary.lastRecommendationsRefresh",
    ),
    (
        "com.codex.UltimateLibrary.lastRecommendationsRefresh",
        "com.ultimatelibrary.lastRecommendationsRefresh",
    ),
    (
        "com.codex.UltimateWatchlist.migratedToSwiftData",
        "com.ultimatelibrary.migratedLibrary",
    ),
    (
        "com.codex.UltimateLibrary.migratedToSwiftData",
        "com.ultimatelibrary.migratedLibrary",
    ),
)


class KeyValueStorage(Protocol):
    def get(self, key: str) -> Any | None: ...

    def set(self, key: str, value: Any) -> None: ...

    def delete(self, key: str) -> None: ...

    def keys(self) -> list[str]: ...


def migrate_legacy_keys(
    storage: KeyValueStorage, renames: Iterable[tuple[str, str]]
) -> int:
    """Move values stored under legacy keys; returns the number of keys moved."""

    moved = 0
    for legacy_key, key in renames:
        value = storage.get(legacy_key)
        if value is None:
            continue
        if storage.get(key) is None:
            storage.set(key, value)
            moved += 1
        storage.delete(legacy_key)
    if moved:
        logger.info("Migrated %s legacy storage keys", moved)
    return moved


class MemoryStorage:
    """Process-local storage, used by tests and ephemeral sessions."""

    def __init__(
        self,
        initial: dict[str, Any] | None = None,
        *,
        legacy_renames: Sequence[tuple[str, str]] = LEGACY_KEY_RENAMES,
    ) -> None:
        self._values: dict[str, Any] = dict(initial or {})
        migrate_legacy_keys(self, legacy_renames)

    def get(self, key: str) -> Any | None:
        return self._values.get(key)

    def set(self, key: str, value: Any) -> None:
        self._values[key] = value

    def delete(self, key: str) -> None:
        self._values.pop(key, None)

    def keys(self) -> list[str]:
        return list(self._values)


class JsonFileStorage:
    """Storage persisted as a single JSON document.

    Every mutation rewrites the document through a temporary file followed by
    an atomic replace, so an abrupt exit leaves the previous document intact.
    """

    def __init__(
        self,
        path: str | os.PathLike[str],
        *,
        legacy_renames: Sequence[tuple[str, str]] = LEGACY_KEY_RENAMES,
    ) -> None:
        self._path = Path(path)
        self._lock = threading.Lock()
        self._values = self._read()
        migrate_legacy_keys(self, legacy_renames)

    @property
    def path(self) -> Path:
        return self._path

    def get(self, key: str) -> Any | None:
        return self._values.get(key)

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            self._values[key] = value
            self._flush()

    def delete(self, key: str) -> None:
        with self._lock:
            if key not in self._values:
                return
            del self._values[key]
            self._flush()

    def keys(self) -> list[str]:
        return list(self._values)

    def _read(self) -> dict[str, Any]:
        if not self._path.exists():
            return {}
        try:
            payload = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, ValueError):
            logger.warning("Ignoring unreadable storage file %s", self._path)
            return {}
        if not isinstance(payload, dict):
            logger.warning("Ignoring malformed storage file %s", self._path)
            return {}
        return payload

    def _flush(self) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        descriptor, temp_name = tempfile.mkstemp(
            dir=self._path.parent, prefix=f".{self._path.name}.", suffix=".tmp"
        )
        try:
            with os.fdopen(descriptor, "w", encoding="utf-8") as handle:
                json.dump(self._values, handle)
            os.replace(temp_name, self._path)
        except BaseException:
            Path(temp_name).unlink(missing_ok=True)
            raise


class AppDefaults:
    """Typed access to the app-level keys kept in :class:`KeyValueStorage`."""

    RECOMMENDATIONS_REFRESH_KEY = KEY_PREFIX + "lastRecommendationsRefresh"
    MIGRATION_FLAG_KEY = KEY_PREFIX + "migratedLibrary"

    def __init__(self, storage: KeyValueStorage):
        self._storage = storage

    def last_recommendations_refresh(self) -> datetime | None:
        raw = self._storage.get(self.RECOMMENDATIONS_REFRESH_KEY)
        if not isinstance(raw, str):
            return None
        try:
            return datetime.fromisoformat(raw)
        except ValueError:
            return None

    def set_last_recommendations_refresh(self, moment: datetime) -> None:
        self._storage.set(self.RECOMMENDATIONS_REFRESH_KEY, moment.isoformat())

    def clear_recommendations_throttle(self) -> None:
        self._storage.delete(self.RECOMMENDATIONS_REFRESH_KEY)

    def has_migrated_library(self) -> bool:
        return bool(self._storage.get(self.MIGRATION_FLAG_KEY))

    def set_migrated_library(self) -> None:
        self._storage.set(self.MIGRATION_FLAG_KEY, True)

    def clear_migration_flag(self) -> None:
        self._storage.delete(self.MIGRATION_FLAG_KEY)
