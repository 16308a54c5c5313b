"""In-memory response cache shared by the catalog clients."""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Any, Callable

DEFAULT_TTL_SECONDS = 300.0


@dataclass(slots=True)
class _CacheEntry:
    payload: Any
    expires_at: float


class ResponseCache:
    """Maps request identities to payloads until their TTL lapses.

    Expired entries are evicted lazily when read.
    """

    def __init__(
        self,
        *,
        default_ttl: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._entries: dict[str, _CacheEntry] = {}
        self._lock = asyncio.Lock()
        self._default_ttl = default_ttl
        self._clock = clock

    async def get(self, key: str) -> Any | None:
        async with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if entry.expires_at > self._clock():
                return entry.payload
            del self._entries[key]
            return None

    async def put(self, key: str, payload: Any, *, ttl: float | None = None) -> None:
        effective_ttl = self._default_ttl if ttl is None else ttl
        if effective_ttl <= 0:
            return
        async with self._lock:
            self._entries[key] = _CacheEntry(
                payload=payload, expires_at=self._clock() + effective_ttl
            )

    async def invalidate(self, key: str) -> None:
        async with self._lock:
            self._entries.pop(key, None)

    async def clear(self) -> None:
        async with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)
