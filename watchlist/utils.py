"""Utility helpers for the watchlist service."""

from __future__ import annotations

import re
import unicodedata
from typing import Any


_NATURAL_CHUNK_RE = re.compile(r"(\d+)")


def fold_text(value: str) -> str:
    """Return ``value`` trimmed, lowercased and stripped of diacritics."""

    value = unicodedata.normalize("NFKD", value.strip())
    value = "".join(char for char in value if not unicodedata.combining(char))
    return value.casefold()


def synthesize_genre_id(name: str, base: int) -> int:
    """Derive a stable genre identifier for catalogs that only expose names."""

    folded = fold_text(name)
    if not folded:
        return base
    digest = 0
    for char in folded:
        digest = (digest * 31 + ord(char)) & 0x7FFF_FFFF
    return base + digest


def natural_sort_key(value: str) -> tuple[Any, ...]:
    """Sort key that orders embedded numbers numerically ("ep2" < "ep10")."""

    parts = _NATURAL_CHUNK_RE.split(value.casefold())
    return tuple(
        (0, int(part), "") if part.isdecimal() else (1, 0, part)
        for part in parts
        if part
    )


def secure_url(value: str | None) -> str | None:
    """Upgrade plain HTTP artwork links to HTTPS; blank values become ``None``."""

    if value is None:
        return None
    value = value.strip()
    if not value:
        return None
    if value.lower().startswith("http://"):
        return "https://" + value[len("http://"):]
    return value
