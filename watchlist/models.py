"""Pydantic models describing media, library and playback payloads."""

from __future__ import annotations

import re
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)

from .utils import secure_url, synthesize_genre_id

DEFAULT_SYNOPSIS = "No synopsis available."

_CAMEL_BOUNDARY_RE = re.compile(r"(?<=[a-z])(?=[A-Z])")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MediaKind(str, Enum):
    """Catalog families; each owns a disjoint slice of the id space."""

    ANIME = "anime"
    SHOW = "show"
    MOVIE = "movie"

    @property
    def offset(self) -> int:
        return _KIND_OFFSETS[self]

    @property
    def genre_id_base(self) -> int:
        return _GENRE_ID_BASES[self]

    @property
    def display_name(self) -> str:
        return _KIND_DISPLAY_NAMES[self]

    def namespace(self, provider_id: int) -> int:
        """Return the globally unique id for a catalog-native identifier."""

        return self.offset + provider_id

    def provider_id(self, namespaced_id: int) -> int:
        """Recover the catalog-native id, tolerating malformed legacy ids."""

        candidate = namespaced_id - self.offset
        if candidate < 0:
            return namespaced_id
        return candidate

    @classmethod
    def for_id(cls, namespaced_id: int) -> "MediaKind":
        """Return the kind whose offset range contains ``namespaced_id``."""

        for kind in sorted(cls, key=lambda member: member.offset, reverse=True):
            if namespaced_id >= kind.offset:
                return kind
        return cls.ANIME


_KIND_OFFSETS = {
    MediaKind.ANIME: 0,
    MediaKind.SHOW: 1_000_000_000,
    MediaKind.MOVIE: 2_000_000_000,
}
_GENRE_ID_BASES = {
    MediaKind.ANIME: 0,
    MediaKind.SHOW: 10_000_000,
    MediaKind.MOVIE: 20_000_000,
}
_KIND_DISPLAY_NAMES = {
    MediaKind.ANIME: "Anime",
    MediaKind.SHOW: "TV Shows",
    MediaKind.MOVIE: "Movies",
}


class Genre(BaseModel):
    """A catalog genre; ids are only comparable within one catalog."""

    model_config = ConfigDict(frozen=True)

    id: int
    name: str


class MediaItem(BaseModel):
    """Normalized record shared by the anime, show and movie catalogs."""

    model_config = ConfigDict(populate_by_name=True)

    id: int
    provider_id: int = Field(
        default=0,
        validation_alias=AliasChoices("provider_id", "providerId", "providerID"),
    )
    kind: MediaKind = MediaKind.ANIME
    title: str
    synopsis: str = DEFAULT_SYNOPSIS
    poster_url: str | None = Field(
        default=None,
        validation_alias=AliasChoices("poster_url", "posterUrl", "imageURL", "image_url"),
    )
    score: float | None = None
    genres: list[Genre] = Field(default_factory=list)
    episode_count: int | None = Field(
        default=None,
        validation_alias=AliasChoices("episode_count", "episodeCount", "num_episodes"),
    )

    @model_validator(mode="before")
    @classmethod
    def _normalise_legacy_payload(cls, data: Any) -> Any:
        """Fill identifiers and genre ids that older payloads omit."""

        if not isinstance(data, dict):
            return data
        payload = dict(data)

        raw_kind = payload.get("kind")
        if raw_kind is None or (isinstance(raw_kind, str) and not raw_kind.strip()):
            payload["kind"] = MediaKind.ANIME
        kind = MediaKind(payload["kind"])

        provider_key = next(
            (key for key in ("provider_id", "providerId", "providerID") if key in payload),
            None,
        )
        provider_value = payload.get(provider_key) if provider_key else None
        if payload.get("id") is None and provider_value:
            payload["id"] = kind.namespace(int(provider_value))
        elif payload.get("id") is not None and not provider_value:
            if provider_key:
                payload.pop(provider_key)
            payload["provider_id"] = kind.provider_id(int(payload["id"]))

        raw_genres = payload.get("genres") or []
        genres: list[Any] = []
        for genre in raw_genres:
            if isinstance(genre, str):
                name = genre.strip()
                if not name:
                    continue
                genres.append(
                    {"id": synthesize_genre_id(name, kind.genre_id_base), "name": name}
                )
            else:
                genres.append(genre)
        payload["genres"] = genres

        if not payload.get("synopsis"):
            payload["synopsis"] = DEFAULT_SYNOPSIS
        return payload

    @field_validator("poster_url", mode="before")
    @classmethod
    def _secure_poster(cls, value: object) -> object:
        if value is None or isinstance(value, str):
            return secure_url(value)
        return value

    def is_anime_tagged(self) -> bool:
        """Return whether any genre marks the item as anime."""

        return any(genre.name.strip().casefold() == "anime" for genre in self.genres)


class LibraryStatus(str, Enum):
    CURRENTLY_WATCHING = "currently_watching"
    COMPLETED = "completed"
    ON_HOLD = "on_hold"
    DROPPED = "dropped"
    PLAN_TO_WATCH = "plan_to_watch"

    @property
    def label(self) -> str:
        return self.value.replace("_", " ").title().replace(" To ", " to ")

    @classmethod
    def parse(cls, value: object) -> "LibraryStatus":
        """Decode stored values leniently; unknown statuses become plan-to-watch."""

        if isinstance(value, cls):
            return value
        text = _CAMEL_BOUNDARY_RE.sub("_", str(value or "").strip())
        text = text.lower().replace(" ", "_").replace("-", "_")
        try:
            return cls(text)
        except ValueError:
            return cls.PLAN_TO_WATCH


class LibraryEntry(BaseModel):
    """A title the user keeps in their library."""

    id: int
    status: LibraryStatus = LibraryStatus.PLAN_TO_WATCH
    added_at: datetime = Field(default_factory=utcnow)
    item: MediaItem
    linked_folder_bookmark: str | None = None
    linked_folder_display_path: str | None = None

    @field_validator("status", mode="before")
    @classmethod
    def _parse_status(cls, value: object) -> LibraryStatus:
        return LibraryStatus.parse(value)

    @property
    def kind(self) -> MediaKind:
        return self.item.kind

    @property
    def has_linked_folder(self) -> bool:
        return self.linked_folder_bookmark is not None


class PlaybackProgress(BaseModel):
    """Resume cursor for one title."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    episode_number: int = Field(
        validation_alias=AliasChoices("episode_number", "episodeNumber")
    )
    offset_seconds: float = Field(
        validation_alias=AliasChoices("offset_seconds", "offsetSeconds", "seconds")
    )
    updated_at: datetime = Field(
        default_factory=utcnow,
        validation_alias=AliasChoices("updated_at", "updatedAt"),
    )
