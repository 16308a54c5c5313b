"""Application configuration models."""

from __future__ import annotations

from functools import lru_cache
from typing import Iterable, Literal

from pydantic import Field, HttpUrl, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .models import MediaKind


DEFAULT_VIDEO_EXTENSIONS: tuple[str, ...] = ("mp4", "mkv", "mov", "avi", "m4v")


class Settings(BaseSettings):
    """Settings loaded from environment variables or a .env file."""

    app_name: str = Field(default="UltimateLibrary", alias="APP_NAME")
    server_host: str = Field(default="0.0.0.0", alias="HOST")
    server_port: int = Field(default=3000, alias="PORT")

    environment: Literal["development", "production"] = Field(
        default="development", alias="ENVIRONMENT"
    )

    database_url: str = Field(
        default="sqlite+aiosqlite:///./ultimatelibrary.db", alias="DATABASE_URL"
    )
    storage_path: str = Field(
        default="./ultimatelibrary-state.json", alias="STORAGE_PATH"
    )

    anime_catalog_url: HttpUrl = Field(
        default="http://localhost:8081/anime", alias="ANIME_CATALOG_URL"
    )
    show_catalog_url: HttpUrl = Field(
        default="http://localhost:8081/shows", alias="SHOW_CATALOG_URL"
    )
    movie_catalog_url: HttpUrl = Field(
        default="http://localhost:8081/movies", alias="MOVIE_CATALOG_URL"
    )
    catalog_api_key: str | None = Field(default=None, alias="CATALOG_API_KEY")
    catalog_retry_limit: int = Field(
        default=3, alias="CATALOG_RETRY_LIMIT", ge=1, le=10
    )
    catalog_retry_base_delay: float = Field(
        default=0.4, alias="CATALOG_RETRY_BASE_DELAY", ge=0
    )

    search_debounce_seconds: float = Field(
        default=0.4, alias="SEARCH_DEBOUNCE_SECONDS", ge=0
    )
    progress_sample_interval: float = Field(
        default=1.0, alias="PROGRESS_SAMPLE_INTERVAL", gt=0
    )
    progress_write_interval: float = Field(
        default=5.0, alias="PROGRESS_WRITE_INTERVAL", ge=0
    )
    recommendations_refresh_interval: int = Field(
        default=86_400, alias="RECOMMENDATIONS_REFRESH_INTERVAL", ge=0
    )

    video_extensions: tuple[str, ...] = Field(
        default=DEFAULT_VIDEO_EXTENSIONS, alias="VIDEO_EXTENSIONS"
    )

    @field_validator("video_extensions", mode="before")
    @classmethod
    def _parse_video_extensions(cls, value: object) -> tuple[str, ...]:
        """Normalise extension selections from environment values."""

        if value is None:
            return DEFAULT_VIDEO_EXTENSIONS
        if isinstance(value, str):
            raw_values = [part.strip() for part in value.split(",")]
        elif isinstance(value, Iterable):
            raw_values = [str(part).strip() for part in value]
        else:
            raise TypeError("VIDEO_EXTENSIONS must be a string or iterable of strings")

        cleaned: list[str] = []
        for entry in raw_values:
            extension = entry.lstrip(".").lower()
            if extension and extension not in cleaned:
                cleaned.append(extension)
        if not cleaned:
            return DEFAULT_VIDEO_EXTENSIONS
        return tuple(cleaned)

    def catalog_url(self, kind: MediaKind) -> str:
        """Return the catalog gateway base URL for ``kind``."""

        urls = {
            MediaKind.ANIME: self.anime_catalog_url,
            MediaKind.SHOW: self.show_catalog_url,
            MediaKind.MOVIE: self.movie_catalog_url,
        }
        return str(urls[kind]).rstrip("/")

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")


@lru_cache
def get_settings() -> Settings:
    """Return a cached settings instance."""

    return Settings()  # type: ignore[call-arg]


settings = get_settings()
