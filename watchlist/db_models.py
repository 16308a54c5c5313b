"""SQLAlchemy ORM models backing the persistent library."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import (
    BigInteger,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Table,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .database import Base
from .models import utcnow


media_item_genres = Table(
    "media_item_genres",
    Base.metadata,
    Column(
        "media_item_id",
        BigInteger,
        ForeignKey("media_items.id", ondelete="CASCADE"),
        primary_key=True,
    ),
    Column(
        "genre_id",
        BigInteger,
        ForeignKey("genres.id", ondelete="CASCADE"),
        primary_key=True,
    ),
)


class GenreRecord(Base):
    """A genre shared between media items."""

    __tablename__ = "genres"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=False)
    name: Mapped[str] = mapped_column(String(120))


class MediaItemRecord(Base):
    """Catalog metadata for a title the user has saved."""

    __tablename__ = "media_items"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=False)
    provider_id: Mapped[int] = mapped_column(Integer, default=0)
    kind: Mapped[str] = mapped_column(String(16), default="anime")
    title: Mapped[str] = mapped_column(String(512))
    synopsis: Mapped[str] = mapped_column(Text, default="")
    poster_url: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    score: Mapped[float | None] = mapped_column(Float, nullable=True)
    episode_count: Mapped[int | None] = mapped_column(Integer, nullable=True)

    genres: Mapped[list[GenreRecord]] = relationship(
        secondary=media_item_genres, lazy="selectin"
    )
    entry: Mapped[LibraryEntryRecord | None] = relationship(
        back_populates="item", cascade="all, delete-orphan", lazy="selectin"
    )


class LibraryEntryRecord(Base):
    """A saved title with its watch status and optional linked folder."""

    __tablename__ = "library_entries"

    id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("media_items.id", ondelete="CASCADE"),
        primary_key=True,
        autoincrement=False,
    )
    status: Mapped[str] = mapped_column(String(32), default="plan_to_watch")
    added_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    linked_folder_bookmark: Mapped[str | None] = mapped_column(Text, nullable=True)
    linked_folder_display_path: Mapped[str | None] = mapped_column(
        String(1024), nullable=True
    )

    item: Mapped[MediaItemRecord] = relationship(
        back_populates="entry", lazy="selectin"
    )
