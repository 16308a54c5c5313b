"""Persistence of library entries and their catalog metadata."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Callable

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .db_models import GenreRecord, LibraryEntryRecord, MediaItemRecord
from .folder_access import FolderLink
from .models import (
    Genre,
    LibraryEntry,
    LibraryStatus,
    MediaItem,
    MediaKind,
    utcnow,
)

logger = logging.getLogger(__name__)


class LibraryStore:
    """CRUD over library entries backed by SQLAlchemy.

    Exactly one entry exists per item id; adding an item twice updates the
    stored metadata instead of creating a second entry.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._session_factory = session_factory
        self._clock = clock

    async def upsert(
        self, item: MediaItem, status: LibraryStatus | None = None
    ) -> LibraryEntry:
        async with self._session_factory() as session:
            record = await session.get(MediaItemRecord, item.id)
            if record is None:
                record = MediaItemRecord(id=item.id)
                session.add(record)
            self._apply_item(record, item)
            genres = {genre.id: genre for genre in item.genres}
            record.genres = [
                await self._genre_record(session, genre) for genre in genres.values()
            ]

            entry = record.entry
            if entry is None:
                entry = LibraryEntryRecord(
                    id=item.id,
                    status=(status or LibraryStatus.PLAN_TO_WATCH).value,
                    added_at=self._clock(),
                )
                record.entry = entry
                logger.info("Added %s (%s) to the library", item.title, item.id)
            elif status is not None and entry.status != status.value:
                entry.status = status.value
                entry.added_at = self._clock()

            await session.commit()
            return self._to_entry(record)

    async def set_status(self, item_id: int, status: LibraryStatus) -> LibraryEntry:
        """Change an entry's status; the added timestamp is refreshed."""

        async with self._session_factory() as session:
            record = await self._require(session, item_id)
            record.entry.status = status.value
            record.entry.added_at = self._clock()
            await session.commit()
            return self._to_entry(record)

    async def get(self, item_id: int) -> LibraryEntry | None:
        async with self._session_factory() as session:
            record = await session.get(MediaItemRecord, item_id)
            if record is None or record.entry is None:
                return None
            return self._to_entry(record)

    async def list_entries(self, kind: MediaKind | None = None) -> list[LibraryEntry]:
        async with self._session_factory() as session:
            statement = (
                select(MediaItemRecord)
                .join(LibraryEntryRecord, LibraryEntryRecord.id == MediaItemRecord.id)
                .order_by(LibraryEntryRecord.added_at.desc(), MediaItemRecord.id)
            )
            if kind is not None:
                statement = statement.where(MediaItemRecord.kind == kind.value)
            result = await session.execute(statement)
            return [self._to_entry(record) for record in result.scalars().unique()]

    async def remove(self, item_id: int) -> bool:
        """Delete an entry together with its metadata and folder link."""

        async with self._session_factory() as session:
            record = await session.get(MediaItemRecord, item_id)
            if record is None:
                return False
            await session.delete(record)
            await session.commit()
            logger.info("Removed %s from the library", item_id)
            return True

    async def link_folder(self, item_id: int, link: FolderLink) -> LibraryEntry:
        async with self._session_factory() as session:
            record = await self._require(session, item_id)
            record.entry.linked_folder_bookmark = link.bookmark
            record.entry.linked_folder_display_path = link.display_path
            await session.commit()
            logger.info("Linked %s to folder %s", item_id, link.display_path)
            return self._to_entry(record)

    async def unlink_folder(self, item_id: int) -> LibraryEntry:
        async with self._session_factory() as session:
            record = await self._require(session, item_id)
            record.entry.linked_folder_bookmark = None
            record.entry.linked_folder_display_path = None
            await session.commit()
            return self._to_entry(record)

    async def backfill_legacy_records(self) -> int:
        """Fill in kinds and provider ids on rows saved by older releases."""

        async with self._session_factory() as session:
            result = await session.execute(
                select(MediaItemRecord).where(
                    or_(
                        MediaItemRecord.provider_id == 0,
                        MediaItemRecord.provider_id.is_(None),
                        MediaItemRecord.kind.is_(None),
                        MediaItemRecord.kind == "",
                    )
                )
            )
            updated = 0
            for record in result.scalars():
                if not record.kind:
                    record.kind = MediaKind.ANIME.value
                if not record.provider_id:
                    record.provider_id = MediaKind(record.kind).provider_id(record.id)
                updated += 1
            await session.commit()
        if updated:
            logger.info("Backfilled %s legacy library records", updated)
        return updated

    async def _require(self, session: AsyncSession, item_id: int) -> MediaItemRecord:
        record = await session.get(MediaItemRecord, item_id)
        if record is None or record.entry is None:
            raise KeyError(item_id)
        return record

    @staticmethod
    async def _genre_record(session: AsyncSession, genre: Genre) -> GenreRecord:
        record = await session.get(GenreRecord, genre.id)
        if record is None:
            record = GenreRecord(id=genre.id, name=genre.name)
            session.add(record)
        else:
            record.name = genre.name
        return record

    @staticmethod
    def _apply_item(record: MediaItemRecord, item: MediaItem) -> None:
        record.provider_id = item.provider_id
        record.kind = item.kind.value
        record.title = item.title
        record.synopsis = item.synopsis
        record.poster_url = item.poster_url
        record.score = item.score
        record.episode_count = item.episode_count

    @staticmethod
    def _to_entry(record: MediaItemRecord) -> LibraryEntry:
        entry = record.entry
        added_at = entry.added_at
        if added_at.tzinfo is None:
            added_at = added_at.replace(tzinfo=timezone.utc)
        item = MediaItem.model_validate(
            {
                "id": record.id,
                "provider_id": record.provider_id,
                "kind": record.kind,
                "title": record.title,
                "synopsis": record.synopsis,
                "poster_url": record.poster_url,
                "score": record.score,
                "genres": [
                    {"id": genre.id, "name": genre.name} for genre in record.genres
                ],
                "episode_count": record.episode_count,
            }
        )
        return LibraryEntry(
            id=record.id,
            status=entry.status,
            added_at=added_at,
            item=item,
            linked_folder_bookmark=entry.linked_folder_bookmark,
            linked_folder_display_path=entry.linked_folder_display_path,
        )
