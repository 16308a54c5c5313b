"""Database utilities for the UltimateLibrary service."""

from __future__ import annotations

from sqlalchemy import MetaData, inspect, text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """Declarative base with consistent naming conventions."""

    metadata = MetaData()


class Database:
    """Thin wrapper managing the SQLAlchemy async engine and sessions."""

    def __init__(self, database_url: str):
        self._engine: AsyncEngine = create_async_engine(database_url, future=True)
        self.session_factory: async_sessionmaker[AsyncSession] = async_sessionmaker(
            self._engine, expire_on_commit=False
        )

    @property
    def engine(self) -> AsyncEngine:
        return self._engine

    async def create_all(self) -> None:
        """Create database tables if they do not yet exist."""

        async with self._engine.begin() as connection:
            await connection.run_sync(Base.metadata.create_all)
            await connection.run_sync(self._apply_schema_migrations)

    @staticmethod
    def _apply_schema_migrations(sync_connection) -> None:
        """Ensure columns added after the first release exist on old tables.

        Early libraries only stored anime, so rows written before the kind
        column existed are anime and their id doubles as the provider id.
        """

        inspector = inspect(sync_connection)
        if "media_items" not in inspector.get_table_names():
            return

        existing_columns = {
            column["name"] for column in inspector.get_columns("media_items")
        }

        def _ensure_column(name: str, ddl: str, init_sql: str | None = None) -> None:
            if name in existing_columns:
                return
            sync_connection.execute(text(ddl))
            if init_sql:
                sync_connection.execute(text(init_sql))
            existing_columns.add(name)

        _ensure_column(
            "kind",
            "ALTER TABLE media_items ADD COLUMN kind VARCHAR(16) DEFAULT 'anime'",
            "UPDATE media_items SET kind = 'anime' WHERE kind IS NULL OR kind = ''",
        )
        _ensure_column(
            "provider_id",
            "ALTER TABLE media_items ADD COLUMN provider_id INTEGER DEFAULT 0",
            "UPDATE media_items SET provider_id = 0 WHERE provider_id IS NULL",
        )

    async def dispose(self) -> None:
        """Dispose of the underlying database engine."""

        await self._engine.dispose()
