"""Database base configuration: engine, session and metadata."""
from __future__ import annotations

from typing import Any

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from meetnotes.core.settings import Settings


class Base(DeclarativeBase):
    pass


class Database:
    """Owns the process-wide engine (and its connection pool) and session factory.

    Built once at process start and handed to the components that need it;
    interactive requests and background runs share the same pool.
    """

    def __init__(self, url: str, *, echo: bool = False, **engine_kwargs: Any) -> None:
        self.url = url
        self.engine: AsyncEngine = create_async_engine(url, echo=echo, future=True, **engine_kwargs)
        self.session_factory: async_sessionmaker[AsyncSession] = async_sessionmaker(
            bind=self.engine, expire_on_commit=False, autoflush=False
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> Database:
        engine_kwargs: dict[str, Any] = {}
        if not settings.database_url.startswith("sqlite"):
            engine_kwargs.update(
                pool_size=settings.db_pool_size,
                pool_timeout=settings.db_pool_timeout,
                pool_pre_ping=True,
            )
        return cls(settings.database_url, echo=settings.sql_echo, **engine_kwargs)

    async def init_models(self, drop: bool = False) -> None:
        """Create database tables (optionally dropping first)."""
        async with self.engine.begin() as conn:
            if drop:
                await conn.run_sync(Base.metadata.drop_all)
            await conn.run_sync(Base.metadata.create_all)

    async def dispose(self) -> None:
        await self.engine.dispose()
