"""Database connection and session management (async SQLAlchemy)."""

from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from ..models.database import Base


class Database:
    """Owns the async engine and session factory for one process.

    Built by the lifespan manager and handed to repositories; nothing in the
    pipeline reaches for a module-level engine.
    """

    def __init__(self, url: str, *, echo: bool = False):
        kwargs: dict = {"echo": echo, "future": True}
        if url.startswith("sqlite") and (":memory:" in url or url.endswith("://")):
            # In-memory SQLite must share one connection across sessions.
            kwargs["poolclass"] = StaticPool
            kwargs["connect_args"] = {"check_same_thread": False}
        self._engine: AsyncEngine = create_async_engine(url, **kwargs)
        self._sessions = async_sessionmaker(
            self._engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )

    @property
    def engine(self) -> AsyncEngine:
        return self._engine

    def session_factory(self) -> AsyncSession:
        """Create a new AsyncSession (caller must close)."""
        return self._sessions()

    async def init(self) -> None:
        """Create tables (MVP; migrations are owned by the web application)."""
        async with self._engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def close(self) -> None:
        await self._engine.dispose()
