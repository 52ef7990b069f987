"""Async SQLAlchemy engine and session management."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import structlog
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from src.services.storage.models import Base

logger = structlog.get_logger(__name__)


class Database:
    """Owns the async engine and session factory for one database URL.

    Parameters
    ----------
    url:
        SQLAlchemy async URL, e.g. ``postgresql+asyncpg://...`` or
        ``sqlite+aiosqlite:///:memory:``.
    echo:
        Log every SQL statement.
    pool_size, max_overflow:
        Connection pool sizing.  Ignored for SQLite.
    """

    def __init__(
        self,
        url: str,
        *,
        echo: bool = False,
        pool_size: int | None = None,
        max_overflow: int | None = None,
    ) -> None:
        engine_kwargs: dict[str, Any] = {"echo": echo}

        if url.startswith("sqlite"):
            if ":memory:" in url:
                # A single shared connection, otherwise every session
                # would see its own empty in-memory database.
                engine_kwargs["poolclass"] = StaticPool
                engine_kwargs["connect_args"] = {"check_same_thread": False}
        else:
            engine_kwargs["pool_pre_ping"] = True
            if pool_size is not None:
                engine_kwargs["pool_size"] = pool_size
            if max_overflow is not None:
                engine_kwargs["max_overflow"] = max_overflow

        self.engine = create_async_engine(url, **engine_kwargs)
        self.session_factory = async_sessionmaker(
            bind=self.engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )

    @property
    def dialect_name(self) -> str:
        return self.engine.dialect.name

    async def create_all(self) -> None:
        """Create missing tables.  Existing tables are left untouched."""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("database.tables_ready", dialect=self.dialect_name)

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        """Yield a session that commits on success and rolls back on error."""
        async with self.session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def ping(self) -> bool:
        """Return *True* if a trivial query succeeds."""
        try:
            async with self.engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
            return True
        except Exception:
            logger.warning("database.ping_failed", exc_info=True)
            return False

    async def dispose(self) -> None:
        await self.engine.dispose()
