"""Async engine ownership and transactional sessions.

One `DatabaseManager` per process owns the connection pool; every worker
borrows sessions from it.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any

from sqlalchemy.exc import DBAPIError, InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from token_metrics_tracker.storage.models import Base

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession

logger = logging.getLogger(__name__)

_ASYNC_POSTGRES_SCHEME = "postgresql+asyncpg://"


def to_async_url(url: str) -> str:
    """Swap a plain ``postgresql://`` URL for its asyncpg form."""
    if url.startswith("postgresql://"):
        logger.warning("DATABASE_URL has no async driver; using %s", _ASYNC_POSTGRES_SCHEME)
        return _ASYNC_POSTGRES_SCHEME + url[len("postgresql://") :]
    return url


def is_connectivity_error(exc: BaseException) -> bool:
    """Tell whether an exception means the store itself is unreachable.

    Constraint violations and data errors are per-row problems; a dropped
    connection or refused socket is a problem for every asset in the batch.
    """
    if isinstance(exc, (OperationalError, InterfaceError)):
        return True
    if isinstance(exc, DBAPIError) and exc.connection_invalidated:
        return True
    return isinstance(exc, (OSError, ConnectionError))


class DatabaseManager:
    """Lazily builds the engine and hands out one-transaction sessions.

    PostgreSQL gets a pre-pinged pool sized for the worker concurrency.
    In-memory SQLite is pinned to a single connection so that every session
    sees the same database.
    """

    def __init__(
        self,
        database_url: str,
        *,
        pool_size: int = 5,
        max_overflow: int = 10,
        echo: bool = False,
    ) -> None:
        self.database_url = to_async_url(database_url)
        self._pool_size = pool_size
        self._max_overflow = max_overflow
        self._echo = echo
        self._engine: AsyncEngine | None = None
        self._sessions: async_sessionmaker[AsyncSession] | None = None

    def _engine_options(self) -> dict[str, Any]:
        options: dict[str, Any] = {"echo": self._echo}
        url = self.database_url
        if url.startswith("sqlite"):
            if ":memory:" in url or url.endswith("://"):
                options["poolclass"] = StaticPool
                options["connect_args"] = {"check_same_thread": False}
            return options
        options.update(
            pool_size=self._pool_size,
            max_overflow=self._max_overflow,
            pool_pre_ping=True,
        )
        return options

    @property
    def engine(self) -> AsyncEngine:
        if self._engine is None:
            self._engine = create_async_engine(self.database_url, **self._engine_options())
            self._sessions = async_sessionmaker(bind=self._engine, expire_on_commit=False)
        return self._engine

    @asynccontextmanager
    async def get_async_session(self) -> AsyncIterator[AsyncSession]:
        """Yield a session whose work commits on exit and rolls back on error.

        Cancellation counts as an error, so a worker cancelled mid-write
        leaves nothing behind.
        """
        _ = self.engine
        assert self._sessions is not None
        session = self._sessions()
        try:
            yield session
            await session.commit()
        except BaseException:
            await session.rollback()
            raise
        finally:
            await session.close()

    async def init_schema_async(self) -> None:
        """Create any missing tables."""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database schema ready")

    async def dispose_async(self) -> None:
        if self._engine is None:
            return
        await self._engine.dispose()
        self._engine = None
        self._sessions = None
        logger.info("Database connections closed")
