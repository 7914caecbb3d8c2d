"""Engine and session handling for the lakehouse database.

Production runs use PostgreSQL through asyncpg. Local runs and tests use
SQLite through aiosqlite; an in-memory SQLite database is pinned to a single
connection so every pipeline step sees the same tables.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from stacks_lakehouse.storage.models import Base

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncEngine

    from stacks_lakehouse.config import DatabaseSettings

logger = logging.getLogger(__name__)

_SYNC_POSTGRES = "postgresql://"
_ASYNC_POSTGRES = "postgresql+asyncpg://"


def normalize_async_database_url(database_url: str) -> str:
    """Rewrite a sync PostgreSQL URL to the asyncpg driver."""
    if database_url.startswith(_SYNC_POSTGRES):
        logger.warning("DATABASE_URL uses %s; connecting with %s instead", _SYNC_POSTGRES, _ASYNC_POSTGRES)
        return _ASYNC_POSTGRES + database_url[len(_SYNC_POSTGRES) :]
    return database_url


def is_sqlite_url(database_url: str) -> bool:
    return database_url.startswith("sqlite")


def is_in_memory_sqlite(database_url: str) -> bool:
    return is_sqlite_url(database_url) and (database_url.endswith(":memory:") or database_url.endswith("://"))


def _engine_options(url: str, options: dict[str, Any]) -> dict[str, Any]:
    if not is_sqlite_url(url):
        return options
    # aiosqlite has no queue pool to size.
    options = {k: v for k, v in options.items() if k not in ("pool_size", "max_overflow")}
    if is_in_memory_sqlite(url):
        options.setdefault("poolclass", StaticPool)
        options.setdefault("connect_args", {"check_same_thread": False})
    return options


def create_async_db_engine(database_url: str, **kwargs: Any) -> AsyncEngine:
    """Create the async engine for a PostgreSQL or SQLite URL.

    Args:
        database_url: ``postgresql://``, ``postgresql+asyncpg://`` or
            ``sqlite+aiosqlite://`` URL.
        **kwargs: Engine options. Pool sizing is ignored for SQLite.
    """
    url = normalize_async_database_url(database_url)
    return create_async_engine(url, **_engine_options(url, kwargs))


def create_async_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind=engine, expire_on_commit=False)


async def init_async_db(engine: AsyncEngine) -> None:
    """Create every staging, catalogue, run and mart table that is missing."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Created lakehouse schema (%d tables)", len(Base.metadata.tables))


@asynccontextmanager
async def session_scope(factory: async_sessionmaker[AsyncSession]) -> AsyncGenerator[AsyncSession, None]:
    """Yield a session that commits on success and rolls back on error.

    Cancellation (a step timeout) also rolls back, so a timed-out step
    leaves no partial writes behind.
    """
    session = factory()
    try:
        yield session
        await session.commit()
    except BaseException:
        await session.rollback()
        raise
    finally:
        await session.close()


class DatabaseManager:
    """Owns the engine for one process and hands out transactional sessions.

    Example:
        ```python
        db = DatabaseManager.from_settings(settings.database)
        async with db.get_async_session() as session:
            await ContractRepository(session).get(contract_id)
        await db.dispose_async()
        ```
    """

    def __init__(
        self,
        database_url: str,
        *,
        pool_size: int = 5,
        max_overflow: int = 10,
        echo: bool = False,
    ) -> None:
        self.database_url = database_url
        self._engine_kwargs: dict[str, Any] = {
            "pool_size": pool_size,
            "max_overflow": max_overflow,
            "echo": echo,
        }
        self._engine: AsyncEngine | None = None
        self._factory: async_sessionmaker[AsyncSession] | None = None

    @classmethod
    def from_settings(cls, settings: DatabaseSettings, *, echo: bool = False) -> DatabaseManager:
        return cls(settings.url, echo=echo)

    @property
    def engine(self) -> AsyncEngine:
        if self._engine is None:
            self._engine = create_async_db_engine(self.database_url, **self._engine_kwargs)
        return self._engine

    @asynccontextmanager
    async def get_async_session(self) -> AsyncGenerator[AsyncSession, None]:
        """Open a session scope; matches the orchestrator's session provider."""
        if self._factory is None:
            self._factory = create_async_session_factory(self.engine)
        async with session_scope(self._factory) as session:
            yield session

    async def init_schema_async(self) -> None:
        await init_async_db(self.engine)

    async def dispose_async(self) -> None:
        if self._engine is None:
            return
        await self._engine.dispose()
        self._engine = None
        self._factory = None
        logger.debug("Disposed database engine for %s", self.database_url.split("://", 1)[0])
