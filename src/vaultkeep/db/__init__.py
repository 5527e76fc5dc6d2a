"""VaultKeep database module.

- SQLAlchemy 2.x ORM models (vaultkeep.db.models)
- Alembic migrations (vaultkeep.db.migrations)
- One async engine per process, on psycopg

Callers open a session per request:

    async with get_async_session() as session:
        gateway = AccessControlGateway.from_settings(session, settings, identity)
        result = await gateway.accept_invite(token, email, user_id)

The gateway commits its own work. A session left with uncommitted changes
is rolled back when an exception escapes the block.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

    from vaultkeep.core.config import DatabaseSettings

PSYCOPG_SCHEME = "postgresql+psycopg://"
_PLAIN_SCHEMES = ("postgresql://", "postgres://")

_engine: AsyncEngine | None = None
_async_session_factory: async_sessionmaker[AsyncSession] | None = None


def psycopg_url(url: str) -> str:
    """Point a plain PostgreSQL URL at the psycopg driver (sync and async).

    URLs that already name a driver are returned unchanged.
    """
    for scheme in _PLAIN_SCHEMES:
        if url.startswith(scheme):
            return PSYCOPG_SCHEME + url[len(scheme) :]
    return url


def build_engine(database: DatabaseSettings) -> AsyncEngine:
    """Create an async engine with the configured pool limits."""
    return create_async_engine(
        psycopg_url(str(database.url)),
        pool_size=database.pool_size,
        max_overflow=database.max_overflow,
        pool_timeout=database.pool_timeout,
        echo=database.echo,
    )


def init_database(database: DatabaseSettings | None = None) -> async_sessionmaker[AsyncSession]:
    """Create the process engine and session factory once.

    Args:
        database: Connection settings. Defaults to the application settings.

    Returns:
        The session factory, existing or new.
    """
    global _engine, _async_session_factory

    if _async_session_factory is not None:
        return _async_session_factory

    if database is None:
        from vaultkeep.core.settings import get_settings

        database = get_settings().database

    _engine = build_engine(database)
    # Rows stay readable after the gateway commits
    _async_session_factory = async_sessionmaker(
        bind=_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )
    return _async_session_factory


@asynccontextmanager
async def get_async_session() -> AsyncGenerator[AsyncSession, None]:
    """Open a session from the process factory.

    Yields:
        AsyncSession, closed on exit and rolled back if the block raises.
    """
    session = init_database()()
    try:
        yield session
    except Exception:
        await session.rollback()
        raise
    finally:
        await session.close()


async def close_engine() -> None:
    """Dispose of the engine's connections. Call on application shutdown."""
    global _engine, _async_session_factory

    if _engine is not None:
        await _engine.dispose()
    _engine = None
    _async_session_factory = None
