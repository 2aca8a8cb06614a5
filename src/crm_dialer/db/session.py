"""Async engine and session scopes.

SQLite (aiosqlite) is the development default. Production runs on
PostgreSQL through asyncpg; plain ``postgres://`` / ``postgresql://`` URLs
as handed out by hosting providers are rewritten to the asyncpg driver.
"""
from __future__ import annotations

from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncGenerator

from sqlalchemy import event
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from crm_dialer.config import DatabaseSettings, get_settings
from crm_dialer.core.logging import get_logger
from crm_dialer.db.base import Base

log = get_logger(__name__)

_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def async_database_url(url: str) -> str:
    """Select the async driver for a database URL."""
    for prefix in ("postgres://", "postgresql://"):
        if url.startswith(prefix):
            return "postgresql+asyncpg://" + url[len(prefix):]
    if url.startswith("sqlite://"):
        return "sqlite+aiosqlite://" + url[len("sqlite://"):]
    return url


def _enable_sqlite_foreign_keys(dbapi_connection: Any, connection_record: Any) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def create_engine_from_settings(settings: DatabaseSettings) -> AsyncEngine:
    url = make_url(async_database_url(settings.url))

    if url.get_backend_name() != "sqlite":
        return create_async_engine(
            url,
            echo=settings.echo,
            pool_size=settings.pool_size,
            max_overflow=settings.max_overflow,
            pool_recycle=1800,
            pool_pre_ping=True,
        )

    kwargs: dict[str, Any] = {"connect_args": {"check_same_thread": False}}
    if url.database in (None, "", ":memory:"):
        # One shared connection, otherwise every session sees an empty database
        kwargs["poolclass"] = StaticPool
    else:
        Path(url.database).parent.mkdir(parents=True, exist_ok=True)

    engine = create_async_engine(url, echo=settings.echo, **kwargs)
    event.listen(engine.sync_engine, "connect", _enable_sqlite_foreign_keys)
    return engine


def get_engine() -> AsyncEngine:
    global _engine

    if _engine is None:
        settings = get_settings().database
        _engine = create_engine_from_settings(settings)
        log.debug("Database engine created", backend=_engine.dialect.name)
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    global _session_factory

    if _session_factory is None:
        _session_factory = async_sessionmaker(get_engine(), expire_on_commit=False, autoflush=False)
    return _session_factory


@asynccontextmanager
async def get_db_context() -> AsyncGenerator[AsyncSession, None]:
    """One unit of work: commit on success, roll back on error.

    Used by the batch dialer callbacks, health checks and CLI commands.

    Usage:
        async with get_db_context() as db:
            contacts = await ContactRepository(db).get_multi()
    """
    async with get_session_factory()() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency wrapping ``get_db_context`` for one request."""
    async with get_db_context() as session:
        yield session


async def init_db() -> None:
    """Create missing tables (idempotent)."""
    from crm_dialer.db import models  # noqa: F401

    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    global _engine, _session_factory

    if _engine is not None:
        await _engine.dispose()
    _engine = None
    _session_factory = None
