"""
Database engine and session management.

The engine is created lazily on first use so importing the package never
opens a connection pool (tests swap in an aiosqlite URL before first use).

  get_engine()           process-wide AsyncEngine for settings.database_url
  get_session_factory()  async_sessionmaker bound to that engine
  session_scope()        one transaction: commits on success, rolls back on error
  create_tables()        create_all for local development and tests
  dispose_engine()       close the pool on shutdown
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from drillrag.core.config import Settings, settings as default_settings
from drillrag.models.records import Base

logger = logging.getLogger(__name__)

_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------

def build_engine(settings: Settings | None = None) -> AsyncEngine:
    cfg = settings or default_settings
    kwargs: dict = {"echo": cfg.db_echo_sql}
    # SQLite uses a static pool that rejects pool sizing arguments
    if not cfg.database_url.startswith("sqlite"):
        kwargs.update(
            pool_size=cfg.db_pool_size,
            max_overflow=cfg.db_max_overflow,
            pool_pre_ping=True,          # detect stale connections before use
            pool_recycle=3600,
        )
    return create_async_engine(cfg.database_url, **kwargs)


def get_engine() -> AsyncEngine:
    global _engine
    if _engine is None:
        _engine = build_engine()
        logger.info("Database engine created | url=%s", _engine.url.render_as_string(hide_password=True))
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    global _session_factory
    if _session_factory is None:
        # expire_on_commit=False keeps ORM objects usable after commit
        _session_factory = async_sessionmaker(
            bind=get_engine(),
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )
    return _session_factory


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------

@asynccontextmanager
async def session_scope(
    factory: async_sessionmaker[AsyncSession] | None = None,
) -> AsyncGenerator[AsyncSession, None]:
    """Yield a session inside a transaction that commits on normal exit."""
    session_factory = factory or get_session_factory()
    async with session_factory() as session:
        async with session.begin():
            yield session


async def create_tables(engine: AsyncEngine | None = None) -> None:
    async with (engine or get_engine()).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def dispose_engine() -> None:
    global _engine, _session_factory
    if _engine is not None:
        await _engine.dispose()
    _engine = None
    _session_factory = None


async def check_db_health() -> dict:
    """Ping the database."""
    try:
        async with get_engine().connect() as conn:
            await conn.execute(text("SELECT 1"))
        return {"status": "ok"}
    except Exception as exc:
        logger.error("DB health check failed: %s", exc)
        return {"status": "error", "detail": str(exc)}
