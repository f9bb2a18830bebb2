# src/calorie_api/infrastructure/database/session.py
# Copyright (c) Calorie Tracker.
# SPDX-License-Identifier: MIT
"""Process-wide async engine and session provider.

One engine, and therefore one bounded connection pool, serves HTTP requests
(the idempotency middleware included) and background job ticks alike. A
burst of job work competes with requests for the same connections.

Lifecycle:
    * ``init_engine(settings)`` in the application lifespan.
    * ``get_db_session()`` wherever a session is needed.
    * ``dispose_engine()`` after the scheduler has drained.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager, suppress
from typing import Any

from sqlalchemy.engine import make_url
from sqlalchemy.exc import IllegalStateChangeError, InvalidRequestError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from calorie_api.config.settings import Settings, get_settings
from calorie_api.infrastructure.logging.logger import get_json_logger

logger = get_json_logger(__name__)

# SQLite serializes writers; concurrent store operations wait this long for the lock.
_SQLITE_BUSY_TIMEOUT_SECONDS = 30

_engine: AsyncEngine | None = None
_sessions: async_sessionmaker[AsyncSession] | None = None


def _engine_options(settings: Settings) -> dict[str, Any]:
    url = make_url(settings.database_url)
    if url.get_backend_name() == "sqlite":
        return {"connect_args": {"timeout": _SQLITE_BUSY_TIMEOUT_SECONDS}}
    return {
        "pool_pre_ping": True,
        "pool_size": settings.db_pool_size,
        "max_overflow": 0,
    }


def init_engine(settings: Settings) -> AsyncEngine:
    """Create the shared engine and session factory. Later calls are no-ops.

    Raises:
        ValueError: If no database URL is configured.
    """
    global _engine, _sessions

    if _engine is not None:
        return _engine
    if not settings.database_url:
        raise ValueError("database_url must be configured")

    _engine = create_async_engine(settings.database_url, **_engine_options(settings))
    _sessions = async_sessionmaker(bind=_engine, expire_on_commit=False, class_=AsyncSession)
    logger.info(
        "db.engine_initialized",
        extra={"extra": {"backend": _engine.url.get_backend_name()}},
    )
    return _engine


async def dispose_engine() -> None:
    """Close every pooled connection and forget the engine."""
    global _engine, _sessions
    if _engine is None:
        return
    engine, _engine, _sessions = _engine, None, None
    await engine.dispose()
    logger.info("db.engine_disposed")


@asynccontextmanager
async def get_db_session() -> AsyncIterator[AsyncSession]:
    """Yield a fresh session; any open transaction is rolled back on exit.

    Initializes the engine from :func:`get_settings` if the lifespan has not
    run, which happens under lifespan-less test transports and the CLI.
    """
    if _sessions is None:
        init_engine(get_settings())
    if _sessions is None:
        raise RuntimeError("Database session factory is not initialized")

    session = _sessions()
    try:
        yield session
    finally:
        with suppress(InvalidRequestError, IllegalStateChangeError):
            if session.in_transaction():
                await session.rollback()
            await session.close()
