# tests/conftest.py
# Copyright (c) Calorie Tracker.
# SPDX-License-Identifier: MIT
"""Shared fixtures: anyio backend and per-test SQLite databases."""

from __future__ import annotations

from collections.abc import AsyncGenerator, AsyncIterator, Callable
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from pathlib import Path

import pytest
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from calorie_api.infrastructure.database.models.idempotency import IdempotencyRecordModel

SessionProvider = Callable[[], AbstractAsyncContextManager[AsyncSession]]


@pytest.fixture(scope="session")
def anyio_backend() -> str:
    """Force pytest-anyio to use asyncio (not trio)."""
    return "asyncio"


@pytest.fixture
def database_url(tmp_path: Path) -> str:
    """File-backed SQLite URL unique to the test."""
    return f"sqlite+aiosqlite:///{tmp_path / 'calorie.db'}"


@pytest.fixture
async def engine(database_url: str) -> AsyncGenerator[AsyncEngine, None]:
    """Engine with the idempotency table created."""
    engine = create_async_engine(database_url)
    async with engine.begin() as conn:
        await conn.run_sync(IdempotencyRecordModel.__table__.create, checkfirst=True)
    try:
        yield engine
    finally:
        await engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)


@pytest.fixture
def session_provider(session_factory: async_sessionmaker[AsyncSession]) -> SessionProvider:
    """Session context manager factory, shaped like ``get_db_session``."""

    @asynccontextmanager
    async def _provide() -> AsyncIterator[AsyncSession]:
        async with session_factory() as session:
            yield session

    return _provide


@pytest.fixture
async def session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session
