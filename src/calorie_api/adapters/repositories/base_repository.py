# src/calorie_api/adapters/repositories/base_repository.py
# Copyright (c) Calorie Tracker.
# SPDX-License-Identifier: MIT
"""
BaseRepository: shared repository foundation.

Purpose:
    Shared mechanics for all repositories:
      * Session ownership.
      * Safe fetch helpers (optional) that refresh stale identity-map state.
      * Transaction helpers that roll back on failure.

Layer: adapters / repositories
"""

from __future__ import annotations

from typing import Any, Generic, TypeVar

from sqlalchemy import Select
from sqlalchemy.ext.asyncio import AsyncSession

TModel = TypeVar("TModel")


class BaseRepository(Generic[TModel]):  # noqa: UP046
    """Abstract base class for all repositories."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize the repository.

        Args:
            session: Async SQLAlchemy session bound to the target database.
        """
        self._session: AsyncSession = session

    async def fetch_optional(self, stmt: Select[Any]) -> TModel | None:
        """Execute a statement and return zero or one row.

        Rows already present in the identity map are overwritten with the
        database state, since other sessions and processes mutate them.
        """
        res = await self._session.execute(stmt.execution_options(populate_existing=True))
        return res.scalars().first()

    async def rollback_quietly(self) -> None:
        """Roll back the current transaction if one is active."""
        if self._session.in_transaction():
            await self._session.rollback()
