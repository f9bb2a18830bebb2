# src/calorie_api/adapters/repositories/idempotency_repository.py
# Copyright (c) Calorie Tracker.
# SPDX-License-Identifier: MIT
"""
Idempotency Repository (SQLAlchemy).

Purpose:
    Concrete SQLAlchemy implementation of the idempotency store contract
    defined in the domain layer.

Layer:
    adapters

Notes:
    Every transition is a single conditional statement committed on its own:

        * ``begin``    INSERT guarded by the primary key on ``key``; on
                       conflict the existing row decides. Expired rows are
                       reclaimed with ``UPDATE ... WHERE expires_at < now``.
        * ``complete`` UPDATE guarded by ``(key, lease_id, in_progress)``.
        * ``abandon``  DELETE guarded by ``(key, lease_id, in_progress)``.

    No statement reads a row and then writes it based on what it saw, so the
    outcome for a key is decided by the database, across processes.

    All timestamps are naive UTC to match TIMESTAMP WITHOUT TIME ZONE columns.
    Callers may override `now` when tighter control is required (e.g., tests).
"""

from __future__ import annotations

import uuid
from collections.abc import Mapping
from datetime import datetime, timedelta

from sqlalchemy import delete, insert, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from calorie_api.adapters.repositories.base_repository import BaseRepository
from calorie_api.domain.entities.idempotency import (
    Conflict,
    Decision,
    Proceed,
    Replay,
    ResponseSnapshot,
)
from calorie_api.domain.enums.idempotency import ConflictKind, IdempotencyStatus
from calorie_api.domain.exceptions.idempotency import IdempotencyStateError, StorageFailure
from calorie_api.infrastructure.database.models.base import utcnow_naive
from calorie_api.infrastructure.database.models.idempotency import IdempotencyRecordModel
from calorie_api.infrastructure.logging.logger import get_json_logger

logger = get_json_logger(__name__)

_IN_PROGRESS = IdempotencyStatus.IN_PROGRESS.value
_COMPLETED = IdempotencyStatus.COMPLETED.value


class IdempotencyRepository(BaseRepository[IdempotencyRecordModel]):
    """SQLAlchemy-backed implementation of the idempotency store contract."""

    # A claim can lose a race to a concurrent prune/abandon/reclaim; retry a
    # few times before giving up.
    _MAX_CLAIM_ATTEMPTS = 3

    def __init__(self, session: AsyncSession, *, ttl_seconds: int = 60 * 60 * 24) -> None:
        """Initialize the repository.

        Args:
            session: Async SQLAlchemy session bound to the primary database.
            ttl_seconds: Retention window applied when records are claimed
                and when they complete.
        """
        super().__init__(session=session)
        self._ttl = timedelta(seconds=int(ttl_seconds))

    async def begin(
        self,
        key: str,
        fingerprint: str,
        *,
        method: str,
        path: str,
        now: datetime | None = None,
    ) -> Decision:
        """Atomically claim ``key`` or report what already holds it.

        Args:
            key: Client idempotency token.
            fingerprint: Request fingerprint.
            method: HTTP method of the request.
            path: Request path.
            now: Optional reference time (naive UTC).

        Returns:
            Proceed, Replay or Conflict.

        Raises:
            StorageFailure: If the database fails or the claim keeps losing
                races to concurrent writers.
        """
        if now is None:
            now = utcnow_naive()

        for _ in range(self._MAX_CLAIM_ATTEMPTS):
            lease_id = uuid.uuid4().hex
            if await self._try_insert(key, fingerprint, method, path, lease_id, now):
                return Proceed(lease_id=lease_id)

            existing = await self._get(key)
            if existing is None:
                # Released between our insert and read; claim again.
                continue

            if existing.expires_at < now:
                if await self._try_reclaim(key, fingerprint, method, path, lease_id, now):
                    logger.info(
                        "idempotency.reclaimed_expired",
                        extra={"extra": {"key": key, "previous_status": existing.status}},
                    )
                    return Proceed(lease_id=lease_id)
                continue

            return self._decide(existing, fingerprint)

        raise StorageFailure(f"Could not claim idempotency key {key!r}")

    async def complete(
        self,
        key: str,
        lease_id: str,
        *,
        status_code: int,
        body: bytes,
        headers: Mapping[str, str] | None = None,
        now: datetime | None = None,
    ) -> None:
        """Store the response and mark the caller's record completed.

        Raises:
            IdempotencyStateError: If no in-progress record owned by
                ``lease_id`` exists for ``key``.
            StorageFailure: If the database fails.
        """
        if now is None:
            now = utcnow_naive()

        stmt = (
            update(IdempotencyRecordModel)
            .where(
                IdempotencyRecordModel.key == key,
                IdempotencyRecordModel.lease_id == lease_id,
                IdempotencyRecordModel.status == _IN_PROGRESS,
            )
            .values(
                status=_COMPLETED,
                response_status=status_code,
                response_body=body,
                response_headers=dict(headers or {}),
                updated_at=now,
                expires_at=now + self._ttl,
            )
            .execution_options(synchronize_session=False)
        )
        rowcount = await self._execute_and_commit(stmt, op="complete")
        if rowcount != 1:
            raise IdempotencyStateError(key, lease_id)

    async def abandon(self, key: str, lease_id: str) -> bool:
        """Delete the caller's in-progress record so the key can be retried."""
        stmt = (
            delete(IdempotencyRecordModel)
            .where(
                IdempotencyRecordModel.key == key,
                IdempotencyRecordModel.lease_id == lease_id,
                IdempotencyRecordModel.status == _IN_PROGRESS,
            )
            .execution_options(synchronize_session=False)
        )
        rowcount = await self._execute_and_commit(stmt, op="abandon")
        if rowcount != 1:
            logger.warning(
                "idempotency.abandon_missed",
                extra={"extra": {"key": key, "lease_id": lease_id}},
            )
            return False
        return True

    async def prune_expired(self, *, now: datetime | None = None) -> int:
        """Delete every record whose ``expires_at`` has passed."""
        if now is None:
            now = utcnow_naive()
        stmt = (
            delete(IdempotencyRecordModel)
            .where(IdempotencyRecordModel.expires_at < now)
            .execution_options(synchronize_session=False)
        )
        return await self._execute_and_commit(stmt, op="prune")

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _try_insert(
        self,
        key: str,
        fingerprint: str,
        method: str,
        path: str,
        lease_id: str,
        now: datetime,
    ) -> bool:
        """Insert a fresh in-progress record; False if the key already exists."""
        record = IdempotencyRecordModel.new_in_progress(
            key=key,
            fingerprint=fingerprint,
            method=method,
            path=path,
            lease_id=lease_id,
            ttl_seconds=int(self._ttl.total_seconds()),
            now=now,
        )
        values = {
            column.key: getattr(record, column.key)
            for column in IdempotencyRecordModel.__table__.columns
        }
        try:
            await self._session.execute(insert(IdempotencyRecordModel).values(**values))
            await self._session.commit()
        except IntegrityError:
            await self.rollback_quietly()
            return False
        except SQLAlchemyError as exc:
            await self.rollback_quietly()
            raise StorageFailure("Idempotency store failed during begin") from exc
        return True

    async def _try_reclaim(
        self,
        key: str,
        fingerprint: str,
        method: str,
        path: str,
        lease_id: str,
        now: datetime,
    ) -> bool:
        """Take over an expired record; only one concurrent caller can win."""
        stmt = (
            update(IdempotencyRecordModel)
            .where(
                IdempotencyRecordModel.key == key,
                IdempotencyRecordModel.expires_at < now,
            )
            .values(
                fingerprint=fingerprint,
                method=method,
                path=path[:255],
                status=_IN_PROGRESS,
                lease_id=lease_id,
                response_status=None,
                response_body=None,
                response_headers=None,
                created_at=now,
                updated_at=now,
                expires_at=now + self._ttl,
            )
            .execution_options(synchronize_session=False)
        )
        return await self._execute_and_commit(stmt, op="reclaim") == 1

    async def _get(self, key: str) -> IdempotencyRecordModel | None:
        """Read the current row for ``key``."""
        stmt = select(IdempotencyRecordModel).where(IdempotencyRecordModel.key == key).limit(1)
        try:
            record = await self.fetch_optional(stmt)
            await self.rollback_quietly()
        except SQLAlchemyError as exc:
            await self.rollback_quietly()
            raise StorageFailure("Idempotency store failed during lookup") from exc
        return record

    async def _execute_and_commit(self, stmt: object, *, op: str) -> int:
        """Execute a DML statement, commit, and return the affected row count."""
        try:
            result = await self._session.execute(stmt)  # type: ignore[call-overload]
            rowcount = int(result.rowcount or 0)
            await self._session.commit()
        except SQLAlchemyError as exc:
            await self.rollback_quietly()
            raise StorageFailure(f"Idempotency store failed during {op}") from exc
        return rowcount

    @staticmethod
    def _decide(existing: IdempotencyRecordModel, fingerprint: str) -> Decision:
        """Map an active record and the caller's fingerprint to a decision."""
        if existing.fingerprint != fingerprint:
            return Conflict(kind=ConflictKind.KEY_REUSED)
        if existing.status == _COMPLETED and existing.response_status is not None:
            return Replay(
                snapshot=ResponseSnapshot(
                    status_code=existing.response_status,
                    body=existing.response_body or b"",
                    headers=dict(existing.response_headers or {}),
                )
            )
        return Conflict(kind=ConflictKind.IN_FLIGHT)
