# tests/integration/repositories/test_idempotency_repository.py
# Copyright (c) Calorie Tracker.
# SPDX-License-Identifier: MIT
"""
Integration tests for the SQLAlchemy IdempotencyRepository implementation.

These tests drive the store's transitions directly against a SQLite database:
claim, replay, conflicts, completion ownership, release, reclaim and pruning.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from uuid import uuid4

import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from calorie_api.adapters.repositories.idempotency_repository import IdempotencyRepository
from calorie_api.domain.entities.idempotency import Conflict, Proceed, Replay
from calorie_api.domain.enums.idempotency import ConflictKind, IdempotencyStatus
from calorie_api.domain.exceptions.idempotency import IdempotencyStateError, StorageFailure
from calorie_api.infrastructure.database.models.base import utcnow_naive
from calorie_api.infrastructure.database.models.idempotency import IdempotencyRecordModel

FP_A = "a" * 64
FP_B = "b" * 64


def _key() -> str:
    return "idem-" + uuid4().hex


async def _row(session: AsyncSession, key: str) -> IdempotencyRecordModel | None:
    stmt = select(IdempotencyRecordModel).where(IdempotencyRecordModel.key == key)
    result = await session.execute(stmt.execution_options(populate_existing=True))
    record = result.scalar_one_or_none()
    await session.rollback()
    return record


async def _count(session: AsyncSession) -> int:
    stmt = select(func.count()).select_from(IdempotencyRecordModel)
    total = (await session.execute(stmt)).scalar_one()
    await session.rollback()
    return int(total)


@pytest.mark.anyio
async def test_first_begin_claims_key(session: AsyncSession) -> None:
    """A never-seen key is claimed and persisted as in_progress."""
    repo = IdempotencyRepository(session)
    key = _key()

    decision = await repo.begin(key, FP_A, method="POST", path="/api/logs")

    assert isinstance(decision, Proceed)
    assert decision.lease_id
    row = await _row(session, key)
    assert row is not None
    assert row.status == IdempotencyStatus.IN_PROGRESS.value
    assert row.lease_id == decision.lease_id
    assert row.fingerprint == FP_A


@pytest.mark.anyio
async def test_same_fingerprint_while_running_is_in_flight(session: AsyncSession) -> None:
    repo = IdempotencyRepository(session)
    key = _key()
    await repo.begin(key, FP_A, method="POST", path="/api/logs")

    decision = await repo.begin(key, FP_A, method="POST", path="/api/logs")

    assert decision == Conflict(kind=ConflictKind.IN_FLIGHT)


@pytest.mark.anyio
async def test_different_fingerprint_is_key_reused_in_any_status(session: AsyncSession) -> None:
    repo = IdempotencyRepository(session)
    key = _key()
    first = await repo.begin(key, FP_A, method="POST", path="/api/logs")
    assert isinstance(first, Proceed)

    assert await repo.begin(key, FP_B, method="POST", path="/api/logs") == Conflict(
        kind=ConflictKind.KEY_REUSED
    )

    await repo.complete(key, first.lease_id, status_code=201, body=b'{"id":1}')

    assert await repo.begin(key, FP_B, method="POST", path="/api/logs") == Conflict(
        kind=ConflictKind.KEY_REUSED
    )


@pytest.mark.anyio
async def test_completed_record_replays_snapshot(session: AsyncSession) -> None:
    """A completed record returns the stored status, body bytes and headers."""
    repo = IdempotencyRepository(session)
    key = _key()
    first = await repo.begin(key, FP_A, method="POST", path="/api/logs")
    assert isinstance(first, Proceed)

    await repo.complete(
        key,
        first.lease_id,
        status_code=201,
        body=b'{"id": "log-1"}',
        headers={"content-type": "application/json"},
    )
    decision = await repo.begin(key, FP_A, method="POST", path="/api/logs")

    assert isinstance(decision, Replay)
    assert decision.snapshot.status_code == 201
    assert decision.snapshot.body == b'{"id": "log-1"}'
    assert decision.snapshot.headers == {"content-type": "application/json"}
    assert await _count(session) == 1


@pytest.mark.anyio
async def test_complete_twice_fails_loudly(session: AsyncSession) -> None:
    repo = IdempotencyRepository(session)
    key = _key()
    first = await repo.begin(key, FP_A, method="POST", path="/api/logs")
    assert isinstance(first, Proceed)
    await repo.complete(key, first.lease_id, status_code=201, body=b"{}")

    with pytest.raises(IdempotencyStateError):
        await repo.complete(key, first.lease_id, status_code=201, body=b"{}")


@pytest.mark.anyio
async def test_complete_requires_owning_lease(session: AsyncSession) -> None:
    repo = IdempotencyRepository(session)
    key = _key()
    await repo.begin(key, FP_A, method="POST", path="/api/logs")

    with pytest.raises(IdempotencyStateError):
        await repo.complete(key, "not-the-lease", status_code=201, body=b"{}")

    row = await _row(session, key)
    assert row is not None
    assert row.status == IdempotencyStatus.IN_PROGRESS.value


@pytest.mark.anyio
async def test_abandon_releases_key_for_retry(session: AsyncSession) -> None:
    repo = IdempotencyRepository(session)
    key = _key()
    first = await repo.begin(key, FP_A, method="POST", path="/api/logs")
    assert isinstance(first, Proceed)

    assert await repo.abandon(key, first.lease_id) is True
    assert await _row(session, key) is None

    retry = await repo.begin(key, FP_A, method="POST", path="/api/logs")
    assert isinstance(retry, Proceed)
    assert retry.lease_id != first.lease_id


@pytest.mark.anyio
async def test_abandon_never_touches_completed_or_foreign_records(session: AsyncSession) -> None:
    repo = IdempotencyRepository(session)
    key = _key()
    first = await repo.begin(key, FP_A, method="POST", path="/api/logs")
    assert isinstance(first, Proceed)

    assert await repo.abandon(key, "someone-else") is False

    await repo.complete(key, first.lease_id, status_code=201, body=b"{}")
    assert await repo.abandon(key, first.lease_id) is False

    row = await _row(session, key)
    assert row is not None
    assert row.status == IdempotencyStatus.COMPLETED.value


@pytest.mark.anyio
async def test_expired_record_is_reclaimed(session: AsyncSession) -> None:
    """A stale in_progress record (e.g. disconnected client) is taken over after expiry."""
    repo = IdempotencyRepository(session, ttl_seconds=60)
    key = _key()
    past = utcnow_naive() - timedelta(minutes=5)
    stale = await repo.begin(key, FP_A, method="POST", path="/api/logs", now=past)
    assert isinstance(stale, Proceed)

    fresh = await repo.begin(key, FP_B, method="POST", path="/api/logs")

    assert isinstance(fresh, Proceed)
    assert fresh.lease_id != stale.lease_id
    with pytest.raises(IdempotencyStateError):
        await repo.complete(key, stale.lease_id, status_code=201, body=b"{}")

    row = await _row(session, key)
    assert row is not None
    assert row.fingerprint == FP_B
    assert row.expires_at > utcnow_naive()


@pytest.mark.anyio
async def test_completion_extends_retention_window(session: AsyncSession) -> None:
    repo = IdempotencyRepository(session, ttl_seconds=3600)
    key = _key()
    t0 = datetime(2026, 1, 1, 12, 0, 0)
    first = await repo.begin(key, FP_A, method="POST", path="/api/logs", now=t0)
    assert isinstance(first, Proceed)

    t1 = t0 + timedelta(minutes=10)
    await repo.complete(key, first.lease_id, status_code=200, body=b"ok", now=t1)

    row = await _row(session, key)
    assert row is not None
    assert row.expires_at == t1 + timedelta(hours=1)
    assert row.created_at == t0


@pytest.mark.anyio
async def test_prune_expired_deletes_only_expired(session: AsyncSession) -> None:
    repo = IdempotencyRepository(session, ttl_seconds=60)
    now = utcnow_naive()
    old_key, live_key = _key(), _key()
    await repo.begin(old_key, FP_A, method="POST", path="/api/logs", now=now - timedelta(hours=1))
    await repo.begin(live_key, FP_A, method="POST", path="/api/logs", now=now)

    deleted = await repo.prune_expired(now=now)

    assert deleted == 1
    assert await _row(session, old_key) is None
    assert await _row(session, live_key) is not None


@pytest.mark.anyio
async def test_database_errors_surface_as_storage_failure(tmp_path) -> None:
    """Without the table every operation raises StorageFailure, chained to the cause."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'empty.db'}")
    factory = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)
    try:
        async with factory() as session:
            repo = IdempotencyRepository(session)
            with pytest.raises(StorageFailure) as excinfo:
                await repo.begin(_key(), FP_A, method="POST", path="/api/logs")
            assert excinfo.value.__cause__ is not None

            with pytest.raises(StorageFailure):
                await repo.prune_expired()
    finally:
        await engine.dispose()
