# src/calorie_api/application/use_cases/maintenance/prune_idempotency_records.py
# Copyright (c) Calorie Tracker.
# SPDX-License-Identifier: MIT
"""Use case: delete idempotency records past their retention window.

Layer:
    application/use_cases/maintenance

Purpose:
    Keep the idempotency table bounded. Records are only pruned once their
    ``expires_at`` has passed, so replay guarantees inside the window hold.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from calorie_api.domain.interfaces.repositories.idempotency_repository import IdempotencyStore


@dataclass(frozen=True)
class PruneIdempotencyRecordsRequest:
    """Request parameters for a prune run.

    Attributes:
        now:
            Optional reference time (naive UTC). Defaults to the current time
            at the store.
    """

    now: datetime | None = None


@dataclass(frozen=True)
class PruneIdempotencyRecordsResult:
    """Result of a prune run.

    Attributes:
        deleted:
            Number of expired records removed.
    """

    deleted: int


class PruneIdempotencyRecords:
    """Use case: remove expired idempotency records through the store.

    Args:
        store:
            Idempotency store implementation.
    """

    def __init__(self, store: IdempotencyStore) -> None:
        self._store = store

    async def execute(
        self, req: PruneIdempotencyRecordsRequest | None = None
    ) -> PruneIdempotencyRecordsResult:
        """Delete expired records and report how many were removed."""
        req = req or PruneIdempotencyRecordsRequest()
        deleted = await self._store.prune_expired(now=req.now)
        return PruneIdempotencyRecordsResult(deleted=deleted)
