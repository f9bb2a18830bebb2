# src/calorie_api/domain/interfaces/repositories/idempotency_repository.py
# Copyright (c) Calorie Tracker.
# SPDX-License-Identifier: MIT
"""Idempotency Store Interfaces.

Purpose:
    Define the domain-level contract for the idempotency store. Keep the
    domain layer decoupled from the persistence technology.

Layer:
    domain

Notes:
    Implementations live in adapters and must satisfy this Protocol via
    structural typing. ``begin`` must be a single atomic operation at the
    storage layer (a conditional insert guarded by a uniqueness constraint);
    a check-then-insert in application code is a race.
"""

from __future__ import annotations

from collections.abc import Mapping
from datetime import datetime
from typing import Protocol

from calorie_api.domain.entities.idempotency import Decision


class IdempotencyStore(Protocol):
    """Domain-level contract for durable idempotency records."""

    async def begin(
        self,
        key: str,
        fingerprint: str,
        *,
        method: str,
        path: str,
        now: datetime | None = None,
    ) -> Decision:
        """Atomically claim ``key`` for a request with ``fingerprint``.

        Args:
            key: Client-supplied idempotency token.
            fingerprint: Digest of the logically relevant request content.
            method: HTTP method (diagnostic only).
            path: Request path (diagnostic only).
            now: Optional reference time (naive UTC).

        Returns:
            ``Proceed`` when the key was claimed, ``Replay`` for a completed
            matching record, ``Conflict`` otherwise.
        """
        raise NotImplementedError

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
        """Transition the caller's own in-progress record to completed.

        Raises:
            IdempotencyStateError: If no in-progress record owned by
                ``lease_id`` exists.
        """
        raise NotImplementedError

    async def abandon(self, key: str, lease_id: str) -> bool:
        """Release the caller's in-progress record so the key can be retried.

        Returns:
            True if a record was removed.
        """
        raise NotImplementedError

    async def prune_expired(self, *, now: datetime | None = None) -> int:
        """Delete records whose retention window elapsed.

        Returns:
            Number of deleted records.
        """
        raise NotImplementedError
