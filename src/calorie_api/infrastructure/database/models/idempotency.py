# src/calorie_api/infrastructure/database/models/idempotency.py
# Copyright (c) Calorie Tracker.
# SPDX-License-Identifier: MIT
"""Idempotency Models.

Purpose:
    Provide the SQLAlchemy model for durable idempotency records.

Layer:
    infrastructure

Notes:
    The primary key on ``key`` is the only concurrency primitive of the
    idempotency protocol: exactly one insert per key can succeed. The domain
    contract lives in
    ``calorie_api.domain.interfaces.repositories.idempotency_repository``.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import DateTime, Index, LargeBinary, String
from sqlalchemy.orm import Mapped, mapped_column

from calorie_api.domain.enums.idempotency import IdempotencyStatus
from calorie_api.infrastructure.database.models.base import (
    DEFAULT_DB_SCHEMA,
    Base,
    JSONBType,
    ReprMixin,
    utcnow_naive,
)


class IdempotencyRecordModel(Base, ReprMixin):
    """Persistence model for idempotency records.

    Attributes:
        key: Client-supplied idempotency token (primary key).
        fingerprint: SHA-256 digest of method/path/query/canonical body.
        method: HTTP method of the first request.
        path: Request path of the first request.
        status: ``in_progress`` or ``completed``.
        lease_id: Token of the invocation that owns the record.
        response_status: HTTP status of the completed response, if any.
        response_body: Raw completed response body, if any.
        response_headers: Replayable completed response headers, if any.
        created_at: Naive UTC timestamp when the record was claimed.
        updated_at: Naive UTC timestamp of the last transition.
        expires_at: Naive UTC pruning horizon.
    """

    __tablename__ = "idempotency_records"

    key: Mapped[str] = mapped_column(String(length=255), primary_key=True)
    fingerprint: Mapped[str] = mapped_column(String(length=64), nullable=False)
    method: Mapped[str] = mapped_column(String(length=16), nullable=False)
    path: Mapped[str] = mapped_column(String(length=255), nullable=False)
    status: Mapped[str] = mapped_column(
        String(length=16),
        nullable=False,
        default=IdempotencyStatus.IN_PROGRESS.value,
    )
    lease_id: Mapped[str] = mapped_column(String(length=64), nullable=False)
    response_status: Mapped[int | None] = mapped_column(nullable=True)
    response_body: Mapped[bytes | None] = mapped_column(LargeBinary, nullable=True)
    response_headers: Mapped[dict[str, Any] | None] = mapped_column(JSONBType, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=False), nullable=False, default=utcnow_naive
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=False), nullable=False, default=utcnow_naive
    )
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)

    __table_args__ = (  # type: ignore[assignment]
        Index("ix_idempotency_records_expires_at", "expires_at"),
        *(({"schema": DEFAULT_DB_SCHEMA},) if DEFAULT_DB_SCHEMA else ()),
    )

    @classmethod
    def new_in_progress(
        cls,
        *,
        key: str,
        fingerprint: str,
        method: str,
        path: str,
        lease_id: str,
        ttl_seconds: int,
        now: datetime | None = None,
    ) -> IdempotencyRecordModel:
        """Create a new in-progress record.

        Args:
            key: Client idempotency token.
            fingerprint: Request fingerprint.
            method: HTTP method (e.g. POST).
            path: Request path (no scheme/host).
            lease_id: Token of the owning invocation.
            ttl_seconds: Retention window in seconds.
            now: Optional reference time (naive UTC) for deterministic tests.

        Returns:
            IdempotencyRecordModel: New, not yet persisted, instance.
        """
        if now is None:
            now = utcnow_naive()
        return cls(
            key=key,
            fingerprint=fingerprint,
            method=method,
            path=path[:255],
            status=IdempotencyStatus.IN_PROGRESS.value,
            lease_id=lease_id,
            created_at=now,
            updated_at=now,
            expires_at=now + timedelta(seconds=int(ttl_seconds)),
        )
