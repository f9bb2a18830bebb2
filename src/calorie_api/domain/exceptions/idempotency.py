# src/calorie_api/domain/exceptions/idempotency.py
# Copyright (c) Calorie Tracker.
# SPDX-License-Identifier: MIT
"""
Idempotency and storage exceptions.

Summary:
    Typed failures raised by the idempotency store and middleware. Each carries
    a stable ``code`` and ``http_status`` so the HTTP boundary can render the
    canonical error envelope without inspecting messages.

Layer:
    domain/exceptions
"""
from __future__ import annotations

from calorie_api.domain.enums.idempotency import ConflictKind
from calorie_api.domain.exceptions.base import DomainError


class IdempotencyConflict(DomainError):
    """A request collided with an existing record for the same key.

    Not retryable with the same key and body: the client must wait for the
    in-flight request (``in_flight``) or use a fresh key (``key_reused``).
    """

    code = "IDEMPOTENCY_CONFLICT"
    http_status = 409

    _MESSAGES = {
        ConflictKind.IN_FLIGHT: "Another request with the same idempotency key is in progress.",
        ConflictKind.KEY_REUSED: "Idempotency key reused with a different request payload.",
    }

    def __init__(self, kind: ConflictKind, *, key: str) -> None:
        super().__init__(self._MESSAGES[kind], details={"kind": kind.value})
        self.kind = kind
        self.key = key


class IdempotencyKeyInvalid(DomainError):
    """The supplied idempotency key cannot be stored."""

    code = "IDEMPOTENCY_KEY_INVALID"
    http_status = 400


class IdempotencyStateError(DomainError):
    """A completion was attempted on a record this invocation does not own."""

    code = "IDEMPOTENCY_STATE_ERROR"
    http_status = 500

    def __init__(self, key: str, lease_id: str) -> None:
        super().__init__(
            f"No in-progress idempotency record owned by lease {lease_id} for key {key!r}",
            details={"key": key},
        )
        self.key = key
        self.lease_id = lease_id


class StorageFailure(DomainError):
    """The durable store failed; no partial idempotency record is left behind."""

    code = "STORAGE_FAILURE"
    http_status = 500
