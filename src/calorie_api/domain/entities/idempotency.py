# src/calorie_api/domain/entities/idempotency.py
# Copyright (c) Calorie Tracker.
# SPDX-License-Identifier: MIT
"""Idempotency decisions and response snapshots.

Purpose:
    Represent the outcome of claiming an idempotency key. The store answers
    every ``begin`` with exactly one of three decisions:

        * ``Proceed``: this invocation owns the key and must run the handler.
        * ``Replay``: the key already completed; return the stored response.
        * ``Conflict``: the key is in flight or was used for another request.

Layer:
    domain
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field

from calorie_api.domain.enums.idempotency import ConflictKind


@dataclass(frozen=True)
class ResponseSnapshot:
    """Stored response of a completed request.

    Args:
        status_code: HTTP status code returned to the first caller.
        body: Raw response body, replayed byte-for-byte.
        headers: Replayable response headers (lower-cased names).
    """

    status_code: int
    body: bytes = b""
    headers: Mapping[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class Proceed:
    """The key was claimed; ``lease_id`` identifies the owning invocation."""

    lease_id: str


@dataclass(frozen=True)
class Replay:
    """The key completed earlier with a matching fingerprint."""

    snapshot: ResponseSnapshot


@dataclass(frozen=True)
class Conflict:
    """The key cannot be used for this request."""

    kind: ConflictKind


Decision = Proceed | Replay | Conflict

__all__ = ["ResponseSnapshot", "Proceed", "Replay", "Conflict", "Decision"]
