# src/calorie_api/domain/enums/idempotency.py
# Copyright (c) Calorie Tracker.
# SPDX-License-Identifier: MIT
"""Idempotency enums.

Purpose:
    Define the persisted record lifecycle and the conflict sub-kinds surfaced
    to clients.

Layer:
    domain/enums
"""

from __future__ import annotations

from enum import Enum


class IdempotencyStatus(str, Enum):
    """Lifecycle of an idempotency record. Transitions only forward."""

    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class ConflictKind(str, Enum):
    """Why a request with a known key was rejected."""

    IN_FLIGHT = "in_flight"
    KEY_REUSED = "key_reused"


__all__ = ["IdempotencyStatus", "ConflictKind"]
