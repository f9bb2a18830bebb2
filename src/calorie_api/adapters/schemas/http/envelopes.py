# src/calorie_api/adapters/schemas/http/envelopes.py
# Copyright (c) Calorie Tracker.
# SPDX-License-Identifier: MIT
"""HTTP Envelopes (Adapters Layer).

Purpose:
    Canonical transport-facing error envelope: ``{"error": ErrorObject}``.

Idempotency:
    ``IDEMPOTENCY_CONFLICT`` responses carry ``details.kind``:
        - ``in_flight``: another request with the same key is still running.
        - ``key_reused``: the key was used for a different request.
"""

from __future__ import annotations

from typing import Any

from pydantic import ConfigDict, Field

from calorie_api.adapters.schemas.http.base import BaseHTTPSchema

__all__ = ["ErrorObject", "ErrorEnvelope"]


class ErrorObject(BaseHTTPSchema):
    """Structured error object inside ErrorEnvelope.

    Error codes are UPPER_SNAKE_CASE, stable across releases and testable.
    """

    model_config = ConfigDict(
        title="ErrorObject",
        extra="forbid",
        json_schema_extra={
            "examples": [
                {
                    "code": "IDEMPOTENCY_CONFLICT",
                    "http_status": 409,
                    "message": "Idempotency key reused with a different request payload.",
                    "details": {"kind": "key_reused"},
                    "trace_id": "req-123",
                }
            ]
        },
    )

    code: str = Field(
        ...,
        description=(
            "Stable machine-readable error code.\n"
            "\n"
            "**Idempotency codes:**\n"
            "- `IDEMPOTENCY_CONFLICT`: see `details.kind` (`in_flight` | `key_reused`).\n"
            "- `IDEMPOTENCY_KEY_INVALID`: the key cannot be stored (e.g. too long).\n"
        ),
    )
    http_status: int = Field(..., description="Associated HTTP status.")
    message: str = Field(..., description="Human-readable error description.")
    details: dict[str, Any] | None = Field(
        default=None,
        description="Optional structured details safe for clients.",
    )
    trace_id: str | None = Field(
        default=None,
        description="Request correlation identifier.",
    )


class ErrorEnvelope(BaseHTTPSchema):
    """Canonical error envelope: {"error": ErrorObject}."""

    model_config = ConfigDict(title="ErrorEnvelope", extra="forbid")

    error: ErrorObject = Field(..., description="Structured error details.")
