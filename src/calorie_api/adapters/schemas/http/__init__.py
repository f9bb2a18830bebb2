# Copyright (c) Calorie Tracker.
# SPDX-License-Identifier: MIT
"""HTTP Schemas package (Adapters Layer).

Purpose:
    Public, adapter-facing HTTP schema surface. Re-exports the canonical
    envelopes used by middleware, error handlers and routers.

Layer:
    adapters/schemas/http
"""

from __future__ import annotations

from calorie_api.adapters.schemas.http.envelopes import ErrorEnvelope, ErrorObject

__all__ = ["ErrorEnvelope", "ErrorObject"]
