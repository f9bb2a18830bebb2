# src/calorie_api/adapters/routers/metrics_router.py
# Copyright (c) Calorie Tracker.
# SPDX-License-Identifier: MIT
"""Prometheus scrape endpoint (`/metrics`).

Job histograms are created lazily on the first tick; the scrape touches the
accessors so the metric families exist before any job has run.

Layer:
    adapters/routers
"""

from __future__ import annotations

from fastapi import APIRouter, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from calorie_api.infrastructure.observability.metrics import (
    get_idempotency_decisions_total,
    get_job_items_total,
    get_job_tick_duration_seconds,
    get_job_ticks_total,
)

router = APIRouter()


@router.get("/metrics", include_in_schema=False)
async def metrics_probe() -> Response:
    """Expose Prometheus metrics in text format."""
    get_idempotency_decisions_total()
    get_job_ticks_total()
    get_job_items_total()
    get_job_tick_duration_seconds()
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
