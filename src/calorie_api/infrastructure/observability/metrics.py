# src/calorie_api/infrastructure/observability/metrics.py
# Copyright (c) Calorie Tracker.
# SPDX-License-Identifier: MIT
"""Prometheus metrics utilities (registry-aware, hot-reload safe).

Accessors return collectors bound to the **current**
``prometheus_client.REGISTRY``:

    - Safe under hot reload and tests that swap the default registry.
    - No duplicate-registration errors.
    - Cache automatically resets when the active registry changes.

Example:
    get_idempotency_decisions_total().labels(outcome="replay").inc()
    get_job_ticks_total().labels(job="reminders", outcome="success").inc()
"""

from __future__ import annotations

import logging
import threading
from contextlib import suppress
from typing import Final, TypeVar

import prometheus_client as prom
from prometheus_client import Counter, Histogram

_log = logging.getLogger(__name__)

# Job ticks are I/O bound maintenance work; buckets extend to minutes.
_JOB_BUCKETS: Final[tuple[float, ...]] = (
    0.010,
    0.050,
    0.100,
    0.500,
    1.000,
    5.000,
    15.000,
    60.000,
    300.000,
)

_registry_id: int | None = None
_cache: dict[str, Counter | Histogram] = {}
_lock = threading.RLock()

_TCollector = TypeVar("_TCollector", Counter, Histogram)


def _ensure_registry() -> None:
    """Reset the cache if the active registry changed."""
    global _registry_id
    with _lock:
        rid = id(prom.REGISTRY)
        if _registry_id != rid:
            _cache.clear()
            _registry_id = rid


def _lookup_existing(name: str, kind: type[_TCollector]) -> _TCollector | None:
    """Return a previously-registered collector of ``kind`` from the active registry."""
    with _lock, suppress(Exception):
        mapping = getattr(prom.REGISTRY, "_names_to_collectors", None)
        if isinstance(mapping, dict):
            col = mapping.get(name)
            if isinstance(col, kind):
                return col
    return None


def _get_or_create(
    kind: type[_TCollector],
    name: str,
    help_text: str,
    labelnames: tuple[str, ...],
    **kwargs: object,
) -> _TCollector:
    """Get or create a registry-bound collector with stable identity.

    Strategy:
    1. Return from module cache if present for the active registry.
    2. If registry already has a collector by this name, reuse it.
    3. Otherwise, register a new collector on the active registry.
    4. If concurrent registration triggers a duplication error, retry step 2.
    """
    _ensure_registry()
    with _lock:
        cached = _cache.get(name)
        if isinstance(cached, kind):
            return cached

        existing = _lookup_existing(name, kind)
        if existing is not None:
            _cache[name] = existing
            return existing

        try:
            collector = kind(name, help_text, labelnames, registry=prom.REGISTRY, **kwargs)
        except ValueError as exc:
            if "Duplicated timeseries" in str(exc):
                again = _lookup_existing(name, kind)
                if again is not None:
                    _cache[name] = again
                    return again
            _log.exception("Failed to register Prometheus collector %s", name)
            raise
        _cache[name] = collector
        return collector


def get_idempotency_decisions_total() -> Counter:
    """Return counter of idempotency decisions.

    Labels:
        outcome: ``proceed|replay|in_flight|key_reused``.
    """
    return _get_or_create(
        Counter,
        "idempotency_decisions_total",
        "Idempotency store decisions by outcome",
        ("outcome",),
    )


def get_job_ticks_total() -> Counter:
    """Return counter of scheduler ticks.

    Labels:
        job: Job name.
        outcome: ``success|error|skipped``.
    """
    return _get_or_create(
        Counter,
        "scheduler_job_ticks_total",
        "Background job ticks by outcome",
        ("job", "outcome"),
    )


def get_job_items_total() -> Counter:
    """Return counter of items processed by successful job ticks.

    Labels:
        job: Job name.
    """
    return _get_or_create(
        Counter,
        "scheduler_job_items_total",
        "Items processed by background jobs",
        ("job",),
    )


def get_job_tick_duration_seconds() -> Histogram:
    """Return histogram of job tick durations.

    Labels:
        job: Job name.
    """
    return _get_or_create(
        Histogram,
        "scheduler_job_tick_duration_seconds",
        "Duration of background job ticks (seconds)",
        ("job",),
        buckets=_JOB_BUCKETS,
    )
