from __future__ import annotations

import prometheus_client as prom
from prometheus_client import CollectorRegistry

from calorie_api.infrastructure.observability.metrics import (
    get_idempotency_decisions_total,
    get_job_items_total,
    get_job_tick_duration_seconds,
    get_job_ticks_total,
)


def test_accessors_return_singletons_per_registry() -> None:
    assert get_idempotency_decisions_total() is get_idempotency_decisions_total()
    assert get_job_ticks_total() is get_job_ticks_total()
    assert get_job_tick_duration_seconds() is get_job_tick_duration_seconds()


def test_collectors_accept_labelled_observations() -> None:
    get_idempotency_decisions_total().labels(outcome="replay").inc()
    get_job_ticks_total().labels(job="reminders", outcome="success").inc()
    get_job_items_total().labels(job="reminders").inc(3)
    get_job_tick_duration_seconds().labels(job="reminders").observe(0.2)


def test_registry_swap_rebinds_collectors(monkeypatch) -> None:
    before = get_job_ticks_total()
    fresh = CollectorRegistry()
    monkeypatch.setattr(prom, "REGISTRY", fresh)

    after = get_job_ticks_total()
    after.labels(job="gdpr-erasure", outcome="error").inc()

    assert after is not before
    value = fresh.get_sample_value(
        "scheduler_job_ticks_total", {"job": "gdpr-erasure", "outcome": "error"}
    )
    assert value == 1.0
