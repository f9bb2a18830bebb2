# tests/unit/scheduling/test_scheduler.py
# Copyright (c) Calorie Tracker.
# SPDX-License-Identifier: MIT
"""Unit tests for JobScheduler.

Intervals are expressed in minutes; tests shrink one minute to a few
milliseconds through ``tick_unit_seconds``.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from uuid import uuid4

import prometheus_client as prom
import pytest

from calorie_api.application.jobs.descriptor import JobDescriptor
from calorie_api.infrastructure.scheduling.scheduler import JobScheduler, resolve_interval

FAST = 0.01


def _job(run, *, name: str | None = None, key: str = "TEST_JOB_INTERVAL", default: int = 1):
    return JobDescriptor(
        name=name or f"job-{uuid4().hex[:8]}",
        interval_config_key=key,
        default_interval_minutes=default,
        run=run,
    )


async def _noop() -> int:
    return 0


async def _wait_for(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    async def _poll() -> None:
        while not predicate():
            await asyncio.sleep(0.005)

    await asyncio.wait_for(_poll(), timeout)


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        (None, 30),
        ("", 30),
        ("   ", 30),
        ("abc", 30),
        ("1.5", 1),
        ("45.9", 45),
        (2.5, 2),
        ("nan", 30),
        ("inf", 30),
        ("1e3", 1000),
        ("15", 15),
        (" 45 ", 45),
        ("0", 1),
        ("-5", 1),
        (7, 7),
        (0, 1),
    ],
)
def test_resolve_interval_defaults_and_clamps(raw: object, expected: int) -> None:
    job = _job(_noop, key="NOTIFICATION_JOB_RUN_INTERVAL_MINUTES", default=30)
    config = {} if raw is None else {"NOTIFICATION_JOB_RUN_INTERVAL_MINUTES": raw}

    assert resolve_interval(job, config) == expected


def test_resolve_interval_honors_job_minimum() -> None:
    job = JobDescriptor(
        name="slow",
        interval_config_key="SLOW_INTERVAL",
        default_interval_minutes=10,
        run=_noop,
        min_interval_minutes=5,
    )

    assert resolve_interval(job, {"SLOW_INTERVAL": "2"}) == 5


def test_duplicate_job_names_are_rejected() -> None:
    with pytest.raises(ValueError):
        JobScheduler([_job(_noop, name="dup"), _job(_noop, name="dup")])


def test_intervals_resolved_at_construction() -> None:
    job = _job(_noop, name="reminders", key="NOTIFICATION_JOB_RUN_INTERVAL_MINUTES", default=30)
    scheduler = JobScheduler([job], {"NOTIFICATION_JOB_RUN_INTERVAL_MINUTES": "-3"})

    assert scheduler.interval_minutes("reminders") == 1
    assert scheduler.status()["jobs"][0]["interval_minutes"] == 1


@pytest.mark.anyio
async def test_stop_before_first_tick_runs_nothing() -> None:
    runs = 0

    async def run() -> int:
        nonlocal runs
        runs += 1
        return 1

    scheduler = JobScheduler([_job(run)], tick_unit_seconds=10.0)
    scheduler.start()
    await scheduler.stop()
    await asyncio.sleep(0.05)

    assert runs == 0
    assert scheduler.running is False
    assert await scheduler.drain(timeout=0.1) is True


@pytest.mark.anyio
async def test_in_flight_tick_completes_after_stop() -> None:
    started = asyncio.Event()
    release = asyncio.Event()
    finished: list[int] = []

    async def run() -> int:
        started.set()
        await release.wait()
        finished.append(3)
        return 3

    job = _job(run)
    scheduler = JobScheduler([job], tick_unit_seconds=FAST)
    scheduler.start()
    await asyncio.wait_for(started.wait(), 2.0)

    await scheduler.stop()
    assert finished == []
    release.set()

    assert await scheduler.drain(timeout=2.0) is True
    assert finished == [3]
    status = scheduler.status()["jobs"][0]
    assert status["run_count"] == 1
    assert status["last_count"] == 3


@pytest.mark.anyio
async def test_drain_times_out_without_cancelling() -> None:
    started = asyncio.Event()
    release = asyncio.Event()

    async def run() -> int:
        started.set()
        await release.wait()
        return 1

    scheduler = JobScheduler([_job(run)], tick_unit_seconds=FAST)
    scheduler.start()
    await asyncio.wait_for(started.wait(), 2.0)
    await scheduler.stop()

    assert await scheduler.drain(timeout=0.02) is False

    release.set()
    assert await scheduler.drain(timeout=2.0) is True
    assert scheduler.status()["jobs"][0]["run_count"] == 1


@pytest.mark.anyio
async def test_failing_job_does_not_affect_others() -> None:
    healthy_runs = 0

    async def broken() -> int:
        raise RuntimeError("boom")

    async def healthy() -> int:
        nonlocal healthy_runs
        healthy_runs += 1
        return 2

    bad, good = _job(broken, name="broken-" + uuid4().hex[:6]), _job(healthy)
    scheduler = JobScheduler([bad, good], tick_unit_seconds=FAST)
    scheduler.start()
    try:
        await _wait_for(
            lambda: healthy_runs >= 2 and scheduler.status()["jobs"][0]["error_count"] >= 2
        )
    finally:
        await scheduler.stop()
        await scheduler.drain(timeout=1.0)

    ticks = prom.REGISTRY.get_sample_value(
        "scheduler_job_ticks_total", {"job": bad.name, "outcome": "error"}
    )
    assert ticks is not None and ticks >= 2
    items = prom.REGISTRY.get_sample_value("scheduler_job_items_total", {"job": good.name})
    assert items is not None and items >= 4


@pytest.mark.anyio
async def test_start_twice_is_a_logged_noop(caplog: pytest.LogCaptureFixture) -> None:
    runs = 0

    async def run() -> int:
        nonlocal runs
        runs += 1
        return 0

    scheduler = JobScheduler([_job(run)], tick_unit_seconds=10.0)
    scheduler.start()
    with caplog.at_level(logging.WARNING):
        scheduler.start()
    await scheduler.stop()

    assert any(r.getMessage() == "scheduler.already_running" for r in caplog.records)
    assert runs == 0


@pytest.mark.anyio
async def test_overlapping_tick_is_skipped() -> None:
    release = asyncio.Event()
    concurrent = 0
    peak = 0

    async def slow() -> int:
        nonlocal concurrent, peak
        concurrent += 1
        peak = max(peak, concurrent)
        try:
            await release.wait()
        finally:
            concurrent -= 1
        return 1

    scheduler = JobScheduler([_job(slow)], tick_unit_seconds=FAST)
    scheduler.start()
    try:
        await _wait_for(lambda: scheduler.status()["jobs"][0]["skipped_count"] >= 2)
    finally:
        await scheduler.stop()
        release.set()
        await scheduler.drain(timeout=1.0)

    assert peak == 1
    assert scheduler.status()["jobs"][0]["run_count"] == 1


@pytest.mark.anyio
async def test_run_once_returns_count_and_propagates_errors() -> None:
    async def counted() -> int:
        return 5

    async def broken() -> int:
        raise RuntimeError("boom")

    scheduler = JobScheduler([_job(counted, name="counted"), _job(broken, name="broken")])

    assert await scheduler.run_once("counted") == 5
    with pytest.raises(RuntimeError):
        await scheduler.run_once("broken")
    with pytest.raises(KeyError):
        await scheduler.run_once("missing")

    jobs = {j["name"]: j for j in scheduler.status()["jobs"]}
    assert jobs["counted"]["run_count"] == 1
    assert jobs["broken"]["error_count"] == 1
