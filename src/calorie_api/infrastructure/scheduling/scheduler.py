# src/calorie_api/infrastructure/scheduling/scheduler.py
# Copyright (c) Calorie Tracker.
# SPDX-License-Identifier: MIT
"""In-process scheduler for recurring background jobs.

Purpose:
    Dispatch each registered :class:`JobDescriptor` on its own interval,
    isolate failures per tick, and shut down without interrupting work that
    is already running.

Layer:
    infrastructure/scheduling

Behavior:
    * One loop task per job: sleep one interval, fire a tick, repeat. The
      first tick happens one full interval after :meth:`JobScheduler.start`.
    * Every tick runs in its own task. A tick that raises is logged and
      counted; the next tick is the only recovery.
    * If the previous tick of a job is still running, the new tick is skipped.
    * :meth:`JobScheduler.stop` cancels the loops only. In-flight ticks run to
      completion; :meth:`JobScheduler.drain` waits for them.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from calorie_api.application.jobs.descriptor import JobDescriptor
from calorie_api.infrastructure.logging.logger import bind_job_context, get_json_logger
from calorie_api.infrastructure.observability.metrics import (
    get_job_items_total,
    get_job_tick_duration_seconds,
    get_job_ticks_total,
)

logger = get_json_logger(__name__)

SECONDS_PER_MINUTE = 60.0


def resolve_interval(job: JobDescriptor, config: Mapping[str, Any]) -> int:
    """Resolve a job's interval in minutes from configuration.

    Missing, blank or non-numeric values fall back to the job default.
    Fractional values are truncated toward zero, then clamped to the job's
    minimum.
    """
    raw = config.get(job.interval_config_key)
    if raw is None or isinstance(raw, bool):
        return job.default_interval_minutes
    if isinstance(raw, int):
        value = raw
    else:
        text = str(raw).strip()
        if not text:
            return job.default_interval_minutes
        try:
            value = int(float(text))
        except (ValueError, OverflowError):
            logger.warning(
                "scheduler.invalid_interval",
                extra={"extra": {"job": job.name, "key": job.interval_config_key, "value": text}},
            )
            return job.default_interval_minutes
    return max(job.min_interval_minutes, value)


@dataclass
class _JobState:
    descriptor: JobDescriptor
    interval_minutes: int
    loop_task: asyncio.Task[None] | None = None
    tick_task: asyncio.Task[None] | None = None
    run_count: int = 0
    error_count: int = 0
    skipped_count: int = 0
    last_run: datetime | None = None
    last_count: int | None = None


class JobScheduler:
    """Owns one timer per job and starts/stops them as a unit.

    Usage:
        scheduler = JobScheduler(jobs, settings.scheduler_config())
        scheduler.start()
        ...
        await scheduler.stop()
        await scheduler.drain(timeout=10)
    """

    def __init__(
        self,
        jobs: Iterable[JobDescriptor],
        config: Mapping[str, Any] | None = None,
        *,
        tick_unit_seconds: float = SECONDS_PER_MINUTE,
    ) -> None:
        """Initialize the scheduler.

        Args:
            jobs: Job descriptors to dispatch. Names must be unique.
            config: Mapping of interval configuration keys to raw values.
            tick_unit_seconds: Length of one interval unit in seconds.
        """
        config = config or {}
        self._tick_unit_seconds = float(tick_unit_seconds)
        self._states: dict[str, _JobState] = {}
        for job in jobs:
            if job.name in self._states:
                raise ValueError(f"Duplicate job name: {job.name!r}")
            self._states[job.name] = _JobState(
                descriptor=job, interval_minutes=resolve_interval(job, config)
            )
        self._in_flight: set[asyncio.Task[None]] = set()
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    @property
    def job_names(self) -> list[str]:
        return list(self._states)

    def interval_minutes(self, name: str) -> int:
        """Return the resolved interval of job ``name`` in minutes."""
        return self._state(name).interval_minutes

    def start(self) -> None:
        """Start one loop per job. Calling it while running is a logged no-op."""
        if self._running:
            logger.warning("scheduler.already_running")
            return

        self._running = True
        for state in self._states.values():
            state.loop_task = asyncio.create_task(
                self._loop(state), name=f"job-loop:{state.descriptor.name}"
            )
            logger.info(
                "scheduler.job_scheduled",
                extra={
                    "extra": {
                        "job": state.descriptor.name,
                        "interval_minutes": state.interval_minutes,
                    }
                },
            )
        logger.info("scheduler.started", extra={"extra": {"jobs": len(self._states)}})

    async def stop(self) -> None:
        """Cancel every loop so no new tick is fired. In-flight ticks keep running."""
        if not self._running:
            return

        self._running = False
        loops = [s.loop_task for s in self._states.values() if s.loop_task is not None]
        for task in loops:
            task.cancel()
        await asyncio.gather(*loops, return_exceptions=True)
        for state in self._states.values():
            state.loop_task = None
        logger.info("scheduler.stopped", extra={"extra": {"in_flight": len(self._in_flight)}})

    async def drain(self, timeout: float | None = None) -> bool:
        """Wait for in-flight ticks without cancelling them.

        Returns:
            True if every tick finished, False if the timeout elapsed first.
        """
        pending = set(self._in_flight)
        if not pending:
            return True
        _, still_running = await asyncio.wait(pending, timeout=timeout)
        if still_running:
            logger.warning(
                "scheduler.drain_timeout",
                extra={"extra": {"still_running": len(still_running), "timeout": timeout}},
            )
            return False
        return True

    def trigger(self, name: str) -> bool:
        """Fire a tick of job ``name`` now, as its timer would.

        The tick is tracked like a scheduled one, so :meth:`drain` waits for it.

        Returns:
            False if the previous tick is still running and this one was skipped.

        Raises:
            KeyError: If no job named ``name`` is registered.
        """
        return self._fire(self._state(name))

    async def run_once(self, name: str) -> int:
        """Run job ``name`` immediately and return its count.

        Unlike scheduled ticks, failures propagate to the caller.

        Raises:
            KeyError: If no job named ``name`` is registered.
        """
        return await self._execute(self._state(name))

    def status(self) -> dict[str, Any]:
        """Return a snapshot of the scheduler and per-job counters."""
        return {
            "running": self._running,
            "in_flight": len(self._in_flight),
            "jobs": [
                {
                    "name": s.descriptor.name,
                    "description": s.descriptor.description,
                    "interval_minutes": s.interval_minutes,
                    "last_run": s.last_run.isoformat() if s.last_run else None,
                    "last_count": s.last_count,
                    "run_count": s.run_count,
                    "error_count": s.error_count,
                    "skipped_count": s.skipped_count,
                }
                for s in self._states.values()
            ],
        }

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _state(self, name: str) -> _JobState:
        try:
            return self._states[name]
        except KeyError:
            raise KeyError(f"Unknown job: {name!r}") from None

    async def _loop(self, state: _JobState) -> None:
        interval = state.interval_minutes * self._tick_unit_seconds
        while True:
            await asyncio.sleep(interval)
            self._fire(state)

    def _fire(self, state: _JobState) -> bool:
        name = state.descriptor.name
        if state.tick_task is not None and not state.tick_task.done():
            state.skipped_count += 1
            get_job_ticks_total().labels(job=name, outcome="skipped").inc()
            logger.warning("scheduler.tick_skipped", extra={"extra": {"job": name}})
            return False

        task = asyncio.create_task(self._tick(state), name=f"job-tick:{name}")
        state.tick_task = task
        self._in_flight.add(task)
        task.add_done_callback(self._in_flight.discard)
        return True

    async def _tick(self, state: _JobState) -> None:
        try:
            await self._execute(state)
        except Exception:
            logger.exception(
                "scheduler.tick_failed", extra={"extra": {"job": state.descriptor.name}}
            )

    async def _execute(self, state: _JobState) -> int:
        name = state.descriptor.name
        started = time.perf_counter()
        try:
            with bind_job_context(name):
                count = int(await state.descriptor.run())
        except Exception:
            state.error_count += 1
            get_job_ticks_total().labels(job=name, outcome="error").inc()
            raise
        finally:
            get_job_tick_duration_seconds().labels(job=name).observe(
                time.perf_counter() - started
            )

        state.run_count += 1
        state.last_run = datetime.now(UTC)
        state.last_count = count
        get_job_ticks_total().labels(job=name, outcome="success").inc()
        if count > 0:
            get_job_items_total().labels(job=name).inc(count)
        logger.info(
            "scheduler.tick_completed",
            extra={
                "extra": {
                    "job": name,
                    "count": count,
                    "duration_ms": round((time.perf_counter() - started) * 1000, 2),
                }
            },
        )
        return count
