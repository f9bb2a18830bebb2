# src/calorie_api/application/jobs/catalog.py
# Copyright (c) Calorie Tracker.
# SPDX-License-Identifier: MIT
"""Catalog of the recurring jobs this service runs.

Layer:
    application/jobs

Notes:
    The erasure and reminder bodies live with their owning features; this
    module only binds them to a name, an interval setting and a default.
"""

from __future__ import annotations

from collections.abc import Callable
from contextlib import AbstractAsyncContextManager

from sqlalchemy.ext.asyncio import AsyncSession

from calorie_api.adapters.repositories.idempotency_repository import IdempotencyRepository
from calorie_api.application.jobs.descriptor import JobDescriptor, JobRun
from calorie_api.application.use_cases.maintenance.prune_idempotency_records import (
    PruneIdempotencyRecords,
)

SessionProvider = Callable[[], AbstractAsyncContextManager[AsyncSession]]

GDPR_ERASURE_JOB = "gdpr-erasure"
REMINDER_JOB = "reminders"
IDEMPOTENCY_PRUNE_JOB = "idempotency-prune"


def gdpr_erasure_job(run: JobRun) -> JobDescriptor:
    """Bind the GDPR erasure processor to its schedule (default hourly)."""
    return JobDescriptor(
        name=GDPR_ERASURE_JOB,
        interval_config_key="GDPR_JOB_RUN_INTERVAL_MINUTES",
        default_interval_minutes=60,
        run=run,
        description="Process pending data erasure requests",
    )


def reminder_job(run: JobRun) -> JobDescriptor:
    """Bind the reminder sender to its schedule (default every 30 minutes)."""
    return JobDescriptor(
        name=REMINDER_JOB,
        interval_config_key="NOTIFICATION_JOB_RUN_INTERVAL_MINUTES",
        default_interval_minutes=30,
        run=run,
        description="Send due logging reminders",
    )


def idempotency_prune_job(
    session_provider: SessionProvider,
    *,
    ttl_seconds: int = 60 * 60 * 24,
) -> JobDescriptor:
    """Build the job that deletes expired idempotency records."""

    async def _run() -> int:
        async with session_provider() as session:
            store = IdempotencyRepository(session, ttl_seconds=ttl_seconds)
            result = await PruneIdempotencyRecords(store).execute()
        return result.deleted

    return JobDescriptor(
        name=IDEMPOTENCY_PRUNE_JOB,
        interval_config_key="IDEMPOTENCY_PRUNE_INTERVAL_MINUTES",
        default_interval_minutes=60,
        run=_run,
        description="Delete idempotency records past their retention window",
    )


def default_jobs(
    session_provider: SessionProvider,
    *,
    ttl_seconds: int = 60 * 60 * 24,
    gdpr_erasure: JobRun | None = None,
    reminders: JobRun | None = None,
) -> list[JobDescriptor]:
    """Return the service's job set.

    Feature-owned jobs are included only when their body is supplied.
    """
    jobs: list[JobDescriptor] = []
    if gdpr_erasure is not None:
        jobs.append(gdpr_erasure_job(gdpr_erasure))
    if reminders is not None:
        jobs.append(reminder_job(reminders))
    jobs.append(idempotency_prune_job(session_provider, ttl_seconds=ttl_seconds))
    return jobs
