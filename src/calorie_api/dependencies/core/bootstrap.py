# src/calorie_api/dependencies/core/bootstrap.py
# Copyright (c) Calorie Tracker.
# SPDX-License-Identifier: MIT
"""Core bootstrap for infrastructure (DB engine, job scheduler).

This module owns the lifecycle of shared infrastructure used by the FastAPI app.
Configuration is read from Settings; the work is delegated to the
infrastructure modules.

Shutdown order matters: the scheduler stops firing ticks, in-flight ticks get
a grace period to finish, and only then is the connection pool disposed.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator, Sequence
from contextlib import asynccontextmanager
from dataclasses import dataclass

from fastapi import FastAPI

from calorie_api.application.jobs.catalog import default_jobs
from calorie_api.application.jobs.descriptor import JobDescriptor
from calorie_api.config.settings import Settings, get_settings
from calorie_api.infrastructure.logging.logger import get_json_logger
from calorie_api.infrastructure.scheduling.scheduler import JobScheduler

logger = get_json_logger(__name__)


@dataclass
class BootstrapState:
    """State yielded by the bootstrap context manager."""

    settings: Settings
    scheduler: JobScheduler


@asynccontextmanager
async def bootstrap(
    app: FastAPI,
    *,
    settings: Settings | None = None,
    jobs: Sequence[JobDescriptor] | None = None,
) -> AsyncGenerator[BootstrapState, None]:
    """Initialize and teardown shared infrastructure.

    Responsibilities:
        * Initialize DB engine/sessionmaker.
        * Build the job scheduler and start it when enabled.
        * Stop and drain the scheduler, then dispose the engine, even on error.

    Args:
        app: FastAPI application instance.
        settings: Settings override; defaults to :func:`get_settings`.
        jobs: Job set override; defaults to the service catalog.

    Yields:
        BootstrapState: Resolved settings and the scheduler.
    """
    settings = settings or get_settings()
    logger.info("bootstrap.start", extra={"extra": {"app": app.title}})

    # Imported here so tests can monkeypatch module functions.
    import calorie_api.infrastructure.database.session as db_session

    db_session.init_engine(settings)

    if jobs is None:
        jobs = default_jobs(
            db_session.get_db_session, ttl_seconds=settings.idempotency_ttl_seconds
        )
    scheduler = JobScheduler(jobs, settings.scheduler_config())
    if settings.scheduler_enabled:
        scheduler.start()
    else:
        logger.info("bootstrap.scheduler_disabled")

    state = BootstrapState(settings=settings, scheduler=scheduler)

    try:
        yield state
    finally:
        try:
            await scheduler.stop()
            await scheduler.drain(timeout=settings.scheduler_shutdown_grace_seconds)
        except Exception:
            logger.exception("bootstrap.scheduler_stop_failed")

        try:
            await db_session.dispose_engine()
        except Exception:
            logger.exception("bootstrap.db_dispose_failed")

        logger.info("bootstrap.stop")
