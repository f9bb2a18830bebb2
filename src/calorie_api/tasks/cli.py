# src/calorie_api/tasks/cli.py
# Copyright (c) Calorie Tracker.
# SPDX-License-Identifier: MIT
"""Calorie API CLI: operational commands (jobs, idempotency maintenance).

Commands:
    jobs list            Show registered jobs and their resolved intervals.
    jobs run NAME        Run one job immediately and print its count.
    idempotency prune    Delete idempotency records past their retention window.

Environment:
    DATABASE_URL                            Async SQLAlchemy URL.
    GDPR_JOB_RUN_INTERVAL_MINUTES           Erasure job interval (minutes).
    NOTIFICATION_JOB_RUN_INTERVAL_MINUTES   Reminder job interval (minutes).
    IDEMPOTENCY_PRUNE_INTERVAL_MINUTES      Prune job interval (minutes).
"""

from __future__ import annotations

import asyncio
import os
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import typer
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from calorie_api.adapters.repositories.idempotency_repository import IdempotencyRepository
from calorie_api.application.jobs.catalog import SessionProvider, default_jobs
from calorie_api.application.use_cases.maintenance.prune_idempotency_records import (
    PruneIdempotencyRecords,
)
from calorie_api.infrastructure.database.session import get_db_session
from calorie_api.infrastructure.logging.logger import configure_root_logging, get_json_logger
from calorie_api.infrastructure.scheduling.scheduler import JobScheduler

configure_root_logging()
log = get_json_logger(__name__)

app = typer.Typer(add_completion=False, no_args_is_help=True)
jobs_app = typer.Typer(no_args_is_help=True)
idempotency_app = typer.Typer(no_args_is_help=True)
app.add_typer(jobs_app, name="jobs")
app.add_typer(idempotency_app, name="idempotency")


def _engine(database_url: str) -> AsyncEngine:
    """Create an async engine bound to the given database URL."""
    return create_async_engine(database_url)


def _session_provider(engine: AsyncEngine) -> SessionProvider:
    """Return a session context manager factory bound to ``engine``."""
    Session = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)

    @asynccontextmanager
    async def _provide() -> AsyncGenerator[AsyncSession, None]:
        async with Session() as session:
            yield session

    return _provide


def _scheduler(session_provider: SessionProvider) -> JobScheduler:
    """Build a scheduler over the service catalog with intervals from the environment."""
    return JobScheduler(default_jobs(session_provider), dict(os.environ))


@jobs_app.command("list")
def jobs_list() -> None:
    """Show every registered job with its configuration key and interval."""
    # Listing never opens a session.
    scheduler = _scheduler(get_db_session)
    for job in scheduler.status()["jobs"]:
        typer.echo(f"{job['name']}\tevery {job['interval_minutes']} min\t{job['description']}")


@jobs_app.command("run")
def jobs_run(
    name: str = typer.Argument(..., help="Job name (see `jobs list`)."),  # noqa: B008
    database_url: str = typer.Option(
        ..., envvar="DATABASE_URL", help="Async SQLAlchemy URL."
    ),  # noqa: B008
) -> None:
    """Run one job immediately, outside the schedule.

    Failures propagate so the command exits non-zero.
    """
    engine = _engine(database_url)
    scheduler = _scheduler(_session_provider(engine))
    if name not in scheduler.job_names:
        raise typer.BadParameter(
            f"unknown job {name!r}; choose from {', '.join(scheduler.job_names)}",
            param_hint="NAME",
        )

    async def _run() -> int:
        try:
            return await scheduler.run_once(name)
        finally:
            await engine.dispose()

    count = asyncio.run(_run())
    log.info("jobs_run.done", extra={"extra": {"job": name, "count": count}})
    typer.echo(f"{name}: {count}")


@idempotency_app.command("prune")
def idempotency_prune(
    database_url: str = typer.Option(
        ..., envvar="DATABASE_URL", help="Async SQLAlchemy URL."
    ),  # noqa: B008
) -> None:
    """Delete idempotency records whose retention window has passed."""
    engine = _engine(database_url)
    provide = _session_provider(engine)

    async def _run() -> int:
        try:
            async with provide() as session:
                result = await PruneIdempotencyRecords(IdempotencyRepository(session)).execute()
            return result.deleted
        finally:
            await engine.dispose()

    deleted = asyncio.run(_run())
    log.info("idempotency_prune.done", extra={"extra": {"deleted": deleted}})
    typer.echo(f"deleted: {deleted}")


if __name__ == "__main__":  # pragma: no cover
    app()
