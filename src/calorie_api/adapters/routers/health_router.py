# src/calorie_api/adapters/routers/health_router.py
# Copyright (c) Calorie Tracker.
# SPDX-License-Identifier: MIT
"""Health endpoints (Adapters Layer).

Purpose:
    Expose liveness and readiness signals for orchestrators and load balancers.

Design:
    * ``/healthz`` never touches dependencies.
    * ``/readyz`` probes the database (``SELECT 1``) and the job scheduler.
      Probes are injected through :func:`get_readiness_probe` so tests can
      override them with ``app.dependency_overrides``.
"""

from __future__ import annotations

import time
import typing as t
from enum import Enum
from typing import Annotated, Protocol

from fastapi import APIRouter, Depends, Request, Response, status
from pydantic import Field
from sqlalchemy import text

from calorie_api.adapters.schemas.http.base import BaseHTTPSchema
from calorie_api.infrastructure.database.session import get_db_session
from calorie_api.infrastructure.logging.logger import get_json_logger

logger = get_json_logger(__name__)
router = APIRouter()


class HealthState(str, Enum):
    """Overall service health classification."""

    OK = "ok"
    DEGRADED = "degraded"


class CheckResult(BaseHTTPSchema):
    """Result of a single dependency check."""

    name: str = Field(..., examples=["db", "scheduler"])
    status: t.Literal["ok", "down"]
    detail: str | None = None
    duration_ms: float


class ReadinessResponse(BaseHTTPSchema):
    """Aggregated readiness response."""

    status: HealthState
    checks: list[CheckResult] = Field(default_factory=list)


class LivenessResponse(BaseHTTPSchema):
    """Liveness response indicating the process is running."""

    status: t.Literal["ok"] = "ok"


class ReadinessProbe(Protocol):
    """Minimal, non-destructive dependency checks returning ``(is_ok, detail)``."""

    async def db(self) -> tuple[bool, str | None]: ...

    async def scheduler(self, request: Request) -> tuple[bool, str | None]: ...


class DefaultReadinessProbe:
    """Probe backed by the shared engine and the app's scheduler."""

    async def db(self) -> tuple[bool, str | None]:
        try:
            async with get_db_session() as session:
                await session.execute(text("SELECT 1"))
        except Exception as exc:
            return False, f"{type(exc).__name__}: {exc}"
        return True, None

    async def scheduler(self, request: Request) -> tuple[bool, str | None]:
        settings = getattr(request.app.state, "settings", None)
        if settings is not None and not settings.scheduler_enabled:
            return True, "disabled"
        scheduler = getattr(request.app.state, "scheduler", None)
        if scheduler is None:
            return False, "scheduler not initialized"
        if not scheduler.running:
            return False, "scheduler not running"
        return True, None


def get_readiness_probe() -> ReadinessProbe:
    """Return the default readiness probe."""
    return DefaultReadinessProbe()


async def _timed(
    name: str, probe: t.Callable[[], t.Awaitable[tuple[bool, str | None]]]
) -> CheckResult:
    started = time.perf_counter()
    ok, detail = await probe()
    return CheckResult(
        name=name,
        status="ok" if ok else "down",
        detail=detail,
        duration_ms=round((time.perf_counter() - started) * 1000, 3),
    )


@router.get(
    "/healthz",
    response_model=LivenessResponse,
    summary="Liveness probe",
    operation_id="healthz",
)
async def healthz() -> LivenessResponse:
    return LivenessResponse()


@router.get(
    "/readyz",
    response_model=ReadinessResponse,
    summary="Readiness probe",
    operation_id="readyz",
    responses={503: {"model": ReadinessResponse}},
)
async def readyz(
    request: Request,
    response: Response,
    probe: Annotated[ReadinessProbe, Depends(get_readiness_probe)],
) -> ReadinessResponse:
    """Report readiness of the database and the job scheduler."""
    checks = [
        await _timed("db", probe.db),
        await _timed("scheduler", lambda: probe.scheduler(request)),
    ]
    overall = (
        HealthState.OK if all(c.status == "ok" for c in checks) else HealthState.DEGRADED
    )
    if overall is not HealthState.OK:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        logger.warning(
            "readyz.degraded",
            extra={"extra": {"checks": [c.model_dump_http() for c in checks]}},
        )
    return ReadinessResponse(status=overall, checks=checks)
