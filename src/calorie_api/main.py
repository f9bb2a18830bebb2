# src/calorie_api/main.py
# Copyright (c) Calorie Tracker.
# SPDX-License-Identifier: MIT
"""
Application Entry (Adapters Bootstrap)

Synopsis:
    FastAPI bootstrap that wires middleware, exception handlers and the
    operational routers. Provides an application factory (`create_app`).

Design:
    • Bootstrap only (no business logic): routers + middleware + lifespan.
    • Lifespan initializes the DB engine and the job scheduler and tears them
      down in order (stop ticks, drain, dispose pool).
    • Feature routers mount under the protected prefixes and inherit
      idempotency from the middleware without knowing about it.
"""

from __future__ import annotations

import os
from collections.abc import AsyncGenerator, Callable, Sequence
from contextlib import AbstractAsyncContextManager, asynccontextmanager

from fastapi import FastAPI
from sqlalchemy.ext.asyncio import AsyncSession

from calorie_api import __version__
from calorie_api.adapters.routers.health_router import router as health_router
from calorie_api.adapters.routers.metrics_router import router as metrics_router
from calorie_api.application.jobs.descriptor import JobDescriptor
from calorie_api.config.settings import Settings, get_settings
from calorie_api.dependencies.core.bootstrap import bootstrap
from calorie_api.infrastructure.http.errors import install_exception_handlers
from calorie_api.infrastructure.logging.logger import (
    configure_root_logging,
    get_json_logger,
)
from calorie_api.infrastructure.middleware.idempotency import IdempotencyMiddleware
from calorie_api.infrastructure.middleware.request_id import RequestIdMiddleware

logger = get_json_logger(__name__)

SessionProvider = Callable[[], AbstractAsyncContextManager[AsyncSession]]


def _attach_middlewares(
    app: FastAPI, settings: Settings, session_provider: SessionProvider | None
) -> None:
    """Attach core middleware.

    Starlette wraps in reverse registration order, so the last one added runs
    first:

        1. RequestIdMiddleware (correlation IDs, ``trace_id`` in envelopes)
        2. IdempotencyMiddleware (at-most-once protected mutations)
    """
    if settings.idempotency_enabled:
        app.add_middleware(
            IdempotencyMiddleware,
            ttl_seconds=settings.idempotency_ttl_seconds,
            header_name=settings.idempotency_key_header,
            path_prefixes=settings.idempotency_protected_prefixes,
            session_provider=session_provider,
        )
        logger.info(
            "idempotency_enabled",
            extra={
                "extra": {
                    "ttl_seconds": settings.idempotency_ttl_seconds,
                    "header": settings.idempotency_key_header,
                    "prefixes": settings.idempotency_protected_prefixes,
                }
            },
        )

    app.add_middleware(RequestIdMiddleware)


def create_app(
    settings: Settings | None = None,
    *,
    jobs: Sequence[JobDescriptor] | None = None,
    session_provider: SessionProvider | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        settings: Settings override; defaults to :func:`get_settings`.
        jobs: Job set for the scheduler; defaults to the service catalog.
        session_provider: Session factory for the idempotency middleware;
            defaults to the shared engine's sessions.

    Returns:
        FastAPI: Fully configured application instance.
    """
    settings = settings or get_settings()
    configure_root_logging(
        settings.log_level.upper() if settings.log_level else None,
        service=settings.service_name,
    )

    @asynccontextmanager
    async def runtime_lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        async with bootstrap(app, settings=settings, jobs=jobs) as state:
            app.state.scheduler = state.scheduler
            yield

    app = FastAPI(
        title="Calorie API",
        version=__version__,
        description="Food and calorie logging backend.",
        lifespan=runtime_lifespan,
    )
    app.state.settings = settings

    install_exception_handlers(app)
    _attach_middlewares(app, settings, session_provider)

    app.include_router(health_router)
    app.include_router(metrics_router)

    logger.info(
        "service_startup",
        extra={
            "extra": {
                "service": settings.service_name,
                "env": settings.environment.value,
                "version": __version__,
                "status": "starting",
            }
        },
    )
    return app


if __name__ == "__main__":  # pragma: no cover
    import uvicorn

    uvicorn.run(
        "calorie_api.main:create_app",
        factory=True,
        host="127.0.0.1",
        port=int(os.getenv("PORT", "8080")),
    )
