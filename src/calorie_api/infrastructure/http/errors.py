# src/calorie_api/infrastructure/http/errors.py
# Copyright (c) Calorie Tracker.
# SPDX-License-Identifier: MIT
"""Exception handlers rendering the canonical error envelope.

Domain errors carry their own ``code``/``http_status``. Everything else maps
to ``HTTP_ERROR``, ``VALIDATION_ERROR`` or ``INTERNAL_ERROR``.
"""
from __future__ import annotations

from typing import Any

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.responses import Response

from calorie_api.adapters.schemas.http.envelopes import ErrorEnvelope, ErrorObject
from calorie_api.domain.exceptions.base import DomainError
from calorie_api.infrastructure.logging.logger import get_json_logger

logger = get_json_logger(__name__)


def _trace_id(request: Request) -> str | None:
    return getattr(getattr(request, "state", None), "request_id", None)


def error_envelope(
    *,
    code: str,
    http_status: int,
    message: str,
    details: dict[str, Any] | None = None,
    trace_id: str | None = None,
) -> dict[str, Any]:
    envelope = ErrorEnvelope(
        error=ErrorObject(
            code=code,
            http_status=http_status,
            message=message,
            details=details,
            trace_id=trace_id,
        )
    )
    return envelope.model_dump_http()


def error_response(exc: DomainError, *, trace_id: str | None) -> JSONResponse:
    """Render a domain error as its canonical JSON response."""
    payload = error_envelope(
        code=exc.code,
        http_status=exc.http_status,
        message=str(exc),
        details=exc.details or None,
        trace_id=trace_id,
    )
    return JSONResponse(status_code=exc.http_status, content=payload)


async def handle_domain_error(request: Request, exc: DomainError) -> Response:
    if exc.http_status >= 500:
        logger.error(
            "domain_error",
            exc_info=exc,
            extra={"extra": {"code": exc.code, "path": request.url.path}},
        )
    return error_response(exc, trace_id=_trace_id(request))


async def handle_validation_error(request: Request, exc: RequestValidationError) -> Response:
    payload = error_envelope(
        code="VALIDATION_ERROR",
        http_status=422,
        message="Request validation failed",
        details={"errors": exc.errors()},
        trace_id=_trace_id(request),
    )
    return JSONResponse(status_code=422, content=payload)


async def handle_http_exception(request: Request, exc: HTTPException) -> Response:
    payload = error_envelope(
        code="HTTP_ERROR",
        http_status=exc.status_code,
        message=exc.detail if isinstance(exc.detail, str) else "HTTP error",
        details=None if isinstance(exc.detail, str) else {"detail": exc.detail},
        trace_id=_trace_id(request),
    )
    return JSONResponse(status_code=exc.status_code, content=payload)


async def handle_unhandled_exception(request: Request, exc: Exception) -> Response:
    logger.error(
        "unhandled_exception",
        exc_info=exc,
        extra={"extra": {"path": request.url.path, "method": request.method}},
    )
    payload = error_envelope(
        code="INTERNAL_ERROR",
        http_status=500,
        message="Internal server error",
        trace_id=_trace_id(request),
    )
    return JSONResponse(status_code=500, content=payload)


def install_exception_handlers(app: FastAPI) -> None:
    """Register the structured exception handlers on ``app``."""

    async def _domain_error_handler(request: Request, exc: Exception) -> Response:
        if not isinstance(exc, DomainError):
            raise exc
        return await handle_domain_error(request, exc)

    async def _http_error_handler(request: Request, exc: Exception) -> Response:
        if not isinstance(exc, HTTPException):
            raise exc
        return await handle_http_exception(request, exc)

    async def _validation_error_handler(request: Request, exc: Exception) -> Response:
        if not isinstance(exc, RequestValidationError):
            raise exc
        return await handle_validation_error(request, exc)

    app.add_exception_handler(DomainError, _domain_error_handler)
    app.add_exception_handler(HTTPException, _http_error_handler)
    app.add_exception_handler(RequestValidationError, _validation_error_handler)
    app.add_exception_handler(Exception, handle_unhandled_exception)
