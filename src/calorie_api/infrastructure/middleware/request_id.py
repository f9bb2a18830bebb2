# src/calorie_api/infrastructure/middleware/request_id.py
# Copyright (c) Calorie Tracker.
# SPDX-License-Identifier: MIT
"""Request correlation middleware.

Each request gets a correlation id: the caller's ``X-Request-ID`` when it is
safe to echo, a fresh UUID4 otherwise. The id is exposed as
``request.state.request_id`` (rendered as ``trace_id`` in error envelopes),
bound to the log context for the request, and echoed on the response. One
``http.request`` access log line is written per request.
"""

from __future__ import annotations

import re
import time
import uuid
from typing import Final

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import Response

from calorie_api.infrastructure.logging.logger import get_json_logger, set_request_context

logger = get_json_logger(__name__)

REQUEST_ID_HEADER: Final[str] = "X-Request-ID"
_SAFE_RE: Final[re.Pattern[str]] = re.compile(r"^[A-Za-z0-9\-_.:@]{1,128}$")


def _coerce_request_id(raw: str | None) -> str:
    if raw and _SAFE_RE.match(raw):
        return raw
    return str(uuid.uuid4())


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Outermost middleware: correlation id in, correlation id out."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        request_id = _coerce_request_id(request.headers.get(REQUEST_ID_HEADER))
        request.state.request_id = request_id
        set_request_context(request_id=request_id)

        started = time.perf_counter()
        response = await call_next(request)
        response.headers[REQUEST_ID_HEADER] = request_id
        logger.info(
            "http.request",
            extra={
                "extra": {
                    "method": request.method,
                    "path": request.url.path,
                    "status": response.status_code,
                    "duration_ms": round((time.perf_counter() - started) * 1000, 2),
                }
            },
        )
        return response
