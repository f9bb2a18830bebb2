# src/calorie_api/infrastructure/logging/logger.py
# Copyright (c) Calorie Tracker.
# SPDX-License-Identifier: MIT
"""Structured JSON logging.

One JSON object per line with stable keys (``ts``, ``level``, ``logger``,
``message``) plus whatever correlation context is active:

    * ``request_id``: set by ``RequestIdMiddleware`` for the current request.
    * ``job``: set by the scheduler for the duration of a job tick, so store
      and use-case logs emitted inside a tick are attributable to it.
    * ``service``: the configured service name, if any.

Structured fields are passed as ``extra={"extra": {...}}`` and merged into
the top level.

Typical usage:
    configure_root_logging(settings.log_level, service=settings.service_name)
    log = get_json_logger(__name__)
    log.info("scheduler.started", extra={"extra": {"jobs": 3}})
"""

from __future__ import annotations

import json
import logging
import os
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import UTC, datetime
from typing import Any

__all__ = [
    "bind_job_context",
    "configure_root_logging",
    "get_json_logger",
    "get_request_id",
    "set_request_context",
]

_REQUEST_ID: ContextVar[str | None] = ContextVar("calorie_request_id", default=None)
_JOB: ContextVar[str | None] = ContextVar("calorie_job", default=None)


def set_request_context(*, request_id: str | None = None) -> None:
    """Bind the request correlation id to the current context."""
    if request_id is not None:
        _REQUEST_ID.set(request_id)


def get_request_id() -> str | None:
    return _REQUEST_ID.get()


@contextmanager
def bind_job_context(job: str) -> Iterator[None]:
    """Tag every record logged inside the block with ``job``."""
    token = _JOB.set(job)
    try:
        yield
    finally:
        _JOB.reset(token)


class _JsonFormatter(logging.Formatter):
    def __init__(self, service: str | None = None) -> None:
        super().__init__()
        self._service = service

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if self._service:
            payload["service"] = self._service

        request_id = getattr(record, "request_id", None) or _REQUEST_ID.get()
        if request_id:
            payload["request_id"] = request_id
        job = _JOB.get()
        if job:
            payload["job"] = job

        if record.exc_info and record.exc_info[0] is not None:
            exc_type, exc_value, _ = record.exc_info
            payload["exc_type"] = exc_type.__name__
            payload["exc_message"] = str(exc_value)
            payload["traceback"] = self.formatException(record.exc_info)

        extra = getattr(record, "extra", None)
        if isinstance(extra, dict):
            payload.update(extra)

        return json.dumps(payload, separators=(",", ":"), ensure_ascii=False, default=str)


def configure_root_logging(level: str | int | None = None, *, service: str | None = None) -> None:
    """Install the JSON handler on the root logger once and set its level.

    Args:
        level: Level or level name. Defaults to env ``LOG_LEVEL``, then ``INFO``.
        service: Optional service name stamped on every record.
    """
    root = logging.getLogger()
    if level is None:
        level = (os.getenv("LOG_LEVEL") or "INFO").upper()
    root.setLevel(level)

    # Hot reload and repeated app factories must not stack handlers.
    if any(isinstance(h.formatter, _JsonFormatter) for h in root.handlers):
        return

    handler = logging.StreamHandler()
    handler.setFormatter(_JsonFormatter(service))
    root.addHandler(handler)


def get_json_logger(name: str) -> logging.Logger:
    """Return the module logger. Output goes through the root JSON handler."""
    return logging.getLogger(name)
