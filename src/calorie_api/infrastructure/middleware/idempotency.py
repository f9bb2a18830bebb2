# src/calorie_api/infrastructure/middleware/idempotency.py
# Copyright (c) Calorie Tracker.
# SPDX-License-Identifier: MIT
"""HTTP Idempotency Middleware.

Purpose:
    Guarantee that a client-supplied idempotency key makes a protected
    mutation execute at most once, using the DB-backed idempotency store.

Layer:
    infrastructure

Behavior:
    Idempotency is opt-in per request: if the key header is absent, the request
    passes through unchanged. Only configured methods on configured route
    prefixes are protected. With the header present:

        * Same key + same request, completed  → stored response replayed.
        * Same key + same request, running    → 409 (kind ``in_flight``).
        * Same key + different request        → 409 (kind ``key_reused``).
        * Handler raises or answers 5xx       → record released, key retryable.

Known gap:
    A client disconnecting mid-request does not release the record. It stays
    ``in_progress`` until its retention window elapses and a retry reclaims it.
"""

from __future__ import annotations

import hashlib
import json
from collections.abc import AsyncIterator, Callable, Collection, Mapping
from contextlib import AbstractAsyncContextManager
from typing import Any, Final
from urllib.parse import urlencode

from fastapi import Request
from fastapi.responses import Response
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.types import ASGIApp

from calorie_api.adapters.repositories.idempotency_repository import IdempotencyRepository
from calorie_api.domain.entities.idempotency import Conflict, Replay, ResponseSnapshot
from calorie_api.domain.exceptions.idempotency import (
    IdempotencyConflict,
    IdempotencyKeyInvalid,
)
from calorie_api.domain.interfaces.repositories.idempotency_repository import IdempotencyStore
from calorie_api.infrastructure.database.session import get_db_session
from calorie_api.infrastructure.http.errors import error_response
from calorie_api.infrastructure.logging.logger import get_json_logger
from calorie_api.infrastructure.observability.metrics import get_idempotency_decisions_total

logger = get_json_logger(__name__)

DEFAULT_KEY_HEADER: Final[str] = "X-Idempotency-Key"
REPLAYED_HEADER: Final[str] = "Idempotent-Replayed"
MAX_KEY_LENGTH: Final[int] = 255

# Headers that describe one particular transmission rather than the response.
_UNREPLAYABLE_HEADERS: Final[frozenset[str]] = frozenset(
    {"content-length", "date", "server", "connection", "transfer-encoding", "x-request-id"}
)


def canonical_body(body: bytes) -> bytes:
    """Return a canonical serialization of a request body.

    JSON bodies are re-serialized with sorted keys and compact separators so
    that formatting differences do not change the fingerprint. Anything else
    is used as-is.
    """
    if not body:
        return b""
    try:
        parsed = json.loads(body)
    except (UnicodeDecodeError, ValueError):
        return body
    # Lone surrogates are valid JSON but cannot be encoded as UTF-8.
    return json.dumps(parsed, sort_keys=True, separators=(",", ":")).encode("ascii")


def compute_fingerprint(
    method: str,
    path: str,
    body: bytes,
    query_pairs: Collection[tuple[str, str]] = (),
) -> str:
    """Compute the SHA-256 fingerprint of the logically relevant request content."""
    # Decoded pairs; "&" and "=" inside values must stay escaped.
    query = urlencode(sorted(query_pairs))
    body_digest = hashlib.sha256(canonical_body(body)).hexdigest()
    material = f"{method.upper()}|{path}|{query}|{body_digest}".encode()
    return hashlib.sha256(material).hexdigest()


def _path_matches(path: str, prefixes: Collection[str] | None) -> bool:
    if prefixes is None:
        return True
    return any(
        prefix == "/" or path == prefix or path.startswith(prefix + "/") for prefix in prefixes
    )


def _replayable_headers(headers: Mapping[str, str]) -> dict[str, str]:
    return {
        name.lower(): value
        for name, value in headers.items()
        if name.lower() not in _UNREPLAYABLE_HEADERS
    }


class IdempotencyMiddleware(BaseHTTPMiddleware):
    """ASGI middleware enforcing at-most-once execution per idempotency key.

    The middleware:

        * Applies only to configured HTTP methods (default: POST, PUT, PATCH)
          on configured path prefixes (default: every path).
        * Treats requests without the key header as non-idempotent and passes
          them through unchanged.
        * For requests with the key header:
            - Buffers the body and computes the request fingerprint.
            - Asks the store to ``begin``; replays, rejects or proceeds.
            - Completes the record with the handler's response, or releases
              it when the handler fails.
    """

    def __init__(
        self,
        app: ASGIApp,
        *,
        ttl_seconds: int = 60 * 60 * 24,
        header_name: str = DEFAULT_KEY_HEADER,
        methods: Collection[str] | None = None,
        path_prefixes: Collection[str] | None = None,
        session_provider: Callable[[], AbstractAsyncContextManager[AsyncSession]] | None = None,
        store_factory: Callable[[AsyncSession], IdempotencyStore] | None = None,
    ) -> None:
        """Initialize the middleware.

        Args:
            app: Downstream ASGI application.
            ttl_seconds: Retention window in seconds for idempotency records.
            header_name: Request header carrying the idempotency key.
            methods: HTTP methods to protect; defaults to {POST, PUT, PATCH}.
            path_prefixes: Route groups to protect; ``None`` protects every path.
            session_provider: Async context manager factory that yields an
                `AsyncSession`. Defaults to :func:`get_db_session`.
            store_factory: Builds the store for a session. Defaults to
                :class:`IdempotencyRepository`.
        """
        super().__init__(app)
        self._ttl_seconds = int(ttl_seconds)
        self._header_name = header_name
        self._methods = {m.upper() for m in (methods or {"POST", "PUT", "PATCH"})}
        self._path_prefixes = (
            [p.rstrip("/") or "/" for p in path_prefixes] if path_prefixes is not None else None
        )
        self._session_provider = session_provider or get_db_session
        self._store_factory = store_factory or (
            lambda session: IdempotencyRepository(session, ttl_seconds=self._ttl_seconds)
        )

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        """Dispatch the request through idempotency logic or directly downstream."""
        method = request.method.upper()
        if method not in self._methods or not _path_matches(request.url.path, self._path_prefixes):
            return await call_next(request)

        key = (request.headers.get(self._header_name) or "").strip()
        if not key:
            # No header: behave as a normal, non-idempotent request.
            return await call_next(request)

        trace_id = getattr(request.state, "request_id", None)
        if len(key) > MAX_KEY_LENGTH:
            return error_response(
                IdempotencyKeyInvalid(
                    f"Idempotency key must be at most {MAX_KEY_LENGTH} characters.",
                    details={"max_length": MAX_KEY_LENGTH},
                ),
                trace_id=trace_id,
            )

        # Buffer the request body so we can both hash it and re-send to downstream.
        raw_body = await request.body()

        async def receive() -> dict[str, Any]:
            """Return the buffered request body to downstream handlers."""
            return {"type": "http.request", "body": raw_body, "more_body": False}

        request = Request(request.scope, receive=receive)
        path = request.url.path
        fingerprint = compute_fingerprint(
            method, path, raw_body, request.query_params.multi_items()
        )
        decisions = get_idempotency_decisions_total()

        async with self._session_provider() as session:
            store = self._store_factory(session)
            decision = await store.begin(key, fingerprint, method=method, path=path)

            if isinstance(decision, Replay):
                decisions.labels(outcome="replay").inc()
                logger.info(
                    "idempotency.replay",
                    extra={"extra": {"key": key, "status": decision.snapshot.status_code}},
                )
                return self._replay_response(decision.snapshot)

            if isinstance(decision, Conflict):
                decisions.labels(outcome=decision.kind.value).inc()
                logger.info(
                    "idempotency.conflict",
                    extra={"extra": {"key": key, "kind": decision.kind.value, "path": path}},
                )
                return error_response(IdempotencyConflict(decision.kind, key=key), trace_id=trace_id)

            decisions.labels(outcome="proceed").inc()
            lease_id = decision.lease_id

            try:
                response = await call_next(request)
            except Exception:
                await self._release(store, key, lease_id, reason="exception")
                raise

            if response.status_code >= 500:
                await self._release(store, key, lease_id, reason="server_error")
                return response

            body_bytes = await self._consume_response_body(response)
            headers = _replayable_headers(response.headers)

            # A failed completion leaves the record in progress: the mutation
            # already ran, so the key must not become retryable.
            await store.complete(
                key,
                lease_id,
                status_code=response.status_code,
                body=body_bytes,
                headers=headers,
            )

            return Response(
                content=body_bytes,
                status_code=response.status_code,
                headers=dict(response.headers),
                media_type=response.media_type,
            )

    @staticmethod
    async def _release(store: IdempotencyStore, key: str, lease_id: str, *, reason: str) -> None:
        """Abandon the record so the client can retry with the same key."""
        logger.warning("idempotency.abandon", extra={"extra": {"key": key, "reason": reason}})
        try:
            await store.abandon(key, lease_id)
        except Exception:
            # The handler's own failure is what propagates; the record expires
            # with its retention window.
            logger.exception("idempotency.abandon_failed", extra={"extra": {"key": key}})

    @staticmethod
    def _replay_response(snapshot: ResponseSnapshot) -> Response:
        """Build the verbatim replay of a stored response."""
        headers = dict(snapshot.headers)
        headers[REPLAYED_HEADER] = "true"
        return Response(content=snapshot.body, status_code=snapshot.status_code, headers=headers)

    @staticmethod
    async def _consume_response_body(response: Any) -> bytes:
        """Consume and buffer the response body from a Response-like object.

        Notes:
            * For plain responses, the body is stored on ``response.body``.
            * For streaming responses (what ``call_next`` returns), consume
              the async iterator and reset it for any downstream consumer.
        """
        raw_body = getattr(response, "body", None)
        if isinstance(raw_body, (bytes, bytearray)):
            return bytes(raw_body)
        if isinstance(raw_body, str):
            return raw_body.encode("utf-8")

        body_iter = getattr(response, "body_iterator", None)
        if body_iter is None:
            return b""

        body_chunks: list[bytes] = []
        async for chunk in body_iter:
            body_chunks.append(chunk if isinstance(chunk, bytes) else str(chunk).encode("utf-8"))
        body_bytes = b"".join(body_chunks)

        async def iterator() -> AsyncIterator[bytes]:
            yield body_bytes

        response.body_iterator = iterator()
        return body_bytes
