# Copyright (c) Calorie Tracker.
# SPDX-License-Identifier: MIT
from __future__ import annotations

from typing import Any

from fastapi import FastAPI, HTTPException, Request
from fastapi.testclient import TestClient
from pydantic import BaseModel

from calorie_api.domain.enums.idempotency import ConflictKind
from calorie_api.domain.exceptions.idempotency import IdempotencyConflict, StorageFailure
from calorie_api.infrastructure.http import errors


class MealPayload(BaseModel):
    calories: int


def _app() -> FastAPI:
    app = FastAPI()
    errors.install_exception_handlers(app)

    @app.middleware("http")
    async def add_request_id(request: Request, call_next):  # type: ignore[no-untyped-def]
        request.state.request_id = "trace-xyz"
        return await call_next(request)

    @app.post("/validation")
    async def validation_route(body: MealPayload) -> dict[str, Any]:
        return {"calories": body.calories}

    @app.get("/http-exc")
    async def http_exc_route() -> None:
        raise HTTPException(status_code=404, detail="not found")

    @app.get("/conflict")
    async def conflict_route() -> None:
        raise IdempotencyConflict(ConflictKind.KEY_REUSED, key="k1")

    @app.get("/storage")
    async def storage_route() -> None:
        raise StorageFailure("db down")

    @app.get("/unhandled")
    async def unhandled_route() -> None:
        raise RuntimeError("boom")

    return app


def test_error_envelope_includes_optional_fields() -> None:
    payload = errors.error_envelope(
        code="SOME_CODE",
        http_status=418,
        message="I'm a teapot",
        details={"extra": "info"},
        trace_id="trace-123",
    )

    err = payload["error"]
    assert err["code"] == "SOME_CODE"
    assert err["http_status"] == 418
    assert err["details"] == {"extra": "info"}
    assert err["trace_id"] == "trace-123"


def test_validation_error_is_wrapped() -> None:
    resp = TestClient(_app()).post("/validation", json={"calories": "lots"})

    assert resp.status_code == 422
    err = resp.json()["error"]
    assert err["code"] == "VALIDATION_ERROR"
    assert err["trace_id"] == "trace-xyz"
    assert err["details"]["errors"]


def test_http_exception_is_wrapped() -> None:
    resp = TestClient(_app()).get("/http-exc")

    assert resp.status_code == 404
    err = resp.json()["error"]
    assert err["code"] == "HTTP_ERROR"
    assert err["message"] == "not found"


def test_domain_error_uses_its_code_and_status() -> None:
    resp = TestClient(_app()).get("/conflict")

    assert resp.status_code == 409
    err = resp.json()["error"]
    assert err["code"] == "IDEMPOTENCY_CONFLICT"
    assert err["details"] == {"kind": "key_reused"}
    assert err["trace_id"] == "trace-xyz"


def test_storage_failure_maps_to_500() -> None:
    resp = TestClient(_app()).get("/storage")

    assert resp.status_code == 500
    assert resp.json()["error"]["code"] == "STORAGE_FAILURE"


def test_unhandled_exception_maps_to_internal_error() -> None:
    client = TestClient(_app(), raise_server_exceptions=False)
    resp = client.get("/unhandled")

    assert resp.status_code == 500
    err = resp.json()["error"]
    assert err["code"] == "INTERNAL_ERROR"
    assert err["message"] == "Internal server error"
