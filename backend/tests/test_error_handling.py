# ruff: noqa: INP001, S101
"""Request-id propagation and JSON error envelopes."""

from __future__ import annotations

import pytest
from fastapi import FastAPI, HTTPException
from fastapi.testclient import TestClient
from pydantic import BaseModel, Field
from starlette.requests import Request

from fieldops.core import error_handling
from fieldops.core.error_handling import (
    REQUEST_ID_HEADER,
    _error_payload,
    _get_request_id,
    _http_exception_exception_handler,
    _request_validation_exception_handler,
    _response_validation_exception_handler,
    install_error_handling,
)


class _ProgressBody(BaseModel):
    progress: int


class _TaskOut(BaseModel):
    title: str = Field(min_length=1)


def _build_app() -> FastAPI:
    app = FastAPI()
    install_error_handling(app)

    @app.get("/tasks")
    def list_tasks(limit: int) -> dict[str, int]:
        return {"limit": limit}

    @app.put("/tasks/progress")
    def set_progress(body: _ProgressBody) -> dict[str, int]:
        return {"progress": body.progress}

    @app.get("/fail/{code}")
    def fail(code: int) -> None:
        raise HTTPException(status_code=code, detail=f"failed with {code}")

    @app.get("/crash")
    def crash() -> None:
        raise RuntimeError("propagation exploded")

    @app.get("/task-out", response_model=_TaskOut)
    def task_out() -> dict[str, str]:
        return {"title": ""}

    @app.get("/healthz")
    def healthz() -> dict[str, bool]:
        return {"ok": True}

    return app


def _assert_envelope(resp: object) -> dict[str, object]:
    body = resp.json()  # type: ignore[attr-defined]
    assert isinstance(body.get("request_id"), str) and body["request_id"]
    assert resp.headers.get(REQUEST_ID_HEADER) == body["request_id"]  # type: ignore[attr-defined]
    return body


def test_query_validation_error_is_422_with_request_id() -> None:
    client = TestClient(_build_app())
    resp = client.get("/tasks?limit=many")

    assert resp.status_code == 422
    assert isinstance(_assert_envelope(resp)["detail"], list)


def test_non_json_body_is_422_not_500() -> None:
    client = TestClient(_build_app(), raise_server_exceptions=False)
    resp = client.put(
        "/tasks/progress",
        content=b"fifty percent",
        headers={"content-type": "text/plain"},
    )

    assert resp.status_code == 422
    assert isinstance(_assert_envelope(resp)["detail"], list)


@pytest.mark.parametrize("code", [400, 401, 403, 404, 409, 423])
def test_http_exceptions_keep_status_and_detail(code: int) -> None:
    client = TestClient(_build_app())
    resp = client.get(f"/fail/{code}")

    assert resp.status_code == code
    assert _assert_envelope(resp)["detail"] == f"failed with {code}"


@pytest.mark.parametrize("path", ["/crash", "/task-out"])
def test_server_failures_are_masked_as_500(path: str) -> None:
    client = TestClient(_build_app(), raise_server_exceptions=False)
    resp = client.get(path)

    assert resp.status_code == 500
    assert _assert_envelope(resp)["detail"] == "Internal Server Error"


def test_client_request_id_is_trimmed_and_echoed() -> None:
    client = TestClient(_build_app())
    resp = client.get("/tasks?limit=x", headers={REQUEST_ID_HEADER: "  field-42  "})

    assert resp.status_code == 422
    assert resp.json()["request_id"] == "field-42"
    assert resp.headers.get(REQUEST_ID_HEADER) == "field-42"


def test_successful_responses_also_carry_request_id() -> None:
    client = TestClient(_build_app())
    resp = client.get("/tasks?limit=5")

    assert resp.status_code == 200
    assert resp.json() == {"limit": 5}
    assert resp.headers.get(REQUEST_ID_HEADER)


def test_slow_request_is_logged_as_warning(monkeypatch: pytest.MonkeyPatch) -> None:
    warnings: list[tuple[str, dict[str, object]]] = []

    def _record_warning(message: str, *_args: object, **kwargs: object) -> None:
        extra = kwargs.get("extra")
        warnings.append((message, extra if isinstance(extra, dict) else {}))

    ticks = iter((10.0, 10.5))
    monkeypatch.setattr(error_handling.settings, "request_log_slow_ms", 1)
    monkeypatch.setattr(error_handling, "perf_counter", lambda: next(ticks))
    monkeypatch.setattr(error_handling.logger, "warning", _record_warning)

    resp = TestClient(_build_app()).get("/tasks?limit=1")

    assert resp.status_code == 200
    assert any(
        message == "http.request.slow" and extra.get("slow_threshold_ms") == 1
        for message, extra in warnings
    )


def test_health_check_still_gets_request_id_when_logs_skipped(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setattr(error_handling.settings, "request_log_include_health", False)

    resp = TestClient(_build_app()).get("/healthz")

    assert resp.status_code == 200
    assert resp.json() == {"ok": True}
    assert resp.headers.get(REQUEST_ID_HEADER)


@pytest.mark.parametrize("state", [{}, {"request_id": 7}, {"request_id": ""}])
def test_get_request_id_ignores_missing_or_invalid_state(state: dict[str, object]) -> None:
    req = Request({"type": "http", "headers": [], "state": state})
    assert _get_request_id(req) is None


def test_error_payload_omits_missing_request_id() -> None:
    assert _error_payload(detail="gone", request_id=None) == {"detail": "gone"}
    assert _error_payload(detail="gone", request_id="r1") == {"detail": "gone", "request_id": "r1"}


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("handler", "expected"),
    [
        (_request_validation_exception_handler, "Expected RequestValidationError"),
        (_response_validation_exception_handler, "Expected ResponseValidationError"),
        (_http_exception_exception_handler, "Expected StarletteHTTPException"),
    ],
)
async def test_handlers_reject_unexpected_exception_types(handler: object, expected: str) -> None:
    req = Request({"type": "http", "headers": [], "state": {}})
    with pytest.raises(TypeError, match=expected):
        await handler(req, Exception("x"))  # type: ignore[operator]


@pytest.mark.parametrize("raw", [b"\xff", bytearray(b"\xff"), memoryview(b"\xff")])
def test_json_safe_decodes_binary_with_replacement(raw: object) -> None:
    assert error_handling._json_safe(raw) == "\ufffd"


def test_json_safe_falls_back_to_str() -> None:
    class Marker:
        def __str__(self) -> str:
            return "marker"

    assert error_handling._json_safe(Marker()) == "marker"
