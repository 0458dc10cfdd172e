"""Request-id middleware, request logging, and uniform JSON error responses."""

from __future__ import annotations

from time import perf_counter
from typing import TYPE_CHECKING, Any
from uuid import uuid4

from fastapi import Request, status
from fastapi.exceptions import RequestValidationError, ResponseValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from fieldops.core.config import settings
from fieldops.core.logging import REQUEST_ID_CONTEXT, get_logger

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from fastapi import FastAPI
    from starlette.responses import Response

REQUEST_ID_HEADER = "X-Request-Id"
HEALTH_PATHS = frozenset({"/health", "/healthz", "/readyz"})
logger = get_logger(__name__)


def _get_request_id(request: Request) -> str | None:
    request_id = getattr(request.state, "request_id", None)
    if isinstance(request_id, str) and request_id:
        return request_id
    return None


def _incoming_request_id(request: Request) -> str:
    raw = request.headers.get(REQUEST_ID_HEADER)
    if raw is not None:
        cleaned = raw.strip()
        if cleaned:
            return cleaned
    return uuid4().hex


def _json_safe(value: Any) -> Any:
    """Coerce validation-error payloads into JSON-serialisable values."""
    if value is None or isinstance(value, str | int | float | bool):
        return value
    if isinstance(value, bytes | bytearray | memoryview):
        return bytes(value).decode("utf-8", errors="replace")
    if isinstance(value, dict):
        return {str(key): _json_safe(item) for key, item in value.items()}
    if isinstance(value, list | tuple | set):
        return [_json_safe(item) for item in value]
    return str(value)


def _error_payload(*, detail: Any, request_id: str | None) -> dict[str, Any]:
    payload: dict[str, Any] = {"detail": detail}
    if request_id is not None:
        payload["request_id"] = request_id
    return payload


def _error_response(
    request: Request,
    *,
    status_code: int,
    detail: Any,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    request_id = _get_request_id(request)
    response = JSONResponse(
        status_code=status_code,
        content=_error_payload(detail=detail, request_id=request_id),
        headers=headers,
    )
    if request_id is not None:
        response.headers[REQUEST_ID_HEADER] = request_id
    return response


async def _request_validation_exception_handler(
    request: Request,
    exc: Exception,
) -> JSONResponse:
    if not isinstance(exc, RequestValidationError):
        msg = "Expected RequestValidationError"
        raise TypeError(msg)
    return _error_response(
        request,
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        detail=_json_safe(exc.errors()),
    )


async def _response_validation_exception_handler(
    request: Request,
    exc: Exception,
) -> JSONResponse:
    if not isinstance(exc, ResponseValidationError):
        msg = "Expected ResponseValidationError"
        raise TypeError(msg)
    logger.error(
        "http.response.validation_failed path=%s errors=%s",
        request.url.path,
        _json_safe(exc.errors()),
    )
    return _error_response(
        request,
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail="Internal Server Error",
    )


async def _http_exception_exception_handler(
    request: Request,
    exc: Exception,
) -> JSONResponse:
    if not isinstance(exc, StarletteHTTPException):
        msg = "Expected StarletteHTTPException"
        raise TypeError(msg)
    headers = getattr(exc, "headers", None)
    return _error_response(
        request,
        status_code=exc.status_code,
        detail=exc.detail,
        headers=dict(headers) if headers else None,
    )


async def _unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error(
        "http.request.unhandled_error method=%s path=%s error_type=%s",
        request.method,
        request.url.path,
        exc.__class__.__name__,
        exc_info=exc,
    )
    return _error_response(
        request,
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail="Internal Server Error",
    )


def _should_log_request(path: str) -> bool:
    if path in HEALTH_PATHS:
        return settings.request_log_include_health
    return True


async def _request_context_middleware(
    request: Request,
    call_next: Callable[[Request], Awaitable[Response]],
) -> Response:
    request_id = _incoming_request_id(request)
    request.state.request_id = request_id
    token = REQUEST_ID_CONTEXT.set(request_id)
    started = perf_counter()
    try:
        response = await call_next(request)
    finally:
        REQUEST_ID_CONTEXT.reset(token)
    duration_ms = int((perf_counter() - started) * 1000)
    response.headers[REQUEST_ID_HEADER] = request_id

    path = request.url.path
    if not _should_log_request(path):
        return response
    slow_threshold_ms = settings.request_log_slow_ms
    if slow_threshold_ms and duration_ms >= slow_threshold_ms:
        logger.warning(
            "http.request.slow",
            extra={
                "method": request.method,
                "path": path,
                "status_code": response.status_code,
                "duration_ms": duration_ms,
                "slow_threshold_ms": slow_threshold_ms,
            },
        )
    else:
        logger.debug(
            "http.request.complete method=%s path=%s status=%s duration_ms=%s",
            request.method,
            path,
            response.status_code,
            duration_ms,
        )
    return response


def install_error_handling(app: FastAPI) -> None:
    """Register request-context middleware and JSON error handlers on `app`."""
    app.middleware("http")(_request_context_middleware)
    app.add_exception_handler(RequestValidationError, _request_validation_exception_handler)
    app.add_exception_handler(ResponseValidationError, _response_validation_exception_handler)
    app.add_exception_handler(StarletteHTTPException, _http_exception_exception_handler)
    app.add_exception_handler(Exception, _unhandled_exception_handler)
