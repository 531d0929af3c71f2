"""Error envelope and exception handlers.

Every failure leaves the service as ``{"status": "error", "code", "message"}``
with the conventional HTTP status. ``code`` values are stable so the
dashboard can localize them.
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from sqlalchemy.exc import OperationalError
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)

_DEFAULT_ERROR_CODES: dict[int, str] = {
    400: "bad_request",
    401: "unauthorized",
    403: "forbidden",
    404: "not_found",
    405: "method_not_allowed",
    408: "timeout",
    409: "conflict",
    413: "payload_too_large",
    429: "rate_limited",
    500: "internal",
    503: "unavailable",
}


def _default_code(status_code: int) -> str:
    return _DEFAULT_ERROR_CODES.get(status_code, "internal" if status_code >= 500 else "bad_request")


def error_body(code: str, message: str) -> dict[str, Any]:
    return {"status": "error", "code": code, "message": message}


def error_response(
    status_code: int,
    code: str,
    message: str,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    return JSONResponse(
        content=error_body(code, message), status_code=status_code, headers=headers
    )


def api_error(status_code: int, code: str, message: str) -> HTTPException:
    """HTTPException carrying a stable error code."""
    return HTTPException(status_code=status_code, detail={"code": code, "message": message})


def _split_detail(detail: Any, status_code: int) -> tuple[str, str]:
    if isinstance(detail, dict):
        code = str(detail.get("code") or _default_code(status_code))
        message = str(detail.get("message") or "Request failed")
        return code, message
    if isinstance(detail, str):
        return _default_code(status_code), detail
    return _default_code(status_code), "Request failed"


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    code, message = _split_detail(exc.detail, exc.status_code)
    return error_response(exc.status_code, code, message, headers=getattr(exc, "headers", None))


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    errors = exc.errors()
    if errors:
        first = errors[0]
        location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
        message = f"{location}: {first.get('msg', 'invalid value')}" if location else first.get("msg")
    else:
        message = "Invalid request"
    return error_response(400, "bad_request", str(message))


async def rate_limit_exception_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    return error_response(429, "rate_limited", f"Rate limit exceeded: {exc.detail}")


async def storage_exception_handler(request: Request, exc: OperationalError) -> JSONResponse:
    logger.error(
        "Storage unavailable on %s %s: %s",
        request.method,
        request.url.path,
        type(exc.orig).__name__ if exc.orig is not None else type(exc).__name__,
    )
    return error_response(503, "unavailable", "Storage is temporarily unavailable")


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return error_response(500, "internal", "Internal server error")


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(RateLimitExceeded, rate_limit_exception_handler)
    app.add_exception_handler(OperationalError, storage_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
