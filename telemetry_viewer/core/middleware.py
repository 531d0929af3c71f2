"""HTTP middleware: access logging, backpressure and request deadlines."""

import asyncio
import logging
import time
from uuid import uuid4

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from telemetry_viewer.core.errors import error_response
from telemetry_viewer.core.structured_logging import build_log_context

logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Assign a request id and write one access log line per request."""

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid4().hex
        request.state.request_id = request_id
        start = time.monotonic()
        response = await call_next(request)
        duration_ms = (time.monotonic() - start) * 1000.0
        response.headers[REQUEST_ID_HEADER] = request_id

        auth = getattr(request.state, "auth", None)
        logger.info(
            "%s %s -> %d (%.1f ms)",
            request.method,
            request.url.path,
            response.status_code,
            duration_ms,
            extra=build_log_context(
                username=getattr(auth, "username", None),
                request_id=request_id,
                route=request.url.path,
                method=request.method,
                status_code=response.status_code,
            ),
        )
        return response


class ConcurrencyLimitMiddleware(BaseHTTPMiddleware):
    """Reject requests beyond ``max_concurrent`` in flight with 503 instead of queueing."""

    def __init__(self, app: ASGIApp, max_concurrent: int):
        super().__init__(app)
        self.max_concurrent = max_concurrent
        self.in_flight = 0

    async def dispatch(self, request: Request, call_next):
        if self.in_flight >= self.max_concurrent:
            logger.warning(
                "Concurrency limit reached (%d), rejecting %s %s",
                self.max_concurrent,
                request.method,
                request.url.path,
            )
            return error_response(503, "unavailable", "Server is busy, retry shortly")

        self.in_flight += 1
        try:
            return await call_next(request)
        finally:
            self.in_flight -= 1


class RequestTimeoutMiddleware:
    """
    Enforce a per-request deadline.

    If the handler has not started its response when the deadline passes,
    the client gets 408. Sync handlers keep running on their worker thread
    until their current DB call returns; every write is a single
    transaction, so nothing partial is committed.
    """

    def __init__(self, app: ASGIApp, timeout_seconds: float):
        self.app = app
        self.timeout_seconds = timeout_seconds

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        response_started = False

        async def send_wrapper(message: Message) -> None:
            nonlocal response_started
            if message["type"] == "http.response.start":
                response_started = True
            await send(message)

        try:
            await asyncio.wait_for(self.app(scope, receive, send_wrapper), self.timeout_seconds)
        except asyncio.TimeoutError:
            if response_started:
                raise
            logger.warning(
                "Request exceeded %.1fs deadline: %s %s",
                self.timeout_seconds,
                scope.get("method"),
                scope.get("path"),
            )
            response = error_response(408, "timeout", "Request deadline exceeded")
            await response(scope, receive, send)
