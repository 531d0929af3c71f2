"""Tests for request logging, backpressure and deadlines."""
import asyncio

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from telemetry_viewer.core.errors import register_exception_handlers
from telemetry_viewer.core.middleware import (
    REQUEST_ID_HEADER,
    ConcurrencyLimitMiddleware,
    RequestLoggingMiddleware,
    RequestTimeoutMiddleware,
)


def _build_app(max_concurrent: int = 8, timeout_seconds: float = 5.0):
    app = FastAPI()
    register_exception_handlers(app)
    gate = asyncio.Event()

    @app.get("/wait")
    async def wait():
        await gate.wait()
        return {"ok": True}

    @app.get("/sleep")
    async def sleep():
        await asyncio.sleep(2)
        return {"ok": True}

    @app.get("/fast")
    async def fast():
        return {"ok": True}

    app.add_middleware(RequestTimeoutMiddleware, timeout_seconds=timeout_seconds)
    app.add_middleware(ConcurrencyLimitMiddleware, max_concurrent=max_concurrent)
    app.add_middleware(RequestLoggingMiddleware)
    return app, gate


def _client(app: FastAPI) -> AsyncClient:
    return AsyncClient(transport=ASGITransport(app=app), base_url="http://test")


@pytest.mark.asyncio
async def test_request_id_is_generated_or_echoed():
    app, _ = _build_app()
    async with _client(app) as c:
        generated = await c.get("/fast")
        echoed = await c.get("/fast", headers={REQUEST_ID_HEADER: "req-123"})

    assert generated.headers[REQUEST_ID_HEADER]
    assert echoed.headers[REQUEST_ID_HEADER] == "req-123"


@pytest.mark.asyncio
async def test_over_capacity_requests_get_503():
    app, gate = _build_app(max_concurrent=1)
    async with _client(app) as c:
        first = asyncio.create_task(c.get("/wait"))
        await asyncio.sleep(0.1)

        rejected = await c.get("/fast")
        gate.set()
        accepted = await first

    assert rejected.status_code == 503
    assert rejected.json() == {
        "status": "error",
        "code": "unavailable",
        "message": "Server is busy, retry shortly",
    }
    assert accepted.status_code == 200


@pytest.mark.asyncio
async def test_capacity_is_released_after_each_request():
    app, _ = _build_app(max_concurrent=1)
    async with _client(app) as c:
        for _ in range(3):
            assert (await c.get("/fast")).status_code == 200


@pytest.mark.asyncio
async def test_slow_request_times_out_with_408():
    app, _ = _build_app(timeout_seconds=0.1)
    async with _client(app) as c:
        response = await c.get("/sleep")

    assert response.status_code == 408
    assert response.json()["code"] == "timeout"
