"""
Test configuration and fixtures.

Provides:
- A temporary SQLite store, migrated once per session and emptied after each test
- Operator factories and real DB-backed sessions for authenticated tests
- HTTPX AsyncClient instances carrying the session cookie and CSRF header
"""
import os
import shutil
import tempfile
from datetime import datetime
from typing import Any, AsyncGenerator, Generator

# Settings are read at import time; configure the environment first.
_TEST_DIR = tempfile.mkdtemp(prefix="telemetry-viewer-tests-")
os.environ["ENV"] = "test"
os.environ["TESTING"] = "true"
os.environ["DB_PATH"] = os.path.join(_TEST_DIR, "telemetry.db")
os.environ["INITIAL_TEMPLATE_DB_PATH"] = ""
os.environ["PASSWORD_HASH_TIME_COST"] = "1"
os.environ["PASSWORD_HASH_MEMORY_COST"] = "1024"
os.environ["PASSWORD_HASH_PARALLELISM"] = "1"
os.environ["INITIAL_GOD_PASSWORD"] = "god"
os.environ["CORS_ORIGINS"] = ""

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.orm import Session

from telemetry_viewer.core.csrf import CSRF_HEADER
from telemetry_viewer.core.deps import COOKIE_NAME
from telemetry_viewer.core.migrations import ensure_migrations
from telemetry_viewer.db.base import Base
from telemetry_viewer.db.enums import Role
from telemetry_viewer.db.models import Operator, TelemetryEvent
from telemetry_viewer.db.session import SessionLocal, engine, read_engine
from telemetry_viewer.main import app
from telemetry_viewer.services import event_service, operator_service, session_service, team_service

TEST_PASSWORD = "correct-horse"


# =============================================================================
# Database Fixtures
# =============================================================================

@pytest.fixture(scope="session", autouse=True)
def migrated_database() -> Generator[None, None, None]:
    """Bring the temporary store to head once for the whole run."""
    ensure_migrations(engine, auto_migrate=True)
    yield
    engine.dispose()
    read_engine.dispose()
    shutil.rmtree(_TEST_DIR, ignore_errors=True)


@pytest.fixture(scope="function")
def db() -> Generator[Session, None, None]:
    """
    Writer session for test setup and assertions.

    Handlers commit through their own pooled connections (readers cannot see
    uncommitted savepoints), so isolation is done by emptying every table
    after the test instead of rolling back.
    """
    session = SessionLocal()
    yield session
    session.rollback()
    for table in reversed(Base.metadata.sorted_tables):
        session.execute(table.delete())
    session.commit()
    session.close()
    team_service.invalidate_team_cache()


# =============================================================================
# Operators & sessions
# =============================================================================

@pytest.fixture
def make_operator(db: Session):
    def _make(
        username: str,
        role: Role = Role.BASIC,
        password: str = TEST_PASSWORD,
        is_producer: bool = False,
    ) -> Operator:
        operator = operator_service.create_operator(
            db, username, password, role=role, is_producer=is_producer
        )
        db.commit()
        return operator

    return _make


@pytest.fixture
def seed_event(db: Session):
    """Insert an event directly, optionally pinning ``received_at``."""

    def _seed(received_at: datetime | None = None, **payload: Any) -> TelemetryEvent:
        payload.setdefault("event_kind", "tool_call")
        normalized = event_service.normalize_event(payload, received_at=received_at)
        event = event_service.insert_event(db, normalized)
        db.commit()
        return event

    return _seed


# =============================================================================
# Client Fixtures
# =============================================================================

def _new_client(**kwargs: Any) -> AsyncClient:
    return AsyncClient(transport=ASGITransport(app=app), base_url="http://test", **kwargs)


@pytest.fixture(scope="function")
async def client(db: Session) -> AsyncGenerator[AsyncClient, None]:
    """Unauthenticated AsyncClient for public endpoints."""
    async with _new_client() as c:
        yield c


@pytest.fixture(scope="function")
async def make_client(db: Session, make_operator):
    """
    Factory for AsyncClients logged in as a fresh operator of ``role``.

    The session is minted directly in the store; ``csrf=False`` omits the
    CSRF header to exercise the gate.
    """
    clients: list[AsyncClient] = []

    async def _make(
        role: Role = Role.GOD,
        username: str | None = None,
        csrf: bool = True,
        is_producer: bool = False,
    ) -> AsyncClient:
        operator = make_operator(username or f"{role.value}-operator", role=role, is_producer=is_producer)
        issued = session_service.create_session(db, operator)
        db.commit()

        headers = {CSRF_HEADER: issued.csrf_token} if csrf else {}
        c = _new_client(cookies={COOKIE_NAME: issued.token}, headers=headers)
        c.operator = operator
        c.issued = issued
        clients.append(c)
        return c

    yield _make
    for c in clients:
        await c.aclose()


@pytest.fixture(scope="function")
async def god_client(make_client) -> AsyncClient:
    return await make_client(Role.GOD, username="root")


@pytest.fixture(scope="function")
async def admin_client(make_client) -> AsyncClient:
    return await make_client(Role.ADMINISTRATOR, username="admin")


@pytest.fixture(scope="function")
async def basic_client(make_client) -> AsyncClient:
    return await make_client(Role.BASIC, username="viewer")
