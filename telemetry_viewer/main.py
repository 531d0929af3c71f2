"""FastAPI application entry point."""

import logging

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware

from telemetry_viewer.core.config import settings
from telemetry_viewer.core.csrf import CSRF_HEADER
from telemetry_viewer.core.deps import enforce_route_policy
from telemetry_viewer.core.errors import register_exception_handlers
from telemetry_viewer.core.lifecycle import lifespan
from telemetry_viewer.core.middleware import (
    REQUEST_ID_HEADER,
    ConcurrencyLimitMiddleware,
    RequestLoggingMiddleware,
    RequestTimeoutMiddleware,
)
from telemetry_viewer.core.rate_limit import limiter
from telemetry_viewer.routers import auth, events, health, orgs, stats, teams, users
from telemetry_viewer.routers import settings as settings_router

# ============================================================================
# Sentry Integration (optional, for production error tracking)
# ============================================================================

if settings.SENTRY_DSN and settings.ENV != "dev":
    import sentry_sdk
    from sentry_sdk.integrations.fastapi import FastApiIntegration
    from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration

    sentry_sdk.init(
        dsn=settings.SENTRY_DSN,
        environment=settings.ENV,
        release=settings.VERSION,
        integrations=[
            FastApiIntegration(transaction_style="endpoint"),
            SqlalchemyIntegration(),
        ],
        traces_sample_rate=0.1,
        send_default_pii=False,  # Event payloads and usernames stay local
    )
    logging.info("Sentry initialized for error tracking")


# ============================================================================
# FastAPI App
# ============================================================================

app = FastAPI(
    title="Telemetry Viewer API",
    description="Self-hosted telemetry ingestion, query and aggregation backend",
    version=settings.VERSION,
    docs_url="/docs" if settings.ENV == "dev" else None,
    redoc_url="/redoc" if settings.ENV == "dev" else None,
    lifespan=lifespan,
    # Every route is classified in ROUTE_POLICIES; unclassified routes are denied.
    dependencies=[Depends(enforce_route_policy)],
)

app.state.limiter = limiter
register_exception_handlers(app)

# Added innermost first: the logging middleware sees 503/408 responses too.
app.add_middleware(RequestTimeoutMiddleware, timeout_seconds=settings.REQUEST_TIMEOUT_SECONDS)
app.add_middleware(ConcurrencyLimitMiddleware, max_concurrent=settings.MAX_CONCURRENT_REQUESTS)
app.add_middleware(RequestLoggingMiddleware)

if settings.cors_origins_list:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,  # Required for cookies
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization", CSRF_HEADER],
        expose_headers=[REQUEST_ID_HEADER, "Content-Disposition"],
    )

# ============================================================================
# Routers
# ============================================================================

app.include_router(health.router)
app.include_router(auth.router)
app.include_router(events.router)
app.include_router(stats.router)
app.include_router(teams.router)
app.include_router(orgs.router)
app.include_router(settings_router.router)
app.include_router(users.router)
