"""Liveness/readiness probe."""

import logging
import time

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from telemetry_viewer.core import lifecycle
from telemetry_viewer.core.config import settings
from telemetry_viewer.core.deps import get_read_db
from telemetry_viewer.services import event_service

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


@router.get("/health")
def health(db: Session = Depends(get_read_db)):
    """
    Health check endpoint.

    Verifies the store answers a count query; 503 when it does not.
    """
    uptime = round(time.monotonic() - lifecycle.PROCESS_STARTED_AT, 1)
    try:
        total_events = event_service.count_events(db)
    except SQLAlchemyError as exc:
        logger.error("Health check failed: %s", type(exc).__name__)
        return JSONResponse(
            status_code=503,
            content={
                "status": "unhealthy",
                "uptime": uptime,
                "version": settings.VERSION,
                "database": {"type": settings.DB_TYPE, "status": "unreachable"},
            },
        )

    return {
        "status": "healthy",
        "uptime": uptime,
        "version": settings.VERSION,
        "database": {"type": settings.DB_TYPE, "status": "connected"},
        "stats": {"total_events": total_events},
    }
