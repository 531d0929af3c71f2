"""Rate limiting configuration for the telemetry API."""

from slowapi import Limiter
from slowapi.util import get_remote_address

from telemetry_viewer.core.config import settings

# Single-process service: in-memory counters are sufficient.
limiter = Limiter(
    key_func=get_remote_address,
    storage_uri="memory://",
    enabled=not settings.TESTING,
)

AUTH_LIMIT = f"{settings.RATE_LIMIT_AUTH}/minute"
INGEST_LIMIT = f"{settings.RATE_LIMIT_INGEST}/minute"
