"""Response formatting helpers."""

from datetime import datetime, timezone

BYTE_UNITS = ("Bytes", "KB", "MB", "GB", "TB")


def format_bytes(size: int | float, decimals: int = 2) -> str:
    """Human-readable size in base 1024, e.g. ``1.5 MB``."""
    if not size or size <= 0:
        return "0 Bytes"
    value = float(size)
    index = 0
    while value >= 1024 and index < len(BYTE_UNITS) - 1:
        value /= 1024
        index += 1
    text = f"{value:.{decimals}f}".rstrip("0").rstrip(".")
    return f"{text} {BYTE_UNITS[index]}"


def isoformat(value: datetime | None) -> str | None:
    """ISO-8601 with an explicit UTC offset."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat()
