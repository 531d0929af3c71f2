"""Input validation and normalization helpers."""

import re
from typing import Optional

# =============================================================================
# Keys
# =============================================================================


def normalize_key(value: Optional[str]) -> str:
    """
    Lookup key for org identifiers and team names.

    Args:
        value: Raw identifier or name

    Returns:
        Trimmed, lowercased string ("" when empty)
    """
    if not value:
        return ""
    return value.strip().lower()


# =============================================================================
# Colors
# =============================================================================

HEX_COLOR_RE = re.compile(r"^#(?:[0-9a-fA-F]{3}|[0-9a-fA-F]{6})$")


def is_valid_hex_color(value: Optional[str]) -> bool:
    """True for ``#RGB`` or ``#RRGGBB``."""
    if not value:
        return False
    return bool(HEX_COLOR_RE.match(value))


# =============================================================================
# Images
# =============================================================================

PNG_SIGNATURE = b"\x89PNG\r\n\x1a\n"
JPEG_SIGNATURE = b"\xff\xd8\xff"

ALLOWED_LOGO_MIME_TYPES = frozenset({"image/png", "image/jpeg", "image/webp"})


def sniff_image_mime(content: bytes) -> Optional[str]:
    """
    Detect the image type from magic bytes; the declared type is never trusted.

    Returns:
        ``image/png``, ``image/jpeg``, ``image/webp`` or None
    """
    if content.startswith(PNG_SIGNATURE):
        return "image/png"
    if content.startswith(JPEG_SIGNATURE):
        return "image/jpeg"
    if len(content) >= 12 and content[:4] == b"RIFF" and content[8:12] == b"WEBP":
        return "image/webp"
    return None
