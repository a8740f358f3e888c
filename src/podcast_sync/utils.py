"""
Small helpers shared across the package.
"""

import mimetypes
import os
import re
from datetime import date, datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Optional
from urllib.parse import urlparse

APP_NAME = "podcast-sync"

_UNSAFE_CHARS = re.compile(r'[<>:"/\\|?*\x00-\x1f]')


def sanitize_filename(name: str) -> str:
    """Make a string safe to use as a single path component."""
    cleaned = _UNSAFE_CHARS.sub("_", name).strip().rstrip(".")
    return cleaned or "_"


def format_bytes(size: int) -> str:
    """Format a byte count for humans."""
    value = float(size)
    for unit in ("B", "KB", "MB", "GB"):
        if value < 1024:
            return f"{value:.1f} {unit}"
        value /= 1024
    return f"{value:.1f} TB"


def parse_rfc2822(value: str) -> Optional[datetime]:
    """Parse a feed ``pubDate``; returns an aware UTC datetime or None."""
    try:
        parsed = parsedate_to_datetime(value.strip())
    except (TypeError, ValueError, IndexError):
        return None
    if parsed is None:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def parse_iso_date(value: str) -> datetime:
    """Parse ``YYYY-MM-DD`` into UTC midnight.

    Raises:
        ValueError: If the string is not a valid date
    """
    day = date.fromisoformat(value)
    return datetime(day.year, day.month, day.day, tzinfo=timezone.utc)


def guess_extension(content_type: Optional[str], url: str) -> str:
    """Pick a file extension for a downloaded enclosure.

    An audio or video content type wins, preferring ``.mp3`` when the
    type maps to several extensions; then the URL suffix; then ``.mp3``.
    """
    mime = (content_type or "").split(";")[0].strip().lower()
    if mime.startswith(("audio/", "video/")):
        candidates = mimetypes.guess_all_extensions(mime)
        if ".mp3" in candidates:
            return ".mp3"
        if candidates:
            return sorted(candidates)[0]

    suffix = os.path.splitext(urlparse(url).path)[1]
    if suffix and len(suffix) <= 5:
        return suffix.lower()
    return ".mp3"
