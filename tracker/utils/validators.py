"""Input normalization utilities"""

import re
from datetime import datetime, timezone
from typing import Any, Optional


_WRAPPING_CHARS = "\"'<>`"
_SCHEME_RE = re.compile(r"^[a-zA-Z][a-zA-Z0-9+.-]*://")


def normalize_url(raw: Any) -> str:
    """
    Clean up a pasted URL.

    Trims whitespace, strips surrounding quotes or angle brackets and
    prepends ``https://`` when no scheme is present. Returns an empty string
    for non-string or blank input.
    """
    if not isinstance(raw, str):
        return ""

    url = raw.strip().strip(_WRAPPING_CHARS).strip()
    if not url:
        return ""

    if url.startswith("//"):
        url = "https:" + url
    elif not _SCHEME_RE.match(url):
        url = "https://" + url

    return url


def normalize_handle(handle: Optional[str]) -> Optional[str]:
    """Lower-case a creator handle and drop the leading '@'."""
    if not handle:
        return None
    cleaned = str(handle).strip().lstrip("@").strip().lower()
    return cleaned or None


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes (SQLite drops tzinfo)."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value: Any) -> Optional[datetime]:
    """
    Parse a provider timestamp.

    Accepts epoch seconds, epoch milliseconds (as int, float or digit
    string) and ISO 8601 strings. Returns None for anything else.
    """
    if value is None or value == "" or isinstance(value, bool):
        return None

    if isinstance(value, datetime):
        return ensure_utc(value)

    if isinstance(value, str) and re.fullmatch(r"\d+(\.\d+)?", value.strip()):
        value = float(value)

    if isinstance(value, (int, float)):
        seconds = float(value)
        if seconds > 1e11:
            seconds = seconds / 1000.0
        try:
            return datetime.fromtimestamp(seconds, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None

    if isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            return ensure_utc(datetime.fromisoformat(text))
        except ValueError:
            return None

    return None
