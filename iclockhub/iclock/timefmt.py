"""Device wall-clock helpers.

Terminals report and expect naive local time (``YYYY-MM-DD HH:MM:SS``). The
gateway interprets every device timestamp in one configured zone and stores the
resulting aware instant; outbound command windows are rendered back in that zone.
"""

from __future__ import annotations

import re
from datetime import UTC, datetime, tzinfo
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from loguru import logger

DEVICE_TIME_RE = re.compile(r"^(\d{4})-(\d{2})-(\d{2})[ T](\d{2}):(\d{2}):(\d{2})$")


def looks_like_device_time(value: str) -> bool:
    return bool(DEVICE_TIME_RE.match(str(value or "").strip()))


def parse_device_time(value: str | None) -> datetime | None:
    """Parse device wall-clock text into a naive datetime, or None when malformed."""
    text = str(value or "").strip()
    match = DEVICE_TIME_RE.match(text)
    if not match:
        return None
    try:
        return datetime(*(int(part) for part in match.groups()))
    except ValueError:
        return None


def normalize_device_time(value: str) -> str:
    """Canonical ``YYYY-MM-DD HH:MM:SS`` spelling; unparsable text is returned as-is."""
    parsed = parse_device_time(value)
    if parsed is None:
        return str(value or "")
    return format_device_time(parsed)


def format_device_time(value: datetime, zone: tzinfo | None = None) -> str:
    if zone is not None and value.tzinfo is not None:
        value = value.astimezone(zone)
    # isoformat zero-pads the year; strftime("%Y") does not on every libc
    return value.replace(tzinfo=None).isoformat(sep=" ", timespec="seconds")


def resolve_zone(name: str | None) -> tzinfo:
    text = str(name or "").strip()
    if not text or text.upper() == "UTC":
        return UTC
    try:
        return ZoneInfo(text)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning(f"unknown device timezone {text!r}, falling back to UTC")
        return UTC


def to_instant(value: str | None, zone: tzinfo) -> datetime | None:
    """Interpret device wall-clock text in ``zone`` as an aware UTC instant.

    Returns None for malformed text and for wall-clock values whose UTC
    equivalent falls outside the representable range.
    """
    parsed = parse_device_time(value)
    if parsed is None:
        return None
    try:
        return parsed.replace(tzinfo=zone).astimezone(UTC)
    except (OverflowError, ValueError):
        return None


def device_now(zone: tzinfo, now_ms: int) -> datetime:
    return datetime.fromtimestamp(now_ms / 1000, tz=UTC).astimezone(zone)
