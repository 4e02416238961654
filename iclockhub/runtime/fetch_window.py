"""Incremental attendance catch-up windows."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta, tzinfo

from iclockhub.iclock.commands import render_fetch
from iclockhub.iclock.timefmt import device_now, format_device_time, parse_device_time
from iclockhub.runtime.session_manager import DeviceSession, now_ms

# Re-request the second the previous window ended on.
BOUNDARY_OVERLAP = timedelta(seconds=1)


def fetch_window(
    last_stamp: str | None,
    *,
    lookback_hours: float,
    zone: tzinfo = UTC,
    ts_ms: int | None = None,
) -> tuple[str, str]:
    """Return ``(start, end)`` device wall-clock bounds for the next fetch."""
    now = device_now(zone, ts_ms if ts_ms is not None else now_ms()).replace(tzinfo=None)
    end = format_device_time(now)
    last = parse_device_time(last_stamp)
    if last is not None and last >= datetime.min + BOUNDARY_OVERLAP:
        start = last - BOUNDARY_OVERLAP
    else:
        start = now - timedelta(hours=max(0.0, float(lookback_hours)))
    return format_device_time(start), end


def build_incremental_fetch(
    session: DeviceSession | None,
    dialect: str | None,
    *,
    lookback_hours: float = 48,
    zone: tzinfo = UTC,
    ts_ms: int | None = None,
) -> str:
    last_stamp = session.last_stamp if session is not None else None
    start, end = fetch_window(last_stamp, lookback_hours=lookback_hours, zone=zone, ts_ms=ts_ms)
    return render_fetch(start, end, dialect)


def build_window_fetch(
    hours: float,
    dialect: str | None,
    *,
    zone: tzinfo = UTC,
    ts_ms: int | None = None,
) -> str:
    """One-shot fetch of the trailing ``hours`` regardless of stored progress."""
    start, end = fetch_window(None, lookback_hours=hours, zone=zone, ts_ms=ts_ms)
    return render_fetch(start, end, dialect)
