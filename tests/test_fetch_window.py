from datetime import UTC, datetime
from zoneinfo import ZoneInfo

from iclockhub.runtime.fetch_window import build_incremental_fetch, build_window_fetch, fetch_window
from iclockhub.runtime.session_manager import DeviceSession

NOW_MS = int(datetime(2025, 1, 10, 12, 0, 0, tzinfo=UTC).timestamp() * 1000)


def test_window_without_stamp_uses_default_lookback() -> None:
    assert fetch_window(None, lookback_hours=48, ts_ms=NOW_MS) == (
        "2025-01-08 12:00:00",
        "2025-01-10 12:00:00",
    )


def test_window_restarts_one_second_before_last_stamp() -> None:
    session = DeviceSession(serial_number="DEV1", last_stamp="2025-01-10 08:15:00")

    command = build_incremental_fetch(session, "DATA_QUERY", ts_ms=NOW_MS)

    assert command == (
        "C:1:DATA QUERY ATTLOG StartTime=2025-01-10 08:14:59 EndTime=2025-01-10 12:00:00"
    )


def test_malformed_stamp_is_treated_as_absent() -> None:
    session = DeviceSession(serial_number="DEV1", last_stamp="yesterday-ish")

    command = build_incremental_fetch(session, "GET_ATTLOG", lookback_hours=1, ts_ms=NOW_MS)

    assert command == "C:1:GET ATTLOG StartTime=2025-01-10 11:00:00 EndTime=2025-01-10 12:00:00"


def test_unknown_dialect_falls_back_to_default_spelling() -> None:
    command = build_window_fetch(2, "SOMETHING", ts_ms=NOW_MS)

    assert command.startswith("C:1:DATA QUERY ATTLOG StartTime=2025-01-10 10:00:00")


def test_window_bounds_rendered_in_device_zone() -> None:
    start, end = fetch_window(None, lookback_hours=1, zone=ZoneInfo("Asia/Manila"), ts_ms=NOW_MS)

    assert end == "2025-01-10 20:00:00"
    assert start == "2025-01-10 19:00:00"


def test_stamp_at_calendar_floor_falls_back_to_lookback() -> None:
    start, end = fetch_window("0001-01-01 00:00:00", lookback_hours=1, ts_ms=NOW_MS)

    assert (start, end) == ("2025-01-10 11:00:00", "2025-01-10 12:00:00")
