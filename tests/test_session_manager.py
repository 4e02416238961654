import threading

from iclockhub.runtime.session_manager import (
    AttendanceEvent,
    BufferLimits,
    CommandRecord,
    DeviceSession,
    DeviceSessionManager,
)


def test_session_for_returns_same_object_per_serial() -> None:
    manager = DeviceSessionManager()

    first = manager.session_for("DEV1")
    again = manager.session_for(" DEV1 ")
    other = manager.session_for("DEV2")

    assert first is again
    assert first is not other
    assert first.lock is not other.lock
    assert manager.serial_numbers() == ["DEV1", "DEV2"]
    assert manager.get("DEV3") is None


def test_concurrent_first_contact_creates_one_session() -> None:
    manager = DeviceSessionManager()
    seen: list[DeviceSession] = []
    barrier = threading.Barrier(8)

    def _worker() -> None:
        barrier.wait()
        seen.append(manager.session_for("DEV1"))

    threads = [threading.Thread(target=_worker) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert len({id(session) for session in seen}) == 1


def test_buffers_respect_limits() -> None:
    manager = DeviceSessionManager(limits=BufferLimits(events=2, poll_history=1))
    session = manager.session_for("DEV1")

    for idx in range(3):
        session.events.append(
            AttendanceEvent(
                serial_number="DEV1",
                pin=str(idx),
                timestamp=None,
                device_time="",
                status=0,
                verify=0,
                verify_method="password",
                workcode="0",
                raw_line="",
                user={},
            )
        )
        session.poll_history.append({"n": idx})

    assert [event.pin for event in session.events] == ["1", "2"]
    assert list(session.poll_history) == [{"n": 2}]


def test_command_record_state_progression() -> None:
    record = CommandRecord(id=1, command="C:1:X", queued_at_ms=0)
    assert record.state == "queued"

    record.delivered_at_ms = 5
    assert record.state == "delivered"

    record.stale_at_ms = 100
    assert record.to_dict()["state"] == "stale"

    record.responded_at_ms = 120
    assert record.state == "responded"


def test_event_dict_falls_back_to_device_time() -> None:
    event = AttendanceEvent(
        serial_number="DEV1",
        pin="7",
        timestamp=None,
        device_time="2025-13-40 99:00:00",
        status=0,
        verify=1,
        verify_method="fingerprint",
        workcode="0",
        raw_line="raw",
        user={"name": "Ana"},
    )

    data = event.to_dict()
    assert data["timestamp"] == "2025-13-40 99:00:00"
    assert data["method"] == "fingerprint"
    assert data["user"] == {"name": "Ana"}
