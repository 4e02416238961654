import json

from iclockhub.runtime.realtime import RealtimeHub, sse_frame


def test_sse_frame_format() -> None:
    frame = sse_frame("attendance", {"pin": "7", "name": "Ána"})

    assert frame.startswith(b"event: attendance\ndata: ")
    assert frame.endswith(b"\n\n")
    data = frame.decode("utf-8").split("data: ", 1)[1].strip()
    assert json.loads(data) == {"pin": "7", "name": "Ána"}


def test_broadcast_reaches_every_subscriber() -> None:
    hub = RealtimeHub(queue_size=4)
    first = hub.subscribe()
    second = hub.subscribe()

    assert hub.broadcast("attendance", {"pin": "1"}) == 2
    assert first.next_frame(0.1) is not None
    assert second.next_frame(0.1) is not None
    assert first.next_frame(0.01) is None


def test_full_subscriber_is_dropped_without_blocking_others() -> None:
    hub = RealtimeHub(queue_size=1)
    slow = hub.subscribe()
    fast = hub.subscribe()

    hub.broadcast("attendance", {"n": 1})
    fast.next_frame(0.1)
    delivered = hub.broadcast("attendance", {"n": 2})

    assert delivered == 1
    assert slow.closed is True
    assert hub.subscriber_count == 1
    assert fast.next_frame(0.1) is not None


def test_unsubscribe_closes_subscription() -> None:
    hub = RealtimeHub()
    subscription = hub.subscribe()

    hub.unsubscribe(subscription)

    assert hub.subscriber_count == 0
    assert subscription.offer(b"x") is False
    assert hub.broadcast("attendance", {}) == 0
