"""Best-effort fan-out of attendance events to streaming subscribers."""

from __future__ import annotations

import json
import queue
import threading
import uuid
from dataclasses import dataclass, field
from typing import Any

from loguru import logger


def sse_frame(event: str, payload: dict[str, Any]) -> bytes:
    data = json.dumps(payload, ensure_ascii=False, default=str)
    return f"event: {event}\ndata: {data}\n\n".encode("utf-8")


SSE_KEEPALIVE = b": keep-alive\n\n"


@dataclass(slots=True, eq=False)
class Subscription:
    """One streaming client; frames wait in a bounded queue."""

    queue_size: int = 256
    subscription_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    closed: bool = False
    _frames: queue.Queue[bytes] = field(init=False)

    def __post_init__(self) -> None:
        self._frames = queue.Queue(maxsize=max(1, int(self.queue_size)))

    def offer(self, frame: bytes) -> bool:
        if self.closed:
            return False
        try:
            self._frames.put_nowait(frame)
        except queue.Full:
            return False
        return True

    def next_frame(self, timeout: float) -> bytes | None:
        try:
            return self._frames.get(timeout=timeout)
        except queue.Empty:
            return None

    def close(self) -> None:
        self.closed = True


class RealtimeHub:
    """Subscriber set; a failed or full delivery drops that subscriber."""

    def __init__(self, *, queue_size: int = 256) -> None:
        self.queue_size = max(1, int(queue_size))
        self._subscribers: set[Subscription] = set()
        self._lock = threading.Lock()

    def subscribe(self) -> Subscription:
        subscription = Subscription(queue_size=self.queue_size)
        with self._lock:
            self._subscribers.add(subscription)
        logger.debug(f"realtime subscriber added id={subscription.subscription_id}")
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        subscription.close()
        with self._lock:
            self._subscribers.discard(subscription)
        logger.debug(f"realtime subscriber removed id={subscription.subscription_id}")

    def broadcast(self, event: str, payload: dict[str, Any]) -> int:
        frame = sse_frame(event, payload)
        with self._lock:
            subscribers = list(self._subscribers)
        delivered = 0
        for subscription in subscribers:
            if subscription.offer(frame):
                delivered += 1
            else:
                self.unsubscribe(subscription)
        return delivered

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)
