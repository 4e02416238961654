"""Per-device session state and the process-wide session registry."""

from __future__ import annotations

import itertools
import threading
import time
from collections import deque
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any


def now_ms() -> int:
    return int(time.time() * 1000)


_command_ids = itertools.count(1)
_command_id_lock = threading.Lock()


def next_command_id() -> int:
    """Allocate a process-wide, strictly increasing command id."""
    with _command_id_lock:
        return next(_command_ids)


@dataclass(slots=True)
class CommandRecord:
    """Ledger entry for one command handed to a device."""

    id: int
    command: str
    queued_at_ms: int
    delivered_at_ms: int | None = None
    bytes_delivered: int | None = None
    responded_at_ms: int | None = None
    stale_at_ms: int | None = None
    post_seen_after_delivery: bool = False
    remote: str | None = None

    @property
    def state(self) -> str:
        if self.responded_at_ms is not None:
            return "responded"
        if self.stale_at_ms is not None:
            return "stale"
        if self.delivered_at_ms is not None:
            return "delivered"
        return "queued"

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["state"] = self.state
        return data


@dataclass(slots=True)
class UserRecord:
    """Cached roster entry; ``optimistic`` until the device confirms it."""

    pin: str
    name: str = ""
    card: str = ""
    privilege: str = ""
    department: str = ""
    internal_id: str = ""
    optimistic: bool = False
    created_at_ms: int = field(default_factory=now_ms)
    confirmed_at_ms: int | None = None
    extra: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    def snapshot(self) -> dict[str, str]:
        return {
            "pin": self.pin,
            "internal_id": self.internal_id,
            "name": self.name,
            "card": self.card,
            "privilege": self.privilege,
            "department": self.department,
        }


@dataclass(frozen=True, slots=True)
class AttendanceEvent:
    """Enriched punch; immutable once appended to a session buffer."""

    serial_number: str
    pin: str
    timestamp: datetime | None
    device_time: str
    status: int
    verify: int
    verify_method: str
    workcode: str
    raw_line: str
    user: dict[str, str]
    table: str = ""
    received_at_ms: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "sn": self.serial_number,
            "pin": self.pin,
            "timestamp": self.timestamp.isoformat() if self.timestamp else self.device_time,
            "device_time": self.device_time,
            "status": self.status,
            "verify": self.verify,
            "method": self.verify_method,
            "workcode": self.workcode,
            "raw": self.raw_line,
            "user": dict(self.user),
            "table": self.table,
            "received_at_ms": self.received_at_ms,
        }


@dataclass(frozen=True, slots=True)
class BufferLimits:
    """Maximum lengths of the per-session FIFO buffers."""

    ledger: int = 500
    events: int = 10000
    push_summaries: int = 300
    poll_history: int = 200
    raw_samples: int = 50
    operation_logs: int = 1000


@dataclass(slots=True)
class DeviceSession:
    """All mutable state for one terminal; mutate only while holding ``lock``."""

    serial_number: str
    limits: BufferLimits = field(default_factory=BufferLimits)
    created_at_ms: int = field(default_factory=now_ms)
    last_seen_ms: int | None = None
    last_stamp: str | None = None
    last_user_sync_ms: int | None = None
    drip_mode: bool = False
    pin_key: str | None = None
    pin_key_source: str = ""
    queue: list[str] = field(default_factory=list)
    users: dict[str, UserRecord] = field(default_factory=dict)
    lock: threading.RLock = field(default_factory=threading.RLock, repr=False, compare=False)
    ledger: deque[CommandRecord] = field(init=False)
    events: deque[AttendanceEvent] = field(init=False)
    push_summaries: deque[dict[str, Any]] = field(init=False)
    poll_history: deque[dict[str, Any]] = field(init=False)
    raw_samples: deque[dict[str, Any]] = field(init=False)
    operation_logs: deque[dict[str, Any]] = field(init=False)

    def __post_init__(self) -> None:
        self.ledger = deque(maxlen=max(1, self.limits.ledger))
        self.events = deque(maxlen=max(1, self.limits.events))
        self.push_summaries = deque(maxlen=max(1, self.limits.push_summaries))
        self.poll_history = deque(maxlen=max(1, self.limits.poll_history))
        self.raw_samples = deque(maxlen=max(1, self.limits.raw_samples))
        self.operation_logs = deque(maxlen=max(1, self.limits.operation_logs))

    def touch(self, ts_ms: int | None = None) -> None:
        self.last_seen_ms = ts_ms if ts_ms is not None else now_ms()

    def to_status(self) -> dict[str, Any]:
        return {
            "sn": self.serial_number,
            "created_at_ms": self.created_at_ms,
            "last_seen_ms": self.last_seen_ms,
            "last_stamp": self.last_stamp,
            "last_user_sync_ms": self.last_user_sync_ms,
            "drip_mode": self.drip_mode,
            "pin_key": self.pin_key,
            "pin_key_source": self.pin_key_source,
            "queue_length": len(self.queue),
            "users": len(self.users),
            "events": len(self.events),
        }


class DeviceSessionManager:
    """Owns one ``DeviceSession`` per serial number for the process lifetime."""

    def __init__(self, *, limits: BufferLimits | None = None) -> None:
        self._sessions: dict[str, DeviceSession] = {}
        self._lock = threading.Lock()
        self._limits = limits or BufferLimits()

    def session_for(self, serial_number: str) -> DeviceSession:
        key = str(serial_number or "").strip()
        session = self._sessions.get(key)
        if session is not None:
            return session
        with self._lock:
            session = self._sessions.get(key)
            if session is None:
                session = DeviceSession(serial_number=key, limits=self._limits)
                self._sessions[key] = session
        return session

    def get(self, serial_number: str) -> DeviceSession | None:
        return self._sessions.get(str(serial_number or "").strip())

    def serial_numbers(self) -> list[str]:
        with self._lock:
            return sorted(self._sessions)

    def all_status(self) -> list[dict[str, Any]]:
        with self._lock:
            sessions = list(self._sessions.values())
        return [session.to_status() for session in sessions]
