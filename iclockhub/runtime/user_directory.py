"""Per-session roster cache with optimistic create and roster reconciliation."""

from __future__ import annotations

from typing import Any

from loguru import logger

from iclockhub.iclock.commands import DEFAULT_PIN_KEY
from iclockhub.iclock.parser import RosterRecord
from iclockhub.runtime.session_manager import DeviceSession, UserRecord, now_ms

# raw roster key -> outbound PIN label, checked in order
_PIN_KEY_HINTS: tuple[tuple[str, str], ...] = (
    ("PIN", "PIN"),
    ("Pin", "PIN"),
    ("pin", "PIN"),
    ("EnrollNumber", "EnrollNumber"),
    ("Badgenumber", "Badgenumber"),
)
_USER_FIELDS = ("name", "card", "privilege", "department", "internal_id")


def upsert_from_roster(
    session: DeviceSession | None,
    record: RosterRecord,
    *,
    ts_ms: int | None = None,
) -> UserRecord | None:
    """Merge one authoritative roster row; device fields always win."""
    pin = str(record.pin or "").strip()
    if session is None or not pin:
        return None
    when = ts_ms if ts_ms is not None else now_ms()
    with session.lock:
        existing = session.users.get(pin)
        if existing is None:
            user = UserRecord(pin=pin, created_at_ms=when)
            session.users[pin] = user
        else:
            user = existing
            if user.optimistic:
                logger.info(f"roster confirmed optimistic user sn={session.serial_number} pin={pin}")
        user.name = record.name
        user.card = record.card
        user.privilege = record.privilege
        user.department = record.department
        user.internal_id = record.internal_id
        user.extra = {**user.extra, **record.extra}
        user.optimistic = False
        user.confirmed_at_ms = when
    return user


def create_optimistic(
    session: DeviceSession,
    pin: str,
    fields: dict[str, Any] | None = None,
    *,
    ts_ms: int | None = None,
) -> UserRecord:
    """Insert a user the device has not confirmed yet.

    Raises ``KeyError`` when ``pin`` is already present.
    """
    key = str(pin or "").strip()
    if not key:
        raise ValueError("pin is required")
    data = fields or {}
    with session.lock:
        if key in session.users:
            raise KeyError(key)
        user = UserRecord(
            pin=key,
            optimistic=True,
            created_at_ms=ts_ms if ts_ms is not None else now_ms(),
            **{name: str(data.get(name) or "") for name in _USER_FIELDS},
        )
        session.users[key] = user
    return user


def remove(session: DeviceSession | None, pin: str) -> UserRecord | None:
    if session is None:
        return None
    with session.lock:
        return session.users.pop(str(pin or "").strip(), None)


def resolve(session: DeviceSession | None, pin: str) -> dict[str, str]:
    """User snapshot for event enrichment; unknown pins yield blank fields."""
    key = str(pin or "")
    user = session.users.get(key) if session is not None else None
    if user is None:
        return {
            "pin": key,
            "internal_id": "",
            "name": "",
            "card": "",
            "privilege": "",
            "department": "",
        }
    return user.snapshot()


def next_available_pin(session: DeviceSession | None, start_hint: int = 1) -> str:
    """Smallest free pin at or above ``max(start_hint, 1 + highest numeric pin)``.

    Unique against the current snapshot only; callers re-validate on insert.
    """
    if session is None:
        return str(max(1, int(start_hint)))
    with session.lock:
        pins = set(session.users)
    numeric = [int(pin) for pin in pins if pin.isdigit()]
    candidate = max(int(start_hint), (max(numeric) + 1) if numeric else 1)
    while str(candidate) in pins:
        candidate += 1
    return str(candidate)


def detect_pin_key(session: DeviceSession | None, record: RosterRecord) -> str | None:
    """Remember the device's PIN label from the first roster row that shows one."""
    if session is None:
        return None
    with session.lock:
        if session.pin_key:
            return session.pin_key
        for raw_key, label in _PIN_KEY_HINTS:
            if record.pairs.get(raw_key):
                session.pin_key = label
                session.pin_key_source = "detected"
                logger.info(f"pin key detected sn={session.serial_number} key={label}")
                return label
    return None


def override_pin_key(session: DeviceSession, key: str) -> str:
    label = str(key or "").strip() or DEFAULT_PIN_KEY
    with session.lock:
        session.pin_key = label
        session.pin_key_source = "override"
    return label


def pin_key_for(session: DeviceSession | None) -> str:
    if session is None or not session.pin_key:
        return DEFAULT_PIN_KEY
    return session.pin_key


def list_users(session: DeviceSession | None) -> list[dict[str, Any]]:
    if session is None:
        return []
    with session.lock:
        users = list(session.users.values())
    return [user.to_dict() for user in users]
