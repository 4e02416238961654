"""Outbound command text for iClock terminals.

Firmware builds accept different spellings of the same request. The spellings
are kept here as ordered tables; builders walk a table front to back and emit
every variant, leaving it to the device to ignore the ones it does not know.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

COMMAND_TAG = "1"

USER_QUERY = "DATA QUERY USERINFO"
DEVICE_REBOOT = "CONTROL DEVICE 03000000"

DEFAULT_FETCH_DIALECT = "DATA_QUERY"

# dialect -> body template; {start}/{end} are device wall-clock bounds
FETCH_DIALECTS: dict[str, str] = {
    "DATA_QUERY": "DATA QUERY ATTLOG StartTime={start} EndTime={end}",
    "GET_ATTLOG": "GET ATTLOG StartTime={start} EndTime={end}",
    "ATTLOG": "ATTLOG",
}

DEFAULT_PIN_KEY = "PIN"


@dataclass(frozen=True, slots=True)
class CommandVariant:
    """One known spelling of a user command."""

    name: str
    template: str
    separator: str = "\t"


USER_UPSERT_VARIANTS: tuple[CommandVariant, ...] = (
    CommandVariant("update_tab", "DATA UPDATE USERINFO {fields}", "\t"),
    CommandVariant("update_space", "DATA UPDATE USERINFO {fields}", " "),
    CommandVariant("legacy_user", "DATA USER {fields}", "\t"),
)

USER_DELETE_VARIANTS: tuple[CommandVariant, ...] = (
    CommandVariant("delete_userinfo", "DATA DELETE USERINFO {fields}"),
    CommandVariant("delete_user", "DATA DELETE USER {fields}"),
)


def frame(body: str, tag: str = COMMAND_TAG) -> str:
    """Wrap a command body in the ``C:<tag>:`` envelope devices expect."""
    text = str(body or "").strip()
    if text.startswith("C:"):
        return text
    return f"C:{tag}:{text}"


def normalize_dialect(dialect: str | None) -> str:
    text = str(dialect or "").strip().upper()
    return text if text in FETCH_DIALECTS else DEFAULT_FETCH_DIALECT


def render_fetch(start: str, end: str, dialect: str | None) -> str:
    template = FETCH_DIALECTS[normalize_dialect(dialect)]
    return frame(template.format(start=start, end=end))


def user_query(pin: str | None = None, *, pin_key: str = DEFAULT_PIN_KEY) -> str:
    if pin:
        return frame(f"{USER_QUERY} {pin_key}={pin}")
    return frame(USER_QUERY)


def user_fields(user: dict[str, Any], *, pin_key: str = DEFAULT_PIN_KEY) -> list[tuple[str, str]]:
    """Ordered key/value pairs for an upsert; empty optional values are left out."""
    pairs = [(pin_key or DEFAULT_PIN_KEY, str(user.get("pin") or ""))]
    name = str(user.get("name") or "")
    pairs.append(("Name", name))
    pairs.append(("Privilege", str(user.get("privilege") or "0")))
    for key, attr in (("Card", "card"), ("Dept", "department")):
        value = str(user.get(attr) or "")
        if value:
            pairs.append((key, value))
    return pairs


def build_user_upsert(
    user: dict[str, Any],
    *,
    pin_key: str = DEFAULT_PIN_KEY,
    variants: tuple[CommandVariant, ...] = USER_UPSERT_VARIANTS,
) -> list[str]:
    pairs = user_fields(user, pin_key=pin_key)
    commands: list[str] = []
    for variant in variants:
        fields = variant.separator.join(f"{key}={value}" for key, value in pairs)
        commands.append(frame(variant.template.format(fields=fields)))
    return _unique(commands)


def build_user_delete(
    pin: str,
    *,
    pin_key: str = DEFAULT_PIN_KEY,
    variants: tuple[CommandVariant, ...] = USER_DELETE_VARIANTS,
) -> list[str]:
    fields = f"{pin_key or DEFAULT_PIN_KEY}={pin}"
    return _unique([frame(variant.template.format(fields=fields)) for variant in variants])


def command_body(command: str) -> str:
    """Strip the ``C:<tag>:`` envelope, tolerating the tagless ``C: `` spelling."""
    text = str(command or "").strip()
    if not text.startswith("C:"):
        return text
    rest = text[2:]
    head, sep, tail = rest.partition(":")
    if sep and head.strip().isdigit():
        return tail.strip()
    return rest.strip()


def is_roster_command(command: str) -> bool:
    body = command_body(command).upper()
    return "USERINFO" in body or body.startswith("DATA USER") or body.startswith("DATA DELETE USER")


def is_attendance_command(command: str) -> bool:
    return "ATTLOG" in command_body(command).upper()


def _unique(commands: list[str]) -> list[str]:
    seen: set[str] = set()
    out: list[str] = []
    for command in commands:
        if command in seen:
            continue
        seen.add(command)
        out.append(command)
    return out
