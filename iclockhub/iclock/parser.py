"""Parser for the text payloads terminals push to ``/iclock/cdata``.

Firmware variants disagree on field separators (comma, tab, runs of spaces),
on whether the record tag leads the line and on key casing inside roster rows.
``parse`` normalizes all of them into typed records without touching any shared
state, so stored raw payloads can be re-parsed at will.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum

from iclockhub.iclock.timefmt import (
    format_device_time,
    looks_like_device_time,
    normalize_device_time,
    parse_device_time,
)

_LINE_SPLIT_RE = re.compile(r"[\r\n]+")
_WHITESPACE_RE = re.compile(r"\s+")
_STAMP_RE = re.compile(r"^STAMP=", re.IGNORECASE)


class RecordKind(StrEnum):
    """Kinds of lines found in a push body."""

    ATTENDANCE = "ATTLOG"
    ROSTER = "USERINFO"
    OPERATION_LOG = "OPLOG"
    UNKNOWN = "UNKNOWN"


ROSTER_TAGS = frozenset({"USERINFO", "USER"})

# Canonical field -> accepted spellings, first hit wins.
ROSTER_KEY_ALIASES: dict[str, tuple[str, ...]] = {
    "pin": ("PIN", "Pin", "pin", "EnrollNumber"),
    "name": ("Name", "Username", "NAME"),
    "card": ("Card", "CardNo", "Badgenumber"),
    "privilege": ("Privilege", "Pri", "Role"),
    "department": ("Dept", "Department", "DEPT"),
    "internal_id": ("UID", "UserID", "UserId", "userid", "uid"),
}
_KNOWN_ROSTER_KEYS = frozenset(key for keys in ROSTER_KEY_ALIASES.values() for key in keys)


@dataclass(frozen=True, slots=True)
class AttendanceRecord:
    """One punch, from either the tagged or the plain line form."""

    pin: str
    timestamp: str
    status: int
    verify: int
    workcode: str
    extra: tuple[str, ...] = ()
    raw_line: str = ""
    kind: RecordKind = RecordKind.ATTENDANCE

    @property
    def device_time(self) -> datetime | None:
        return parse_device_time(self.timestamp)


@dataclass(frozen=True, slots=True)
class RosterRecord:
    """One user row of the device roster."""

    pin: str
    name: str = ""
    card: str = ""
    privilege: str = ""
    department: str = ""
    internal_id: str = ""
    extra: dict[str, str] = field(default_factory=dict)
    pairs: dict[str, str] = field(default_factory=dict)
    raw_line: str = ""
    kind: RecordKind = RecordKind.ROSTER


@dataclass(frozen=True, slots=True)
class OperationLogRecord:
    fields: tuple[str, ...]
    raw_line: str = ""
    kind: RecordKind = RecordKind.OPERATION_LOG


@dataclass(frozen=True, slots=True)
class UnknownRecord:
    raw_line: str
    kind: RecordKind = RecordKind.UNKNOWN


ParsedLine = AttendanceRecord | RosterRecord | OperationLogRecord | UnknownRecord


def split_lines(raw: str | bytes | None) -> list[str]:
    if raw is None:
        return []
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8", errors="replace")
    return [line.strip() for line in _LINE_SPLIT_RE.split(str(raw)) if line.strip()]


def split_fields(line: str) -> list[str]:
    if "," in line:
        return [part.strip() for part in line.split(",")]
    if "\t" in line:
        return [part.strip() for part in line.split("\t")]
    return [part.strip() for part in _WHITESPACE_RE.sub(" ", line).split(" ")]


def parse(raw: str | bytes | None) -> list[ParsedLine]:
    """Parse one push body into records, one per non-blank, non-``STAMP=`` line."""
    records: list[ParsedLine] = []
    for line in split_lines(raw):
        if _STAMP_RE.match(line):
            continue
        records.append(parse_line(line))
    return records


def parse_line(line: str) -> ParsedLine:
    fields = split_fields(line)
    tag = fields[0].upper() if fields else ""

    if tag == RecordKind.ATTENDANCE.value:
        return _attendance(fields[1:], line)
    if len(fields) >= 2 and looks_like_device_time(fields[1]):
        return _attendance(fields, line)
    if tag == RecordKind.OPERATION_LOG.value:
        return OperationLogRecord(fields=tuple(fields), raw_line=line)
    if tag in ROSTER_TAGS:
        return _roster(fields[1:], line)
    return UnknownRecord(raw_line=line)


def max_device_time(records: list[ParsedLine]) -> str | None:
    """Newest attendance timestamp in ``records`` as device wall-clock text."""
    newest = None
    for record in records:
        if not isinstance(record, AttendanceRecord):
            continue
        parsed = parse_device_time(record.timestamp)
        if parsed is not None and (newest is None or parsed > newest):
            newest = parsed
    return format_device_time(newest) if newest else None


def _attendance(fields: list[str], line: str) -> AttendanceRecord:
    return AttendanceRecord(
        pin=_field(fields, 0),
        timestamp=normalize_device_time(_field(fields, 1)),
        status=_int_field(fields, 2),
        verify=_int_field(fields, 3),
        workcode=_field(fields, 4),
        extra=tuple(fields[5:]),
        raw_line=line,
    )


def _roster(parts: list[str], line: str) -> RosterRecord:
    pairs = parse_key_values(parts)
    canonical = {name: _first_alias(pairs, aliases) for name, aliases in ROSTER_KEY_ALIASES.items()}
    extra = {key: value for key, value in pairs.items() if key not in _KNOWN_ROSTER_KEYS}
    return RosterRecord(
        pin=canonical["pin"],
        name=canonical["name"],
        card=canonical["card"],
        privilege=canonical["privilege"],
        department=canonical["department"],
        internal_id=canonical["internal_id"],
        extra=extra,
        pairs=pairs,
        raw_line=line,
    )


def parse_key_values(parts: list[str]) -> dict[str, str]:
    pairs: dict[str, str] = {}
    for part in parts:
        idx = part.find("=")
        if idx <= 0:
            continue
        pairs[part[:idx].strip()] = part[idx + 1 :].strip()
    return pairs


def _first_alias(pairs: dict[str, str], aliases: tuple[str, ...]) -> str:
    for key in aliases:
        value = pairs.get(key)
        if value:
            return value
    return ""


def _field(fields: list[str], index: int) -> str:
    if index < len(fields):
        return str(fields[index])
    return ""


def _int_field(fields: list[str], index: int) -> int:
    try:
        return int(_field(fields, index))
    except ValueError:
        return 0
