"""iClock/ADMS text protocol: push parsing, verify codes and command text."""

from iclockhub.iclock.parser import (
    AttendanceRecord,
    OperationLogRecord,
    ParsedLine,
    RecordKind,
    RosterRecord,
    UnknownRecord,
    parse,
)
from iclockhub.iclock.verify import decode as decode_verify

__all__ = [
    "AttendanceRecord",
    "OperationLogRecord",
    "ParsedLine",
    "RecordKind",
    "RosterRecord",
    "UnknownRecord",
    "decode_verify",
    "parse",
]
