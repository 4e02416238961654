from dataclasses import replace

from iclockhub.iclock.parser import (
    AttendanceRecord,
    OperationLogRecord,
    RecordKind,
    RosterRecord,
    UnknownRecord,
    max_device_time,
    parse,
)


def test_parse_tagged_attendance_tab_separated() -> None:
    records = parse("ATTLOG\t7\t2025-01-02 08:00:00\t0\t1\t0")

    assert len(records) == 1
    record = records[0]
    assert isinstance(record, AttendanceRecord)
    assert record.pin == "7"
    assert record.timestamp == "2025-01-02 08:00:00"
    assert record.status == 0
    assert record.verify == 1
    assert record.workcode == "0"
    assert record.kind == RecordKind.ATTENDANCE


def test_tagged_and_plain_forms_differ_only_in_raw_line() -> None:
    tagged = parse("ATTLOG\t42\t2025-03-04 17:30:05\t1\t15\t3")[0]
    plain = parse("42\t2025-03-04 17:30:05\t1\t15\t3")[0]

    assert isinstance(tagged, AttendanceRecord)
    assert isinstance(plain, AttendanceRecord)
    assert tagged.raw_line != plain.raw_line
    assert replace(tagged, raw_line="") == replace(plain, raw_line="")


def test_plain_form_keeps_trailing_reserved_fields() -> None:
    record = parse("3\t2025-03-04T07:00:00\t0\t1\t0\t0\t0\t0\t0\t0\t88")[0]

    assert isinstance(record, AttendanceRecord)
    assert record.timestamp == "2025-03-04 07:00:00"
    assert record.extra == ("0", "0", "0", "0", "0", "88")


def test_field_split_priority_comma_then_tab_then_spaces() -> None:
    comma = parse("ATTLOG,5,2025-01-01 09:00:00,0,3,0")[0]
    spaces = parse("ATTLOG   5   2025-01-01T09:00:00   0   3   0")[0]

    assert isinstance(comma, AttendanceRecord)
    assert comma.pin == "5"
    assert comma.verify == 3
    # space-collapsed lines only survive when the timestamp has no inner space
    assert isinstance(spaces, AttendanceRecord)
    assert spaces.pin == "5"
    assert spaces.timestamp == "2025-01-01 09:00:00"


def test_numeric_fields_default_to_zero_and_missing_fields_to_empty() -> None:
    record = parse("ATTLOG\t9\t2025-01-01 09:00:00\tx")[0]

    assert isinstance(record, AttendanceRecord)
    assert record.status == 0
    assert record.verify == 0
    assert record.workcode == ""


def test_roster_aliases_are_canonicalized() -> None:
    record = parse("USER\tPin=12\tUsername=Bo\tCardNo=99\tPri=14\tDepartment=Ops\tUserID=1001\tGrp=1")[0]

    assert isinstance(record, RosterRecord)
    assert record.pin == "12"
    assert record.name == "Bo"
    assert record.card == "99"
    assert record.privilege == "14"
    assert record.department == "Ops"
    assert record.internal_id == "1001"
    assert record.extra == {"Grp": "1"}
    assert record.pairs["Pin"] == "12"


def test_roster_tag_is_case_insensitive() -> None:
    record = parse("userinfo\tPIN=1\tName=Ana")[0]

    assert isinstance(record, RosterRecord)
    assert record.pin == "1"
    assert record.name == "Ana"


def test_oplog_and_unknown_lines_are_kept() -> None:
    records = parse("OPLOG 4 0 2025-01-01 10:00:00 0 0 0 0\nFP PIN=1 FID=0 Size=512\nhello")

    assert isinstance(records[0], OperationLogRecord)
    assert records[0].fields[0] == "OPLOG"
    assert isinstance(records[1], UnknownRecord)
    assert records[1].raw_line == "FP PIN=1 FID=0 Size=512"
    assert isinstance(records[2], UnknownRecord)


def test_one_record_per_line_in_order_skipping_stamp_and_blank_lines() -> None:
    body = (
        "STAMP=9999\r\n"
        "\r\n"
        "ATTLOG\t1\t2025-01-01 08:00:00\t0\t1\t0\r"
        "USERINFO\tPIN=1\tName=A\n"
        "   \n"
        "garbage line\n"
        "stamp=1\n"
        "2\t2025-01-01 08:05:00\t1\t3\t0"
    )
    records = parse(body)

    assert [r.kind for r in records] == [
        RecordKind.ATTENDANCE,
        RecordKind.ROSTER,
        RecordKind.UNKNOWN,
        RecordKind.ATTENDANCE,
    ]


def test_parse_is_repeatable_and_accepts_bytes() -> None:
    body = "ATTLOG\t7\t2025-01-02 08:00:00\t0\t1\t0\nUSERINFO\tPIN=7\tName=Ana"

    assert parse(body) == parse(body)
    assert parse(body.encode("utf-8")) == parse(body)
    assert parse("") == []
    assert parse(None) == []


def test_max_device_time_picks_newest_attendance() -> None:
    records = parse(
        "ATTLOG\t1\t2025-01-01 08:00:00\t0\t1\t0\n"
        "ATTLOG\t2\t2025-01-03 07:00:00\t0\t1\t0\n"
        "ATTLOG\t3\tnot-a-time\t0\t1\t0\n"
        "USERINFO\tPIN=1"
    )

    assert max_device_time(records) == "2025-01-03 07:00:00"
    assert max_device_time(parse("USERINFO\tPIN=1")) is None
