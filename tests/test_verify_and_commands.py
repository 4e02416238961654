from iclockhub.iclock import commands as cmd
from iclockhub.iclock.verify import decode


def test_verify_decoder_table() -> None:
    assert decode(0) == "password"
    assert decode(1) == "fingerprint"
    assert decode(3) == "card"
    assert decode(8) == "face"
    assert decode(15) == "face+fingerprint+card+password"
    assert decode("4") == "fingerprint+password"


def test_verify_decoder_unknown_codes() -> None:
    assert decode(16) == "unknown"
    assert decode(-1) == "unknown"
    assert decode("abc") == "unknown"
    assert decode(None) == "unknown"


def test_fetch_dialects_render_and_fall_back() -> None:
    start, end = "2025-01-01 00:00:00", "2025-01-02 00:00:00"

    assert cmd.render_fetch(start, end, "DATA_QUERY") == (
        "C:1:DATA QUERY ATTLOG StartTime=2025-01-01 00:00:00 EndTime=2025-01-02 00:00:00"
    )
    assert cmd.render_fetch(start, end, "get_attlog").startswith("C:1:GET ATTLOG StartTime=")
    assert cmd.render_fetch(start, end, "ATTLOG") == "C:1:ATTLOG"
    assert cmd.render_fetch(start, end, "nonsense") == cmd.render_fetch(start, end, "DATA_QUERY")


def test_user_upsert_walks_variant_table_in_order() -> None:
    commands = cmd.build_user_upsert(
        {"pin": "7", "name": "Ana", "card": "55", "privilege": ""},
        pin_key="Badgenumber",
    )

    assert commands == [
        "C:1:DATA UPDATE USERINFO Badgenumber=7\tName=Ana\tPrivilege=0\tCard=55",
        "C:1:DATA UPDATE USERINFO Badgenumber=7 Name=Ana Privilege=0 Card=55",
        "C:1:DATA USER Badgenumber=7\tName=Ana\tPrivilege=0\tCard=55",
    ]


def test_user_delete_variants() -> None:
    assert cmd.build_user_delete("9") == [
        "C:1:DATA DELETE USERINFO PIN=9",
        "C:1:DATA DELETE USER PIN=9",
    ]


def test_command_classification_handles_both_prefix_spellings() -> None:
    assert cmd.command_body("C:12:DATA QUERY USERINFO") == "DATA QUERY USERINFO"
    assert cmd.command_body("C: DATA QUERY USERINFO") == "DATA QUERY USERINFO"
    assert cmd.is_roster_command("C: DATA QUERY USERINFO")
    assert cmd.is_roster_command(cmd.user_query("4"))
    assert not cmd.is_roster_command("C:1:DATA QUERY ATTLOG StartTime=x EndTime=y")
    assert cmd.is_attendance_command("C:1:GET ATTLOG StartTime=x EndTime=y")
    assert not cmd.is_attendance_command(cmd.frame(cmd.DEVICE_REBOOT))


def test_frame_keeps_prefixed_text() -> None:
    assert cmd.frame("DATA QUERY USERINFO") == "C:1:DATA QUERY USERINFO"
    assert cmd.frame("C:5:CONTROL DEVICE 03000000") == "C:5:CONTROL DEVICE 03000000"
