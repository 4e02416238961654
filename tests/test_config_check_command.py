import json

from typer.testing import CliRunner

from iclockhub.cli.commands import app
from iclockhub.config.loader import camel_to_snake, convert_keys, find_unknown_paths, load_config

runner = CliRunner()


def test_config_check_passes_for_valid_config(tmp_path) -> None:
    config_path = tmp_path / "config.json"
    config_path.write_text(
        json.dumps(
            {
                "iclock": {
                    "port": 8081,
                    "pullMode": True,
                    "commandDialect": "GET_ATTLOG",
                    "deviceTimezone": "Asia/Manila",
                },
                "realtime": {
                    "enabled": False,
                },
            }
        )
    )

    result = runner.invoke(
        app,
        [
            "config",
            "check",
            "--config",
            str(config_path),
        ],
    )

    assert result.exit_code == 0
    assert "Config validation passed" in result.stdout
    assert "pull_mode=on" in result.stdout
    assert "realtime=off" in result.stdout


def test_config_check_fails_when_missing(tmp_path) -> None:
    result = runner.invoke(
        app,
        [
            "config",
            "check",
            "--config",
            str(tmp_path / "missing.json"),
        ],
    )

    assert result.exit_code == 2
    assert "Config file not found" in result.stdout


def test_config_check_rejects_invalid_json(tmp_path) -> None:
    config_path = tmp_path / "config.json"
    config_path.write_text("{not json")

    result = runner.invoke(app, ["config", "check", "--config", str(config_path)])

    assert result.exit_code == 2
    assert "Invalid JSON" in result.stdout


def test_config_check_schema_failure(tmp_path) -> None:
    config_path = tmp_path / "config.json"
    config_path.write_text(json.dumps({"iclock": {"port": "not-a-port"}}))

    result = runner.invoke(app, ["config", "check", "--config", str(config_path)])

    assert result.exit_code == 1
    assert "Schema validation failed" in result.stdout


def test_config_check_strict_fails_unknown_keys(tmp_path) -> None:
    config_path = tmp_path / "config.json"
    config_path.write_text(
        json.dumps(
            {
                "iclock": {
                    "pullMode": True,
                    "staleSecnds": 30,
                },
            }
        )
    )

    lenient = runner.invoke(app, ["config", "check", "--config", str(config_path)])
    assert lenient.exit_code == 0
    assert "iclock.staleSecnds" in lenient.stdout

    result = runner.invoke(app, ["config", "check", "--config", str(config_path), "--strict"])
    assert result.exit_code == 1
    assert "Unknown config keys detected" in result.stdout


def test_load_config_reads_camel_case(tmp_path) -> None:
    config_path = tmp_path / "config.json"
    config_path.write_text(
        json.dumps({"iclock": {"useCrlf": True, "buffers": {"rawSamples": 5}}})
    )

    cfg = load_config(config_path)

    assert cfg.iclock.use_crlf is True
    assert cfg.iclock.line_ending == "\r\n"
    assert cfg.iclock.buffers.raw_samples == 5


def test_load_config_falls_back_to_defaults_on_bad_file(tmp_path) -> None:
    config_path = tmp_path / "config.json"
    config_path.write_text("[")

    cfg = load_config(config_path)

    assert cfg.iclock.port == 5099


def test_key_helpers() -> None:
    assert camel_to_snake("userSyncIntervalHours") == "user_sync_interval_hours"
    assert convert_keys({"iclock": {"staleSeconds": 5}}) == {"iclock": {"stale_seconds": 5}}
    assert find_unknown_paths({"iclock": {"port": 1}, "bogus": 1}) == ["bogus"]


def test_parse_command_prints_records(tmp_path) -> None:
    capture = tmp_path / "cdata.txt"
    capture.write_text("ATTLOG\t7\t2025-01-02 08:00:00\t0\t1\t0\nUSERINFO\tPIN=7\tName=Ana\n")

    result = runner.invoke(app, ["parse", str(capture), "--tz", "UTC"])

    assert result.exit_code == 0
    assert "fingerprint" in result.stdout
    assert "name=Ana" in result.stdout


def test_config_init_creates_then_refreshes(tmp_path) -> None:
    config_path = tmp_path / "nested" / "config.json"

    created = runner.invoke(app, ["config", "init", "--config", str(config_path)])
    assert created.exit_code == 0
    assert "Created config" in created.stdout
    data = json.loads(config_path.read_text())
    assert data["iclock"]["port"] == 5099
    assert data["iclock"]["buffers"]["rawSamples"] == 50

    data["iclock"]["port"] = 9000
    config_path.write_text(json.dumps(data))
    refreshed = runner.invoke(app, ["config", "init", "--config", str(config_path)])
    assert refreshed.exit_code == 0
    assert json.loads(config_path.read_text())["iclock"]["port"] == 9000

    reset = runner.invoke(app, ["config", "init", "--config", str(config_path), "--force"])
    assert reset.exit_code == 0
    assert json.loads(config_path.read_text())["iclock"]["port"] == 5099
