"""CLI commands for iclockhub."""

import json
from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from iclockhub import __logo__, __version__

app = typer.Typer(
    name="iclockhub",
    help=f"{__logo__} iclockhub - iClock/ADMS attendance terminal gateway",
    no_args_is_help=True,
)

console = Console()


def version_callback(value: bool):
    if value:
        console.print(f"{__logo__} iclockhub v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        None, "--version", "-v", callback=version_callback, is_eager=True
    ),
):
    """iclockhub - iClock/ADMS attendance terminal gateway."""
    pass


# ============================================================================
# Config Commands
# ============================================================================


config_app = typer.Typer(help="Manage iclockhub config")
app.add_typer(config_app, name="config")


@config_app.command("init")
def config_init(
    config: Path | None = typer.Option(None, "--config", help="Config path to write"),
    force: bool = typer.Option(
        False,
        "--force",
        help="Overwrite with defaults (existing values will be lost)",
    ),
):
    """Create the config file, or refresh it keeping existing values."""
    from iclockhub.config.loader import get_config_path, load_config, save_config
    from iclockhub.config.schema import Config

    config_path = (config or get_config_path()).expanduser()
    if config_path.exists() and not force:
        save_config(load_config(config_path), config_path)
        console.print(f"[green]✓[/green] Config refreshed at {config_path} (existing values preserved)")
        return
    save_config(Config(), config_path)
    console.print(f"[green]✓[/green] Created config at {config_path}")


@config_app.command("check")
def config_check(
    config: Path | None = typer.Option(None, "--config", help="Config path to validate"),
    strict: bool = typer.Option(
        False,
        "--strict",
        help="Fail when unknown keys are detected (possible typos)",
    ),
):
    """Validate config JSON structure and schema."""
    from iclockhub.config.loader import convert_keys, find_unknown_paths, get_config_path
    from iclockhub.config.schema import Config

    config_path = (config or get_config_path()).expanduser()
    if not config_path.exists():
        console.print(f"[red]Config file not found:[/red] {config_path}")
        raise typer.Exit(2)

    try:
        raw = json.loads(config_path.read_text())
    except json.JSONDecodeError as exc:
        console.print(f"[red]Invalid JSON:[/red] {exc}")
        raise typer.Exit(2) from exc
    if not isinstance(raw, dict):
        console.print("[red]Config root must be a JSON object[/red]")
        raise typer.Exit(2)

    try:
        cfg = Config.model_validate(convert_keys(raw))
    except Exception as exc:
        console.print(f"[red]Schema validation failed:[/red] {exc}")
        raise typer.Exit(1) from exc

    unknown_paths = find_unknown_paths(raw)
    if unknown_paths:
        console.print(
            f"[yellow]Unknown config keys detected ({len(unknown_paths)}):[/yellow]"
        )
        for item in unknown_paths[:10]:
            console.print(f"  - {item}")
        if len(unknown_paths) > 10:
            console.print(f"  - ... ({len(unknown_paths) - 10} more)")
        if strict:
            raise typer.Exit(1)

    console.print("[green]✓[/green] Config validation passed")
    console.print(f"path={config_path}")
    console.print(
        "iclock="
        f"{cfg.iclock.host}:{cfg.iclock.port} "
        f"pull_mode={'on' if cfg.iclock.pull_mode else 'off'} "
        f"dialect={cfg.iclock.command_dialect} "
        f"tz={cfg.iclock.device_timezone}"
    )
    console.print(
        "features="
        f"admin={'on' if cfg.admin.enabled else 'off'} "
        f"realtime={'on' if cfg.realtime.enabled else 'off'}"
    )


# ============================================================================
# Server Commands
# ============================================================================


@app.command()
def serve(
    host: str | None = typer.Option(None, "--host", help="Bind host override"),
    port: int | None = typer.Option(None, "--port", help="Bind port override"),
    pull_mode: bool | None = typer.Option(
        None,
        "--pull-mode/--no-pull-mode",
        help="Synthesize incremental attendance fetches on idle polls",
    ),
    dialect: str | None = typer.Option(
        None,
        "--dialect",
        help="Fetch command dialect: DATA_QUERY/GET_ATTLOG/ATTLOG",
    ),
    crlf: bool | None = typer.Option(None, "--crlf/--lf", help="Line ending for command responses"),
    config: Path | None = typer.Option(None, "--config", help="Config file path"),
    logs: bool = typer.Option(True, "--logs/--no-logs", help="Show runtime logs"),
):
    """Start the iClock push/pull endpoints and admin API."""
    from loguru import logger

    from iclockhub.api.iclock_server import create_server_from_config
    from iclockhub.config.loader import load_config

    cfg = load_config(config.expanduser() if config else None)
    if logs:
        logger.enable("iclockhub")
    else:
        logger.disable("iclockhub")

    if host:
        cfg.iclock.host = host
    if port:
        cfg.iclock.port = port
    if pull_mode is not None:
        cfg.iclock.pull_mode = pull_mode
    if dialect:
        cfg.iclock.command_dialect = dialect
    if crlf is not None:
        cfg.iclock.use_crlf = crlf

    server = create_server_from_config(cfg)
    console.print(f"{__logo__} Starting iclockhub on {cfg.iclock.host}:{cfg.iclock.port}...")
    console.print(
        f"[green]✓[/green] pull_mode={cfg.iclock.pull_mode} "
        f"dialect={server.gateway.dialect} stale={cfg.iclock.stale_seconds}s"
    )
    try:
        server.serve_forever()
    except KeyboardInterrupt:
        console.print("\nShutting down...")
    finally:
        server.stop()


# ============================================================================
# Diagnostics
# ============================================================================


@app.command("parse")
def parse_payload(
    path: Path = typer.Argument(..., help="File holding a raw /iclock/cdata body"),
    timezone: str = typer.Option("UTC", "--tz", help="Zone the device clock runs in"),
):
    """Parse a captured push body and print the decoded records."""
    from iclockhub.iclock.parser import AttendanceRecord, RosterRecord, parse
    from iclockhub.iclock.timefmt import resolve_zone, to_instant
    from iclockhub.iclock.verify import decode
    from iclockhub.utils.helpers import truncate_string

    if not path.exists():
        console.print(f"[red]File not found:[/red] {path}")
        raise typer.Exit(2)

    records = parse(path.read_bytes())
    zone = resolve_zone(timezone)

    table = Table(title=f"{path.name} ({len(records)} records)")
    table.add_column("#", style="dim")
    table.add_column("Kind", style="cyan")
    table.add_column("PIN")
    table.add_column("Detail")

    for idx, record in enumerate(records, start=1):
        if isinstance(record, AttendanceRecord):
            instant = to_instant(record.timestamp, zone)
            detail = (
                f"{instant.isoformat() if instant else record.timestamp} "
                f"status={record.status} {decode(record.verify)}"
            )
            table.add_row(str(idx), record.kind.value, record.pin, detail)
        elif isinstance(record, RosterRecord):
            detail = f"name={record.name} card={record.card} privilege={record.privilege}"
            table.add_row(str(idx), record.kind.value, record.pin, detail)
        else:
            table.add_row(str(idx), record.kind.value, "", truncate_string(record.raw_line, 60))

    console.print(table)
