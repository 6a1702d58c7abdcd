"""CLI entry point for snapdash using Typer."""

from __future__ import annotations

import asyncio
import json
import socket
import sys
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from importlib.metadata import PackageNotFoundError, version
from importlib.resources import files
from pathlib import Path
from typing import Annotated

import asyncssh
import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table
from rich.text import Text

from snapdash.app import Dashboard
from snapdash.config import Configuration, ConfigurationError
from snapdash.connection import Connection
from snapdash.executor import LocalExecutor, RemoteExecutor
from snapdash.gateway import CommandGateway
from snapdash.keys import KeyReader
from snapdash.logger import configure_logging, create_log_file_path, get_latest_log_file, get_logs_directory
from snapdash.models import (
    ApplyRequest,
    BackendInvocationError,
    CreateRequest,
    DeleteRequest,
    Failed,
    Listed,
    OperationRequest,
    OperationResult,
    RefreshRequest,
    SortKey,
    StatusFetched,
    StatusRequest,
)
from snapdash.parser import format_listing
from snapdash.reconciler import describe_result
from snapdash.state import AppState
from snapdash.ui import DashboardView

app = typer.Typer(
    name="snapdash",
    help="Terminal dashboard for filesystem snapshots",
    no_args_is_help=True,
)

console = Console()

ConfigOption = Annotated[
    Path | None,
    typer.Option(
        "--config",
        "-c",
        help="Path to config file (default: ~/.config/snapdash/config.yaml)",
    ),
]
HostOption = Annotated[
    str | None,
    typer.Option("--host", help="Manage snapshots on this host over SSH (overrides backend.host)"),
]
YesOption = Annotated[
    bool,
    typer.Option("--yes", "-y", help="Do not ask for confirmation"),
]


def _version_callback(value: bool) -> None:
    """Print version and exit if --version flag is provided."""
    if value:
        try:
            console.print(f"snapdash {version('snapdash')}")
        except PackageNotFoundError:
            console.print("[bold red]Error:[/bold red] Cannot determine snapdash version")
            sys.exit(1)
        raise typer.Exit()


@app.callback()
def main(
    version_flag: Annotated[
        bool,
        typer.Option("--version", "-v", callback=_version_callback, is_eager=True, help="Show version and exit"),
    ] = False,
) -> None:
    """Snapshot dashboard."""


def _load_configuration(config: Path | None, host: str | None) -> Configuration:
    """Load configuration, printing validation errors and exiting on failure."""
    try:
        cfg = Configuration.load(config)
    except ConfigurationError as e:
        console.print("[bold red]Configuration error:[/bold red]")
        for error in e.errors:
            console.print(f"  {error.path}: {escape(error.message)}")
        sys.exit(1)
    if host is not None:
        cfg.backend.host = host
    return cfg


def _setup_logging(cfg: Configuration) -> None:
    """Log to a new file and to stderr for one-shot commands."""
    configure_logging(cfg.log_file_level, cfg.log_cli_level, create_log_file_path())


@asynccontextmanager
async def _open_gateway(cfg: Configuration) -> AsyncIterator[CommandGateway]:
    """Gateway for the configured machine, connecting over SSH when a host is set."""
    backend = cfg.backend
    if backend.host is None:
        yield CommandGateway(
            LocalExecutor(),
            tool=backend.tool,
            config_name=backend.config_name,
            use_sudo=backend.use_sudo,
            timeout=backend.timeout,
        )
        return

    connection = Connection(backend.host)
    try:
        await connection.connect()
    except (OSError, asyncssh.Error) as e:
        raise BackendInvocationError(None, f"cannot connect to {backend.host}: {e}") from e
    try:
        yield CommandGateway(
            RemoteExecutor(connection.ssh_connection),
            tool=backend.tool,
            config_name=backend.config_name,
            use_sudo=backend.use_sudo,
            timeout=backend.timeout,
        )
    finally:
        await connection.disconnect()


def _run_operation(cfg: Configuration, request: OperationRequest) -> OperationResult:
    """Run a single operation to completion."""
    return asyncio.run(_async_run_operation(cfg, request))


async def _async_run_operation(cfg: Configuration, request: OperationRequest) -> OperationResult:
    try:
        async with _open_gateway(cfg) as gateway:
            return await gateway.execute(request)
    except BackendInvocationError as e:
        return Failed(request, e)


def _report(result: OperationResult) -> int:
    """Print a one-line outcome; returns the exit code."""
    message = escape(describe_result(result))
    if isinstance(result, Failed):
        console.print(f"[bold red]Error:[/bold red] {message}")
        return 1
    console.print(f"[green]{message}[/green]")
    return 0


@app.command()
def dashboard(config: ConfigOption = None, host: HostOption = None) -> None:
    """Open the interactive dashboard."""
    cfg = _load_configuration(config, host)
    if not sys.stdin.isatty():
        console.print("[bold red]Error:[/bold red] The dashboard needs an interactive terminal")
        sys.exit(1)
    sys.exit(asyncio.run(_async_run_dashboard(cfg)))


async def _async_run_dashboard(cfg: Configuration) -> int:
    try:
        async with _open_gateway(cfg) as gateway:
            view = DashboardView(
                console,
                max_log_lines=cfg.dashboard.max_log_lines,
                refresh_per_second=cfg.dashboard.refresh_per_second,
                target=cfg.backend.host or socket.gethostname(),
            )
            dash = Dashboard(gateway, view, cfg.dashboard)
            # The reconciler already turns its own results into notices
            configure_logging(
                cfg.log_file_level,
                cfg.log_cli_level,
                create_log_file_path(),
                notice_sink=dash.reconciler.notify,
                ignore_notices_from=("snapdash.reconciler",),
            )
            keys = KeyReader()
            keys.start()
            try:
                await dash.run(keys)
            finally:
                keys.stop()
    except BackendInvocationError as e:
        console.print(f"[bold red]Error:[/bold red] {escape(str(e))}")
        return 1
    return 0


@app.command("list")
def list_snapshots(
    config: ConfigOption = None,
    host: HostOption = None,
    sort: Annotated[SortKey, typer.Option("--sort", "-s", help="Column to sort by")] = SortKey.NUMBER,
    reverse: Annotated[bool, typer.Option("--reverse", "-r", help="Sort descending")] = False,
    plain: Annotated[bool, typer.Option("--plain", help="Print a plain '|'-separated table")] = False,
) -> None:
    """List snapshots."""
    cfg = _load_configuration(config, host)
    _setup_logging(cfg)
    result = _run_operation(cfg, RefreshRequest())
    if not isinstance(result, Listed):
        sys.exit(_report(result))

    state = AppState(snapshots=list(result.snapshots), sort_key=sort, sort_ascending=not reverse, loaded=True)
    rows = state.visible_rows()
    if plain:
        console.print(format_listing(rows), markup=False, highlight=False, soft_wrap=True, end="")
    else:
        state.cursor = None  # no highlighted row outside the dashboard
        view = DashboardView(console, target=cfg.backend.host or socket.gethostname())
        console.print(view.render_table(state))
    if result.skipped:
        console.print(f"[yellow]{result.skipped} unreadable row(s) skipped[/yellow]")


@app.command()
def status(
    snapshot_id: Annotated[int, typer.Argument(help="Snapshot number")],
    since: Annotated[
        int | None,
        typer.Option("--since", help="Compare with this snapshot (default: the previous number)"),
    ] = None,
    config: ConfigOption = None,
    host: HostOption = None,
) -> None:
    """Show what changed in a snapshot."""
    cfg = _load_configuration(config, host)
    _setup_logging(cfg)
    if since is None and snapshot_id > 0:
        since = snapshot_id - 1
    result = _run_operation(cfg, StatusRequest(snapshot_id, since))
    if not isinstance(result, StatusFetched):
        sys.exit(_report(result))

    grid = Table.grid(padding=(0, 1))
    grid.add_column(style="cyan", no_wrap=True)
    grid.add_column()
    for key, value in result.fields.items():
        if key != "changes":
            grid.add_row(key, value)
    console.print(grid)
    if changes := result.fields.get("changes"):
        console.print(Text(changes))


@app.command()
def create(
    description: Annotated[str, typer.Argument(help="Description of the new snapshot")],
    config: ConfigOption = None,
    host: HostOption = None,
) -> None:
    """Create a snapshot."""
    if not description.strip():
        console.print("[bold red]Error:[/bold red] A description is required")
        sys.exit(1)
    cfg = _load_configuration(config, host)
    _setup_logging(cfg)
    sys.exit(_report(_run_operation(cfg, CreateRequest(description.strip()))))


@app.command()
def delete(
    snapshot_ids: Annotated[list[int], typer.Argument(help="Snapshot numbers to delete")],
    yes: YesOption = False,
    config: ConfigOption = None,
    host: HostOption = None,
) -> None:
    """Delete one or more snapshots."""
    cfg = _load_configuration(config, host)
    request = DeleteRequest(frozenset(snapshot_ids))
    numbers = ", ".join(f"#{i}" for i in sorted(request.ids))
    if not yes:
        typer.confirm(f"Delete {len(request.ids)} snapshot(s) ({numbers})?", abort=True)
    _setup_logging(cfg)
    sys.exit(_report(_run_operation(cfg, request)))


@app.command()
def rollback(
    snapshot_id: Annotated[int, typer.Argument(help="Snapshot number to roll back to")],
    yes: YesOption = False,
    config: ConfigOption = None,
    host: HostOption = None,
) -> None:
    """Roll back the filesystem to a snapshot."""
    cfg = _load_configuration(config, host)
    if not yes:
        typer.confirm(f"Roll back to snapshot #{snapshot_id}?", abort=True)
    _setup_logging(cfg)
    sys.exit(_report(_run_operation(cfg, ApplyRequest(snapshot_id))))


def _display_log_file(log_file: Path) -> None:
    """Display log file content with Rich formatting.

    Args:
        log_file: Path to log file to display
    """
    level_colors = {
        "debug": "dim",
        "info": "green",
        "warning": "yellow",
        "error": "red",
        "critical": "bold red",
    }

    console.print(f"\n[bold]Log file:[/bold] {log_file}\n")

    try:
        with log_file.open("r", encoding="utf-8") as f:
            for line_num, raw_line in enumerate(f, start=1):
                line = raw_line.strip()
                if not line:
                    continue

                try:
                    entry = json.loads(line)
                except json.JSONDecodeError:
                    console.print(f"[dim]Line {line_num}:[/dim] {escape(line)}")
                    continue

                timestamp = entry.get("timestamp", "")
                level = str(entry.get("level", "info"))
                logger_name = entry.get("logger", "")
                message = entry.get("event", "")

                # Just the time portion of ISO timestamps
                time_part = timestamp.split("T")[1].split(".")[0] if "T" in timestamp else timestamp

                text = Text()
                text.append(f"{time_part} ", style="dim")
                text.append(f"[{level.upper():8}]", style=level_colors.get(level.lower(), "white"))
                text.append(f" [{logger_name}]", style="blue")
                text.append(f" {message}")

                context_fields = {
                    k: v
                    for k, v in entry.items()
                    if k not in {"timestamp", "level", "logger", "event", "hostname"}
                }
                if context_fields:
                    text.append(" " + " ".join(f"{k}={v}" for k, v in context_fields.items()), style="dim")

                console.print(text)

    except OSError as e:
        console.print(f"[bold red]Error reading log file:[/bold red] {e}")
        sys.exit(1)


@app.command()
def logs(
    last: Annotated[
        bool,
        typer.Option("--last", "-l", help="Display the most recent log file"),
    ] = False,
) -> None:
    """View log files.

    By default, shows the logs directory. Use --last to display the most recent log file.
    """
    if last:
        log_file = get_latest_log_file()
        if log_file is None:
            console.print("[yellow]No log files found[/yellow]")
            console.print(f"Logs directory: {get_logs_directory()}")
            sys.exit(1)
        _display_log_file(log_file)
        return

    logs_dir = get_logs_directory()
    console.print(f"Logs directory: {logs_dir}")
    if not logs_dir.exists():
        console.print("\n[yellow]Logs directory does not exist yet[/yellow]")
        return

    log_files = sorted(logs_dir.glob("snapdash-*.log"), reverse=True)
    if not log_files:
        console.print("\n[yellow]No log files found[/yellow]")
        return
    console.print(f"\nFound {len(log_files)} log file(s):")
    for log_file in log_files[:10]:
        console.print(f"  {log_file.name}")
    if len(log_files) > 10:
        console.print(f"  ... and {len(log_files) - 10} more")


@app.command()
def init(
    force: Annotated[
        bool,
        typer.Option("--force", "-f", help="Overwrite existing configuration file"),
    ] = False,
) -> None:
    """Initialize default configuration file.

    Creates ~/.config/snapdash/config.yaml with default settings.
    Use --force to overwrite an existing configuration.
    """
    config_path = Configuration.get_default_config_path()

    if config_path.exists() and not force:
        console.print(f"[yellow]Configuration file already exists:[/yellow] {config_path}")
        console.print("Use --force to overwrite")
        raise typer.Exit(1)

    config_path.parent.mkdir(parents=True, exist_ok=True)
    default_config = files("snapdash").joinpath("default-config.yaml").read_text()
    config_path.write_text(default_config)

    console.print(f"[green]Created configuration file:[/green] {config_path}")
    console.print("\n[dim]Review backend.use_sudo and backend.config_name for your system.[/dim]")


if __name__ == "__main__":
    app()
