"""rustunnl command-line interface.

Usage:
    rustunnl [OPTIONS] COMMAND [ARGS]...

Commands:
    start    Start tunnel
    stop     Stop tunnel (complete cleanup)
    restart  Restart tunnel
    status   Show status (all or specific)
    list     List all configured tunnels
"""

from enum import Enum
from pathlib import Path
from typing import Annotated

import typer
from pydantic import ValidationError

from .common.exceptions import LaunchFailedError, RustunnlError
from .common.logging import get_logger, setup_logging
from .reporter import (
    print_error,
    print_info,
    render_list,
    render_log_excerpt,
    render_result,
    render_status,
)
from .settings import ManagerSettings
from .supervisor import OperationResult, TunnelSupervisor

logger = get_logger(__name__)


class LogLevel(str, Enum):
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"


app = typer.Typer(
    name="rustunnl",
    help="SSH reverse tunnel manager built on autossh.",
    add_completion=False,
    rich_markup_mode="rich",
)


class CLIState:
    """Per-invocation objects built by the callback."""

    settings: ManagerSettings | None = None
    supervisor: TunnelSupervisor | None = None


state = CLIState()


def _supervisor() -> TunnelSupervisor:
    if state.supervisor is None:
        raise RuntimeError("CLI callback did not run; no supervisor configured")
    return state.supervisor


def _run(operation: str, name: str) -> None:
    supervisor = _supervisor()
    logger.debug("Dispatching command", command=operation, name=name)
    try:
        if operation == "restart":
            print_info(f"Restarting tunnel '{name}'...")
        result: OperationResult = getattr(supervisor, operation)(name)
    except LaunchFailedError as e:
        print_error(str(e))
        render_log_excerpt("Last log entries:", e.log_tail, style="red")
        raise typer.Exit(1)
    except RustunnlError as e:
        print_error(str(e))
        raise typer.Exit(1)

    render_result(result)


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    config_dir: Annotated[
        Path | None,
        typer.Option("--config-dir", help="Tunnel config directory", envvar="RUSTUNNL_CONFIG_DIR"),
    ] = None,
    state_dir: Annotated[
        Path | None,
        typer.Option("--state-dir", help="Pid/log directory", envvar="RUSTUNNL_STATE_DIR"),
    ] = None,
    log_level: Annotated[
        LogLevel,
        typer.Option("--log-level", case_sensitive=False, help="Diagnostic log level"),
    ] = LogLevel.WARNING,
    json_logs: Annotated[
        bool,
        typer.Option("--json-logs", help="Emit diagnostic logs as JSON"),
    ] = False,
):
    """SSH reverse tunnel manager built on autossh."""
    setup_logging(level=log_level.value, json_format=json_logs)

    try:
        state.settings = ManagerSettings.from_env(config_dir=config_dir, state_dir=state_dir)
    except ValidationError as e:
        print_error(f"Invalid settings: {e}")
        raise typer.Exit(1)
    state.supervisor = TunnelSupervisor(state.settings)
    state.supervisor.store.ensure_dirs()

    if ctx.invoked_subcommand is None:
        typer.echo(ctx.get_help())
        typer.echo("")
        typer.echo(f"Config directory: {state.settings.config_dir}")
        typer.echo(f"State directory:  {state.settings.state_dir}")
        raise typer.Exit(1)


@app.command("start")
def start(name: Annotated[str, typer.Argument(help="Tunnel name")]):
    """Start tunnel."""
    _run("start", name)


@app.command("stop")
def stop(name: Annotated[str, typer.Argument(help="Tunnel name")]):
    """Stop tunnel (complete cleanup)."""
    _run("stop", name)


@app.command("restart")
def restart(name: Annotated[str, typer.Argument(help="Tunnel name")]):
    """Restart tunnel."""
    _run("restart", name)


@app.command("status")
def status(
    name: Annotated[str | None, typer.Argument(help="Tunnel name (all if omitted)")] = None,
    lines: Annotated[
        int | None,
        typer.Option("--lines", "-n", min=0, help="Log lines to show"),
    ] = None,
):
    """Show status (all or specific)."""
    supervisor = _supervisor()
    if name is None:
        render_list(supervisor.list_tunnels(), supervisor.settings.config_dir)
        return

    try:
        report = supervisor.status(name, log_lines=lines)
    except RustunnlError as e:
        print_error(str(e))
        raise typer.Exit(1)
    render_status(report)


@app.command("list")
def list_tunnels():
    """List all configured tunnels."""
    supervisor = _supervisor()
    render_list(supervisor.list_tunnels(), supervisor.settings.config_dir)


if __name__ == "__main__":
    app()
