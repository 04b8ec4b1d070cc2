"""Human-readable rendering of supervisor results."""

from pathlib import Path

from rich.console import Console
from rich.markup import escape

from .supervisor import (
    OperationResult,
    Outcome,
    TunnelState,
    TunnelStatusReport,
    TunnelSummary,
)

console = Console(highlight=False, soft_wrap=True)
err_console = Console(stderr=True, highlight=False, soft_wrap=True)


def print_info(message: str) -> None:
    console.print(f"[blue][INFO][/blue] {escape(message)}")


def print_success(message: str) -> None:
    console.print(f"[green][OK][/green] {escape(message)}")


def print_warning(message: str) -> None:
    console.print(f"[yellow][WARN][/yellow] {escape(message)}")


def print_error(message: str) -> None:
    err_console.print(f"[red][ERROR][/red] {escape(message)}")


def render_result(result: OperationResult) -> None:
    """Print the single status line that ends every lifecycle command."""
    name = result.name
    if result.outcome == Outcome.ALREADY_RUNNING:
        print_warning(f"Tunnel '{name}' is already running (PID: {result.pid})")
    elif result.outcome == Outcome.NOT_RUNNING:
        print_warning(f"Tunnel '{name}' is not running")
    elif result.outcome == Outcome.STOPPED:
        print_success(f"Tunnel '{name}' stopped")
    else:
        if result.config is not None:
            print_info(f"  Remote: {result.config.target_host}:{result.config.remote_port}")
            print_info(f"  Local:  {result.config.local_target}")
        verb = "restarted" if result.outcome == Outcome.RESTARTED else "started"
        print_success(f"Tunnel '{name}' {verb} (PID: {result.pid})")


def render_log_excerpt(title: str, lines: list[str], style: str = "blue") -> None:
    if not lines:
        return
    console.print(f"\n[{style}]{escape(title)}[/{style}]")
    for line in lines:
        console.print(f"  {escape(line)}")


def render_status(report: TunnelStatusReport) -> None:
    console.print(f"[blue]Tunnel:[/blue] {escape(report.name)}")
    if report.description:
        console.print(f"  {escape(report.description)}")

    if report.is_running:
        print_success(f"Running (PID: {report.pid})")
        render_log_excerpt("Recent logs:", report.recent_logs)
    elif report.state == TunnelState.UNCONFIGURED:
        print_warning(f"Not configured (expected {report.config_path})")
    else:
        print_warning("Not running")


def render_list(summaries: list[TunnelSummary], config_dir: Path) -> None:
    print_info("Configured tunnels:")
    if not summaries:
        console.print("  No tunnels configured yet.")
        console.print(f"  Create a config in: {escape(str(config_dir))}/<name>.env")
        return

    for summary in summaries:
        if summary.running:
            console.print(f"  [green]●[/green] {escape(summary.name)} [blue](running)[/blue]")
        else:
            console.print(f"  [red]○[/red] {escape(summary.name)}")
        if summary.description:
            console.print(f"    {escape(summary.description)}")
