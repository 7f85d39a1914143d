#!/usr/bin/env python3
"""
Command-line interface for ramp-load

This module provides the ``ramp-load`` command using typer and rich:
scaffold a plan, validate it, and run it with a live status line and a
summary table. The exit code reflects the threshold verdict so CI can gate
on it.
"""

import asyncio
import logging
from contextlib import nullcontext
from datetime import datetime
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.live import Live
from rich.text import Text
from rich.align import Align
from rich.rule import Rule
from rich.markup import escape
from rich import box

from ramp_load import __version__
from ramp_load.config_loader import LoadPlan, load_plan
from ramp_load.common.errors import ConfigurationError
from ramp_load.common.file_logger import setup_file_logger, close_file_logger
from ramp_load.common.logger import configure_logging, get_logger
from ramp_load.common.telemetry import setup_telemetry, shutdown_telemetry
from ramp_load.engine.runner import LoadTestRunner, RunStatus
from ramp_load.reporter.summary import SummaryReporter

# Exit codes: CI can tell a breached threshold from a broken plan
EXIT_PASS = 0
EXIT_THRESHOLD_BREACH = 1
EXIT_CONFIG_ERROR = 2

app = typer.Typer(
    name="ramp-load",
    help="Ramping HTTP load tests with pass/fail thresholds",
    add_completion=False,
    no_args_is_help=True,
)
console = Console()
logger = get_logger(__name__)


def _print_banner() -> None:
    banner = Text()
    banner.append("ramp-load ", style="bold cyan")
    banner.append(f"v{__version__}", style="dim")
    banner.append(" - ramping HTTP load tests", style="dim")
    console.print(Panel(banner, box=box.ROUNDED, border_style="cyan"))


def _error_panel(title: str, message: str) -> Panel:
    return Panel(
        f"[red]✗ {title}:[/red]\n\n{escape(message)}",
        title="[bold red]Error[/bold red]",
        box=box.ROUNDED,
        border_style="red"
    )


def _generate_template_plan() -> str:
    """Generate a template load plan YAML."""
    return """version: "1.0"
metadata:
  name: "Orders ramp"
  description: "Ramp to 400 VUs posting synthetic orders"
  created_at: "{date}"

target:
  url: "https://api.example.com/orders"
  # Prefer RAMP_LOAD_USERNAME / RAMP_LOAD_PASSWORD over committing secrets
  username: "user"
  password: "change-me"
  timeout: "60s"

stages:
  - {{duration: "30s", target: 50}}
  - {{duration: "30s", target: 100}}
  - {{duration: "30s", target: 200}}
  - {{duration: "30s", target: 400}}
  - {{duration: "20s", target: 0}}

thresholds:
  http_req_duration: ["p(95)<500"]
  http_req_failed: ["rate<0.01"]

options:
  tick_interval: 1
  graceful_stop: "30s"
""".format(date=datetime.now().strftime("%Y-%m-%d"))


def _load_or_exit(file: str, url: Optional[str], username: Optional[str], password: Optional[str]) -> LoadPlan:
    try:
        return load_plan(file, overrides={"url": url, "username": username, "password": password})
    except ConfigurationError as e:
        console.print(_error_panel("Invalid load plan", str(e)))
        raise typer.Exit(EXIT_CONFIG_ERROR)


def _stages_table(plan: LoadPlan) -> Table:
    table = Table(title="Stages", box=box.ROUNDED)
    table.add_column("#", justify="right", style="dim")
    table.add_column("Duration", justify="right")
    table.add_column("Target VUs", justify="right", style="cyan")
    for index, stage in enumerate(plan.stages):
        table.add_row(str(index), f"{stage.duration:g}s", str(stage.target))
    return table


def _status_line(status: RunStatus) -> Text:
    s = status.scheduler
    text = Text()
    text.append(f"stage {min(s.stage_index + 1, status.stage_count)}/{status.stage_count}  ", style="cyan")
    text.append(f"t={s.elapsed:6.1f}s  ")
    text.append(f"vus={s.live}/{s.target}  ", style="bold")
    if s.draining:
        text.append(f"draining={s.draining}  ", style="yellow")
    text.append(f"reqs={status.requests}  ")
    text.append(f"failed={status.failed}", style="red" if status.failed else "green")
    return text


@app.command()
def init(
    output: str = typer.Option(
        "load_plan.yaml",
        "--output", "-o",
        help="Output file path"
    ),
    force: bool = typer.Option(False, "--force", "-f", help="Overwrite without asking"),
):
    """
    Generate a scaffold load plan template.
    """
    output_path = Path(output)

    if output_path.exists() and not force:
        console.print(f"[yellow]⚠[/yellow]  File [cyan]{output_path}[/cyan] already exists.")
        if not typer.confirm("  Overwrite?", default=False):
            console.print("[dim]Cancelled[/dim]")
            raise typer.Abort()

    try:
        output_path.parent.mkdir(parents=True, exist_ok=True)
        output_path.write_text(_generate_template_plan(), encoding='utf-8')
    except OSError as e:
        console.print(_error_panel("Failed to create template", str(e)))
        raise typer.Exit(EXIT_CONFIG_ERROR)

    console.print(Panel(
        Align.center(Text(f"✓ Template created successfully!\n\n{output_path}", style="green bold")),
        title="[bold green]Success[/bold green]",
        box=box.ROUNDED,
        border_style="green",
        padding=(1, 2)
    ))
    console.print(f"[dim]   Then run:[/dim] [cyan]ramp-load validate {output_path}[/cyan]\n")


@app.command()
def validate(
    file: str = typer.Argument(..., help="Path to load plan YAML file"),
    url: Optional[str] = typer.Option(None, "--url", envvar="RAMP_LOAD_URL", help="Override target URL"),
    username: Optional[str] = typer.Option(None, "--username", envvar="RAMP_LOAD_USERNAME", help="Override username"),
    password: Optional[str] = typer.Option(None, "--password", envvar="RAMP_LOAD_PASSWORD", help="Override password"),
):
    """
    Validate a load plan YAML file.
    """
    console.print(Rule(f"[bold cyan]Validating: {Path(file).name}[/bold cyan]"))
    plan = _load_or_exit(file, url, username, password)

    console.print(f"[bold]Plan:[/bold] {plan.name}")
    console.print(f"[bold]Target:[/bold] POST {plan.target.url} (timeout {plan.target.timeout:g}s)")
    console.print(
        f"[bold]Schedule:[/bold] {len(plan.stages)} stages, peak {plan.max_vus} VUs, "
        f"{plan.total_duration:g}s total"
    )
    console.print(_stages_table(plan))

    rules = plan.threshold_rules()
    if rules:
        console.print("\n[bold]Thresholds:[/bold]")
        for rule in rules:
            suffix = " [yellow](abort on fail)[/yellow]" if rule.abort_on_fail else ""
            console.print(f"  • {escape(rule.name)}{suffix}")

    console.print("\n[bold]Checks:[/bold]")
    for name in plan.check_map():
        console.print(f"  • {escape(name)}")

    console.print(Panel(
        Align.center(Text("✓ Validation passed!", style="green bold")),
        box=box.ROUNDED,
        border_style="green",
    ))


@app.command()
def run(
    file: str = typer.Argument(..., help="Path to load plan YAML file"),
    url: Optional[str] = typer.Option(None, "--url", envvar="RAMP_LOAD_URL", help="Override target URL"),
    username: Optional[str] = typer.Option(None, "--username", envvar="RAMP_LOAD_USERNAME", help="Override username"),
    password: Optional[str] = typer.Option(None, "--password", envvar="RAMP_LOAD_PASSWORD", help="Override password"),
    report_json: Optional[str] = typer.Option(None, "--report-json", help="Write JSON summary report to this path"),
    log_file: Optional[str] = typer.Option(None, "--log-file", help="Also write logs to this file"),
    otlp_endpoint: Optional[str] = typer.Option(
        None,
        "--otlp-endpoint",
        help="Export metrics to an OpenTelemetry collector (e.g. http://localhost:4317)",
    ),
    live: bool = typer.Option(True, "--live/--no-live", help="Show a live status line"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log at INFO level to the console"),
):
    """
    Run a load plan and gate on its thresholds.

    Exit code 0 when every threshold passes, 1 when any fails,
    2 when the plan is invalid.
    """
    configure_logging(logging.INFO if verbose else logging.WARNING)
    _print_banner()

    plan = _load_or_exit(file, url, username, password)
    console.print(_stages_table(plan))
    console.print(Rule(f"[bold cyan]Running: {plan.name}[/bold cyan]"))

    file_handler = setup_file_logger(log_file) if log_file else None
    if otlp_endpoint:
        setup_telemetry("ramp-load", otlp_endpoint)

    live_display = Live(Text("starting..."), console=console, refresh_per_second=4, transient=True) if live else None

    def on_progress(status: RunStatus) -> None:
        if live_display is not None:
            live_display.update(_status_line(status))

    runner = LoadTestRunner(plan, on_progress=on_progress, handle_signals=True)
    try:
        with live_display if live_display is not None else nullcontext():
            report = asyncio.run(runner.run())
    finally:
        if otlp_endpoint:
            shutdown_telemetry()
        close_file_logger(file_handler)

    console.print(Rule("[bold cyan]Summary[/bold cyan]"))
    reporter = SummaryReporter(report)
    reporter.render(console)

    if report_json:
        try:
            path = reporter.write_json(report_json)
            console.print(f"[green]✓[/green] JSON report: {path}")
        except OSError as e:
            console.print(f"[yellow]⚠[/yellow] Failed to write JSON report: {e}")

    raise typer.Exit(EXIT_PASS if report.passed else EXIT_THRESHOLD_BREACH)


if __name__ == "__main__":
    app()
