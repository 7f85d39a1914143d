"""
Run Summary Reporter

Renders a RunReport as rich tables (checks, HTTP metrics, thresholds) and
exports it as a JSON document for CI artifacts.
"""

import json
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional

from rich import box
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from ramp_load.common.logger import get_logger
from ramp_load.engine.runner import RunReport

logger = get_logger(__name__)

SCHEMA_VERSION = "1.0"


def _ms(value: float) -> str:
    return f"{value:.2f}"


class SummaryReporter:
    """
    Human-readable and JSON views of a finished run.

    Args:
        report: The run to describe.
    """

    def __init__(self, report: RunReport):
        self.report = report

    def checks_table(self) -> Table:
        stats = self.report.stats
        table = Table(title="Checks", box=box.ROUNDED)
        table.add_column("Check", style="cyan")
        table.add_column("Passes", justify="right", style="green")
        table.add_column("Fails", justify="right", style="red")
        table.add_column("Rate", justify="right")

        for name, counts in stats.checks.items():
            marker = "[green]✓[/green]" if counts.fails == 0 else "[red]✗[/red]"
            table.add_row(
                f"{marker} {escape(name)}",
                str(counts.passes),
                str(counts.fails),
                f"{counts.rate * 100:.2f}%",
            )
        return table

    def metrics_table(self) -> Table:
        stats = self.report.stats
        table = Table(title="HTTP Metrics", box=box.ROUNDED)
        table.add_column("Metric", style="cyan")
        table.add_column("Value", justify="right")

        table.add_row("http_reqs", f"{stats.total_count} ({stats.requests_per_second:.2f}/s)")
        table.add_row(
            "http_req_failed",
            f"{stats.failure_rate * 100:.2f}% ({stats.failed_count} of {stats.total_count})",
        )
        table.add_row("network errors", str(stats.network_error_count))
        table.add_row(
            "http_req_duration (ms)",
            f"avg={_ms(stats.latency_avg)} min={_ms(stats.latency_min)} med={_ms(stats.latency_med)} "
            f"max={_ms(stats.latency_max)}",
        )
        table.add_row(
            "percentiles (ms)",
            "  ".join(f"p({p:g})={_ms(v)}" for p, v in stats.latency_percentiles.items()),
        )
        table.add_row("vus_max", str(self.report.vus_max))
        table.add_row("duration", f"{self.report.duration_s:.1f}s")
        if stats.status_counts:
            table.add_row(
                "status codes",
                ", ".join(f"{code}: {count}" for code, count in sorted(stats.status_counts.items())),
            )
        return table

    def thresholds_table(self) -> Table:
        table = Table(title="Thresholds", box=box.ROUNDED)
        table.add_column("Threshold", style="cyan")
        table.add_column("Observed", justify="right")
        table.add_column("Result", justify="center")

        for name, result in self.report.thresholds.items():
            status = "[green]PASS[/green]" if result.passed else "[red]FAIL[/red]"
            table.add_row(escape(name), f"{result.observed:.4f}", status)
        return table

    def render(self, console: Optional[Console] = None) -> None:
        """Print the summary."""
        console = console or Console()
        report = self.report

        console.print(self.checks_table())
        console.print(self.metrics_table())
        if report.thresholds:
            console.print(self.thresholds_table())

        if report.aborted:
            console.print(f"[yellow]⚠[/yellow]  Run ended early: {escape(str(report.abort_reason))}")

        if report.passed:
            console.print(Panel(
                "[green]✓ All thresholds passed[/green]",
                title="[bold green]PASS[/bold green]",
                box=box.ROUNDED,
                border_style="green",
            ))
        else:
            failed = "\n".join(f"  - {escape(r.rule.name)} (observed {r.observed:.4f})" for r in report.failed_thresholds)
            if report.stats.total_count == 0:
                failed = f"  - no requests were recorded\n{failed}".rstrip()
            console.print(Panel(
                f"[red]✗ Thresholds failed:[/red]\n\n{failed}",
                title="[bold red]FAIL[/bold red]",
                box=box.ROUNDED,
                border_style="red",
            ))

    def to_dict(self) -> Dict[str, Any]:
        report = self.report
        stats = report.stats
        return {
            "schema_version": SCHEMA_VERSION,
            "generated_at": datetime.now().isoformat(),
            "plan": report.plan_name,
            "target_url": report.target_url,
            "passed": report.passed,
            "aborted": report.aborted,
            "abort_reason": report.abort_reason,
            "duration_s": report.duration_s,
            "vus_max": report.vus_max,
            "results": {
                "total": stats.total_count,
                "failed": stats.failed_count,
                "network_errors": stats.network_error_count,
                "failure_rate": stats.failure_rate,
                "requests_per_second": stats.requests_per_second,
                "status_counts": {str(code): count for code, count in stats.status_counts.items()},
                "latency_ms": {
                    "avg": stats.latency_avg,
                    "min": stats.latency_min,
                    "med": stats.latency_med,
                    "max": stats.latency_max,
                    **{f"p{p:g}": v for p, v in stats.latency_percentiles.items()},
                },
            },
            "checks": {
                name: {"passes": counts.passes, "fails": counts.fails, "rate": counts.rate}
                for name, counts in stats.checks.items()
            },
            "thresholds": {
                name: {
                    "metric": result.rule.metric,
                    "expression": result.rule.expression,
                    "observed": result.observed,
                    "passed": result.passed,
                }
                for name, result in report.thresholds.items()
            },
        }

    def write_json(self, path: str) -> Path:
        """
        Write the JSON summary.

        Returns:
            The written path.
        """
        report_path = Path(path)
        report_path.parent.mkdir(parents=True, exist_ok=True)
        report_path.write_text(json.dumps(self.to_dict(), indent=2), encoding="utf-8")
        logger.info(f"Wrote JSON report to {report_path}")
        return report_path
