"""End-of-run summary: rich tables on stdout and JSON export."""

from __future__ import annotations

import json
from pathlib import Path
from typing import TYPE_CHECKING, Any

from rich.console import Console
from rich.table import Table

from loadramp.engine.orchestrator import RunVerdict
from loadramp.metrics.models import MetricKind

if TYPE_CHECKING:
    from loadramp.engine.orchestrator import RunReport
    from loadramp.metrics.models import MetricSummary

stdout_console = Console()

_VERDICT_STYLE = {
    RunVerdict.PASSED: "[bold green]PASSED[/bold green]",
    RunVerdict.THRESHOLDS_FAILED: "[bold red]THRESHOLDS FAILED[/bold red]",
    RunVerdict.SETUP_FAILED: "[bold red]SETUP FAILED[/bold red]",
}


def _format_values(summary: MetricSummary) -> str:
    values = summary.values
    if summary.kind is MetricKind.COUNTER:
        return f"{values['count']:g}  {values['rate']:.2f}/s"
    if summary.kind is MetricKind.RATE:
        return (
            f"{values['rate'] * 100:.2f}%  "
            f"✓ {int(values['passes'])}  ✗ {int(values['fails'])}"
        )
    return "  ".join(f"{key}={value:.2f}" for key, value in values.items())


def print_summary(report: RunReport, console: Console | None = None) -> None:
    """Print metric, check and threshold tables followed by the verdict.

    Args:
        report: Finished run report.
        console: Destination. Defaults to a stdout console.
    """
    out = console or stdout_console

    header = Table(title=f"{report.scenario_name}", show_header=False, expand=True)
    header.add_column("Field", style="bold")
    header.add_column("Value", justify="right")
    header.add_row("Stages", report.stages)
    header.add_row("Duration", f"{report.duration_seconds:.1f}s")
    header.add_row("Ticks", str(len(report.snapshots)))
    out.print(header)

    metrics = Table(title="Metrics", show_header=True, header_style="bold cyan", expand=True)
    metrics.add_column("Metric")
    metrics.add_column("Kind")
    metrics.add_column("Samples", justify="right")
    metrics.add_column("Values")
    for summary in report.metrics.values():
        metrics.add_row(
            summary.name,
            summary.kind.value,
            str(summary.samples),
            _format_values(summary),
        )
    out.print(metrics)

    if report.checks:
        checks = Table(title="Checks", show_header=True, header_style="bold cyan", expand=True)
        checks.add_column("Check")
        checks.add_column("Passes", justify="right")
        checks.add_column("Fails", justify="right")
        checks.add_column("Pass %", justify="right")
        for stats in report.checks:
            checks.add_row(
                stats.name,
                str(stats.passes),
                str(stats.fails),
                f"{stats.pass_rate * 100:.2f}%",
            )
        out.print(checks)

    if report.thresholds:
        thresholds = Table(
            title="Thresholds",
            show_header=True,
            header_style="bold cyan",
            expand=True,
        )
        thresholds.add_column("Metric")
        thresholds.add_column("Expression")
        thresholds.add_column("Observed", justify="right")
        thresholds.add_column("Result")
        for result in report.thresholds:
            observed = "-" if result.observed is None else f"{result.observed:.4g}"
            mark = "[green]✓ pass[/green]" if result.passed else "[red]✗ fail[/red]"
            thresholds.add_row(
                result.threshold.metric,
                result.threshold.expression,
                observed,
                f"{mark} ({result.status.value})",
            )
        out.print(thresholds)

    if report.setup_error:
        out.print(f"[red]Setup error:[/red] {report.setup_error}")
    if report.teardown_error:
        out.print(f"[yellow]Teardown error:[/yellow] {report.teardown_error}")
    if report.aborted_by:
        out.print(f"[red]Aborted by threshold:[/red] {report.aborted_by}")
    if report.interrupted:
        out.print("[yellow]Run was interrupted before the last stage finished.[/yellow]")

    out.print(f"Verdict: {_VERDICT_STYLE[report.verdict]} (exit code {report.exit_code})")


def report_to_dict(report: RunReport) -> dict[str, Any]:
    """Return a JSON-serialisable view of *report*."""
    return {
        "scenario": report.scenario_name,
        "verdict": report.verdict.name.lower(),
        "exit_code": report.exit_code,
        "started_at": report.started_at,
        "ended_at": report.ended_at,
        "duration_seconds": report.duration_seconds,
        "stages": report.stages,
        "timeline": {state.name.lower(): ts for state, ts in report.timeline.items()},
        "metrics": {
            name: {"type": s.kind.value, "samples": s.samples, "values": dict(s.values)}
            for name, s in report.metrics.items()
        },
        "checks": {
            c.name: {"passes": c.passes, "fails": c.fails} for c in report.checks
        },
        "thresholds": [
            {
                "metric": r.threshold.metric,
                "expression": r.threshold.expression,
                "status": r.status.value,
                "observed": r.observed,
                "passed": r.passed,
            }
            for r in report.thresholds
        ],
        "intervals": [
            {
                "elapsed": s.elapsed_seconds,
                "vus": s.active_users,
                "target": s.target_users,
                "requests": s.requests,
                "rps": s.requests_per_second,
                "p50": s.latency_p50,
                "p95": s.latency_p95,
                "p99": s.latency_p99,
                "failed": s.failed_requests,
                "iterations": s.iterations,
            }
            for s in report.snapshots
        ],
        "setup_error": report.setup_error,
        "teardown_error": report.teardown_error,
        "aborted_by": report.aborted_by,
        "interrupted": report.interrupted,
    }


def export_summary(report: RunReport, path: str | Path) -> Path:
    """Write :func:`report_to_dict` as indented JSON, creating parent directories."""
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(json.dumps(report_to_dict(report), indent=2) + "\n")
    return target
