"""``loadramp run`` — execute a scenario with live terminal output."""

from __future__ import annotations

import asyncio
import dataclasses
import logging
from pathlib import Path
from typing import TYPE_CHECKING

import typer
from rich.console import Console
from rich.live import Live
from rich.panel import Panel
from rich.table import Table

from loadramp._internal.config import load_config
from loadramp._internal.durations import format_duration
from loadramp._internal.errors import ConfigError, LoadRampError
from loadramp._internal.logging import setup_logging
from loadramp.cli.report import export_summary, print_summary
from loadramp.dsl.loader import load_scenario
from loadramp.dsl.stages import Stage, describe_stages
from loadramp.engine.orchestrator import Orchestrator
from loadramp.metrics.thresholds import parse_threshold

if TYPE_CHECKING:
    from loadramp._internal.config import LoadRampConfig
    from loadramp.dsl.scenario import ScenarioDefinition
    from loadramp.engine.orchestrator import RunReport
    from loadramp.engine.scheduler import StageScheduler
    from loadramp.metrics.models import IntervalSnapshot
    from loadramp.metrics.thresholds import Threshold

console = Console(stderr=True)


# ---------------------------------------------------------------------------
# Option parsing helpers
# ---------------------------------------------------------------------------


def _parse_cli_thresholds(values: list[str]) -> list[Threshold]:
    """Parse repeated ``--threshold METRIC=EXPR`` options.

    Raises:
        ConfigError: If an option is malformed.
    """
    thresholds: list[Threshold] = []
    for value in values:
        metric, sep, expression = value.partition("=")
        if not sep or not metric.strip() or not expression.strip():
            msg = (
                f"Invalid --threshold {value!r} "
                "(expected METRIC=EXPR, e.g. 'http_req_failed=rate<0.1')"
            )
            raise ConfigError(msg)
        thresholds.append(parse_threshold(metric.strip(), expression.strip()))
    return thresholds


def _apply_overrides(
    scenario: ScenarioDefinition,
    *,
    base_url: str | None,
    stages: list[str],
    thresholds: list[str],
) -> ScenarioDefinition:
    """Return *scenario* with command-line overrides applied.

    ``--stage`` replaces the scenario's stages; ``--threshold`` adds to its
    thresholds. The result is validated again.
    """
    changes: dict[str, object] = {}
    if base_url:
        changes["base_url"] = base_url
    if stages:
        changes["stages"] = [Stage.parse(s) for s in stages]
    if thresholds:
        changes["thresholds"] = [*scenario.thresholds, *_parse_cli_thresholds(thresholds)]
    if not changes:
        return scenario
    return dataclasses.replace(scenario, **changes)  # type: ignore[arg-type]


def _build_config(tick_interval: float | None, graceful_stop: float | None) -> LoadRampConfig:
    config = load_config()
    overrides: dict[str, float] = {}
    if tick_interval is not None:
        overrides["tick_interval"] = tick_interval
    if graceful_stop is not None:
        overrides["graceful_stop"] = graceful_stop
    return dataclasses.replace(config, **overrides) if overrides else config


# ---------------------------------------------------------------------------
# Rich live display
# ---------------------------------------------------------------------------


def _make_live_table(snapshot: IntervalSnapshot | None, scheduler: StageScheduler) -> Table:
    """Build a Rich table summarising the latest interval.

    Args:
        snapshot: Latest interval snapshot, or None if no tick has run yet.
        scheduler: The run's stage scheduler, for the planned length and
            the current stage.

    Returns:
        Formatted Rich Table.
    """
    table = Table(show_header=True, header_style="bold cyan", expand=True)
    table.add_column("Metric", style="bold")
    table.add_column("Value", justify="right")

    total = format_duration(scheduler.total_duration)
    stage_count = len(scheduler.stages)
    if snapshot is None:
        table.add_row("Elapsed", f"0s / {total}")
        table.add_row("Stage", f"1/{stage_count}")
        table.add_row("Status", "Starting...")
        return table

    table.add_row(
        "Elapsed",
        f"{snapshot.elapsed_seconds:.0f}s / {total}",
    )
    stage = scheduler.stage_index_at(snapshot.elapsed_seconds) + 1
    table.add_row("Stage", f"{stage}/{stage_count}")
    table.add_row("VUs", f"{snapshot.active_users} (target {snapshot.target_users})")
    table.add_row("Requests/sec", f"{snapshot.requests_per_second:.1f}")
    table.add_row("Iterations", str(snapshot.iterations))
    table.add_row("p50 Latency", f"{snapshot.latency_p50:.1f}ms")
    table.add_row("p95 Latency", f"{snapshot.latency_p95:.1f}ms")
    table.add_row("p99 Latency", f"{snapshot.latency_p99:.1f}ms")
    table.add_row("Failed", str(snapshot.failed_requests))
    table.add_row("Error Rate", f"{snapshot.error_rate * 100:.2f}%")

    return table


def _execute(orchestrator: Orchestrator, *, quiet: bool) -> RunReport:
    if quiet:
        return asyncio.run(orchestrator.run())

    with Live(
        _make_live_table(None, orchestrator.scheduler),
        console=console,
        refresh_per_second=2,
        transient=True,
    ) as live:

        def _on_snapshot(snapshot: IntervalSnapshot) -> None:
            live.update(_make_live_table(snapshot, orchestrator.scheduler))

        orchestrator._on_snapshot = _on_snapshot
        return asyncio.run(orchestrator.run())


# ---------------------------------------------------------------------------
# Command
# ---------------------------------------------------------------------------


def run_cmd(
    scenario_file: Path = typer.Argument(
        ...,
        help="Path to the scenario .py file.",
        exists=True,
        file_okay=True,
        dir_okay=False,
        readable=True,
    ),
    scenario_name: str | None = typer.Option(
        None,
        "--scenario",
        "-s",
        help="Scenario name to run when the file defines several.",
    ),
    base_url: str | None = typer.Option(
        None,
        "--base-url",
        "-b",
        help="Target base URL (overrides the scenario and BASE_URL).",
    ),
    stage: list[str] = typer.Option(
        [],
        "--stage",
        help="Replace the scenario's stages; repeatable, e.g. --stage 30s:10 --stage 1m:0.",
    ),
    threshold: list[str] = typer.Option(
        [],
        "--threshold",
        "-t",
        help="Add a threshold; repeatable, e.g. -t 'http_req_failed=rate<0.1'.",
    ),
    tick_interval: float | None = typer.Option(
        None,
        "--tick-interval",
        help="Seconds between scheduler ticks.",
        min=0.01,
    ),
    graceful_stop: float | None = typer.Option(
        None,
        "--graceful-stop",
        help="Seconds virtual users get to finish before being cancelled.",
        min=0.0,
    ),
    summary_export: Path | None = typer.Option(
        None,
        "--summary-export",
        help="Write the end-of-run summary as JSON to this path.",
    ),
    quiet: bool = typer.Option(
        False,
        "--quiet",
        "-q",
        help="No live progress; only warnings and the final summary.",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Enable verbose (DEBUG) logging.",
    ),
    json_logs: bool = typer.Option(
        False,
        "--json-logs",
        help="Emit log records as JSON lines on stderr.",
    ),
) -> None:
    """Execute a scenario and exit with its verdict."""
    if verbose:
        log_level = logging.DEBUG
    elif quiet:
        log_level = logging.WARNING
    else:
        log_level = logging.INFO
    setup_logging(log_level, json_format=json_logs)

    try:
        config = _build_config(tick_interval, graceful_stop)
        scenario = _apply_overrides(
            load_scenario(scenario_file, scenario_name),
            base_url=base_url,
            stages=stage,
            thresholds=threshold,
        )
        orchestrator = Orchestrator(scenario, config=config)
    except LoadRampError as exc:
        console.print(f"[red]Error:[/red] {exc}")
        raise typer.Exit(code=1) from exc

    if not quiet:
        console.print(
            Panel(
                f"[bold]Scenario:[/bold] {scenario.name} ({scenario_file.name})\n"
                f"[bold]Target:[/bold]   {orchestrator.base_url}\n"
                f"[bold]Stages:[/bold]   {describe_stages(scenario.stages)}\n"
                f"[bold]Max VUs:[/bold]  {orchestrator.scheduler.max_concurrency}",
                title="LoadRamp",
                border_style="cyan",
            )
        )

    try:
        report = _execute(orchestrator, quiet=quiet)
    except LoadRampError as exc:
        console.print(f"[red]Run failed:[/red] {exc}")
        raise typer.Exit(code=1) from exc

    print_summary(report)

    if summary_export is not None:
        export_summary(report, summary_export)
        console.print(f"[green]Summary written to[/green] {summary_export}")

    raise typer.Exit(code=report.exit_code)
