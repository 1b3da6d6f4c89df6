"""End-to-end tests for the LoadRamp CLI."""

from __future__ import annotations

import io
import json
from pathlib import Path
from typing import TYPE_CHECKING

import pytest
from rich.console import Console
from typer.testing import CliRunner

from loadramp import __version__
from loadramp.cli.app import app
from loadramp.cli.run import _make_live_table
from loadramp.dsl.loader import load_scenario
from loadramp.dsl.stages import Stage
from loadramp.engine.scheduler import StageScheduler
from loadramp.metrics.models import IntervalSnapshot

if TYPE_CHECKING:
    from tests.conftest import ServerInfo

runner = CliRunner()

SCENARIOS = Path(__file__).parent / "scenarios" / "example_scenario.py"

# Keeps runs short: tick often, give users one second to finish.
FAST = ["--tick-interval", "0.1", "--graceful-stop", "1"]


def _run(*args: str):
    return runner.invoke(app, ["run", *args, *FAST])


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def setup_failure_scenario(tmp_path: Path) -> Path:
    """Scenario whose setup hook always raises."""
    code = '''\
from __future__ import annotations

from loadramp import Request, scenario, setup


@scenario(name="Broken Setup", stages=[("1s", 1)])
class BrokenSetup:
    steps = [Request("GET", "/health")]

    @setup
    async def prepare(self, client):
        resp = await client.get("/status?code=503")
        if resp.status != 200:
            msg = f"backend unhealthy: {resp.status}"
            raise RuntimeError(msg)
'''
    path = tmp_path / "broken_setup.py"
    path.write_text(code)
    return path


# ---------------------------------------------------------------------------
# Tests: version and help
# ---------------------------------------------------------------------------


def test_version_flag():
    """--version prints version and exits 0."""
    result = runner.invoke(app, ["--version"])
    assert result.exit_code == 0
    assert __version__ in result.output


def test_version_short_flag():
    """-V also prints version."""
    result = runner.invoke(app, ["-V"])
    assert result.exit_code == 0
    assert __version__ in result.output


def test_help_output():
    """--help shows usage information."""
    result = runner.invoke(app, ["--help"])
    assert result.exit_code == 0
    assert "loadramp" in result.output.lower()


def test_run_help():
    """loadramp run --help shows run options."""
    result = runner.invoke(app, ["run", "--help"])
    assert result.exit_code == 0
    assert "--stage" in result.output
    assert "--threshold" in result.output
    assert "--summary-export" in result.output


# ---------------------------------------------------------------------------
# Tests: loadramp init
# ---------------------------------------------------------------------------


def test_init_creates_file(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    """loadramp init creates a scenario file in cwd."""
    monkeypatch.chdir(tmp_path)
    result = runner.invoke(app, ["init", "my_test"])
    assert result.exit_code == 0
    generated = tmp_path / "my_test.py"
    assert generated.exists()
    content = generated.read_text()
    assert "class MyTestScenario" in content
    assert "@scenario" in content
    assert "@setup" in content


def test_init_default_name(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    """loadramp init with no name uses 'my_scenario'."""
    monkeypatch.chdir(tmp_path)
    result = runner.invoke(app, ["init"])
    assert result.exit_code == 0
    assert (tmp_path / "my_scenario.py").exists()


def test_init_rejects_existing_file(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    """loadramp init refuses to overwrite an existing file."""
    monkeypatch.chdir(tmp_path)
    (tmp_path / "existing.py").write_text("# placeholder")
    result = runner.invoke(app, ["init", "existing"])
    assert result.exit_code == 1
    assert (tmp_path / "existing.py").read_text() == "# placeholder"


def test_init_output_is_loadable(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    """The generated file is a valid scenario module."""
    monkeypatch.chdir(tmp_path)
    runner.invoke(app, ["init", "checkout-flow"])
    definition = load_scenario(tmp_path / "checkout_flow.py")
    assert definition.name == "Checkout Flow"
    assert definition.max_users == 5


# ---------------------------------------------------------------------------
# Tests: loadramp run
# ---------------------------------------------------------------------------


def test_run_passing_scenario(sync_server: ServerInfo):
    """A run whose thresholds hold exits 0 and prints the summary."""
    result = _run(str(SCENARIOS), "--base-url", sync_server.url, "--quiet")
    assert result.exit_code == 0, result.output
    assert "http_req_duration" in result.output
    assert "PASSED" in result.output
    assert sync_server.hits("health") > 0


def test_run_with_live_display(sync_server: ServerInfo):
    """Without --quiet the run still completes with the live table."""
    result = _run(str(SCENARIOS), "--base-url", sync_server.url)
    assert result.exit_code == 0, result.output


def test_run_failing_thresholds_exit_99(sync_server: ServerInfo):
    """A crossed threshold exits with code 99."""
    result = _run(
        str(SCENARIOS), "--scenario", "E2E Flaky", "--base-url", sync_server.url, "--quiet"
    )
    assert result.exit_code == 99, result.output
    assert sync_server.hits("flaky") > 0


def test_cli_threshold_is_added(sync_server: ServerInfo):
    """--threshold adds a rule on top of the scenario's own."""
    result = _run(
        str(SCENARIOS),
        "--base-url",
        sync_server.url,
        "--threshold",
        "http_reqs=count>1000000",
        "--quiet",
    )
    assert result.exit_code == 99, result.output


def test_cli_stages_replace_scenario_stages(sync_server: ServerInfo, tmp_path: Path):
    """--stage replaces the scenario's stages."""
    export = tmp_path / "summary.json"
    result = _run(
        str(SCENARIOS),
        "--base-url",
        sync_server.url,
        "--stage",
        "0.5s:1",
        "--stage",
        "0.3s:0",
        "--summary-export",
        str(export),
        "--quiet",
    )
    assert result.exit_code == 0, result.output
    summary = json.loads(export.read_text())
    assert summary["stages"] == "500ms -> 1, 300ms -> 0"
    assert max(i["target"] for i in summary["intervals"]) == 1


def test_summary_export(sync_server: ServerInfo, tmp_path: Path):
    """--summary-export writes the run summary as JSON."""
    export = tmp_path / "out" / "summary.json"
    result = _run(
        str(SCENARIOS),
        "--base-url",
        sync_server.url,
        "--summary-export",
        str(export),
        "--quiet",
    )
    assert result.exit_code == 0, result.output

    summary = json.loads(export.read_text())
    assert summary["scenario"] == "E2E Health"
    assert summary["verdict"] == "passed"
    assert summary["exit_code"] == 0
    assert summary["metrics"]["http_reqs"]["values"]["count"] > 0
    assert summary["checks"]["status is 200"]["fails"] == 0
    assert {t["metric"] for t in summary["thresholds"]} == {"http_req_duration", "http_req_failed"}
    assert all(t["passed"] for t in summary["thresholds"])


def test_setup_failure_exit_107(sync_server: ServerInfo, setup_failure_scenario: Path):
    """A failing setup hook exits 107 without running any virtual users."""
    result = _run(str(setup_failure_scenario), "--base-url", sync_server.url, "--quiet")
    assert result.exit_code == 107, result.output
    assert sync_server.hits("health") == 0


def test_run_nonexistent_scenario(tmp_path: Path):
    """loadramp run with a nonexistent file exits non-zero."""
    result = _run(str(tmp_path / "does_not_exist.py"))
    assert result.exit_code != 0


def test_run_unknown_scenario_name():
    """--scenario naming nothing in the file exits 1."""
    result = _run(str(SCENARIOS), "--scenario", "Nope", "--quiet")
    assert result.exit_code == 1


@pytest.mark.parametrize(
    "args",
    [
        ["--stage", "soon:5"],
        ["--stage", "10s"],
        ["--threshold", "http_req_failed"],
        ["--threshold", "http_req_failed=rate<<0.1"],
        ["--threshold", "http_req_failed=p(95)<1"],
    ],
)
def test_invalid_overrides_exit_1(args: list[str]):
    """Malformed --stage or --threshold values exit 1 before any traffic."""
    result = _run(str(SCENARIOS), *args, "--quiet")
    assert result.exit_code == 1


# ---------------------------------------------------------------------------
# Tests: live table
# ---------------------------------------------------------------------------


def _render(table) -> str:
    buffer = io.StringIO()
    Console(file=buffer, width=80).print(table)
    return buffer.getvalue()


def test_live_table_shows_current_stage():
    """The live table tracks which stage the run is in."""
    scheduler = StageScheduler([Stage(10.0, 5), Stage(20.0, 5), Stage(5.0, 0)])
    snapshot = IntervalSnapshot(elapsed_seconds=15.0, active_users=5, target_users=5)

    output = _render(_make_live_table(snapshot, scheduler))
    assert "2/3" in output
    assert "15s / 35s" in output
    assert "5 (target 5)" in output


def test_live_table_before_first_tick():
    scheduler = StageScheduler([Stage(60.0, 10)])
    output = _render(_make_live_table(None, scheduler))
    assert "1/1" in output
    assert "Starting..." in output
