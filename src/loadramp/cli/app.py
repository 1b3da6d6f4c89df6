"""Main Typer application — entry point for the ``loadramp`` CLI."""

from __future__ import annotations

import typer

from loadramp import __version__
from loadramp.cli.init_cmd import init_cmd
from loadramp.cli.run import run_cmd

app = typer.Typer(
    name="loadramp",
    help="Staged virtual-user ramps against an HTTP target, with k6-style thresholds.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

app.command("run", help="Run a load test scenario.")(run_cmd)
app.command("init", help="Scaffold a new scenario file.")(init_cmd)


def _version_callback(value: bool) -> None:
    """Print version and exit.

    Args:
        value: True if --version was passed.
    """
    if value:
        typer.echo(f"loadramp {__version__}")
        raise typer.Exit


@app.callback()
def main(
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
) -> None:
    """LoadRamp: staged HTTP load tests as Python code."""
