"""``loadramp init`` — scaffold a new scenario file from a template."""

from __future__ import annotations

from pathlib import Path
from string import Template

import typer
from rich.console import Console

console = Console(stderr=True)

_SCENARIO_TEMPLATE = Template('''\
"""Load test scenario: $name.

Run with:
    loadramp run $filename --base-url http://localhost:4000
"""

from __future__ import annotations

from loadramp import Check, Pause, Request, scenario, setup


@scenario(
    name="$name",
    stages=[("30s", 5), ("1m", 5), ("30s", 0)],
    thresholds={
        "http_req_duration": ["p(95)<500"],
        "http_req_failed": ["rate<0.1"],
    },
)
class $class_name:
    """$name load test."""

    steps = [
        Request("GET", "/", name="root"),
        Check.status("root status is 200", 200),
        Pause((0.5, 1.5)),
    ]

    @setup
    async def check_target(self, client):
        """Abort the run early if the target is down."""
        response = await client.get("/")
        if response.error is not None:
            raise RuntimeError(f"target unreachable: {response.error}")
''')


def init_cmd(
    name: str = typer.Argument(
        "my_scenario",
        help="Name for the scenario (used as filename and class name).",
    ),
) -> None:
    """Scaffold a new scenario file in the current directory."""
    # Sanitise the name for use as a Python identifier
    safe_name = "".join(c if c.isalnum() or c == "_" else "_" for c in name).lower()
    if not safe_name or safe_name[0].isdigit():
        safe_name = "scenario_" + safe_name

    filename = f"{safe_name}.py"
    class_name = "".join(word.capitalize() for word in safe_name.split("_")) + "Scenario"
    display_name = name.replace("_", " ").replace("-", " ").title()

    target = Path.cwd() / filename
    if target.exists():
        console.print(f"[red]File already exists:[/red] {filename}")
        raise typer.Exit(code=1)

    content = _SCENARIO_TEMPLATE.substitute(
        name=display_name,
        filename=filename,
        class_name=class_name,
    )
    target.write_text(content)
    console.print(f"[green]Created scenario:[/green] {filename}")
