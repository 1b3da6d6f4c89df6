"""Scenarios used by the E2E CLI tests.

The base_url is a placeholder; tests point the run at the live test server
with ``--base-url``.
"""

from __future__ import annotations

from loadramp import Check, Pause, Request, ScenarioDefinition, scenario

healthy = ScenarioDefinition(
    name="E2E Health",
    base_url="http://127.0.0.1:9999",
    stages=[("1s", 2), ("0.5s", 0)],
    thresholds={
        "http_req_duration": ["p(95)<2000"],
        "http_req_failed": ["rate<0.1"],
    },
    steps=[
        Request("GET", "/health"),
        Check.status("status is 200", 200),
        Pause(0.05),
    ],
)


@scenario(
    name="E2E Flaky",
    base_url="http://127.0.0.1:9999",
    stages=[("1.5s", 3), ("0.5s", 0)],
    thresholds={"http_req_failed": ["rate<0.1"]},
)
class Flaky:
    """Every fifth request to /flaky fails."""

    steps = [Request("GET", "/flaky"), Pause(0.02)]
