"""Basic GET scenario — the simplest possible LoadRamp scenario.

A single endpoint, one ramp up and down, no hooks. Run it with:

    loadramp run examples/basic_get.py --base-url http://localhost:8080
"""

from __future__ import annotations

from loadramp import Pause, Request, ScenarioDefinition, Stage

basic_get = ScenarioDefinition(
    name="Basic GET",
    steps=[Request("GET", "/"), Pause((0.5, 1.5))],
    stages=[Stage.of("30s", 10), Stage.of("30s", 0)],
    thresholds={"http_req_failed": ["rate<0.01"]},
)
