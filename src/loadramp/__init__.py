"""LoadRamp — staged HTTP load tests as Python code."""

from __future__ import annotations

from loadramp.dsl.decorators import scenario, setup, teardown
from loadramp.dsl.http_client import HttpClient, Response
from loadramp.dsl.scenario import Hooks, ScenarioDefinition
from loadramp.dsl.stages import Stage
from loadramp.dsl.steps import Check, Emit, IterationContext, Pause, Request
from loadramp.engine.orchestrator import Orchestrator, RunReport, RunVerdict
from loadramp.metrics.models import MetricKind

__version__ = "0.1.0"

__all__ = [
    "Check",
    "Emit",
    "Hooks",
    "HttpClient",
    "IterationContext",
    "MetricKind",
    "Orchestrator",
    "Pause",
    "Request",
    "Response",
    "RunReport",
    "RunVerdict",
    "ScenarioDefinition",
    "Stage",
    "scenario",
    "setup",
    "teardown",
]
