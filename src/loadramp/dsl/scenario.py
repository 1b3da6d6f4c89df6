"""Scenario definition and the setup/teardown lifecycle interface."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol

from loadramp._internal.errors import ScenarioError
from loadramp.dsl.stages import build_stages
from loadramp.dsl.steps import STEP_TYPES, custom_metric_kinds
from loadramp.metrics import builtin
from loadramp.metrics.thresholds import parse_thresholds, validate_thresholds

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from loadramp.dsl.http_client import HttpClient
    from loadramp.dsl.stages import Stage
    from loadramp.dsl.steps import Step
    from loadramp.metrics.models import MetricKind, MetricSummary
    from loadramp.metrics.thresholds import Threshold

    SetupHook = Callable[[HttpClient], Awaitable[Any]]
    TeardownHook = Callable[[HttpClient, Any, Mapping[str, MetricSummary]], Awaitable[None]]


class Lifecycle(Protocol):
    """One-time hooks around a run.

    ``setup`` runs before any virtual user starts; whatever it returns is
    shared read-only with every iteration and passed to ``teardown``. If it
    raises, the run is aborted. ``teardown`` runs after all virtual users have
    stopped and receives the final metric summaries; its failures are logged
    and never change the verdict.
    """

    async def setup(self, client: HttpClient) -> Any:
        """Prepare the run and return the shared setup data."""
        ...

    async def teardown(
        self,
        client: HttpClient,
        data: Any,
        metrics: Mapping[str, MetricSummary],
    ) -> None:
        """Clean up after the run."""
        ...


@dataclass
class Hooks:
    """:class:`Lifecycle` built from two optional coroutine functions."""

    on_setup: SetupHook | None = None
    on_teardown: TeardownHook | None = None

    async def setup(self, client: HttpClient) -> Any:
        if self.on_setup is None:
            return None
        return await self.on_setup(client)

    async def teardown(
        self,
        client: HttpClient,
        data: Any,
        metrics: Mapping[str, MetricSummary],
    ) -> None:
        if self.on_teardown is not None:
            await self.on_teardown(client, data, metrics)


@dataclass
class ScenarioDefinition:
    """Complete definition of a load test.

    Attributes:
        name: Human-readable name.
        steps: The iteration script, run in order by every virtual user.
        stages: Concurrency ramp.
        thresholds: Pass/fail rules. A ``{metric: [expression, ...]}``
            mapping is parsed on construction.
        base_url: Target base URL; None means use the configured default.
        default_headers: Headers sent with every request.
        lifecycle: Setup/teardown hooks.
    """

    name: str
    steps: list[Step]
    stages: list[Stage]
    thresholds: list[Threshold] = field(default_factory=list)
    base_url: str | None = None
    default_headers: dict[str, str] = field(default_factory=dict)
    lifecycle: Lifecycle = field(default_factory=Hooks)

    def __post_init__(self) -> None:
        if not self.name:
            msg = "Scenario name must not be empty"
            raise ScenarioError(msg)

        self.steps = list(self.steps)
        if not self.steps:
            msg = f"Scenario {self.name!r} has no steps. At least one step is required."
            raise ScenarioError(msg)
        for index, step in enumerate(self.steps):
            if not isinstance(step, STEP_TYPES):
                msg = (
                    f"Scenario {self.name!r} step {index} is {type(step).__name__}, "
                    "expected Request, Check, Emit or Pause"
                )
                raise ScenarioError(msg)

        self.stages = build_stages(self.stages)

        if isinstance(self.thresholds, Mapping):
            self.thresholds = parse_thresholds(self.thresholds)
        validate_thresholds(self.thresholds, self.metric_kinds())

    def metric_kinds(self) -> dict[str, MetricKind]:
        """Kinds of every metric this scenario can produce.

        Raises:
            ScenarioError: If a custom metric reuses a built-in name with a
                different kind, or is emitted with two kinds.
        """
        kinds = dict(builtin.BUILTIN_METRICS)
        for name, kind in custom_metric_kinds(self.steps).items():
            existing = kinds.get(name)
            if existing is not None and existing is not kind:
                msg = f"Custom metric {name!r} clashes with the built-in {existing.value} metric"
                raise ScenarioError(msg)
            kinds[name] = kind
        return kinds

    @property
    def total_duration(self) -> float:
        return sum(s.duration for s in self.stages)

    @property
    def max_users(self) -> int:
        return max(s.target for s in self.stages)
