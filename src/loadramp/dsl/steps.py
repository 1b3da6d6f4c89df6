"""Step types making up one iteration of a virtual user.

A scenario's iteration is a plain list of step objects, interpreted in order
by :class:`~loadramp.engine.virtual_user.VirtualUser`::

    steps = [
        Request("GET", "/health", name="health"),
        Check.status("health check status is 200", 200),
        Check.duration_below("health check response time < 500ms", 500),
        Emit.rate("errors", lambda r: r.status != 200),
        Pause(1),
    ]
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from loadramp._internal.errors import ScenarioError
from loadramp.metrics.models import MetricKind

if TYPE_CHECKING:
    from collections.abc import Callable

    from loadramp._internal.types import Headers, PauseRange
    from loadramp.dsl.http_client import Response


@dataclass(frozen=True)
class IterationContext:
    """Read-only view handed to callable step fields.

    Attributes:
        user_id: Id of the virtual user running the iteration.
        iteration: Zero-based iteration number of that user.
        setup_data: Value returned by the scenario setup hook.
        user_data: Mutable per-user dict that survives across iterations.
    """

    user_id: int
    iteration: int
    setup_data: Any
    user_data: dict[str, Any]


@dataclass(frozen=True)
class Request:
    """Send an HTTP request; its response becomes the "last response".

    Attributes:
        method: HTTP method.
        path: Path relative to the base URL (or absolute URL), or a callable
            building it from the :class:`IterationContext`.
        headers: Extra headers, or a callable returning them.
        body: Raw request body.
        json: JSON-serialisable request body.
        name: Label used in logs; defaults to ``"METHOD path"``.
        timeout: Per-request timeout override in seconds.
        expected_statuses: Statuses counted as success for ``http_req_failed``.
            Defaults to 200-399.
    """

    method: str
    path: str | Callable[[IterationContext], str]
    headers: Headers | Callable[[IterationContext], Headers] | None = None
    body: str | bytes | None = None
    json: Any = None
    name: str | None = None
    timeout: float | None = None
    expected_statuses: frozenset[int] | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "method", self.method.upper())
        if self.timeout is not None and self.timeout <= 0:
            msg = f"Request timeout must be positive, got {self.timeout}"
            raise ScenarioError(msg)
        if self.expected_statuses is not None:
            object.__setattr__(self, "expected_statuses", frozenset(self.expected_statuses))

    @property
    def label(self) -> str:
        if self.name:
            return self.name
        path = self.path if isinstance(self.path, str) else "<dynamic>"
        return f"{self.method} {path}"

    def is_failure(self, response: Response) -> bool:
        """Whether *response* counts towards ``http_req_failed``."""
        if response.error is not None:
            return True
        if self.expected_statuses is not None:
            return response.status not in self.expected_statuses
        return not 200 <= response.status < 400

    def resolve_path(self, ctx: IterationContext) -> str:
        return self.path if isinstance(self.path, str) else self.path(ctx)

    def resolve_headers(self, ctx: IterationContext) -> Headers | None:
        if self.headers is None or isinstance(self.headers, dict):
            return self.headers
        return self.headers(ctx)


@dataclass(frozen=True)
class Check:
    """Evaluate a named predicate against the last response.

    Every evaluation adds one observation to the ``checks`` rate and to the
    pass/fail tally of ``name``. A predicate that raises counts as failed.
    """

    name: str
    predicate: Callable[[Response], bool]

    @classmethod
    def status(cls, name: str, *statuses: int) -> Check:
        """Pass when the status is one of *statuses*."""
        allowed = frozenset(statuses)
        return cls(name, lambda r: r.status in allowed)

    @classmethod
    def duration_below(cls, name: str, limit_ms: float) -> Check:
        """Pass when a response arrived in under *limit_ms* milliseconds."""
        return cls(name, lambda r: r.error is None and r.duration_ms < limit_ms)


@dataclass(frozen=True)
class Emit:
    """Add a value to a custom metric.

    ``value`` may be a constant or a callable of the last response. Rate
    values are interpreted as booleans.
    """

    metric: str
    kind: MetricKind
    value: float | bool | Callable[[Response], float | bool] = 1.0

    @classmethod
    def counter(cls, metric: str, value: float | Callable[[Response], float] = 1.0) -> Emit:
        return cls(metric, MetricKind.COUNTER, value)

    @classmethod
    def rate(cls, metric: str, value: bool | Callable[[Response], bool]) -> Emit:
        return cls(metric, MetricKind.RATE, value)

    @classmethod
    def trend(cls, metric: str, value: float | Callable[[Response], float]) -> Emit:
        return cls(metric, MetricKind.TREND, value)

    @classmethod
    def duration(cls, metric: str) -> Emit:
        """Record the last response's duration (ms) in a trend."""
        return cls(metric, MetricKind.TREND, lambda r: r.duration_ms)

    def resolve(self, response: Response) -> float:
        raw = self.value(response) if callable(self.value) else self.value
        return float(bool(raw)) if self.kind is MetricKind.RATE else float(raw)


@dataclass(frozen=True)
class Pause:
    """Sleep for a fixed duration or a uniformly random one in ``(min, max)``."""

    duration: float | PauseRange
    _bounds: PauseRange = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        if isinstance(self.duration, tuple):
            low, high = self.duration
        else:
            low = high = self.duration
        if low < 0 or high < low:
            msg = f"Invalid pause duration: {self.duration!r}"
            raise ScenarioError(msg)
        object.__setattr__(self, "_bounds", (float(low), float(high)))

    @property
    def bounds(self) -> PauseRange:
        return self._bounds


Step = Request | Check | Emit | Pause

STEP_TYPES = (Request, Check, Emit, Pause)


def custom_metric_kinds(steps: list[Step]) -> dict[str, MetricKind]:
    """Collect the custom metrics emitted by *steps*.

    Raises:
        ScenarioError: If a metric name is emitted with two different kinds.
    """
    kinds: dict[str, MetricKind] = {}
    for step in steps:
        if not isinstance(step, Emit):
            continue
        existing = kinds.get(step.metric)
        if existing is not None and existing is not step.kind:
            msg = (
                f"Metric {step.metric!r} is emitted both as a {existing.value} "
                f"and as a {step.kind.value}"
            )
            raise ScenarioError(msg)
        kinds[step.metric] = step.kind
    return kinds


def describe_step(step: Step) -> str:
    """Short label for logs."""
    if isinstance(step, Request):
        return step.label
    if isinstance(step, Check):
        return f"check {step.name!r}"
    if isinstance(step, Emit):
        return f"emit {step.kind.value} {step.metric!r}"
    return f"pause {step.duration!r}"

