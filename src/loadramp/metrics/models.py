"""Metric types and the immutable summaries produced from them.

Three metric kinds exist:

- :class:`Counter`: a monotonically increasing total.
- :class:`Rate`: the fraction of boolean observations that were true.
- :class:`Trend`: a distribution (count/sum/min/max exactly, percentiles via
  an HDR histogram).

Metric objects are mutable and are only touched by the
:class:`~loadramp.metrics.collector.MetricsCollector`, which serialises writes.
Everything handed out of the collector is a frozen summary.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import Enum

from loadramp.metrics.histogram import HdrHistogramWrapper

__all__ = [
    "CheckStats",
    "Counter",
    "IntervalSnapshot",
    "Metric",
    "MetricKind",
    "MetricSummary",
    "Rate",
    "Sample",
    "Trend",
]

# Percentiles listed for every trend in run summaries.
SUMMARY_PERCENTILES = (90.0, 95.0)


class MetricKind(str, Enum):
    """The kind of a metric; fixed at creation time."""

    COUNTER = "counter"
    RATE = "rate"
    TREND = "trend"


@dataclass(frozen=True, slots=True)
class Sample:
    """A single observation emitted by a virtual user.

    Attributes:
        metric: Name of the metric the sample belongs to.
        kind: Kind of that metric.
        value: Observed value. Rate samples use 1.0 for true and 0.0 for false.
        check: Name of the check that produced the sample, if any.
    """

    metric: str
    kind: MetricKind
    value: float
    check: str | None = None


class Counter:
    """Monotonic counter."""

    kind = MetricKind.COUNTER

    def __init__(self, name: str) -> None:
        self.name = name
        self.total = 0.0
        self.samples = 0

    def add(self, n: float = 1.0) -> None:
        """Increase the total by *n*.

        Raises:
            ValueError: If *n* is negative.
        """
        if n < 0:
            msg = f"Counter {self.name!r} cannot be decreased (got {n})"
            raise ValueError(msg)
        self.total += n
        self.samples += 1

    def value(self) -> float:
        return self.total

    def summary(self, elapsed_seconds: float) -> MetricSummary:
        per_second = self.total / elapsed_seconds if elapsed_seconds > 0 else 0.0
        return MetricSummary(
            name=self.name,
            kind=self.kind,
            samples=self.samples,
            values={"count": self.total, "rate": per_second},
        )


class Rate:
    """Fraction of true observations."""

    kind = MetricKind.RATE

    def __init__(self, name: str) -> None:
        self.name = name
        self.successes = 0
        self.total = 0

    @property
    def samples(self) -> int:
        return self.total

    def add(self, observation: bool) -> None:  # noqa: FBT001
        """Record one boolean observation."""
        self.total += 1
        if observation:
            self.successes += 1

    def value(self) -> float:
        """Return ``successes / total``, or 0.0 when nothing was observed."""
        if self.total == 0:
            return 0.0
        return self.successes / self.total

    def summary(self, elapsed_seconds: float) -> MetricSummary:  # noqa: ARG002
        return MetricSummary(
            name=self.name,
            kind=self.kind,
            samples=self.total,
            values={
                "rate": self.value(),
                "passes": float(self.successes),
                "fails": float(self.total - self.successes),
            },
        )


class Trend:
    """Streaming distribution statistics.

    Count, sum, min and max are exact. Percentiles come from an HDR histogram
    with three significant digits, so any percentile is within 0.1 % of the
    recorded value it reports.
    """

    kind = MetricKind.TREND

    def __init__(self, name: str) -> None:
        self.name = name
        self.count = 0
        self.sum = 0.0
        self.min = math.inf
        self.max = -math.inf
        self._histogram = HdrHistogramWrapper()

    @property
    def samples(self) -> int:
        return self.count

    def add(self, value: float) -> None:
        """Record one value.

        Raises:
            ValueError: If *value* is NaN or infinite.
        """
        if not math.isfinite(value):
            msg = f"Trend {self.name!r} only accepts finite values (got {value})"
            raise ValueError(msg)
        self.count += 1
        self.sum += value
        self.min = min(self.min, value)
        self.max = max(self.max, value)
        self._histogram.record(value)

    def mean(self) -> float:
        return self.sum / self.count if self.count else 0.0

    def percentile(self, p: float) -> float:
        """Return the estimated value at percentile *p* (0-100).

        Raises:
            ValueError: If *p* is outside 0-100.
        """
        if not 0.0 <= p <= 100.0:
            msg = f"Percentile must be between 0 and 100, got {p}"
            raise ValueError(msg)
        if self.count == 0:
            return 0.0
        # The histogram clamps, so bound the estimate by the exact extremes.
        return min(max(self._histogram.get_percentile(p), self.min), self.max)

    def value(self) -> float:
        return self.mean()

    def summary(self, elapsed_seconds: float) -> MetricSummary:  # noqa: ARG002
        values = {
            "avg": self.mean(),
            "min": self.min if self.count else 0.0,
            "med": self.percentile(50.0),
            "max": self.max if self.count else 0.0,
        }
        for p in SUMMARY_PERCENTILES:
            values[f"p({p:g})"] = self.percentile(p)
        return MetricSummary(name=self.name, kind=self.kind, samples=self.count, values=values)


Metric = Counter | Rate | Trend


@dataclass(frozen=True)
class MetricSummary:
    """Final aggregate of one metric.

    Attributes:
        name: Metric name.
        kind: Metric kind.
        samples: Number of observations.
        values: Derived values keyed by aggregation name (``count``, ``rate``,
            ``avg``, ``min``, ``med``, ``max``, ``p(95)`` ...).
    """

    name: str
    kind: MetricKind
    samples: int
    values: dict[str, float] = field(default_factory=dict)


@dataclass
class CheckStats:
    """Pass/fail tally for one named check."""

    name: str
    passes: int = 0
    fails: int = 0

    @property
    def total(self) -> int:
        return self.passes + self.fails

    @property
    def pass_rate(self) -> float:
        return self.passes / self.total if self.total else 0.0


@dataclass
class IntervalSnapshot:
    """Statistics for one scheduler tick, emitted on every flush.

    Attributes:
        elapsed_seconds: Seconds since the run started.
        active_users: Virtual users running at flush time.
        target_users: Concurrency requested by the scheduler for this tick.
        requests: HTTP requests completed in the interval.
        requests_per_second: ``requests`` divided by the interval length.
        latency_p50: Interval median request duration (ms).
        latency_p95: Interval 95th percentile request duration (ms).
        latency_p99: Interval 99th percentile request duration (ms).
        failed_requests: Requests counted as failed in the interval.
        error_rate: ``failed_requests / requests`` (0.0 when idle).
        iterations: Iterations completed in the interval.
    """

    elapsed_seconds: float
    active_users: int
    target_users: int = 0
    requests: int = 0
    requests_per_second: float = 0.0
    latency_p50: float = 0.0
    latency_p95: float = 0.0
    latency_p99: float = 0.0
    failed_requests: int = 0
    error_rate: float = 0.0
    iterations: int = 0
