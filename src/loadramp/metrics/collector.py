"""Metric collection shared by all virtual users of a run.

Virtual users never touch the aggregates directly. Each one writes
:class:`Sample` objects into its own :class:`MetricShard` (a deque; appends
are atomic in CPython), and the orchestrator calls
:meth:`MetricsCollector.flush` once per tick to drain every shard into the
aggregates under a single lock. Writers therefore never contend with each
other, and the lock is held once per tick rather than once per request.
"""

from __future__ import annotations

import math
import threading
import time
from collections import deque
from typing import TYPE_CHECKING

import numpy as np

from loadramp._internal.errors import ScenarioError
from loadramp._internal.logging import get_logger
from loadramp.metrics import builtin
from loadramp.metrics.models import (
    CheckStats,
    Counter,
    IntervalSnapshot,
    MetricKind,
    Rate,
    Sample,
    Trend,
)

if TYPE_CHECKING:
    from collections.abc import Iterable

    from loadramp.metrics.models import Metric, MetricSummary

logger = get_logger("metrics.collector")

_METRIC_TYPES: dict[MetricKind, type[Counter] | type[Rate] | type[Trend]] = {
    MetricKind.COUNTER: Counter,
    MetricKind.RATE: Rate,
    MetricKind.TREND: Trend,
}


class MetricShard:
    """Per-virtual-user sample buffer.

    Attributes:
        shard_id: Identifier of the owning writer (the virtual user id).
        closed: Set once the owner has finished; the collector forgets a
            closed shard after draining it.
    """

    __slots__ = ("_buffer", "closed", "shard_id")

    def __init__(self, shard_id: int) -> None:
        self.shard_id = shard_id
        self.closed = False
        self._buffer: deque[Sample] = deque()

    @property
    def pending_count(self) -> int:
        return len(self._buffer)

    def add(self, sample: Sample) -> None:
        """Buffer a sample.

        Raises:
            ValueError: If the value is not finite, or a counter sample is
                negative.
        """
        if not math.isfinite(sample.value):
            msg = f"Sample for {sample.metric!r} must be finite (got {sample.value})"
            raise ValueError(msg)
        if sample.kind is MetricKind.COUNTER and sample.value < 0:
            msg = f"Counter {sample.metric!r} cannot be decreased (got {sample.value})"
            raise ValueError(msg)
        self._buffer.append(sample)

    def add_value(self, name: str, kind: MetricKind, value: float) -> None:
        self.add(Sample(name, kind, float(value)))

    def counter(self, name: str, n: float = 1.0) -> None:
        self.add(Sample(name, MetricKind.COUNTER, float(n)))

    def rate(self, name: str, observation: bool, *, check: str | None = None) -> None:  # noqa: FBT001
        self.add(Sample(name, MetricKind.RATE, 1.0 if observation else 0.0, check))

    def trend(self, name: str, value: float) -> None:
        self.add(Sample(name, MetricKind.TREND, float(value)))

    def close(self) -> None:
        self.closed = True

    def drain(self) -> list[Sample]:
        drained: list[Sample] = []
        while self._buffer:
            drained.append(self._buffer.popleft())
        return drained


class MetricsCollector:
    """Owns every metric of a run.

    Built-in metrics (see :mod:`loadramp.metrics.builtin`) are registered up
    front; custom metrics are created on first use. A name keeps the kind it
    was created with.
    """

    def __init__(self, declared: dict[str, MetricKind] | None = None) -> None:
        """Initialize the collector.

        Args:
            declared: Extra metric names and kinds to register immediately,
                typically the custom metrics a scenario emits.
        """
        self._lock = threading.Lock()
        self._metrics: dict[str, Metric] = {}
        self._checks: dict[str, CheckStats] = {}
        self._shards: list[MetricShard] = []
        self._last_flush_time = time.monotonic()

        for name, kind in {**builtin.BUILTIN_METRICS, **(declared or {})}.items():
            self.declare(name, kind)

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def declare(self, name: str, kind: MetricKind) -> Metric:
        """Return the metric called *name*, creating it if needed.

        Raises:
            ScenarioError: If the name already exists with another kind.
        """
        with self._lock:
            return self._get_or_create(name, kind)

    def shard(self, shard_id: int) -> MetricShard:
        """Create and register a new writer shard."""
        new_shard = MetricShard(shard_id)
        with self._lock:
            self._shards.append(new_shard)
        return new_shard

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def record(self, sample: Sample) -> None:
        """Apply a sample to the aggregates immediately (bypassing shards)."""
        with self._lock:
            self._apply(sample)

    def flush(
        self,
        elapsed_seconds: float,
        active_users: int,
        target_users: int = 0,
    ) -> IntervalSnapshot:
        """Drain every shard into the aggregates and summarise the interval.

        Args:
            elapsed_seconds: Seconds since the run started.
            active_users: Virtual users currently running.
            target_users: Concurrency the scheduler asked for.

        Returns:
            Statistics for the samples drained by this call.
        """
        with self._lock:
            drained: list[Sample] = []
            for shard in self._shards:
                drained.extend(shard.drain())
            self._shards = [s for s in self._shards if not (s.closed and s.pending_count == 0)]
            for sample in drained:
                self._apply(sample)

        now = time.monotonic()
        interval = max(now - self._last_flush_time, 0.001)
        self._last_flush_time = now

        return _interval_snapshot(
            drained,
            elapsed_seconds=elapsed_seconds,
            active_users=active_users,
            target_users=target_users,
            interval=interval,
        )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    @property
    def pending_count(self) -> int:
        """Samples buffered in shards and not yet merged."""
        with self._lock:
            return sum(s.pending_count for s in self._shards)

    @property
    def shard_count(self) -> int:
        with self._lock:
            return len(self._shards)

    def get(self, name: str) -> Metric | None:
        """Return the live metric object called *name*, if it exists."""
        with self._lock:
            return self._metrics.get(name)

    def kinds(self) -> dict[str, MetricKind]:
        with self._lock:
            return {name: metric.kind for name, metric in self._metrics.items()}

    def summaries(self, elapsed_seconds: float) -> dict[str, MetricSummary]:
        """Return frozen summaries of every metric, sorted by name."""
        with self._lock:
            return {
                name: self._metrics[name].summary(elapsed_seconds)
                for name in sorted(self._metrics)
            }

    def checks(self) -> list[CheckStats]:
        """Return per-check tallies in first-seen order."""
        with self._lock:
            return [CheckStats(c.name, c.passes, c.fails) for c in self._checks.values()]

    # ------------------------------------------------------------------
    # Internals (caller holds the lock)
    # ------------------------------------------------------------------

    def _get_or_create(self, name: str, kind: MetricKind) -> Metric:
        metric = self._metrics.get(name)
        if metric is None:
            metric = _METRIC_TYPES[kind](name)
            self._metrics[name] = metric
        elif metric.kind is not kind:
            msg = f"Metric {name!r} is a {metric.kind.value}, cannot use it as a {kind.value}"
            raise ScenarioError(msg)
        return metric

    def _apply(self, sample: Sample) -> None:
        if not math.isfinite(sample.value):
            logger.warning("Dropping non-finite sample for %s: %r", sample.metric, sample.value)
            return
        try:
            metric = self._get_or_create(sample.metric, sample.kind)
        except ScenarioError:
            logger.exception("Dropping sample for %s", sample.metric)
            return

        if isinstance(metric, Rate):
            metric.add(sample.value != 0.0)
            if sample.check is not None:
                stats = self._checks.get(sample.check)
                if stats is None:
                    stats = self._checks[sample.check] = CheckStats(sample.check)
                if sample.value != 0.0:
                    stats.passes += 1
                else:
                    stats.fails += 1
        else:
            try:
                metric.add(sample.value)
            except ValueError as exc:
                logger.warning("Dropping sample for %s: %s", sample.metric, exc)


def _interval_snapshot(
    samples: Iterable[Sample],
    *,
    elapsed_seconds: float,
    active_users: int,
    target_users: int,
    interval: float,
) -> IntervalSnapshot:
    durations: list[float] = []
    failed = 0
    iterations = 0
    for sample in samples:
        if sample.metric == builtin.HTTP_REQ_DURATION:
            durations.append(sample.value)
        elif sample.metric == builtin.HTTP_REQ_FAILED and sample.value:
            failed += 1
        elif sample.metric == builtin.ITERATIONS:
            iterations += int(sample.value)

    requests = len(durations)
    if requests:
        p50, p95, p99 = (
            float(v) for v in np.percentile(np.array(durations, dtype=np.float64), [50, 95, 99])
        )
    else:
        p50 = p95 = p99 = 0.0

    return IntervalSnapshot(
        elapsed_seconds=elapsed_seconds,
        active_users=active_users,
        target_users=target_users,
        requests=requests,
        requests_per_second=requests / interval,
        latency_p50=p50,
        latency_p95=p95,
        latency_p99=p99,
        failed_requests=failed,
        error_rate=failed / requests if requests else 0.0,
        iterations=iterations,
    )
