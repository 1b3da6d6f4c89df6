"""Threshold parsing and evaluation.

Thresholds use the k6 expression grammar ``AGGREGATION OPERATOR NUMBER``::

    http_req_duration: p(95)<2000
    http_req_failed:   rate<0.1
    iterations:        count>=100

Each expression is checked against the kind of its metric when the kind is
known, so ``p(95)`` on a Rate is rejected before any load is generated.
"""

from __future__ import annotations

import operator
import re
from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

from loadramp._internal.errors import ConfigError
from loadramp._internal.logging import get_logger
from loadramp.metrics.models import Counter, MetricKind, Rate, Trend

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable, Sequence

    from loadramp.metrics.collector import MetricsCollector
    from loadramp.metrics.models import Metric

logger = get_logger("metrics.thresholds")

_EXPRESSION_RE = re.compile(
    r"^\s*(?P<agg>count|rate|avg|min|max|med|p\(\s*(?P<pct>\d+(?:\.\d+)?)\s*\))"
    r"\s*(?P<op><=|>=|==|!=|<|>)"
    r"\s*(?P<value>-?\d+(?:\.\d+)?(?:[eE][-+]?\d+)?)\s*$"
)

_OPERATORS: dict[str, Callable[[float, float], bool]] = {
    "<": operator.lt,
    "<=": operator.le,
    ">": operator.gt,
    ">=": operator.ge,
    "==": operator.eq,
    "!=": operator.ne,
}

_ALLOWED: dict[MetricKind, frozenset[str]] = {
    MetricKind.COUNTER: frozenset({"count", "rate"}),
    MetricKind.RATE: frozenset({"rate"}),
    MetricKind.TREND: frozenset({"avg", "min", "max", "med", "p"}),
}


class ThresholdStatus(str, Enum):
    """Outcome of evaluating one threshold."""

    PASSED = "passed"
    FAILED = "failed"
    # The metric was never observed; the condition could not be computed.
    INDETERMINATE = "indeterminate"


@dataclass(frozen=True)
class Threshold:
    """A pass/fail rule on one metric.

    Attributes:
        metric: Metric name.
        expression: Original expression text, e.g. ``"p(95)<2000"``.
        aggregation: ``count``, ``rate``, ``avg``, ``min``, ``max``, ``med``
            or ``p``.
        percentile: Percentile for ``p`` aggregations, otherwise None.
        op: Comparison operator text.
        value: Right-hand side of the comparison.
        abort_on_fail: Evaluate on every tick and stop the run on failure.
        tolerate_empty: Count an unobserved metric as passed instead of failed.
    """

    metric: str
    expression: str
    aggregation: str
    op: str
    value: float
    percentile: float | None = None
    abort_on_fail: bool = False
    tolerate_empty: bool = False

    def __str__(self) -> str:
        return f"{self.metric}: {self.expression}"

    def compare(self, observed: float) -> bool:
        return _OPERATORS[self.op](observed, self.value)

    def observe(self, metric: Metric, elapsed_seconds: float) -> float | None:
        """Compute the aggregation on *metric*; None when it has no samples.

        Raises:
            ConfigError: If the aggregation does not apply to the metric kind.
        """
        _check_applicable(self, metric.kind)
        if metric.samples == 0:
            return None
        if isinstance(metric, Counter):
            if self.aggregation == "count":
                return metric.total
            return metric.total / elapsed_seconds if elapsed_seconds > 0 else 0.0
        if isinstance(metric, Rate):
            return metric.value()
        return _trend_value(self, metric)


@dataclass(frozen=True)
class ThresholdResult:
    """Evaluation result for one threshold.

    Attributes:
        threshold: The rule evaluated.
        status: Passed, failed, or indeterminate.
        observed: Aggregated metric value, None when indeterminate.
    """

    threshold: Threshold
    status: ThresholdStatus
    observed: float | None = None

    @property
    def passed(self) -> bool:
        if self.status is ThresholdStatus.INDETERMINATE:
            return self.threshold.tolerate_empty
        return self.status is ThresholdStatus.PASSED


def parse_threshold(
    metric: str,
    expression: str,
    *,
    abort_on_fail: bool = False,
    tolerate_empty: bool = False,
) -> Threshold:
    """Parse one threshold expression.

    Raises:
        ConfigError: If the expression does not match the grammar or the
            percentile is out of range.
    """
    match = _EXPRESSION_RE.match(expression)
    if match is None:
        msg = (
            f"Invalid threshold for {metric!r}: {expression!r} "
            "(expected e.g. 'p(95)<2000', 'rate<0.1', 'avg<=200', 'count>10')"
        )
        raise ConfigError(msg)

    agg = match.group("agg")
    percentile: float | None = None
    if agg.startswith("p("):
        percentile = float(match.group("pct"))
        if percentile > 100.0:
            msg = f"Invalid threshold for {metric!r}: percentile {percentile:g} exceeds 100"
            raise ConfigError(msg)
        agg = "p"

    return Threshold(
        metric=metric,
        expression=expression.strip(),
        aggregation=agg,
        op=match.group("op"),
        value=float(match.group("value")),
        percentile=percentile,
        abort_on_fail=abort_on_fail,
        tolerate_empty=tolerate_empty,
    )


def parse_thresholds(
    spec: Mapping[str, Sequence[str | Mapping[str, object]]],
) -> list[Threshold]:
    """Parse a k6-style ``{metric: [expression, ...]}`` mapping.

    Entries may be plain expression strings or mappings with the keys
    ``threshold`` (required), ``abort_on_fail`` and ``tolerate_empty``.

    Raises:
        ConfigError: If any entry is malformed.
    """
    thresholds: list[Threshold] = []
    for metric, entries in spec.items():
        if isinstance(entries, str | Mapping):
            entries = [entries]
        for entry in entries:
            if isinstance(entry, str):
                thresholds.append(parse_threshold(metric, entry))
                continue
            expression = entry.get("threshold")
            if not isinstance(expression, str):
                msg = f"Threshold entry for {metric!r} needs a 'threshold' string: {entry!r}"
                raise ConfigError(msg)
            thresholds.append(
                parse_threshold(
                    metric,
                    expression,
                    abort_on_fail=bool(entry.get("abort_on_fail", False)),
                    tolerate_empty=bool(entry.get("tolerate_empty", False)),
                )
            )
    return thresholds


def validate_thresholds(
    thresholds: Iterable[Threshold],
    kinds: Mapping[str, MetricKind],
) -> None:
    """Reject aggregations that cannot apply to their metric.

    Metrics missing from *kinds* are only warned about: they evaluate as
    indeterminate at the end of the run.

    Raises:
        ConfigError: If a threshold uses an aggregation its metric lacks.
    """
    for threshold in thresholds:
        kind = kinds.get(threshold.metric)
        if kind is None:
            logger.warning(
                "Threshold %s refers to metric %r which no step emits",
                threshold.expression,
                threshold.metric,
            )
            continue
        _check_applicable(threshold, kind)


class ThresholdEvaluator:
    """Evaluates a fixed list of thresholds against a collector."""

    def __init__(self, thresholds: Sequence[Threshold]) -> None:
        self.thresholds = list(thresholds)

    @property
    def has_abort_rules(self) -> bool:
        return any(t.abort_on_fail for t in self.thresholds)

    def evaluate(
        self,
        collector: MetricsCollector,
        elapsed_seconds: float,
    ) -> list[ThresholdResult]:
        """Evaluate every threshold against the collector's current state."""
        return [self._evaluate_one(t, collector, elapsed_seconds) for t in self.thresholds]

    def first_abort(
        self,
        collector: MetricsCollector,
        elapsed_seconds: float,
    ) -> ThresholdResult | None:
        """Return the first failed ``abort_on_fail`` threshold, if any.

        Indeterminate results never abort: an empty metric early in a run is
        expected.
        """
        for threshold in self.thresholds:
            if not threshold.abort_on_fail:
                continue
            result = self._evaluate_one(threshold, collector, elapsed_seconds)
            if result.status is ThresholdStatus.FAILED:
                return result
        return None

    @staticmethod
    def _evaluate_one(
        threshold: Threshold,
        collector: MetricsCollector,
        elapsed_seconds: float,
    ) -> ThresholdResult:
        metric = collector.get(threshold.metric)
        if metric is None:
            return ThresholdResult(threshold, ThresholdStatus.INDETERMINATE)
        try:
            observed = threshold.observe(metric, elapsed_seconds)
        except ConfigError as exc:
            logger.error("Threshold %s cannot be evaluated: %s", threshold, exc)  # noqa: TRY400
            return ThresholdResult(threshold, ThresholdStatus.FAILED)
        if observed is None:
            return ThresholdResult(threshold, ThresholdStatus.INDETERMINATE)
        status = ThresholdStatus.PASSED if threshold.compare(observed) else ThresholdStatus.FAILED
        return ThresholdResult(threshold, status, observed)


def all_passed(results: Iterable[ThresholdResult]) -> bool:
    """Run-level verdict: every threshold passed (vacuously true when none)."""
    return all(r.passed for r in results)


def _check_applicable(threshold: Threshold, kind: MetricKind) -> None:
    if threshold.aggregation not in _ALLOWED[kind]:
        allowed = ", ".join(sorted(a if a != "p" else "p(N)" for a in _ALLOWED[kind]))
        msg = (
            f"Threshold {threshold.expression!r} is not valid for {kind.value} metric "
            f"{threshold.metric!r} (allowed: {allowed})"
        )
        raise ConfigError(msg)


def _trend_value(threshold: Threshold, trend: Trend) -> float:
    if threshold.aggregation == "avg":
        return trend.mean()
    if threshold.aggregation == "min":
        return trend.min
    if threshold.aggregation == "max":
        return trend.max
    if threshold.aggregation == "med":
        return trend.percentile(50.0)
    return trend.percentile(threshold.percentile or 0.0)
