"""Names and kinds of the metrics the engine records on its own."""

from __future__ import annotations

from loadramp.metrics.models import MetricKind

HTTP_REQS = "http_reqs"
HTTP_REQ_DURATION = "http_req_duration"
HTTP_REQ_FAILED = "http_req_failed"
DATA_RECEIVED = "data_received"
CHECKS = "checks"
ITERATIONS = "iterations"
ITERATION_DURATION = "iteration_duration"

BUILTIN_METRICS: dict[str, MetricKind] = {
    HTTP_REQS: MetricKind.COUNTER,
    HTTP_REQ_DURATION: MetricKind.TREND,
    HTTP_REQ_FAILED: MetricKind.RATE,
    DATA_RECEIVED: MetricKind.COUNTER,
    CHECKS: MetricKind.RATE,
    ITERATIONS: MetricKind.COUNTER,
    ITERATION_DURATION: MetricKind.TREND,
}
