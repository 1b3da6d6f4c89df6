"""Service benchmark: health, current user and component endpoints.

Ramps to 10 users, holds, ramps to 20, holds, then ramps down (16 minutes
in total). Run with:

    BASE_URL=http://localhost:4000 loadramp run examples/service_benchmark.py

or shorten the ramp for a smoke run:

    loadramp run examples/service_benchmark.py --stage 10s:2 --stage 10s:0
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime

from loadramp import Check, Emit, HttpClient, Pause, Request, scenario, setup, teardown

logger = logging.getLogger("loadramp.examples.service_benchmark")

_AUTH_HEADERS = {
    "Authorization": "Bearer test-token",
    "Content-Type": "application/json",
}


@scenario(
    name="Service benchmark",
    stages=[
        ("2m", 10),
        ("5m", 10),
        ("2m", 20),
        ("5m", 20),
        ("2m", 0),
    ],
    thresholds={
        "http_req_duration": ["p(95)<2000"],
        "http_req_failed": ["rate<0.1"],
        "errors": ["rate<0.1"],
    },
)
class ServiceBenchmark:
    """Three endpoints per iteration with fixed think times."""

    steps = [
        # Health check
        Request("GET", "/health", name="health"),
        Check.status("health check status is 200", 200),
        Check.duration_below("health check response time < 500ms", 500),
        Emit.rate("errors", lambda r: r.status != 200),
        Emit.duration("response_time"),
        Emit.counter("requests"),
        Pause(1),
        # Authenticated API endpoint; 401 is an acceptable answer
        Request(
            "GET",
            "/api/users/me",
            headers=_AUTH_HEADERS,
            name="current user",
            expected_statuses=frozenset({200, 401}),
        ),
        Check.status("API response status is 200 or 401", 200, 401),
        Check.duration_below("API response time < 1000ms", 1000),
        Emit.rate("errors", lambda r: r.status >= 400 and r.status != 401),
        Emit.duration("response_time"),
        Emit.counter("requests"),
        Pause(1),
        # Component library
        Request("GET", "/api/components", name="components"),
        Check("components endpoint accessible", lambda r: 0 < r.status < 500),
        Check.duration_below("components response time < 1500ms", 1500),
        Emit.rate("errors", lambda r: r.status >= 500),
        Emit.duration("response_time"),
        Emit.counter("requests"),
        Pause(2),
    ]

    @setup
    async def check_service(self, client: HttpClient) -> dict[str, str]:
        """Refuse to start unless the service answers its health check."""
        logger.info("Starting performance test against %s", client.base_url)
        response = await client.get("/health")
        if response.status != 200:
            msg = f"Service not accessible. Health check returned: {response.status}"
            raise RuntimeError(msg)
        return {"timestamp": datetime.now(tz=UTC).isoformat()}

    @teardown
    async def log_window(self, client: HttpClient, data, metrics) -> None:  # noqa: ARG002
        logger.info("Performance test completed.")
        logger.info("Started at: %s", data["timestamp"])
        logger.info("Completed at: %s", datetime.now(tz=UTC).isoformat())
        logger.info("Requests sent: %d", int(metrics["requests"].values["count"]))
