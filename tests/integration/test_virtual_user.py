"""Integration tests for VirtualUser against a live test server."""

from __future__ import annotations

import asyncio
import time

from loadramp.dsl.http_client import HttpClient
from loadramp.dsl.steps import Check, Emit, Pause, Request
from loadramp.engine.virtual_user import RunContext, VirtualUser
from loadramp.metrics import builtin
from loadramp.metrics.collector import MetricsCollector
from loadramp.metrics.models import MetricKind


def _context(server_url: str, setup_data: object = None) -> RunContext:
    return RunContext(
        scenario_name="test",
        base_url=server_url,
        started_at=time.time(),
        setup_data=setup_data,
    )


def _summary(collector: MetricsCollector, name: str):
    collector.flush(elapsed_seconds=1.0, active_users=0)
    return collector.summaries(1.0)[name]


class TestRunIteration:
    async def test_records_builtin_metrics(self, server_url: str):
        collector = MetricsCollector()
        steps = [
            Request("GET", "/health"),
            Check.status("is 200", 200),
            Request("GET", "/status?code=500"),
            Check.status("is 200", 200),
        ]
        async with HttpClient(server_url) as client:
            user = VirtualUser(1, steps, client, collector.shard(1), _context(server_url))
            assert await user.run_iteration()

        collector.flush(elapsed_seconds=1.0, active_users=0)
        summaries = collector.summaries(1.0)
        assert user.iteration == 1
        assert summaries[builtin.HTTP_REQS].values["count"] == 2
        assert summaries[builtin.HTTP_REQ_FAILED].values["rate"] == 0.5
        assert summaries[builtin.CHECKS].values["rate"] == 0.5
        assert summaries[builtin.ITERATIONS].values["count"] == 1
        assert summaries[builtin.HTTP_REQ_DURATION].samples == 2
        assert summaries[builtin.DATA_RECEIVED].values["count"] > 0

        (check,) = collector.checks()
        assert (check.name, check.passes, check.fails) == ("is 200", 1, 1)

    async def test_checks_see_the_last_response(self, server_url: str):
        collector = MetricsCollector()
        steps = [
            Request("GET", "/status?code=404"),
            Request("GET", "/health"),
            Check.status("last is 200", 200),
        ]
        async with HttpClient(server_url) as client:
            user = VirtualUser(1, steps, client, collector.shard(1), _context(server_url))
            await user.run_iteration()

        assert _summary(collector, builtin.CHECKS).values["rate"] == 1.0

    async def test_callable_fields_use_setup_and_user_data(self, server_url: str):
        collector = MetricsCollector()
        steps = [
            Request(
                "GET",
                lambda ctx: f"/echo/users/{ctx.user_id}/{ctx.iteration}",
                headers=lambda ctx: {"Authorization": f"Bearer {ctx.setup_data['token']}"},
            ),
            Check(
                "token sent",
                lambda r: r.json()["headers"].get("Authorization") == "Bearer abc",
            ),
            Check("path built", lambda r: r.json()["path"] == "/echo/users/7/0"),
        ]
        async with HttpClient(server_url) as client:
            user = VirtualUser(
                7, steps, client, collector.shard(7), _context(server_url, {"token": "abc"})
            )
            await user.run_iteration()

        assert _summary(collector, builtin.CHECKS).values["rate"] == 1.0

    async def test_unbuildable_request_is_not_sent(self, test_server):
        collector = MetricsCollector()
        steps = [
            Request("GET", lambda ctx: f"/echo/{ctx.setup_data['missing']}"),
            Check("got response", lambda r: r.status == 200),
        ]
        async with HttpClient(test_server.url) as client:
            user = VirtualUser(1, steps, client, collector.shard(1), _context(test_server.url, {}))
            assert await user.run_iteration()

        collector.flush(elapsed_seconds=1.0, active_users=0)
        summaries = collector.summaries(1.0)
        assert summaries[builtin.HTTP_REQS].values["count"] == 0
        assert summaries[builtin.CHECKS].values["fails"] == 1
        assert test_server.total_hits == 0

    async def test_raising_check_counts_as_failed(self, server_url: str):
        collector = MetricsCollector()
        steps = [Request("GET", "/health"), Check("broken", lambda r: r.json()["missing"])]
        async with HttpClient(server_url) as client:
            user = VirtualUser(1, steps, client, collector.shard(1), _context(server_url))
            assert await user.run_iteration()

        assert _summary(collector, builtin.CHECKS).values["fails"] == 1

    async def test_custom_metrics(self, server_url: str):
        collector = MetricsCollector(
            {"errors": MetricKind.RATE, "response_time": MetricKind.TREND}
        )
        steps = [
            Request("GET", "/health"),
            Emit.rate("errors", lambda r: r.status != 200),
            Emit.duration("response_time"),
            Emit.counter("requests"),
        ]
        async with HttpClient(server_url) as client:
            user = VirtualUser(1, steps, client, collector.shard(1), _context(server_url))
            await user.run_iteration()
            await user.run_iteration()

        collector.flush(elapsed_seconds=1.0, active_users=0)
        summaries = collector.summaries(1.0)
        assert summaries["errors"].values["rate"] == 0.0
        assert summaries["errors"].samples == 2
        assert summaries["response_time"].samples == 2
        assert summaries["requests"].values["count"] == 2

    async def test_failing_emit_is_skipped(self, server_url: str):
        collector = MetricsCollector()
        steps = [
            Request("GET", "/health"),
            Emit.trend("size", lambda r: r.json()["missing"]),
            Emit.counter("negative", -1),
            Emit.counter("requests"),
        ]
        async with HttpClient(server_url) as client:
            user = VirtualUser(1, steps, client, collector.shard(1), _context(server_url))
            assert await user.run_iteration()

        collector.flush(elapsed_seconds=1.0, active_users=0)
        kinds = collector.kinds()
        assert "size" not in kinds
        assert "negative" not in kinds
        assert collector.summaries(1.0)["requests"].values["count"] == 1

    async def test_non_finite_emit_is_skipped(self, server_url: str):
        collector = MetricsCollector()
        steps = [
            Request("GET", "/health"),
            Emit.trend("ratio", lambda r: float("nan")),
            Emit.trend("ratio", lambda r: float("inf")),
            Emit.trend("ratio", 0.5),
            Emit.counter("requests"),
        ]
        async with HttpClient(server_url) as client:
            user = VirtualUser(1, steps, client, collector.shard(1), _context(server_url))
            assert await user.run_iteration()

        collector.flush(elapsed_seconds=1.0, active_users=0)
        summaries = collector.summaries(1.0)
        assert summaries["ratio"].samples == 1
        assert summaries["ratio"].values["avg"] == 0.5
        assert summaries["requests"].values["count"] == 1

    async def test_transport_error_is_a_failed_request(self):
        collector = MetricsCollector()
        async with HttpClient("http://127.0.0.1:1") as client:
            user = VirtualUser(
                1,
                [Request("GET", "/health")],
                client,
                collector.shard(1),
                _context("http://127.0.0.1:1"),
            )
            assert await user.run_iteration()

        collector.flush(elapsed_seconds=1.0, active_users=0)
        summaries = collector.summaries(1.0)
        assert summaries[builtin.HTTP_REQS].values["count"] == 1
        assert summaries[builtin.HTTP_REQ_FAILED].values["rate"] == 1.0

    async def test_invalid_header_is_a_failed_request(self, server_url: str):
        collector = MetricsCollector()
        steps = [
            Request("GET", "/health", headers={"X-Bad": "a\r\nb"}),
            Check("got response", lambda r: r.status == 200),
        ]
        async with HttpClient(server_url) as client:
            user = VirtualUser(1, steps, client, collector.shard(1), _context(server_url))
            assert await user.run_iteration()

        collector.flush(elapsed_seconds=1.0, active_users=0)
        summaries = collector.summaries(1.0)
        assert summaries[builtin.HTTP_REQS].values["count"] == 1
        assert summaries[builtin.HTTP_REQ_FAILED].values["rate"] == 1.0
        assert summaries[builtin.CHECKS].values["fails"] == 1

    async def test_unserialisable_body_is_a_failed_request(self, test_server):
        collector = MetricsCollector()
        steps = [Request("POST", "/echo/data", json={"value": object()})]
        async with HttpClient(test_server.url) as client:
            user = VirtualUser(1, steps, client, collector.shard(1), _context(test_server.url))
            assert await user.run_iteration()

        collector.flush(elapsed_seconds=1.0, active_users=0)
        summaries = collector.summaries(1.0)
        assert summaries[builtin.HTTP_REQS].values["count"] == 1
        assert summaries[builtin.HTTP_REQ_FAILED].values["rate"] == 1.0
        assert test_server.total_hits == 0


class TestRetire:
    async def test_retire_interrupts_pause(self, server_url: str):
        collector = MetricsCollector()
        steps = [Request("GET", "/health"), Pause(30)]
        async with HttpClient(server_url) as client:
            user = VirtualUser(1, steps, client, collector.shard(1), _context(server_url))
            task = asyncio.create_task(user.run_iteration())
            await asyncio.sleep(0.2)
            user.retire()
            started = time.monotonic()
            completed = await asyncio.wait_for(task, timeout=2.0)

        assert time.monotonic() - started < 1.0
        assert completed is False
        assert user.iteration == 0
        collector.flush(elapsed_seconds=1.0, active_users=0)
        summaries = collector.summaries(1.0)
        assert summaries[builtin.HTTP_REQS].values["count"] == 1
        assert summaries[builtin.ITERATIONS].values["count"] == 0

    async def test_retired_user_runs_no_steps(self, test_server):
        collector = MetricsCollector()
        async with HttpClient(test_server.url) as client:
            user = VirtualUser(
                1,
                [Request("GET", "/health")],
                client,
                collector.shard(1),
                _context(test_server.url),
            )
            user.retire()
            assert user.retired
            await user.run()

        assert test_server.hits("health") == 0

    async def test_run_loops_until_retired_and_closes_shard(self, server_url: str):
        collector = MetricsCollector()
        shard = collector.shard(1)
        steps = [Request("GET", "/health"), Pause(0.01)]
        async with HttpClient(server_url) as client:
            user = VirtualUser(1, steps, client, shard, _context(server_url))
            task = asyncio.create_task(user.run())
            await asyncio.sleep(0.3)
            user.retire()
            await asyncio.wait_for(task, timeout=2.0)

        assert shard.closed
        assert user.iteration > 1
        collector.flush(elapsed_seconds=1.0, active_users=0)
        assert collector.shard_count == 0
        assert collector.summaries(1.0)[builtin.ITERATIONS].values["count"] == user.iteration
