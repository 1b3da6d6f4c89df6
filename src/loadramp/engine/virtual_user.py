"""Virtual user: interprets a scenario's step list in a loop."""

from __future__ import annotations

import asyncio
import contextlib
import math
import random
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from loadramp._internal.logging import get_logger
from loadramp.dsl.http_client import EMPTY_RESPONSE, Response
from loadramp.dsl.steps import Check, Emit, IterationContext, Pause, Request, describe_step
from loadramp.metrics import builtin

if TYPE_CHECKING:
    from collections.abc import Sequence

    from loadramp.dsl.http_client import HttpClient
    from loadramp.dsl.steps import Step
    from loadramp.metrics.collector import MetricShard

logger = get_logger("engine.vu")


@dataclass(frozen=True)
class RunContext:
    """Run-wide data shared read-only by every virtual user.

    Attributes:
        scenario_name: Name of the scenario being run.
        base_url: Target base URL.
        started_at: Wall-clock start time (Unix seconds).
        setup_data: Value returned by the setup hook.
    """

    scenario_name: str
    base_url: str
    started_at: float
    setup_data: Any = None


class VirtualUser:
    """One simulated client.

    Runs the step list over and over until :meth:`retire` is called. Within
    one iteration steps run strictly in order; the only suspension points are
    requests and pauses. Nothing in here raises out of :meth:`run` for a
    failing target: transport errors become error responses and metric
    samples, and exceptions from user callables are logged and absorbed.

    Attributes:
        user_id: Unique id within the run.
        iteration: Number of completed iterations.
        data: Per-user scratch space, visible to callable step fields.
    """

    def __init__(
        self,
        user_id: int,
        steps: Sequence[Step],
        client: HttpClient,
        shard: MetricShard,
        context: RunContext,
    ) -> None:
        self.user_id = user_id
        self.iteration = 0
        self.data: dict[str, Any] = {}
        self._steps = list(steps)
        self._client = client
        self._shard = shard
        self._context = context
        self._stop_event = asyncio.Event()

    @property
    def retired(self) -> bool:
        return self._stop_event.is_set()

    def retire(self) -> None:
        """Ask the user to stop before its next step.

        An in-flight request is allowed to finish (it is bounded by the
        request timeout); a pause in progress ends immediately.
        """
        self._stop_event.set()

    async def run(self) -> None:
        """Loop over iterations until retired, then release the metric shard."""
        logger.debug("Virtual user %d started", self.user_id, extra={"user_id": self.user_id})
        try:
            while not self.retired:
                await self.run_iteration()
        finally:
            self._shard.close()
            logger.debug(
                "Virtual user %d stopped after %d iterations",
                self.user_id,
                self.iteration,
                extra={"user_id": self.user_id},
            )

    async def run_iteration(self) -> bool:
        """Execute the step list once.

        Returns:
            True if the iteration completed, False if it was cut short by
            :meth:`retire`. Interrupted iterations are not counted.
        """
        start = time.monotonic()
        ctx = IterationContext(
            user_id=self.user_id,
            iteration=self.iteration,
            setup_data=self._context.setup_data,
            user_data=self.data,
        )
        response = EMPTY_RESPONSE

        for step in self._steps:
            if self.retired:
                return False
            if isinstance(step, Request):
                response = await self._request(step, ctx)
            elif isinstance(step, Check):
                self._check(step, response)
            elif isinstance(step, Emit):
                self._emit(step, response)
            elif isinstance(step, Pause):
                await self._pause(step)
                if self.retired:
                    return False

        self.iteration += 1
        self._shard.counter(builtin.ITERATIONS)
        self._shard.trend(builtin.ITERATION_DURATION, (time.monotonic() - start) * 1000)
        return True

    async def _request(self, step: Request, ctx: IterationContext) -> Response:
        try:
            path = step.resolve_path(ctx)
            headers = step.resolve_headers(ctx)
        except Exception as exc:
            logger.debug("Could not build %s", step.label, exc_info=True)
            return Response(method=step.method, url="", error=f"{type(exc).__name__}: {exc}")

        try:
            response = await self._client.request(
                step.method,
                path,
                headers=headers,
                body=step.body,
                json=step.json,
                timeout=step.timeout,
            )
        except Exception as exc:
            # Invalid headers or an unserialisable body; counted as a failed request.
            response = Response(
                method=step.method,
                url=self._client.url_for(path),
                error=f"{type(exc).__name__}: {exc}",
            )
        failed = step.is_failure(response)

        self._shard.counter(builtin.HTTP_REQS)
        self._shard.trend(builtin.HTTP_REQ_DURATION, response.duration_ms)
        self._shard.rate(builtin.HTTP_REQ_FAILED, failed)
        if response.body:
            self._shard.counter(builtin.DATA_RECEIVED, len(response.body))

        if response.error is not None:
            logger.debug(
                "User %d: %s failed: %s",
                self.user_id,
                step.label,
                response.error,
                extra={"user_id": self.user_id},
            )
        return response

    def _check(self, step: Check, response: Response) -> None:
        try:
            passed = bool(step.predicate(response))
        except Exception:
            logger.debug("Check %r raised; counted as failed", step.name, exc_info=True)
            passed = False
        self._shard.rate(builtin.CHECKS, passed, check=step.name)

    def _emit(self, step: Emit, response: Response) -> None:
        try:
            value = float(step.resolve(response))
            if not math.isfinite(value):
                logger.debug("Skipping %s: non-finite value %r", describe_step(step), value)
                return
            self._shard.add_value(step.metric, step.kind, value)
        except Exception:
            logger.debug("Skipping %s", describe_step(step), exc_info=True)

    async def _pause(self, step: Pause) -> None:
        low, high = step.bounds
        duration = low if low == high else random.uniform(low, high)  # noqa: S311
        if duration <= 0:
            await asyncio.sleep(0)
            return
        with contextlib.suppress(TimeoutError):
            await asyncio.wait_for(self._stop_event.wait(), timeout=duration)
