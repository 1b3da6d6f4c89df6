"""Run lifecycle: setup, staged ramp, teardown and verdict."""

from __future__ import annotations

import asyncio
import contextlib
import signal
import sys
import time
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import TYPE_CHECKING, Any

from loadramp._internal.config import load_config
from loadramp._internal.errors import EngineError, SetupFailure, TeardownFailure
from loadramp._internal.logging import get_logger
from loadramp.dsl.http_client import HttpClient
from loadramp.dsl.stages import describe_stages
from loadramp.engine._user_utils import shutdown_all_users
from loadramp.engine.scheduler import StageScheduler
from loadramp.engine.virtual_user import RunContext, VirtualUser
from loadramp.metrics.collector import MetricsCollector
from loadramp.metrics.thresholds import ThresholdEvaluator, all_passed

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping

    from loadramp._internal.config import LoadRampConfig
    from loadramp.dsl.scenario import ScenarioDefinition
    from loadramp.engine._user_utils import UserTask
    from loadramp.metrics.models import CheckStats, IntervalSnapshot, MetricSummary
    from loadramp.metrics.thresholds import ThresholdResult

logger = get_logger("engine.orchestrator")


class RunState(Enum):
    """State machine for a run."""

    IDLE = auto()
    SETUP = auto()
    RUNNING = auto()
    TEARDOWN = auto()
    REPORTED = auto()


class RunVerdict(Enum):
    """Outcome of a run. The value is the process exit code."""

    PASSED = 0
    THRESHOLDS_FAILED = 99
    SETUP_FAILED = 107

    @property
    def exit_code(self) -> int:
        return self.value


@dataclass
class RunReport:
    """Everything known about a finished run.

    Attributes:
        scenario_name: Name of the scenario that was run.
        verdict: Overall outcome.
        started_at: Wall-clock start (Unix seconds).
        ended_at: Wall-clock end (Unix seconds).
        duration_seconds: Time spent in the RUNNING state.
        stages: Human-readable stage list.
        timeline: Wall-clock time each state was entered.
        snapshots: One interval snapshot per scheduler tick.
        metrics: Final summary of every metric, keyed by name.
        checks: Per-check pass/fail tallies.
        thresholds: Threshold results (empty when setup failed).
        setup_error: Why setup failed, if it did.
        teardown_error: Why teardown failed, if it did.
        aborted_by: Threshold that stopped the run early, if any.
        interrupted: True if the run was stopped by a signal or ``stop()``.
    """

    scenario_name: str
    verdict: RunVerdict
    started_at: float
    ended_at: float
    duration_seconds: float
    stages: str
    timeline: dict[RunState, float] = field(default_factory=dict)
    snapshots: list[IntervalSnapshot] = field(default_factory=list)
    metrics: dict[str, MetricSummary] = field(default_factory=dict)
    checks: list[CheckStats] = field(default_factory=list)
    thresholds: list[ThresholdResult] = field(default_factory=list)
    setup_error: str | None = None
    teardown_error: str | None = None
    aborted_by: str | None = None
    interrupted: bool = False

    @property
    def passed(self) -> bool:
        return self.verdict is RunVerdict.PASSED

    @property
    def exit_code(self) -> int:
        return self.verdict.exit_code


class Orchestrator:
    """Drives one run of a scenario.

    State machine: IDLE -> SETUP -> RUNNING -> TEARDOWN -> REPORTED
                          SETUP -> REPORTED (setup failed)

    Setup runs once with a shared HTTP client whose requests are not
    recorded. On every scheduler tick the orchestrator scales the virtual
    user population to the target (newest users retire first), flushes the
    metric shards and checks ``abort_on_fail`` thresholds. After the last
    tick every user is stopped, teardown runs with the setup data and the
    final metric summaries, and the thresholds decide the verdict.
    """

    def __init__(
        self,
        scenario: ScenarioDefinition,
        *,
        config: LoadRampConfig | None = None,
        tick_interval: float | None = None,
        graceful_stop: float | None = None,
        on_snapshot: Callable[[IntervalSnapshot], None] | None = None,
        handle_signals: bool = True,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            scenario: The scenario to run.
            config: Engine configuration. Loaded from the environment if
                omitted.
            tick_interval: Seconds between ticks; overrides the config.
            graceful_stop: Seconds users get to finish at shutdown; overrides
                the config.
            on_snapshot: Called with each interval snapshot.
            handle_signals: Install SIGINT/SIGTERM handlers during the run.
        """
        self._scenario = scenario
        self._config = config if config is not None else load_config()
        self._tick_interval = tick_interval or self._config.tick_interval
        self._graceful_stop = (
            graceful_stop if graceful_stop is not None else self._config.graceful_stop
        )
        self._on_snapshot = on_snapshot
        self._handle_signals = handle_signals

        self._state = RunState.IDLE
        self._timeline: dict[RunState, float] = {RunState.IDLE: time.time()}
        self._collector = MetricsCollector(scenario.metric_kinds())
        self._evaluator = ThresholdEvaluator(scenario.thresholds)
        self._scheduler = StageScheduler(scenario.stages)
        self._snapshots: list[IntervalSnapshot] = []
        self._active: list[UserTask] = []
        self._retiring: list[UserTask] = []
        self._next_user_id = 0
        self._stop_event = asyncio.Event()
        self._interrupted = False
        self._aborted_by: str | None = None

    @property
    def state(self) -> RunState:
        return self._state

    @property
    def base_url(self) -> str:
        return self._scenario.base_url or self._config.base_url

    @property
    def collector(self) -> MetricsCollector:
        return self._collector

    @property
    def scheduler(self) -> StageScheduler:
        return self._scheduler

    @property
    def active_user_count(self) -> int:
        """Users running and not asked to retire."""
        return len(self._active)

    async def run(self) -> RunReport:
        """Execute the whole lifecycle.

        Returns:
            The run report. Failing thresholds and a failing setup are
            reported through the verdict, not raised.

        Raises:
            EngineError: If the orchestrator was already used, or the tick
                loop fails unexpectedly.
        """
        if self._state is not RunState.IDLE:
            msg = "An Orchestrator can only run once"
            raise EngineError(msg)

        started_at = time.time()
        logger.info(
            "Starting run: scenario=%s, base_url=%s, %s",
            self._scenario.name,
            self.base_url,
            self._scheduler.describe(),
            extra={"scenario": self._scenario.name},
        )

        async with HttpClient(
            self.base_url,
            headers=dict(self._scenario.default_headers),
            timeout=self._config.request_timeout,
            pool_size=self._config.connection_pool_size,
        ) as client:
            self._transition(RunState.SETUP)
            try:
                setup_data = await self._run_setup(client)
            except SetupFailure as exc:
                logger.error("%s", exc, extra={"scenario": self._scenario.name})  # noqa: TRY400
                self._transition(RunState.REPORTED)
                return self._build_report(
                    RunVerdict.SETUP_FAILED,
                    started_at=started_at,
                    duration=0.0,
                    thresholds=[],
                    setup_error=str(exc),
                )

            context = RunContext(
                scenario_name=self._scenario.name,
                base_url=self.base_url,
                started_at=started_at,
                setup_data=setup_data,
            )

            self._transition(RunState.RUNNING)
            start = time.monotonic()
            if self._handle_signals:
                self._install_signal_handlers()
            try:
                await self._run_ticks(client, context, start)
            except Exception as exc:
                logger.exception("Run loop failed")
                msg = "Run loop failed"
                raise EngineError(msg) from exc
            finally:
                await shutdown_all_users(self._active + self._retiring, self._graceful_stop)
                self._active.clear()
                self._retiring.clear()
                if self._handle_signals:
                    self._remove_signal_handlers()

            duration = time.monotonic() - start
            # Samples written after the last tick.
            self._collector.flush(elapsed_seconds=duration, active_users=0)

            self._transition(RunState.TEARDOWN)
            summaries = self._collector.summaries(duration)
            teardown_error: str | None = None
            try:
                await self._run_teardown(client, setup_data, summaries)
            except TeardownFailure as exc:
                teardown_error = str(exc)
                logger.warning("%s", exc, extra={"scenario": self._scenario.name})

        results = self._evaluator.evaluate(self._collector, duration)
        # An aborted run fails even if the final numbers recovered.
        if self._aborted_by is None and all_passed(results):
            verdict = RunVerdict.PASSED
        else:
            verdict = RunVerdict.THRESHOLDS_FAILED
        for result in results:
            if not result.passed:
                logger.info("Threshold failed: %s (%s)", result.threshold, result.status.value)

        self._transition(RunState.REPORTED)
        report = self._build_report(
            verdict,
            started_at=started_at,
            duration=duration,
            thresholds=results,
            teardown_error=teardown_error,
        )
        logger.info(
            "Run finished: verdict=%s, duration=%.1fs, iterations=%d",
            verdict.name,
            duration,
            int(summaries["iterations"].values["count"]),
        )
        return report

    def stop(self) -> None:
        """Request a graceful stop; the tick loop exits at once."""
        if self._state in (RunState.IDLE, RunState.SETUP, RunState.RUNNING):
            logger.info("Graceful shutdown requested")
            self._interrupted = True
            self._stop_event.set()

    # ------------------------------------------------------------------
    # Phases
    # ------------------------------------------------------------------

    async def _run_setup(self, client: HttpClient) -> Any:
        try:
            return await self._scenario.lifecycle.setup(client)
        except SetupFailure:
            raise
        except Exception as exc:
            msg = f"Setup failed: {type(exc).__name__}: {exc}"
            raise SetupFailure(msg) from exc

    async def _run_teardown(
        self,
        client: HttpClient,
        data: Any,
        summaries: Mapping[str, MetricSummary],
    ) -> None:
        try:
            await self._scenario.lifecycle.teardown(client, data, summaries)
        except TeardownFailure:
            raise
        except Exception as exc:
            msg = f"Teardown failed: {type(exc).__name__}: {exc}"
            raise TeardownFailure(msg) from exc

    async def _run_ticks(self, client: HttpClient, context: RunContext, start: float) -> None:
        for command in self._scheduler.iter_commands(self._tick_interval):
            if self._stop_event.is_set():
                break

            # Wait until the right time for this tick, waking early on stop.
            delay = start + command.elapsed_seconds - time.monotonic()
            if delay > 0:
                with contextlib.suppress(TimeoutError):
                    await asyncio.wait_for(self._stop_event.wait(), timeout=delay)
            if self._stop_event.is_set():
                break

            self._scale_users(command.target_concurrency, client, context)

            elapsed = time.monotonic() - start
            snapshot = self._collector.flush(
                elapsed_seconds=elapsed,
                active_users=self.active_user_count,
                target_users=command.target_concurrency,
            )
            self._snapshots.append(snapshot)
            logger.debug(
                "Tick %.1fs: users=%d/%d, rps=%.1f, p95=%.1fms, failed=%d",
                elapsed,
                snapshot.active_users,
                snapshot.target_users,
                snapshot.requests_per_second,
                snapshot.latency_p95,
                snapshot.failed_requests,
            )
            if self._on_snapshot is not None:
                self._on_snapshot(snapshot)

            if self._evaluator.has_abort_rules:
                crossed = self._evaluator.first_abort(self._collector, elapsed)
                if crossed is not None:
                    self._aborted_by = str(crossed.threshold)
                    logger.warning(
                        "Threshold %s crossed (observed %s); aborting run",
                        self._aborted_by,
                        crossed.observed,
                    )
                    break

    def _scale_users(self, target: int, client: HttpClient, context: RunContext) -> None:
        """Adjust the number of active virtual users to match *target*."""
        self._reap()
        current = len(self._active)

        if target > current:
            for _ in range(target - current):
                user_id = self._next_user_id
                self._next_user_id += 1
                user = VirtualUser(
                    user_id,
                    self._scenario.steps,
                    client,
                    self._collector.shard(user_id),
                    context,
                )
                task = asyncio.create_task(user.run(), name=f"virtual-user-{user_id}")
                self._active.append((user, task))

        elif target < current:
            # Most recently started users retire first.
            for _ in range(current - target):
                user, task = self._active.pop()
                user.retire()
                self._retiring.append((user, task))

    def _reap(self) -> None:
        """Forget finished tasks, logging any that died with an error."""
        for user, task in self._active:
            if task.done() and not task.cancelled() and task.exception() is not None:
                logger.error(
                    "Virtual user %d crashed",
                    user.user_id,
                    exc_info=task.exception(),
                    extra={"user_id": user.user_id},
                )
        self._active = [(u, t) for u, t in self._active if not t.done()]
        self._retiring = [(u, t) for u, t in self._retiring if not t.done()]

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _transition(self, new_state: RunState) -> None:
        logger.info(
            "Run state %s -> %s",
            self._state.name,
            new_state.name,
            extra={"run_state": new_state.name, "scenario": self._scenario.name},
        )
        self._state = new_state
        self._timeline[new_state] = time.time()

    def _build_report(
        self,
        verdict: RunVerdict,
        *,
        started_at: float,
        duration: float,
        thresholds: list[ThresholdResult],
        setup_error: str | None = None,
        teardown_error: str | None = None,
    ) -> RunReport:
        return RunReport(
            scenario_name=self._scenario.name,
            verdict=verdict,
            started_at=started_at,
            ended_at=time.time(),
            duration_seconds=duration,
            stages=describe_stages(self._scenario.stages),
            timeline=dict(self._timeline),
            snapshots=list(self._snapshots),
            metrics=self._collector.summaries(duration),
            checks=self._collector.checks(),
            thresholds=thresholds,
            setup_error=setup_error,
            teardown_error=teardown_error,
            aborted_by=self._aborted_by,
            interrupted=self._interrupted,
        )

    def _install_signal_handlers(self) -> None:
        """Install SIGINT and SIGTERM handlers that request a graceful stop."""
        loop = asyncio.get_running_loop()

        def _signal_handler() -> None:
            logger.info("Signal received, initiating graceful shutdown")
            self.stop()

        if sys.platform != "win32":
            loop.add_signal_handler(signal.SIGINT, _signal_handler)
            loop.add_signal_handler(signal.SIGTERM, _signal_handler)
        else:
            # Windows doesn't support add_signal_handler
            signal.signal(signal.SIGINT, lambda _s, _f: _signal_handler())
            signal.signal(signal.SIGTERM, lambda _s, _f: _signal_handler())

    def _remove_signal_handlers(self) -> None:
        """Remove custom signal handlers, restoring defaults."""
        if sys.platform != "win32":
            loop = asyncio.get_running_loop()
            for sig in (signal.SIGINT, signal.SIGTERM):
                loop.remove_signal_handler(sig)
        else:
            signal.signal(signal.SIGINT, signal.default_int_handler)
            signal.signal(signal.SIGTERM, signal.SIG_DFL)
