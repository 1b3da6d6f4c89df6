"""Stage scheduler: target concurrency as a function of elapsed time."""

from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum, auto
from typing import TYPE_CHECKING

from loadramp._internal.errors import ConfigError
from loadramp.dsl.stages import describe_stages

if TYPE_CHECKING:
    from collections.abc import Iterator, Sequence

    from loadramp.dsl.stages import Stage


class ScaleDirection(Enum):
    """Direction of a concurrency scale event."""

    UP = auto()
    DOWN = auto()
    HOLD = auto()


@dataclass(frozen=True)
class ScaleCommand:
    """A command to adjust the number of active virtual users.

    Attributes:
        elapsed_seconds: Time offset from run start.
        target_concurrency: Desired number of active virtual users.
        direction: Whether this is scaling up, down, or holding steady.
        delta: Absolute change in virtual user count (always >= 0).
    """

    elapsed_seconds: float
    target_concurrency: int
    direction: ScaleDirection
    delta: int


class StageScheduler:
    """Piecewise-linear concurrency ramp built from an ordered stage list.

    Stage *i* moves linearly from the target of stage *i-1* (``start_users``
    for the first stage) to its own target over its duration. Queries are
    computed from absolute elapsed time, so calling :meth:`concurrency_at`
    at any granularity never accumulates rounding drift.

    Example::

        scheduler = StageScheduler([Stage(10.0, 10)])
        scheduler.concurrency_at(0.0)   # 0
        scheduler.concurrency_at(5.0)   # 5
        scheduler.concurrency_at(10.0)  # 10
    """

    def __init__(self, stages: Sequence[Stage], start_users: int = 0) -> None:
        """Initialize the scheduler.

        Args:
            stages: Ordered stages. Must not be empty.
            start_users: Concurrency before the first stage begins.

        Raises:
            ConfigError: If *stages* is empty or *start_users* is negative.
        """
        if not stages:
            msg = "StageScheduler needs at least one stage"
            raise ConfigError(msg)
        if start_users < 0:
            msg = f"start_users must be non-negative, got {start_users}"
            raise ConfigError(msg)
        self._stages = list(stages)
        self._start_users = start_users

        # (start_offset, end_offset, from_users, stage) for each stage.
        self._windows: list[tuple[float, float, int, Stage]] = []
        offset = 0.0
        previous = start_users
        for stage in self._stages:
            self._windows.append((offset, offset + stage.duration, previous, stage))
            offset += stage.duration
            previous = stage.target
        self._total_duration = offset

    @property
    def stages(self) -> list[Stage]:
        return list(self._stages)

    @property
    def total_duration(self) -> float:
        """Sum of all stage durations in seconds."""
        return self._total_duration

    @property
    def max_concurrency(self) -> int:
        return max(self._start_users, *(s.target for s in self._stages))

    def concurrency_at(self, elapsed_seconds: float) -> int:
        """Return the target concurrency at *elapsed_seconds* from run start.

        Before the run (``elapsed <= 0``) this is ``start_users``; at a stage's
        end boundary it is exactly that stage's target; after the last stage
        it stays at the last target.
        """
        if elapsed_seconds <= 0:
            return self._start_users
        for start, end, from_users, stage in self._windows:
            if elapsed_seconds < end:
                fraction = (elapsed_seconds - start) / stage.duration
                return round(from_users + (stage.target - from_users) * fraction)
        return self._stages[-1].target

    def stage_index_at(self, elapsed_seconds: float) -> int:
        """Index of the stage active at *elapsed_seconds* (last stage once finished)."""
        for index, (_start, end, _from, _stage) in enumerate(self._windows):
            if elapsed_seconds < end:
                return index
        return len(self._windows) - 1

    def iter_commands(self, tick_interval: float = 1.0) -> Iterator[ScaleCommand]:
        """Yield a ScaleCommand for every tick from 0 to the total duration.

        Tick *i* is at ``i * tick_interval``; the final tick is always exactly
        at :attr:`total_duration`.

        Args:
            tick_interval: Seconds between ticks. Must be > 0.

        Raises:
            ConfigError: If *tick_interval* is not positive.
        """
        if tick_interval <= 0:
            msg = f"tick_interval must be positive, got {tick_interval}"
            raise ConfigError(msg)

        prev_concurrency = 0
        for i in range(self.total_ticks(tick_interval)):
            elapsed = min(i * tick_interval, self._total_duration)
            target = self.concurrency_at(elapsed)
            delta = target - prev_concurrency
            if delta > 0:
                direction = ScaleDirection.UP
            elif delta < 0:
                direction = ScaleDirection.DOWN
            else:
                direction = ScaleDirection.HOLD

            yield ScaleCommand(
                elapsed_seconds=elapsed,
                target_concurrency=target,
                direction=direction,
                delta=abs(delta),
            )
            prev_concurrency = target

    def total_ticks(self, tick_interval: float = 1.0) -> int:
        """Number of commands :meth:`iter_commands` yields for *tick_interval*."""
        return math.ceil(self._total_duration / tick_interval - 1e-9) + 1

    def describe(self) -> str:
        return f"Stages: {describe_stages(self._stages)}"
