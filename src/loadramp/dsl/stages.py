"""Ramp stages: ``(duration, target)`` pairs describing concurrency over time."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from loadramp._internal.durations import format_duration, parse_duration
from loadramp._internal.errors import ConfigError

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping


@dataclass(frozen=True)
class Stage:
    """One window of a ramp.

    Over ``duration`` seconds the virtual-user count moves linearly from the
    previous stage's target (0 for the first stage) to ``target``.

    Attributes:
        duration: Length of the stage in seconds. Must be > 0.
        target: Concurrency reached at the end of the stage. Must be >= 0.

    Raises:
        ConfigError: If either value is out of range.
    """

    duration: float
    target: int

    def __post_init__(self) -> None:
        if self.duration <= 0:
            msg = f"Stage duration must be positive, got {self.duration}"
            raise ConfigError(msg)
        if isinstance(self.target, bool) or not isinstance(self.target, int):
            msg = f"Stage target must be an integer, got {self.target!r}"
            raise ConfigError(msg)
        if self.target < 0:
            msg = f"Stage target must be non-negative, got {self.target}"
            raise ConfigError(msg)

    @classmethod
    def of(cls, duration: str | float, target: int) -> Stage:
        """Build a stage from a duration string such as ``"2m"``."""
        return cls(duration=parse_duration(duration), target=target)

    @classmethod
    def parse(cls, text: str) -> Stage:
        """Parse the CLI form ``DURATION:TARGET``, e.g. ``"2m:10"``.

        Raises:
            ConfigError: If the text is malformed.
        """
        duration, sep, target = text.rpartition(":")
        if not sep or not duration:
            msg = f"Invalid stage {text!r} (expected DURATION:TARGET, e.g. '2m:10')"
            raise ConfigError(msg)
        try:
            users = int(target)
        except ValueError:
            msg = f"Invalid stage {text!r}: target {target!r} is not an integer"
            raise ConfigError(msg) from None
        return cls.of(duration, users)

    def describe(self) -> str:
        return f"{format_duration(self.duration)} -> {self.target}"


def build_stages(
    stages: Iterable[Stage | Mapping[str, object] | tuple[str | float, int]],
) -> list[Stage]:
    """Normalise a stage list.

    Accepts :class:`Stage` objects, ``{"duration": "2m", "target": 10}``
    mappings, or ``("2m", 10)`` tuples.

    Raises:
        ConfigError: If the list is empty or an entry is invalid.
    """
    result: list[Stage] = []
    for entry in stages:
        if isinstance(entry, Stage):
            result.append(entry)
        elif isinstance(entry, tuple):
            duration, target = entry
            result.append(Stage.of(duration, target))
        else:
            try:
                duration = entry["duration"]
                target = entry["target"]
            except KeyError as exc:
                msg = f"Stage mapping is missing {exc.args[0]!r}: {entry!r}"
                raise ConfigError(msg) from None
            result.append(Stage.of(duration, target))  # type: ignore[arg-type]
    if not result:
        msg = "At least one stage is required"
        raise ConfigError(msg)
    return result


def describe_stages(stages: Iterable[Stage]) -> str:
    """Compact one-line description, e.g. ``"2m -> 10, 5m -> 10, 2m -> 0"``."""
    return ", ".join(s.describe() for s in stages)
