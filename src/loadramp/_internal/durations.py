"""Parsing of human-written durations such as ``"2m"`` or ``"1m30s"``."""

from __future__ import annotations

import re

from loadramp._internal.errors import ConfigError

_UNIT_SECONDS = {
    "ms": 0.001,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}

_PART_RE = re.compile(r"(\d+(?:\.\d+)?)(ms|s|m|h)")


def parse_duration(value: str | float) -> float:
    """Convert a duration to seconds.

    Accepts plain numbers (seconds), numeric strings, or unit strings made of
    one or more ``<number><unit>`` parts where unit is ``ms``, ``s``, ``m`` or
    ``h`` (for example ``"2m"``, ``"1m30s"``, ``"250ms"``).

    Args:
        value: The duration to parse.

    Returns:
        Duration in seconds.

    Raises:
        ConfigError: If the value cannot be parsed or is negative.
    """
    if isinstance(value, bool):
        msg = f"Invalid duration: {value!r}"
        raise ConfigError(msg)

    if isinstance(value, int | float):
        seconds = float(value)
    else:
        text = value.strip().lower()
        try:
            seconds = float(text)
        except ValueError:
            seconds = _parse_unit_string(text, value)

    if seconds < 0:
        msg = f"Duration must be non-negative, got: {value!r}"
        raise ConfigError(msg)
    return seconds


def _parse_unit_string(text: str, original: str) -> float:
    pos = 0
    total = 0.0
    for match in _PART_RE.finditer(text):
        if match.start() != pos:
            break
        total += float(match.group(1)) * _UNIT_SECONDS[match.group(2)]
        pos = match.end()
    if pos == 0 or pos != len(text):
        msg = f"Invalid duration: {original!r} (expected e.g. '30s', '2m', '1m30s', '500ms')"
        raise ConfigError(msg)
    return total


def format_duration(seconds: float) -> str:
    """Render seconds in the compact ``1m30s`` form used in logs and reports."""
    if seconds < 1 and seconds > 0:
        return f"{seconds * 1000:g}ms"
    minutes, secs = divmod(seconds, 60)
    hours, minutes = divmod(int(minutes), 60)
    parts = []
    if hours:
        parts.append(f"{hours}h")
    if minutes:
        parts.append(f"{minutes}m")
    if secs or not parts:
        parts.append(f"{secs:g}s")
    return "".join(parts)
