"""Shared type aliases for LoadRamp."""

from __future__ import annotations

# HTTP headers dictionary.
Headers = dict[str, str]

# Pause range (min_seconds, max_seconds).
PauseRange = tuple[float, float]
