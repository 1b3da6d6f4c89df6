"""Configuration loading for LoadRamp."""

from __future__ import annotations

import os
from dataclasses import dataclass

from loadramp._internal.errors import ConfigError

DEFAULT_BASE_URL = "http://localhost:4000"


@dataclass(frozen=True)
class LoadRampConfig:
    """Global LoadRamp configuration.

    Attributes:
        base_url: Target base URL used when a scenario does not set one.
        request_timeout: Total timeout for every HTTP request, in seconds.
        connection_pool_size: Maximum simultaneous connections to the target.
        tick_interval: Seconds between scheduler ticks (scale + metric flush).
        graceful_stop: Seconds virtual users are given to finish on shutdown
            before they are cancelled.
    """

    base_url: str = DEFAULT_BASE_URL
    request_timeout: float = 30.0
    connection_pool_size: int = 100
    tick_interval: float = 1.0
    graceful_stop: float = 5.0


def _positive_float(name: str, default: str, *, allow_zero: bool = False) -> float:
    raw = os.environ.get(name, default)
    try:
        value = float(raw)
    except ValueError:
        msg = f"{name} must be a number, got: {raw!r}"
        raise ConfigError(msg) from None
    if value < 0 or (value == 0 and not allow_zero):
        bound = "non-negative" if allow_zero else "positive"
        msg = f"{name} must be {bound}, got: {value}"
        raise ConfigError(msg)
    return value


def load_config() -> LoadRampConfig:
    """Load configuration from environment variables with defaults.

    Environment variables:
        BASE_URL: Target base URL (default: ``http://localhost:4000``).
        LOADRAMP_TIMEOUT: Request timeout in seconds (default: 30.0).
        LOADRAMP_POOL_SIZE: Connection pool size (default: 100).
        LOADRAMP_TICK_INTERVAL: Scheduler tick in seconds (default: 1.0).
        LOADRAMP_GRACEFUL_STOP: Shutdown grace period in seconds; 0 cancels
            users at once (default: 5.0).

    Returns:
        Populated LoadRampConfig instance.

    Raises:
        ConfigError: If an environment variable has an invalid value.
    """
    pool_size_str = os.environ.get("LOADRAMP_POOL_SIZE", "100")
    try:
        pool_size = int(pool_size_str)
    except ValueError:
        msg = f"LOADRAMP_POOL_SIZE must be an integer, got: {pool_size_str!r}"
        raise ConfigError(msg) from None

    if pool_size < 1:
        msg = f"LOADRAMP_POOL_SIZE must be >= 1, got: {pool_size}"
        raise ConfigError(msg)

    base_url = os.environ.get("BASE_URL", "").strip() or DEFAULT_BASE_URL

    return LoadRampConfig(
        base_url=base_url,
        request_timeout=_positive_float("LOADRAMP_TIMEOUT", "30.0"),
        connection_pool_size=pool_size,
        tick_interval=_positive_float("LOADRAMP_TICK_INTERVAL", "1.0"),
        graceful_stop=_positive_float("LOADRAMP_GRACEFUL_STOP", "5.0", allow_zero=True),
    )
