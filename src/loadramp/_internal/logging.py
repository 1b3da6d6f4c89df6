"""Logging setup for LoadRamp.

All engine modules log under the ``loadramp`` namespace. The CLI configures
one handler on that namespace; library users who never call
:func:`setup_logging` get standard ``logging`` propagation instead.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import UTC, datetime
from typing import TextIO

_ROOT_LOGGER = "loadramp"

# Record attributes passed via ``extra=`` that the JSON formatter copies out.
_CONTEXT_FIELDS = ("run_state", "user_id", "scenario")


class _JsonFormatter(logging.Formatter):
    """One JSON object per line: timestamp, level, logger, message.

    Context fields attached with ``extra={...}`` (run state, virtual user id,
    scenario name) are included when present.
    """

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, object] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for name in _CONTEXT_FIELDS:
            value = getattr(record, name, None)
            if value is not None:
                entry[name] = value
        if record.exc_info and record.exc_info[1] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


def setup_logging(
    level: int = logging.INFO,
    *,
    json_format: bool = False,
    stream: TextIO | None = None,
) -> logging.Logger:
    """Configure and return the ``loadramp`` logger.

    Repeated calls only update the level of the existing handler, so the CLI
    and tests can call this freely without duplicating output.

    Args:
        level: Logging level (e.g., ``logging.DEBUG``). Defaults to INFO.
        json_format: Emit one JSON object per record instead of plain text.
        stream: Destination stream. Defaults to ``sys.stderr`` so that the run
            summary on stdout stays machine-readable.

    Returns:
        The configured ``loadramp`` logger.
    """
    logger = logging.getLogger(_ROOT_LOGGER)
    logger.setLevel(level)

    if logger.handlers:
        for handler in logger.handlers:
            handler.setLevel(level)
        return logger

    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setLevel(level)

    if json_format:
        formatter: logging.Formatter = _JsonFormatter()
    else:
        formatter = logging.Formatter(
            "%(asctime)s [%(levelname)-8s] %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

    handler.setFormatter(formatter)
    logger.addHandler(handler)
    logger.propagate = False

    return logger


def get_logger(name: str) -> logging.Logger:
    """Return a child logger, e.g. ``get_logger("engine.vu")`` -> ``loadramp.engine.vu``."""
    return logging.getLogger(f"{_ROOT_LOGGER}.{name}")
