"""Custom exception hierarchy for LoadRamp."""

from __future__ import annotations


class LoadRampError(Exception):
    """Base exception for all LoadRamp errors.

    All custom exceptions in the LoadRamp engine inherit from this class,
    making it easy to catch any LoadRamp-specific error with a single
    except clause.
    """


class ScenarioError(LoadRampError):
    """Raised when a scenario definition is invalid.

    Examples:
        - A scenario has no steps or no stages.
        - A step list contains an object that is not a known step type.
        - The same custom metric name is emitted with two different kinds.
        - A scenario file cannot be loaded or parsed.
    """


class ConfigError(LoadRampError):
    """Raised when configuration is invalid or missing.

    Examples:
        - Required environment variable has an invalid value.
        - A stage duration cannot be parsed.
        - A threshold expression is malformed or not applicable to its metric.
    """


class EngineError(LoadRampError):
    """Raised when the run loop itself fails unexpectedly."""


class SetupFailure(LoadRampError):
    """Raised when the scenario setup hook fails.

    Fatal: the run is reported as unable to start and no virtual user is
    created.
    """


class TeardownFailure(LoadRampError):
    """Raised when the scenario teardown hook fails.

    Logged by the orchestrator; never changes the run verdict.
    """
