"""Dynamic scenario file loading via importlib."""

from __future__ import annotations

import importlib.util
import sys
from pathlib import Path

from loadramp._internal.errors import LoadRampError, ScenarioError
from loadramp.dsl.scenario import ScenarioDefinition


def load_scenario(file_path: str | Path, name: str | None = None) -> ScenarioDefinition:
    """Load a scenario from a Python file.

    Imports the file with ``importlib`` and scans the module globals for
    ``ScenarioDefinition`` instances, whether built directly or by the
    ``@scenario`` decorator.

    Args:
        file_path: Path to the Python scenario file.
        name: Scenario name to pick when the file defines several. Defaults
            to the first one found.

    Returns:
        The selected ``ScenarioDefinition``.

    Raises:
        ScenarioError: If the file does not exist, cannot be imported,
            or contains no matching scenario.
    """
    path = Path(file_path)

    if not path.exists():
        msg = f"Scenario file not found: {path}"
        raise ScenarioError(msg)

    if path.suffix != ".py":
        msg = f"Scenario file must be a .py file, got: {path}"
        raise ScenarioError(msg)

    module_name = f"loadramp_scenario_{path.stem}"

    spec = importlib.util.spec_from_file_location(module_name, path)
    if spec is None or spec.loader is None:
        msg = f"Could not create module spec for: {path}"
        raise ScenarioError(msg)

    module = importlib.util.module_from_spec(spec)
    sys.modules[module_name] = module

    try:
        spec.loader.exec_module(module)
    except LoadRampError:
        sys.modules.pop(module_name, None)
        raise
    except Exception as exc:
        sys.modules.pop(module_name, None)
        msg = f"Failed to import scenario file {path}: {exc}"
        raise ScenarioError(msg) from exc

    definitions: list[ScenarioDefinition] = [
        obj for obj in vars(module).values() if isinstance(obj, ScenarioDefinition)
    ]

    if name is not None:
        definitions = [d for d in definitions if d.name == name]

    if not definitions:
        sys.modules.pop(module_name, None)
        wanted = f"named {name!r} " if name is not None else ""
        msg = (
            f"No scenario {wanted}found in {path}. Define a ScenarioDefinition "
            f"or decorate a class with @scenario."
        )
        raise ScenarioError(msg)

    return definitions[0]
