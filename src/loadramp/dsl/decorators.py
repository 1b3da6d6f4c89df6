"""Class-based scenario authoring.

Example::

    @scenario(
        name="Service benchmark",
        stages=[("2m", 10), ("5m", 10), ("2m", 0)],
        thresholds={"http_req_failed": ["rate<0.1"]},
    )
    class Benchmark:
        steps = [Request("GET", "/health"), Pause(1)]

        @setup
        async def check_service(self, client):
            resp = await client.get("/health")
            if resp.status != 200:
                raise RuntimeError(f"health check returned {resp.status}")
            return {"started": time.time()}

        @teardown
        async def report(self, client, data, metrics):
            ...
"""

from __future__ import annotations

import inspect
from typing import TYPE_CHECKING, Any

from loadramp._internal.errors import ScenarioError
from loadramp.dsl.scenario import ScenarioDefinition

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping, Sequence

    from loadramp.dsl.http_client import HttpClient
    from loadramp.dsl.stages import Stage
    from loadramp.metrics.models import MetricSummary

# Marker attribute names set on decorated methods.
_SETUP_MARKER = "_loadramp_setup"
_TEARDOWN_MARKER = "_loadramp_teardown"


class _ClassLifecycle:
    """Adapts ``@setup``/``@teardown`` methods of one instance to :class:`Lifecycle`."""

    def __init__(
        self,
        cls: type,
        setup_name: str | None,
        teardown_name: str | None,
    ) -> None:
        self._cls = cls
        self._setup_name = setup_name
        self._teardown_name = teardown_name
        self._instance: Any = None

    def _get_instance(self) -> Any:
        if self._instance is None:
            self._instance = self._cls()
        return self._instance

    async def setup(self, client: HttpClient) -> Any:
        if self._setup_name is None:
            return None
        return await getattr(self._get_instance(), self._setup_name)(client)

    async def teardown(
        self,
        client: HttpClient,
        data: Any,
        metrics: Mapping[str, MetricSummary],
    ) -> None:
        if self._teardown_name is not None:
            await getattr(self._get_instance(), self._teardown_name)(client, data, metrics)


def scenario(
    *,
    name: str,
    stages: Sequence[Stage | Mapping[str, object] | tuple[str | float, int]],
    thresholds: Mapping[str, Sequence[str | Mapping[str, object]]] | None = None,
    base_url: str | None = None,
    default_headers: dict[str, str] | None = None,
) -> Callable[[type], ScenarioDefinition]:
    """Decorate a class as a LoadRamp scenario.

    The class must define a ``steps`` attribute (list of steps). At most one
    method may be marked ``@setup`` and at most one ``@teardown``.

    Args:
        name: Human-readable name for this scenario.
        stages: Ramp stages as :class:`Stage` objects, ``(duration, target)``
            tuples or ``{"duration", "target"}`` mappings.
        thresholds: k6-style ``{metric: [expression, ...]}`` mapping.
        base_url: Target base URL; None means use the configured default.
        default_headers: Headers applied to every request.

    Returns:
        A class decorator that transforms the class into a
        ScenarioDefinition.

    Raises:
        ScenarioError: If ``steps`` is missing, or hooks are duplicated or
            not coroutine functions.
    """

    def decorator(cls: type) -> ScenarioDefinition:
        setup_name: str | None = None
        teardown_name: str | None = None

        for attr_name in dir(cls):
            if attr_name.startswith("__"):
                continue

            attr = getattr(cls, attr_name, None)
            if attr is None or not callable(attr):
                continue

            if getattr(attr, _SETUP_MARKER, False):
                if not inspect.iscoroutinefunction(attr):
                    msg = f"Setup method {cls.__name__}.{attr_name} must be an async function"
                    raise ScenarioError(msg)
                if setup_name is not None:
                    msg = f"Scenario {cls.__name__} has multiple @setup methods"
                    raise ScenarioError(msg)
                setup_name = attr_name

            if getattr(attr, _TEARDOWN_MARKER, False):
                if not inspect.iscoroutinefunction(attr):
                    msg = f"Teardown method {cls.__name__}.{attr_name} must be an async function"
                    raise ScenarioError(msg)
                if teardown_name is not None:
                    msg = f"Scenario {cls.__name__} has multiple @teardown methods"
                    raise ScenarioError(msg)
                teardown_name = attr_name

        steps = getattr(cls, "steps", None)
        if steps is None:
            msg = f"Scenario {cls.__name__} has no 'steps' attribute"
            raise ScenarioError(msg)

        return ScenarioDefinition(
            name=name,
            steps=list(steps),
            stages=list(stages),  # type: ignore[arg-type]
            thresholds=thresholds or {},  # type: ignore[arg-type]
            base_url=base_url,
            default_headers=dict(default_headers or {}),
            lifecycle=_ClassLifecycle(cls, setup_name, teardown_name),
        )

    return decorator


def setup(func: Callable[..., Any]) -> Callable[..., Any]:
    """Mark a method as the scenario setup hook.

    Called once per run, before any virtual user starts, with the shared
    HTTP client. Its return value is the setup data.
    """
    setattr(func, _SETUP_MARKER, True)
    return func


def teardown(func: Callable[..., Any]) -> Callable[..., Any]:
    """Mark a method as the scenario teardown hook.

    Called once per run after all virtual users have stopped, with the HTTP
    client, the setup data and the final metric summaries.
    """
    setattr(func, _TEARDOWN_MARKER, True)
    return func
