"""
Scenario, outcome and context definitions.
"""

from __future__ import annotations

import random
from dataclasses import dataclass, field
from typing import (
    TYPE_CHECKING,
    Any,
    Awaitable,
    Callable,
    Dict,
    List,
    Mapping,
    Optional,
    Sequence,
    Union,
)

from stampede.delays import DelayStrategy, NoDelay
from stampede.exceptions import StampedeConfigError
from stampede.models import DurationLike, RampPolicy, RampStage, parse_duration
from stampede.ramp import RampSchedule

if TYPE_CHECKING:
    from stampede.http import HttpTarget
    from stampede.metrics.sink import MetricSink


@dataclass(frozen=True)
class Outcome:
    """
    Result of one scenario body invocation.

    Attributes:
        success: Whether the iteration met its checks.
        duration: Seconds spent in the body. Filled in by the executor.
        tags: Sub-check attribution, e.g. {"write status is 201": "fail"}.
        error: Exception class name when the body raised.
    """

    success: bool
    duration: Optional[float] = None
    tags: Mapping[str, str] = field(default_factory=dict)
    error: Optional[str] = None

    @classmethod
    def ok(cls, **tags: str) -> "Outcome":
        return cls(success=True, tags=tags)

    @classmethod
    def failed(cls, error: Optional[str] = None, **tags: str) -> "Outcome":
        return cls(success=False, tags=tags, error=error)


@dataclass(frozen=True)
class ScenarioContext:
    """
    Per-iteration context handed to a scenario body.

    Attributes:
        scenario: Name of the running scenario.
        vu_id: Virtual user number within the scenario's pool (1-based).
        iteration: Iteration number for this virtual user (0-based).
        setup_data: Whatever the run's setup hook returned.
        sink: The run's metric sink, for custom metrics.
        target: This virtual user's own HTTP target, if the run has one.
        rng: Per-VU random generator for payload generation.
    """

    scenario: str
    vu_id: int
    iteration: int
    sink: "MetricSink"
    setup_data: Any = None
    target: Optional["HttpTarget"] = None
    rng: random.Random = field(default_factory=random.Random)


BodyResult = Union[Outcome, bool]
ScenarioBody = Callable[[ScenarioContext], Union[BodyResult, Awaitable[BodyResult]]]
Hook = Callable[..., Any]


@dataclass(frozen=True)
class Scenario:
    """
    A named, independently ramped unit of load.

    Attributes:
        name: Scenario name (unique within a run).
        body: Sync or async callable taking a ScenarioContext and
            returning an Outcome or a bool.
        stages: Concurrency curve.
        start_vus: Concurrency before the first stage.
        start_time: Offset in seconds from run start to pool activation.
        delay: Inter-iteration delay strategy.
        ramp_policy: LINEAR (default) or HOLD.
        graceful_stop: Seconds to wait for in-flight iterations at the end
            of the last stage before cancelling them.
        metric_prefix: Prefix for <prefix>_errors, <prefix>_success_rate
            and <prefix>_duration. Defaults to the scenario name.
        timeout: Optional bound in seconds on one body invocation.
    """

    name: str
    body: ScenarioBody
    stages: Sequence[RampStage]
    start_vus: int = 0
    start_time: float = 0.0
    delay: DelayStrategy = field(default_factory=NoDelay)
    ramp_policy: RampPolicy = RampPolicy.LINEAR
    graceful_stop: float = 30.0
    metric_prefix: Optional[str] = None
    timeout: Optional[float] = None

    def __post_init__(self) -> None:
        if not self.name:
            raise StampedeConfigError("Scenario name must be non-empty")
        if not callable(self.body):
            raise StampedeConfigError(
                f"Scenario {self.name!r} body is not callable",
                details={"scenario": self.name},
            )
        if not self.stages:
            raise StampedeConfigError(
                f"Scenario {self.name!r} needs at least one stage",
                code="missing_stages",
                details={"scenario": self.name},
            )
        if self.start_vus < 0:
            raise StampedeConfigError(
                f"Scenario {self.name!r}: start_vus must be >= 0",
                details={"scenario": self.name},
            )
        if self.start_time < 0 or self.graceful_stop < 0:
            raise StampedeConfigError(
                f"Scenario {self.name!r}: start_time and graceful_stop must be >= 0",
                details={"scenario": self.name},
            )
        if self.timeout is not None and self.timeout <= 0:
            raise StampedeConfigError(
                f"Scenario {self.name!r}: timeout must be > 0",
                details={"scenario": self.name},
            )
        object.__setattr__(self, "stages", tuple(self.stages))
        object.__setattr__(self, "ramp_policy", RampPolicy(self.ramp_policy))

    @classmethod
    def constant(
        cls,
        name: str,
        body: ScenarioBody,
        *,
        vus: int,
        duration: DurationLike,
        **kwargs: Any,
    ) -> "Scenario":
        """A fixed number of VUs for a fixed duration."""
        return cls(
            name=name,
            body=body,
            stages=[RampStage(duration=parse_duration(duration), target=vus)],
            start_vus=vus,
            **kwargs,
        )

    @property
    def schedule(self) -> RampSchedule:
        return RampSchedule(
            self.stages, start_vus=self.start_vus, policy=self.ramp_policy
        )

    @property
    def end_offset(self) -> float:
        """Seconds from run start to the end of the last stage."""
        return self.start_time + sum(s.duration for s in self.stages)

    @property
    def prefix(self) -> str:
        return self.metric_prefix or self.name

    @property
    def errors_metric(self) -> str:
        return f"{self.prefix}_errors"

    @property
    def success_rate_metric(self) -> str:
        return f"{self.prefix}_success_rate"

    @property
    def duration_metric(self) -> str:
        return f"{self.prefix}_duration"


class ScenarioRegistry:
    """
    Named scenario bodies and lifecycle hooks.

    Config files refer to bodies by name ("logs.write"); resolving happens
    when the config is loaded, so a typo fails before any traffic is sent.

    Example:
        registry = ScenarioRegistry()

        @registry.scenario("orders.create")
        async def create_order(ctx):
            ...

        body = registry.resolve("orders.create")
    """

    def __init__(self) -> None:
        self._bodies: Dict[str, ScenarioBody] = {}
        self._hooks: Dict[str, Hook] = {}

    def register(self, name: str, body: ScenarioBody) -> None:
        if not name or not isinstance(name, str):
            raise ValueError("Scenario name must be a non-empty string")
        if not callable(body):
            raise ValueError(f"Scenario {name!r} body must be callable")
        self._bodies[name] = body

    def register_hook(self, name: str, hook: Hook) -> None:
        if not name or not isinstance(name, str):
            raise ValueError("Hook name must be a non-empty string")
        if not callable(hook):
            raise ValueError(f"Hook {name!r} must be callable")
        self._hooks[name] = hook

    def scenario(self, name: str) -> Callable[[ScenarioBody], ScenarioBody]:
        """Decorator form of register()."""

        def decorator(body: ScenarioBody) -> ScenarioBody:
            self.register(name, body)
            return body

        return decorator

    def hook(self, name: str) -> Callable[[Hook], Hook]:
        """Decorator form of register_hook()."""

        def decorator(fn: Hook) -> Hook:
            self.register_hook(name, fn)
            return fn

        return decorator

    def resolve(self, name: str) -> ScenarioBody:
        try:
            return self._bodies[name]
        except KeyError:
            raise StampedeConfigError(
                f"Unknown scenario {name!r}",
                code="unknown_scenario",
                details={"exec": name, "known": self.list_scenarios()},
            ) from None

    def resolve_hook(self, name: str) -> Hook:
        try:
            return self._hooks[name]
        except KeyError:
            raise StampedeConfigError(
                f"Unknown hook {name!r}",
                code="unknown_hook",
                details={"hook": name, "known": self.list_hooks()},
            ) from None

    def list_scenarios(self) -> List[str]:
        return sorted(self._bodies)

    def list_hooks(self) -> List[str]:
        return sorted(self._hooks)

    def __contains__(self, name: object) -> bool:
        return name in self._bodies
