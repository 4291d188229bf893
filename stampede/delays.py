"""
Inter-iteration delay strategies.

A strategy answers one question: how long should a virtual user pause
after an iteration before starting the next one. Strategies are plain
objects passed per scenario, so tests can inject deterministic ones.

Text form (used in config files):
    "none"                  no pause
    "constant(50ms)"        always 50 ms
    "uniform(0, 300ms)"     uniformly random in [0, 300 ms]
"""

from __future__ import annotations

import random
import re
from dataclasses import dataclass, field
from typing import Optional, Protocol, Sequence, Union

from stampede.exceptions import StampedeConfigError
from stampede.models import DurationLike, coerce_duration


class DelayStrategy(Protocol):
    """Protocol for inter-iteration delay strategies."""

    def next_delay(self) -> float:
        """Seconds to pause after the current iteration."""
        ...


@dataclass(frozen=True)
class NoDelay:
    """Start the next iteration immediately."""

    def next_delay(self) -> float:
        return 0.0


@dataclass(frozen=True)
class ConstantDelay:
    """
    Always pause for the same time.

    Example:
        ConstantDelay(0.05)  # 50 ms between iterations
    """

    seconds: float

    def __post_init__(self) -> None:
        if self.seconds < 0:
            raise ValueError("delay must be >= 0")

    def next_delay(self) -> float:
        return self.seconds


@dataclass(frozen=True)
class UniformDelay:
    """
    Pause for a uniformly random time in [low, high].

    Example:
        UniformDelay(0.0, 0.3, rng=random.Random(7))
    """

    low: float
    high: float
    rng: random.Random = field(default_factory=random.Random, compare=False)

    def __post_init__(self) -> None:
        if self.low < 0 or self.high < self.low:
            raise ValueError("uniform delay needs 0 <= low <= high")

    def next_delay(self) -> float:
        return self.rng.uniform(self.low, self.high)


@dataclass
class SequenceDelay:
    """
    Replay a fixed list of delays, cycling when exhausted.

    Deterministic; intended for tests.
    """

    delays: Sequence[float]
    _index: int = field(default=0, init=False, repr=False)

    def next_delay(self) -> float:
        if not self.delays:
            return 0.0
        value = self.delays[self._index % len(self.delays)]
        self._index += 1
        return value


def none() -> NoDelay:
    """Convenience: no pause between iterations."""
    return NoDelay()


def constant(seconds: DurationLike) -> ConstantDelay:
    """Convenience: constant pause."""
    return ConstantDelay(coerce_duration(seconds))


def uniform(
    low: DurationLike, high: DurationLike, *, seed: Optional[int] = None
) -> UniformDelay:
    """Convenience: uniformly random pause in [low, high]."""
    return UniformDelay(
        coerce_duration(low), coerce_duration(high), rng=random.Random(seed)
    )


_SPEC = re.compile(r"^\s*(?P<name>none|constant|uniform)\s*(?:\((?P<args>[^)]*)\))?\s*$")


def parse_delay(
    spec: Union[str, int, float, None], *, seed: Optional[int] = None
) -> DelayStrategy:
    """
    Build a strategy from its text form.

    Numbers and bare durations ("50ms") mean a constant delay; None means
    no delay.
    """
    if spec is None:
        return NoDelay()
    if isinstance(spec, (int, float)) and not isinstance(spec, bool):
        return _build(lambda: constant(spec), spec)

    match = _SPEC.match(spec)
    if match is None:
        # Bare duration such as "50ms".
        return _build(lambda: constant(spec), spec)

    name = match.group("name")
    args = [a.strip() for a in (match.group("args") or "").split(",") if a.strip()]
    if name == "none":
        if args:
            raise StampedeConfigError(
                f"Invalid delay {spec!r}", code="invalid_delay", details={"delay": spec}
            )
        return NoDelay()
    if name == "constant" and len(args) == 1:
        return _build(lambda: constant(args[0]), spec)
    if name == "uniform" and len(args) == 2:
        return _build(lambda: uniform(args[0], args[1], seed=seed), spec)
    raise StampedeConfigError(
        f"Invalid delay {spec!r}", code="invalid_delay", details={"delay": spec}
    )


def _build(factory, spec) -> DelayStrategy:
    try:
        return factory()
    except ValueError as exc:
        raise StampedeConfigError(
            f"Invalid delay {spec!r}: {exc}",
            code="invalid_delay",
            details={"delay": spec},
        ) from exc
