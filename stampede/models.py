from __future__ import annotations

import math
import re
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from stampede.exceptions import StampedeConfigError


class MetricKind(str, Enum):
    """The three accumulator kinds a metric can be."""

    COUNTER = "counter"
    RATE = "rate"
    TREND = "trend"


class RampPolicy(str, Enum):
    """
    How target concurrency moves across a ramp stage.

    LINEAR interpolates from the previous stage's target to this stage's
    target over the stage duration. HOLD jumps to the stage target at the
    stage boundary and keeps it for the whole stage.
    """

    LINEAR = "linear"
    HOLD = "hold"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


_DURATION_PART = re.compile(r"(\d+(?:\.\d+)?)(ms|s|m|h)")
_UNIT_SECONDS = {"ms": 0.001, "s": 1.0, "m": 60.0, "h": 3600.0}

DurationLike = Union[int, float, str]


def coerce_duration(value: DurationLike) -> float:
    """
    Convert a duration to seconds.

    Accepts plain numbers (seconds) or unit strings such as "30s", "1m30s",
    "500ms", "2h". Raises ValueError on malformed or negative input so it
    can be used directly inside pydantic validators.
    """
    if isinstance(value, bool):
        raise ValueError(f"invalid duration: {value!r}")
    if isinstance(value, (int, float)):
        seconds = float(value)
    elif isinstance(value, str):
        text = value.strip().replace(" ", "")
        if not text:
            raise ValueError("duration must not be empty")
        try:
            seconds = float(text)
        except ValueError:
            pos = 0
            seconds = 0.0
            for match in _DURATION_PART.finditer(text):
                if match.start() != pos:
                    raise ValueError(f"invalid duration: {value!r}") from None
                seconds += float(match.group(1)) * _UNIT_SECONDS[match.group(2)]
                pos = match.end()
            if pos != len(text):
                raise ValueError(f"invalid duration: {value!r}") from None
    else:
        raise ValueError(f"invalid duration: {value!r}")
    if not math.isfinite(seconds):
        raise ValueError(f"invalid duration: {value!r}")
    if seconds < 0:
        raise ValueError(f"duration must be non-negative, got {value!r}")
    return seconds


def parse_duration(value: DurationLike) -> float:
    """Same as coerce_duration but raises StampedeConfigError."""
    try:
        return coerce_duration(value)
    except ValueError as exc:
        raise StampedeConfigError(
            str(exc), code="invalid_duration", details={"value": value}
        ) from exc


class RampStage(BaseModel):
    """
    One segment of a scenario's concurrency curve.

    Attributes:
        duration: Stage length in seconds (strings like "30s" accepted).
        target: Concurrency at the end of the stage.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    duration: float = Field(..., ge=0)
    target: int = Field(..., ge=0)

    @field_validator("duration", mode="before")
    @classmethod
    def _parse_duration(cls, value: Any) -> float:
        return coerce_duration(value)


class MetricValues(BaseModel):
    """
    Derived values of one metric at snapshot time.

    Only the fields relevant to the metric's kind are populated. Trend
    values are in the unit samples were recorded in (milliseconds for the
    built-in duration trends).
    """

    model_config = ConfigDict(extra="forbid")

    kind: MetricKind
    count: int = 0

    # counter
    value: Optional[float] = None

    # rate
    rate: Optional[float] = None
    passes: Optional[int] = None
    fails: Optional[int] = None

    # trend
    avg: Optional[float] = None
    min: Optional[float] = None
    max: Optional[float] = None
    med: Optional[float] = None
    p90: Optional[float] = None
    p95: Optional[float] = None
    p99: Optional[float] = None
    retained_samples: Optional[int] = None

    first_sample_offset: Optional[float] = None


class ThresholdResult(BaseModel):
    """Verdict for one threshold expression."""

    model_config = ConfigDict(extra="forbid")

    metric: str
    expression: str
    passed: bool
    observed: Optional[float] = None
    abort_on_fail: bool = False


class RunResult(BaseModel):
    """
    Outcome of a complete run.

    Attributes:
        metrics: Derived values per metric name (tagged sub-metrics included).
        thresholds: One verdict per declared threshold expression.
        started_at / finished_at: Wall-clock bounds of the run.
        teardown_error: Message of a failed teardown, if any.
        aborted_by_threshold: "metric: expression" of the threshold that
            stopped the run early, if any.
        setup_data: Value returned by setup (excluded from serialization).
    """

    model_config = ConfigDict(extra="forbid", arbitrary_types_allowed=True)

    metrics: Dict[str, MetricValues] = Field(default_factory=dict)
    thresholds: List[ThresholdResult] = Field(default_factory=list)

    started_at: datetime = Field(default_factory=utc_now)
    finished_at: datetime = Field(default_factory=utc_now)

    teardown_error: Optional[str] = None
    aborted_by_threshold: Optional[str] = None

    setup_data: Any = Field(default=None, exclude=True)

    @property
    def passed(self) -> bool:
        """True when every threshold passed (vacuously true with none)."""
        return all(t.passed for t in self.thresholds)

    @property
    def elapsed_seconds(self) -> float:
        return (self.finished_at - self.started_at).total_seconds()

    def threshold_map(self) -> Dict[str, bool]:
        """Mapping of "metric: expression" to pass/fail."""
        return {f"{t.metric}: {t.expression}": t.passed for t in self.thresholds}
