"""
MetricSink: thread-safe accumulators for counters, rates and trends.

Every metric owns its own lock, so writers to different metrics never
contend and writers to the same metric serialize on a short critical
section. snapshot() copies each metric under its lock (copy-on-read) and
computes derived statistics outside the lock, so readers never hold a
writer back for longer than one list copy.

Trend retention:
    Unbounded by default. Each retained sample is a Python float in a list
    (roughly 8 bytes of pointer plus the shared float object), so a trend
    grows linearly with the number of iterations in the run.

    With max_samples set, each trend keeps a uniform reservoir of at most
    that many samples (Algorithm R, seeded per metric name). count, sum,
    min, max and avg stay exact; med and p(N) are estimates over the
    reservoir.
"""

from __future__ import annotations

import math
import random
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Iterator, Mapping, Optional, Tuple, Union

from stampede.models import MetricKind, MetricValues

SampleValue = Union[int, float, bool]


def tagged_name(name: str, key: str, value: str) -> str:
    """Key of a tagged sub-metric, e.g. checks{check:status is 200}."""
    return f"{name}{{{key}:{value}}}"


def percentile(sorted_samples: Tuple[float, ...], p: float) -> Optional[float]:
    """
    Percentile by linear interpolation between closest ranks.

    rank = p/100 * (n - 1); the result interpolates between the samples at
    floor(rank) and ceil(rank). Returns None for an empty sample set.
    """
    n = len(sorted_samples)
    if n == 0:
        return None
    if not 0 <= p <= 100:
        raise ValueError(f"percentile must be within [0, 100], got {p}")
    if n == 1:
        return float(sorted_samples[0])
    rank = (p / 100.0) * (n - 1)
    lower = int(math.floor(rank))
    upper = int(math.ceil(rank))
    low_value = sorted_samples[lower]
    if lower == upper:
        return float(low_value)
    fraction = rank - lower
    return low_value + (sorted_samples[upper] - low_value) * fraction


class _CounterValue:
    """Thread-safe monotonic counter."""

    kind = MetricKind.COUNTER

    def __init__(self) -> None:
        self._value = 0.0
        self._samples = 0
        self._first_at: Optional[float] = None
        self._lock = threading.Lock()

    def add(self, amount: float, now: float) -> None:
        if amount < 0:
            raise ValueError("counters only increase; amount must be >= 0")
        with self._lock:
            self._value += amount
            self._samples += 1
            if self._first_at is None:
                self._first_at = now

    def view(self, name: str) -> "MetricView":
        with self._lock:
            return MetricView(
                name=name,
                kind=self.kind,
                samples=self._samples,
                value=self._value,
                first_sample_at=self._first_at,
            )


class _RateValue:
    """Thread-safe fraction of true samples."""

    kind = MetricKind.RATE

    def __init__(self) -> None:
        self._passes = 0
        self._total = 0
        self._first_at: Optional[float] = None
        self._lock = threading.Lock()

    def add(self, ok: bool, now: float) -> None:
        with self._lock:
            self._total += 1
            if ok:
                self._passes += 1
            if self._first_at is None:
                self._first_at = now

    def view(self, name: str) -> "MetricView":
        with self._lock:
            return MetricView(
                name=name,
                kind=self.kind,
                samples=self._total,
                passes=self._passes,
                first_sample_at=self._first_at,
            )


class _TrendValue:
    """Thread-safe sample distribution with optional reservoir bound."""

    kind = MetricKind.TREND

    def __init__(self, max_samples: Optional[int] = None, seed: str = "") -> None:
        if max_samples is not None and max_samples < 1:
            raise ValueError("max_samples must be >= 1")
        self._max_samples = max_samples
        self._rng = random.Random(seed)
        self._samples: list[float] = []
        self._count = 0
        self._sum = 0.0
        self._min = math.inf
        self._max = -math.inf
        self._first_at: Optional[float] = None
        self._lock = threading.Lock()

    def add(self, value: float, now: float) -> None:
        with self._lock:
            self._count += 1
            self._sum += value
            if value < self._min:
                self._min = value
            if value > self._max:
                self._max = value
            if self._first_at is None:
                self._first_at = now

            if self._max_samples is None or len(self._samples) < self._max_samples:
                self._samples.append(value)
            else:
                slot = self._rng.randrange(self._count)
                if slot < self._max_samples:
                    self._samples[slot] = value

    def view(self, name: str) -> "MetricView":
        with self._lock:
            samples = list(self._samples)
            count = self._count
            total = self._sum
            low = self._min
            high = self._max
            first_at = self._first_at
        # Sorting happens outside the lock.
        samples.sort()
        return MetricView(
            name=name,
            kind=self.kind,
            samples=count,
            value=total,
            sorted_samples=tuple(samples),
            min=low if count else None,
            max=high if count else None,
            first_sample_at=first_at,
        )


_ACCUMULATORS = {
    MetricKind.COUNTER: _CounterValue,
    MetricKind.RATE: _RateValue,
}


@dataclass(frozen=True)
class MetricView:
    """
    Immutable copy of one metric's state.

    Attributes:
        name: Metric key (tagged sub-metrics use "name{key:value}").
        kind: Counter, rate or trend.
        samples: Number of record() calls that reached this metric.
        value: Counter sum, or trend sum.
        passes: Rate true-sample count.
        sorted_samples: Retained trend samples, ascending.
        min / max: Exact trend extremes.
        first_sample_at: Sink clock reading of the first sample.
    """

    name: str
    kind: MetricKind
    samples: int = 0
    value: float = 0.0
    passes: int = 0
    sorted_samples: Tuple[float, ...] = ()
    min: Optional[float] = None
    max: Optional[float] = None
    first_sample_at: Optional[float] = None

    @property
    def rate(self) -> float:
        # A rate with no samples is 0, never NaN.
        if self.samples == 0:
            return 0.0
        return self.passes / self.samples

    @property
    def avg(self) -> Optional[float]:
        if self.samples == 0:
            return None
        return self.value / self.samples

    def percentile(self, p: float) -> Optional[float]:
        return percentile(self.sorted_samples, p)

    def to_values(self, origin: Optional[float] = None) -> MetricValues:
        offset = None
        if origin is not None and self.first_sample_at is not None:
            offset = self.first_sample_at - origin

        if self.kind is MetricKind.COUNTER:
            return MetricValues(
                kind=self.kind,
                count=self.samples,
                value=self.value,
                first_sample_offset=offset,
            )
        if self.kind is MetricKind.RATE:
            return MetricValues(
                kind=self.kind,
                count=self.samples,
                rate=self.rate,
                passes=self.passes,
                fails=self.samples - self.passes,
                first_sample_offset=offset,
            )
        return MetricValues(
            kind=self.kind,
            count=self.samples,
            avg=self.avg,
            min=self.min,
            max=self.max,
            med=self.percentile(50),
            p90=self.percentile(90),
            p95=self.percentile(95),
            p99=self.percentile(99),
            retained_samples=len(self.sorted_samples),
            first_sample_offset=offset,
        )


class MetricSnapshot(Mapping[str, MetricView]):
    """Read-only mapping of metric name to MetricView."""

    def __init__(self, views: Dict[str, MetricView], origin: float) -> None:
        self._views = dict(views)
        self.origin = origin

    def __getitem__(self, name: str) -> MetricView:
        return self._views[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._views)

    def __len__(self) -> int:
        return len(self._views)

    def to_values(self) -> Dict[str, MetricValues]:
        """Derived values for every metric, sorted by name."""
        return {
            name: self._views[name].to_values(self.origin)
            for name in sorted(self._views)
        }


class MetricSink:
    """
    Process-wide (per run) registry of named metrics.

    Metrics are created on first reference and live as long as the sink.
    record() is safe to call from any number of threads or coroutines
    without external locking; no sample is ever dropped.

    Example:
        sink = MetricSink()
        sink.add("write_errors")
        sink.add_rate("write_success_rate", True)
        sink.add_trend("write_duration", 12.5, tags={"scenario": "write"})
        snap = sink.snapshot()
        print(snap["write_duration"].percentile(95))
    """

    def __init__(
        self,
        *,
        trend_max_samples: Optional[int] = None,
        seed: int = 0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._trend_max_samples = trend_max_samples
        self._seed = seed
        self._clock = clock
        self._origin = clock()
        self._metrics: Dict[str, Union[_CounterValue, _RateValue, _TrendValue]] = {}
        self._lock = threading.Lock()

    @property
    def clock(self) -> Callable[[], float]:
        return self._clock

    @property
    def origin(self) -> float:
        """Clock reading that first_sample_offset values are relative to."""
        return self._origin

    def mark_origin(self) -> None:
        """Reset the reference point for first-sample offsets (run start)."""
        self._origin = self._clock()

    def _get(self, name: str, kind: MetricKind):
        metric = self._metrics.get(name)
        if metric is None:
            with self._lock:
                metric = self._metrics.get(name)
                if metric is None:
                    if kind is MetricKind.TREND:
                        metric = _TrendValue(
                            self._trend_max_samples, seed=f"{self._seed}:{name}"
                        )
                    else:
                        metric = _ACCUMULATORS[kind]()
                    self._metrics[name] = metric
        if metric.kind is not kind:
            raise ValueError(
                f"metric {name!r} is a {metric.kind.value}, not a {kind.value}"
            )
        return metric

    def declare(self, name: str, kind: MetricKind) -> None:
        """Create a metric with no samples so it shows up in snapshots."""
        self._get(name, MetricKind(kind))

    def record(
        self,
        name: str,
        kind: MetricKind,
        value: SampleValue,
        tags: Optional[Mapping[str, str]] = None,
    ) -> None:
        """
        Record one sample.

        Args:
            name: Metric name.
            kind: Counter (value = increment), rate (value = truthiness)
                or trend (value = numeric sample).
            value: The sample.
            tags: Each tag also updates the sub-metric "name{key:value}".
        """
        kind = MetricKind(kind)
        now = self._clock()
        names = [name]
        if tags:
            names.extend(tagged_name(name, k, v) for k, v in tags.items())
        for metric_name in names:
            metric = self._get(metric_name, kind)
            if kind is MetricKind.RATE:
                metric.add(bool(value), now)
            else:
                metric.add(float(value), now)

    def add(
        self, name: str, amount: float = 1, tags: Optional[Mapping[str, str]] = None
    ) -> None:
        self.record(name, MetricKind.COUNTER, amount, tags)

    def add_rate(
        self, name: str, ok: bool, tags: Optional[Mapping[str, str]] = None
    ) -> None:
        self.record(name, MetricKind.RATE, ok, tags)

    def add_trend(
        self, name: str, value: float, tags: Optional[Mapping[str, str]] = None
    ) -> None:
        self.record(name, MetricKind.TREND, value, tags)

    def snapshot(self) -> MetricSnapshot:
        """
        Immutable view of every metric.

        Each metric is copied under its own lock, so the view reflects only
        completed writes.
        """
        with self._lock:
            items = list(self._metrics.items())
        return MetricSnapshot(
            {name: metric.view(name) for name, metric in items},
            origin=self._origin,
        )
