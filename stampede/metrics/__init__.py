"""
Run metrics: counters, rates and trends shared by every virtual user.

Provides:
- MetricSink: Thread-safe registry, created per run and passed to components
- MetricSnapshot / MetricView: Immutable copy-on-read views for evaluation
- percentile(): The linear-interpolation rule used for p(N)

Usage:
    from stampede.metrics import MetricSink

    sink = MetricSink()
    sink.add_trend("http_req_duration", 42.0)
    snap = sink.snapshot()
    print(snap["http_req_duration"].percentile(95))
"""

from stampede.metrics.sink import (
    MetricSink,
    MetricSnapshot,
    MetricView,
    percentile,
    tagged_name,
)

__all__ = [
    "MetricSink",
    "MetricSnapshot",
    "MetricView",
    "percentile",
    "tagged_name",
]
