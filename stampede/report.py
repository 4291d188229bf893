"""
Run summaries: human-readable text and JSON export.
"""

from __future__ import annotations

from pathlib import Path
from typing import List, Optional, Union

from stampede.models import MetricKind, MetricValues, RunResult
from stampede.scenarios.ratelimit import REQUESTS_ALLOWED, REQUESTS_RATE_LIMITED


def format_summary(result: RunResult, *, include_tagged: bool = False) -> str:
    """
    Format a run result as human-readable text.

    Args:
        result: RunResult from RunOrchestrator.run().
        include_tagged: Also list tagged sub-metrics ("name{key:value}").

    Returns:
        Formatted string suitable for printing.
    """
    lines: List[str] = []

    lines.append("=" * 60)
    lines.append("RUN SUMMARY")
    lines.append("=" * 60)
    lines.append(f"Elapsed: {result.elapsed_seconds:.1f}s")
    if result.aborted_by_threshold:
        lines.append(f"Aborted by threshold: {result.aborted_by_threshold}")
    if result.teardown_error:
        lines.append(f"Teardown error: {result.teardown_error}")

    if result.thresholds:
        lines.append("")
        lines.append("--- Thresholds ---")
        for t in result.thresholds:
            mark = "PASS" if t.passed else "FAIL"
            lines.append(
                f"  [{mark}] {t.metric}: {t.expression} (observed={_fmt(t.observed, 3)})"
            )

    lines.append("")
    lines.append("--- Metrics ---")
    for name, values in result.metrics.items():
        if "{" in name and not include_tagged:
            continue
        lines.append(f"  {name}: {_describe(values)}")

    breakdown = _rate_limit_breakdown(result)
    if breakdown:
        lines.append("")
        lines.append("--- Rate Limiting ---")
        lines.extend(breakdown)

    lines.append("")
    verdict = "PASSED" if result.passed else "FAILED"
    lines.append(f"Result: {verdict}")
    return "\n".join(lines)


def export_summary(result: RunResult, path: Union[str, Path]) -> Path:
    """Write the run result as JSON. Returns the written path."""
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(result.model_dump_json(indent=2), encoding="utf-8")
    return target


def _describe(values: MetricValues) -> str:
    if values.kind is MetricKind.COUNTER:
        return f"count={_fmt(values.value, 0)} samples={values.count}"
    if values.kind is MetricKind.RATE:
        return (
            f"rate={_fmt(values.rate, 4)} "
            f"passes={values.passes} fails={values.fails}"
        )
    return (
        f"avg={_fmt(values.avg, 2)} min={_fmt(values.min, 2)} "
        f"med={_fmt(values.med, 2)} max={_fmt(values.max, 2)} "
        f"p(90)={_fmt(values.p90, 2)} p(95)={_fmt(values.p95, 2)} "
        f"count={values.count}"
    )


def _rate_limit_breakdown(result: RunResult) -> List[str]:
    allowed_values = result.metrics.get(REQUESTS_ALLOWED)
    limited_values = result.metrics.get(REQUESTS_RATE_LIMITED)
    if allowed_values is None and limited_values is None:
        return []
    allowed = int(allowed_values.value or 0) if allowed_values else 0
    limited = int(limited_values.value or 0) if limited_values else 0
    total = allowed + limited
    allowed_pct = allowed / total * 100 if total else 0.0
    limited_pct = limited / total * 100 if total else 0.0
    return [
        f"  Allowed (200):      {allowed:>6} requests ({allowed_pct:.2f}%)",
        f"  Rate Limited (429): {limited:>6} requests ({limited_pct:.2f}%)",
        f"  Total Requests:     {total:>6}",
    ]


def _fmt(val: Optional[float], decimals: int = 1) -> str:
    """Format a value, handling None."""
    if val is None:
        return "N/A"
    return f"{val:.{decimals}f}"
