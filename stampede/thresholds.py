"""
Threshold expressions and their evaluation against a metric snapshot.

Grammar (one expression per threshold):
    <aggregation> <operator> <number>

    aggregation: count | rate | avg | min | max | med | p(N)
    operator:    <  <=  >  >=  ==  !=

Examples:
    Threshold.parse("http_req_duration", "p(95)<1000")
    Threshold.parse("write_success_rate", "rate>0.90")
    Threshold.parse("requests_allowed", "count>0")

A threshold whose metric is missing from the snapshot, or present with no
samples, fails. So does one whose aggregation does not apply to the
metric's kind.
"""

from __future__ import annotations

import logging
import operator
import re
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Union

from stampede.exceptions import StampedeConfigError
from stampede.metrics.sink import MetricSnapshot, MetricView
from stampede.models import MetricKind, ThresholdResult

logger = logging.getLogger(__name__)

_EXPRESSION = re.compile(
    r"^\s*(?P<agg>count|rate|avg|min|max|med|p\(\s*(?P<pct>\d+(?:\.\d+)?)\s*\))"
    r"\s*(?P<op><=|>=|==|!=|<|>)"
    r"\s*(?P<bound>[-+]?\d+(?:\.\d+)?(?:[eE][-+]?\d+)?)\s*$"
)

_OPERATORS: Dict[str, Callable[[float, float], bool]] = {
    "<": operator.lt,
    "<=": operator.le,
    ">": operator.gt,
    ">=": operator.ge,
    "==": operator.eq,
    "!=": operator.ne,
}

_TREND_AGGREGATIONS = {"avg", "min", "max", "med", "p"}


@dataclass(frozen=True)
class Threshold:
    """
    A parsed pass/fail predicate over one metric.

    Attributes:
        metric: Metric name, optionally a tagged sub-metric ("checks{check:x}").
        expression: The original expression text.
        aggregation: count, rate, avg, min, max, med or p.
        pct: Percentile for aggregation "p".
        op: Comparison operator.
        bound: Right-hand side of the comparison.
        abort_on_fail: Stop the run early when a periodic check fails.
    """

    metric: str
    expression: str
    aggregation: str
    op: str
    bound: float
    pct: Optional[float] = None
    abort_on_fail: bool = False

    @classmethod
    def parse(
        cls, metric: str, expression: str, *, abort_on_fail: bool = False
    ) -> "Threshold":
        match = _EXPRESSION.match(expression)
        if match is None:
            raise StampedeConfigError(
                f"Invalid threshold expression {expression!r} for {metric!r}",
                code="invalid_threshold",
                details={"metric": metric, "expression": expression},
            )
        pct = match.group("pct")
        aggregation = "p" if pct is not None else match.group("agg")
        if pct is not None and not 0 <= float(pct) <= 100:
            raise StampedeConfigError(
                f"Percentile out of range in {expression!r}",
                code="invalid_threshold",
                details={"metric": metric, "expression": expression},
            )
        return cls(
            metric=metric,
            expression=expression.strip(),
            aggregation=aggregation,
            op=match.group("op"),
            bound=float(match.group("bound")),
            pct=float(pct) if pct is not None else None,
            abort_on_fail=abort_on_fail,
        )

    def observe(self, view: MetricView) -> Optional[float]:
        """Derived value this threshold compares, or None if not applicable."""
        if self.aggregation == "count":
            if view.kind is MetricKind.COUNTER:
                return view.value
            return float(view.samples)
        if self.aggregation == "rate":
            if view.kind is not MetricKind.RATE:
                return None
            return view.rate
        if view.kind is not MetricKind.TREND:
            return None
        if self.aggregation == "avg":
            return view.avg
        if self.aggregation == "min":
            return view.min
        if self.aggregation == "max":
            return view.max
        if self.aggregation == "med":
            return view.percentile(50)
        assert self.pct is not None
        return view.percentile(self.pct)

    def check(self, snapshot: Mapping[str, MetricView]) -> ThresholdResult:
        view = snapshot.get(self.metric)
        observed: Optional[float] = None
        passed = False
        if view is not None and view.samples > 0:
            observed = self.observe(view)
            if observed is not None:
                passed = _OPERATORS[self.op](observed, self.bound)
        return ThresholdResult(
            metric=self.metric,
            expression=self.expression,
            passed=passed,
            observed=observed,
            abort_on_fail=self.abort_on_fail,
        )

    @property
    def label(self) -> str:
        return f"{self.metric}: {self.expression}"


ThresholdDecl = Union[str, Mapping[str, Any]]


def parse_thresholds(declared: Mapping[str, Iterable[ThresholdDecl]]) -> List[Threshold]:
    """
    Parse a k6-style threshold mapping.

    Each metric maps to a list of expressions; an entry may also be a dict
    {"threshold": "...", "abort_on_fail": true}.
    """
    parsed: List[Threshold] = []
    for metric, entries in declared.items():
        if isinstance(entries, (str, Mapping)):
            entries = [entries]
        for entry in entries:
            if isinstance(entry, str):
                parsed.append(Threshold.parse(metric, entry))
            elif isinstance(entry, Mapping) and "threshold" in entry:
                parsed.append(
                    Threshold.parse(
                        metric,
                        str(entry["threshold"]),
                        abort_on_fail=bool(entry.get("abort_on_fail", False)),
                    )
                )
            else:
                raise StampedeConfigError(
                    f"Invalid threshold entry for {metric!r}: {entry!r}",
                    code="invalid_threshold",
                    details={"metric": metric},
                )
    return parsed


def check_all(
    snapshot: MetricSnapshot, thresholds: Iterable[Threshold]
) -> List[ThresholdResult]:
    """Evaluate thresholds in declaration order."""
    results = [t.check(snapshot) for t in thresholds]
    for result in results:
        if not result.passed:
            logger.debug(
                "Threshold failed: %s %s (observed=%s)",
                result.metric,
                result.expression,
                result.observed,
            )
    return results


def evaluate(
    snapshot: MetricSnapshot, thresholds: Iterable[Threshold]
) -> Dict[Threshold, bool]:
    """Mapping of threshold to pass/fail."""
    thresholds = list(thresholds)
    return {
        t: result.passed for t, result in zip(thresholds, check_all(snapshot, thresholds))
    }
