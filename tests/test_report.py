"""Tests for run summaries."""

import json

from stampede.models import MetricKind, MetricValues, RunResult, ThresholdResult
from stampede.report import export_summary, format_summary


def make_result(**kwargs):
    metrics = {
        "http_req_duration": MetricValues(
            kind=MetricKind.TREND, count=4, avg=12.5, min=5, max=20, med=12.5, p90=19, p95=19.5
        ),
        "http_req_duration{scenario:write}": MetricValues(kind=MetricKind.TREND, count=4),
        "write_success_rate": MetricValues(
            kind=MetricKind.RATE, count=4, rate=0.75, passes=3, fails=1
        ),
        "write_errors": MetricValues(kind=MetricKind.COUNTER, count=1, value=1),
    }
    metrics.update(kwargs.pop("metrics", {}))
    return RunResult(
        metrics=metrics,
        thresholds=[
            ThresholdResult(
                metric="http_req_duration", expression="p(95)<1000", passed=True, observed=19.5
            ),
            ThresholdResult(
                metric="write_success_rate", expression="rate>0.90", passed=False, observed=0.75
            ),
        ],
        **kwargs,
    )


class TestFormatSummary:
    def test_thresholds_and_metrics(self):
        text = format_summary(make_result())
        assert "[PASS] http_req_duration: p(95)<1000 (observed=19.500)" in text
        assert "[FAIL] write_success_rate: rate>0.90 (observed=0.750)" in text
        assert "write_success_rate: rate=0.7500 passes=3 fails=1" in text
        assert "write_errors: count=1 samples=1" in text
        assert "p(95)=19.50" in text
        assert "Result: FAILED" in text

    def test_tagged_metrics_hidden_by_default(self):
        result = make_result()
        assert "{scenario:write}" not in format_summary(result)
        assert "{scenario:write}" in format_summary(result, include_tagged=True)

    def test_empty_trend_renders_na(self):
        text = format_summary(
            make_result(metrics={"search_duration": MetricValues(kind=MetricKind.TREND)})
        )
        assert "search_duration: avg=N/A" in text

    def test_rate_limit_breakdown(self):
        text = format_summary(
            make_result(
                metrics={
                    "requests_allowed": MetricValues(kind=MetricKind.COUNTER, count=25, value=25),
                    "requests_rate_limited": MetricValues(
                        kind=MetricKind.COUNTER, count=75, value=75
                    ),
                }
            )
        )
        assert "--- Rate Limiting ---" in text
        assert "(25.00%)" in text
        assert "(75.00%)" in text
        assert text.split("Total Requests:")[1].split()[0] == "100"

    def test_no_breakdown_without_rate_limit_metrics(self):
        assert "Rate Limiting" not in format_summary(make_result())

    def test_abort_and_teardown_notes(self):
        text = format_summary(
            make_result(
                aborted_by_threshold="write_success_rate: rate>0.90",
                teardown_error="Teardown failed: boom",
            )
        )
        assert "Aborted by threshold: write_success_rate: rate>0.90" in text
        assert "Teardown error: Teardown failed: boom" in text


class TestExport:
    def test_writes_json(self, tmp_path):
        result = make_result(setup_data={"secret": 1})
        path = export_summary(result, tmp_path / "out" / "summary.json")
        data = json.loads(path.read_text())
        assert data["metrics"]["write_errors"]["value"] == 1
        assert data["thresholds"][1]["passed"] is False
        assert "setup_data" not in data
