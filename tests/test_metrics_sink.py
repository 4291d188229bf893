"""Tests for the metric sink: accumulation, concurrency and snapshots."""

import asyncio
import threading

import pytest

from stampede.metrics import MetricSink, percentile, tagged_name
from stampede.models import MetricKind


class FakeClock:
    def __init__(self, now: float = 100.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class TestPercentile:
    def test_empty_is_none(self):
        assert percentile((), 95) is None

    def test_single_sample(self):
        assert percentile((7.0,), 99) == 7.0

    def test_linear_interpolation(self):
        samples = tuple(float(i) for i in range(1, 101))
        assert percentile(samples, 50) == pytest.approx(50.5)
        assert percentile(samples, 95) == pytest.approx(95.05)
        assert percentile(samples, 0) == 1.0
        assert percentile(samples, 100) == 100.0

    def test_out_of_range(self):
        with pytest.raises(ValueError):
            percentile((1.0, 2.0), 101)


class TestCounter:
    def test_sums_increments(self, sink):
        sink.add("write_errors")
        sink.add("write_errors", 2)
        view = sink.snapshot()["write_errors"]
        assert view.kind is MetricKind.COUNTER
        assert view.value == 3
        assert view.samples == 2

    def test_rejects_negative(self, sink):
        with pytest.raises(ValueError):
            sink.add("write_errors", -1)


class TestRate:
    def test_fraction_of_true(self, sink):
        for ok in (True, True, True, False):
            sink.add_rate("write_success_rate", ok)
        view = sink.snapshot()["write_success_rate"]
        assert view.rate == 0.75
        assert view.passes == 3
        assert view.samples == 4

    def test_no_samples_is_zero(self, sink):
        sink.declare("read_success_rate", MetricKind.RATE)
        view = sink.snapshot()["read_success_rate"]
        assert view.samples == 0
        assert view.rate == 0.0


class TestTrend:
    def test_statistics(self, sink):
        for v in (10, 20, 30, 40):
            sink.add_trend("write_duration", v)
        values = sink.snapshot().to_values()["write_duration"]
        assert values.count == 4
        assert values.avg == 25
        assert values.min == 10
        assert values.max == 40
        assert values.med == 25
        assert values.retained_samples == 4

    def test_empty_trend(self, sink):
        sink.declare("search_duration", MetricKind.TREND)
        values = sink.snapshot().to_values()["search_duration"]
        assert values.count == 0
        assert values.avg is None
        assert values.p95 is None

    def test_reservoir_bounds_retention(self):
        sink = MetricSink(trend_max_samples=10, seed=1)
        for v in range(1000):
            sink.add_trend("latency", float(v))
        view = sink.snapshot()["latency"]
        assert view.samples == 1000
        assert len(view.sorted_samples) == 10
        assert view.min == 0
        assert view.max == 999
        assert view.avg == pytest.approx(499.5)

    def test_reservoir_is_deterministic_per_seed(self):
        def fill(seed):
            sink = MetricSink(trend_max_samples=5, seed=seed)
            for v in range(200):
                sink.add_trend("latency", float(v))
            return sink.snapshot()["latency"].sorted_samples

        assert fill(3) == fill(3)


class TestSink:
    def test_tags_update_parent_and_submetric(self, sink):
        sink.add_rate("checks", True, {"check": "status is 201"})
        sink.add_rate("checks", False, {"check": "has body"})
        snap = sink.snapshot()
        assert snap["checks"].samples == 2
        assert snap[tagged_name("checks", "check", "status is 201")].rate == 1.0
        assert snap["checks{check:has body}"].rate == 0.0

    def test_kind_mismatch(self, sink):
        sink.add("requests_allowed")
        with pytest.raises(ValueError):
            sink.add_rate("requests_allowed", True)

    def test_declare_shows_metric_without_samples(self, sink):
        sink.declare("write_errors", MetricKind.COUNTER)
        snap = sink.snapshot()
        assert "write_errors" in snap
        assert snap["write_errors"].samples == 0

    def test_snapshot_is_a_copy(self, sink):
        sink.add_trend("latency", 1.0)
        before = sink.snapshot()
        sink.add_trend("latency", 2.0)
        sink.add("late_counter")
        assert before["latency"].samples == 1
        assert "late_counter" not in before
        assert sink.snapshot()["latency"].samples == 2

    def test_to_values_sorted_by_name(self, sink):
        sink.add("b")
        sink.add("a")
        assert list(sink.snapshot().to_values()) == ["a", "b"]

    def test_first_sample_offset(self):
        clock = FakeClock(100.0)
        sink = MetricSink(clock=clock)
        sink.mark_origin()
        clock.now = 110.5
        sink.add("late")
        values = sink.snapshot().to_values()["late"]
        assert values.first_sample_offset == pytest.approx(10.5)


class TestConcurrency:
    def test_no_lost_samples_across_threads(self, sink):
        threads_count = 8
        per_thread = 5000

        def work(index):
            for i in range(per_thread):
                sink.add("hits")
                sink.add_rate("ok", i % 2 == 0)
                sink.add_trend("latency", float(i), {"worker": str(index)})

        threads = [threading.Thread(target=work, args=(n,)) for n in range(threads_count)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        snap = sink.snapshot()
        total = threads_count * per_thread
        assert snap["hits"].value == total
        assert snap["ok"].samples == total
        assert snap["ok"].passes == total // 2
        assert snap["latency"].samples == total
        assert len(snap["latency"].sorted_samples) == total
        assert snap["latency{worker:3}"].samples == per_thread

    def test_snapshot_while_writing(self, sink):
        sink.add_trend("latency", 1.0)
        stop = threading.Event()

        def writer():
            for _ in range(20000):
                if stop.is_set():
                    break
                sink.add_trend("latency", 1.0)

        t = threading.Thread(target=writer)
        t.start()
        try:
            counts = [sink.snapshot()["latency"].samples for _ in range(50)]
        finally:
            stop.set()
            t.join()
        assert counts == sorted(counts)

    @pytest.mark.anyio
    async def test_no_lost_samples_across_tasks(self, sink):
        async def work():
            for _ in range(1000):
                sink.add("hits")
                await asyncio.sleep(0)

        await asyncio.gather(*(work() for _ in range(20)))
        assert sink.snapshot()["hits"].value == 20000

    @pytest.mark.anyio
    async def test_many_workers_share_one_counter(self, sink):
        async def vu():
            for _ in range(20):
                sink.add("write_successes")
                sink.add_rate("write_success_rate", True)
                await asyncio.sleep(0)

        await asyncio.gather(*(vu() for _ in range(500)))
        snapshot = sink.snapshot()
        assert snapshot["write_successes"].value == 500 * 20
        assert snapshot["write_success_rate"].rate == 1.0
        assert snapshot["write_success_rate"].samples == 500 * 20
