"""
Scenario executor: run one iteration of a scenario body and record it.

One call to execute() is one iteration:
    1. invoke the body (async directly, sync in a worker thread), bounded
       by the scenario's timeout if it has one
    2. measure wall-clock time around the body only; for sync bodies the
       clock is read inside the worker thread, so time spent queued for a
       thread is not counted
    3. record the iteration into the sink
    4. pause for the scenario's inter-iteration delay

Sync bodies run on the `threads` executor the caller passes in. The VU
pool gives every virtual user its own single-thread executor, so N sync
VUs really run N bodies at once.

A body that raises never propagates out of execute(): the iteration is
recorded as failed and tagged with the exception class. Cancellation is
the only thing that escapes.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
from concurrent.futures import Executor
from dataclasses import replace
from typing import Any, Callable, Dict, Optional

from stampede.metrics.sink import MetricSink
from stampede.models import MetricKind
from stampede.scenario import Outcome, Scenario, ScenarioContext

logger = logging.getLogger(__name__)

ITERATIONS = "iterations"
ITERATION_DURATION = "iteration_duration"


class _Stopwatch:
    """Start/stop readings for one body call, taken where the body runs."""

    def __init__(self, clock: Callable[[], float]) -> None:
        self._clock = clock
        # Replaced when the body actually starts.
        self.started = clock()
        self.stopped: Optional[float] = None

    def start(self) -> None:
        self.started = self._clock()

    def stop(self) -> None:
        self.stopped = self._clock()

    def elapsed(self) -> float:
        end = self.stopped if self.stopped is not None else self._clock()
        return end - self.started

    def run(self, body: Callable[[Any], Any], context: Any) -> Any:
        self.start()
        try:
            return body(context)
        finally:
            self.stop()

    async def run_async(self, body: Callable[[Any], Any], context: Any) -> Any:
        self.start()
        try:
            return await body(context)
        finally:
            self.stop()


class ScenarioExecutor:
    """
    Executes scenario iterations and writes their samples to a MetricSink.

    Per iteration it records:
    - iterations (counter) and iteration_duration (trend, ms), tagged
      with the scenario name
    - <prefix>_errors (counter) when the iteration failed
    - <prefix>_success_rate (rate)
    - <prefix>_duration (trend, ms)

    The three per-scenario metrics carry the outcome's tags (and
    error=<ExceptionClass> for a raising body) as sub-metrics.
    """

    def __init__(
        self,
        sink: MetricSink,
        *,
        clock: Callable[[], float] = time.perf_counter,
    ) -> None:
        self._sink = sink
        self._clock = clock

    @property
    def sink(self) -> MetricSink:
        return self._sink

    def declare(self, scenario: Scenario) -> None:
        """Make the scenario's metrics visible in snapshots before traffic."""
        self._sink.declare(scenario.errors_metric, MetricKind.COUNTER)
        self._sink.declare(scenario.success_rate_metric, MetricKind.RATE)
        self._sink.declare(scenario.duration_metric, MetricKind.TREND)

    async def execute(
        self,
        scenario: Scenario,
        context: ScenarioContext,
        *,
        stop: Optional[asyncio.Event] = None,
        threads: Optional[Executor] = None,
    ) -> Outcome:
        """
        Run one iteration, record it, then apply the delay.

        Args:
            scenario: Scenario whose body to run.
            context: Per-iteration context for the body.
            stop: When set during the delay, the delay ends early.
            threads: Executor for sync bodies. None uses the loop's
                default executor, which caps how many run at once.

        Returns:
            The recorded Outcome, with its duration filled in.
        """
        watch = _Stopwatch(self._clock)
        try:
            result = await self._invoke(scenario, context, watch, threads)
            outcome = _normalize(result)
        except Exception as exc:  # noqa: BLE001
            logger.debug(
                "Iteration failed: scenario=%s vu=%d error=%s: %s",
                scenario.name,
                context.vu_id,
                type(exc).__name__,
                exc,
            )
            outcome = Outcome.failed(error=type(exc).__name__)
        measured = watch.elapsed()

        if outcome.duration is None:
            outcome = replace(outcome, duration=measured)
        self.record(scenario, outcome, iteration_seconds=measured)

        await self._pause(scenario.delay.next_delay(), stop)
        return outcome

    def record(
        self,
        scenario: Scenario,
        outcome: Outcome,
        *,
        iteration_seconds: Optional[float] = None,
    ) -> None:
        """Write one iteration's contribution to the sink."""
        duration_ms = (outcome.duration or 0.0) * 1000
        if iteration_seconds is None:
            iteration_ms = duration_ms
        else:
            iteration_ms = iteration_seconds * 1000
        scenario_tag = {"scenario": scenario.name}
        # Body tags attribute the sample to sub-checks: <metric>{check:result}.
        tags: Dict[str, str] = dict(outcome.tags)
        if outcome.error:
            tags["error"] = outcome.error

        self._sink.add(ITERATIONS, 1, scenario_tag)
        self._sink.add_trend(ITERATION_DURATION, iteration_ms, scenario_tag)
        if not outcome.success:
            self._sink.add(scenario.errors_metric, 1, tags)
        self._sink.add_rate(scenario.success_rate_metric, outcome.success, tags)
        self._sink.add_trend(scenario.duration_metric, duration_ms, tags)

    async def _invoke(
        self,
        scenario: Scenario,
        context: ScenarioContext,
        watch: _Stopwatch,
        threads: Optional[Executor],
    ) -> Any:
        body = scenario.body
        if inspect.iscoroutinefunction(body):
            call = watch.run_async(body, context)
        else:
            loop = asyncio.get_running_loop()
            call = loop.run_in_executor(threads, watch.run, body, context)

        if scenario.timeout is None:
            result = await call
        else:
            result = await asyncio.wait_for(call, timeout=scenario.timeout)

        if inspect.isawaitable(result):
            # Sync wrapper around an async body.
            result = await result
            watch.stop()
        return result

    @staticmethod
    async def _pause(delay: float, stop: Optional[asyncio.Event]) -> None:
        if delay <= 0:
            return
        if stop is None:
            await asyncio.sleep(delay)
            return
        try:
            await asyncio.wait_for(stop.wait(), timeout=delay)
        except asyncio.TimeoutError:
            pass


def _normalize(result: Any) -> Outcome:
    if isinstance(result, Outcome):
        return result
    if isinstance(result, bool):
        return Outcome(success=result)
    raise TypeError(
        f"scenario body must return Outcome or bool, got {type(result).__name__}"
    )
