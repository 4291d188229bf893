"""
Run orchestrator: setup → concurrent scenario pools → teardown → verdict.

Usage:
    orchestrator = RunOrchestrator(
        [write_scenario, read_scenario],
        thresholds=parse_thresholds({"write_success_rate": ["rate>0.90"]}),
        setup=logs.setup,
        teardown=logs.teardown,
        base_url="http://localhost",
    )
    result = await orchestrator.run()
    print(result.passed, result.threshold_map())

Failure policy:
    - setup raising anything aborts the run with SetupFailedError before
      any pool starts; teardown does not run
    - iteration failures are samples, never errors
    - teardown failures are logged and stored on the result
    - failing thresholds are data (ThresholdResult.passed = False)
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Iterable, List, Optional, Sequence

import httpx

from stampede.exceptions import SetupFailedError, StampedeConfigError, TeardownError
from stampede.executor import ScenarioExecutor
from stampede.http import HttpTarget, TargetFactory, target_factory
from stampede.metrics.sink import MetricSink, MetricSnapshot
from stampede.models import RunResult, utc_now
from stampede.pool import DEFAULT_TICK_SECONDS, VUPool
from stampede.scenario import Hook, Scenario
from stampede.thresholds import Threshold, check_all

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class HookContext:
    """
    Context handed to setup and teardown hooks.

    Attributes:
        sink: The run's metric sink.
        target: An HTTP target for the run's base URL, if one is configured.
        setup_data: For teardown, whatever setup returned.
    """

    sink: MetricSink
    target: Optional[HttpTarget] = None
    setup_data: Any = None


class RunOrchestrator:
    """
    Owns the metric sink and every VU pool for one run.

    Pools activate at run start plus their scenario's start_time and run
    independently; the only shared state is the sink and the clock.
    """

    def __init__(
        self,
        scenarios: Sequence[Scenario],
        *,
        thresholds: Iterable[Threshold] = (),
        setup: Optional[Hook] = None,
        teardown: Optional[Hook] = None,
        base_url: Optional[str] = None,
        request_timeout: float = 10.0,
        tick: float = DEFAULT_TICK_SECONDS,
        check_interval: Optional[float] = None,
        sink: Optional[MetricSink] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Callable[[], float] = time.monotonic,
        seed: int = 0,
    ) -> None:
        if not scenarios:
            raise StampedeConfigError("A run needs at least one scenario")
        names = [s.name for s in scenarios]
        duplicates = sorted({n for n in names if names.count(n) > 1})
        if duplicates:
            raise StampedeConfigError(
                f"Duplicate scenario names: {', '.join(duplicates)}",
                code="duplicate_scenario",
                details={"scenarios": duplicates},
            )
        if tick <= 0:
            raise StampedeConfigError("tick must be > 0")
        if check_interval is not None and check_interval <= 0:
            raise StampedeConfigError("check_interval must be > 0")

        self._scenarios = tuple(scenarios)
        self._thresholds = list(thresholds)
        self._setup = setup
        self._teardown = teardown
        self._base_url = base_url
        self._tick = tick
        self._check_interval = check_interval
        self._clock = clock
        self._seed = seed
        self._sink = sink if sink is not None else MetricSink(clock=clock, seed=seed)

        self._target_factory: Optional[TargetFactory] = None
        if base_url:
            self._target_factory = target_factory(
                base_url,
                sink=self._sink,
                timeout=request_timeout,
                transport=transport,
            )

        self._pools: List[VUPool] = []
        self._stop_requested = False
        self._aborted_by: Optional[str] = None
        self._snapshot: Optional[MetricSnapshot] = None

    @property
    def sink(self) -> MetricSink:
        return self._sink

    @property
    def pools(self) -> List[VUPool]:
        return list(self._pools)

    @property
    def scenarios(self) -> Sequence[Scenario]:
        return self._scenarios

    @property
    def thresholds(self) -> List[Threshold]:
        return list(self._thresholds)

    @property
    def base_url(self) -> Optional[str]:
        return self._base_url

    @property
    def tick(self) -> float:
        return self._tick

    @property
    def check_interval(self) -> Optional[float]:
        return self._check_interval

    @property
    def last_snapshot(self) -> Optional[MetricSnapshot]:
        """Snapshot the final verdict was computed from."""
        return self._snapshot

    @property
    def max_duration(self) -> float:
        """Upper bound on the pool phase: latest stage end plus its drain."""
        return max(s.end_offset + s.graceful_stop for s in self._scenarios)

    async def run(self) -> RunResult:
        """
        Execute the run.

        Raises:
            SetupFailedError: setup failed; no pool was started.
        """
        started_at = utc_now()
        logger.info(
            "Run starting: scenarios=%s thresholds=%d",
            ", ".join(s.name for s in self._scenarios),
            len(self._thresholds),
        )

        setup_data = await self._run_setup()

        executor = ScenarioExecutor(self._sink)
        self._pools = [
            VUPool(
                scenario,
                executor,
                tick=self._tick,
                target_factory=self._target_factory,
                setup_data=setup_data,
                clock=self._clock,
                seed=self._seed,
            )
            for scenario in self._scenarios
        ]
        if self._stop_requested:
            logger.info("Stop requested during setup, skipping scenarios")
            for pool in self._pools:
                pool.stop()

        run_start = self._clock()
        self._sink.mark_origin()
        pool_tasks = [
            asyncio.create_task(
                pool.run(activate_at=run_start + pool.scenario.start_time),
                name=f"pool-{pool.scenario.name}",
            )
            for pool in self._pools
        ]
        monitor: Optional["asyncio.Task[None]"] = None
        if self._check_interval is not None and any(
            t.abort_on_fail for t in self._thresholds
        ):
            monitor = asyncio.create_task(self._monitor(), name="threshold-monitor")

        try:
            results = await asyncio.gather(*pool_tasks, return_exceptions=True)
            for pool, result in zip(self._pools, results):
                if isinstance(result, Exception):
                    logger.error("Pool %s failed: %s", pool.scenario.name, result)
        finally:
            if monitor is not None:
                monitor.cancel()
                await asyncio.gather(monitor, return_exceptions=True)

        teardown_error = await self._run_teardown(setup_data)

        self._snapshot = self._sink.snapshot()
        threshold_results = check_all(self._snapshot, self._thresholds)
        failed = [t for t in threshold_results if not t.passed]
        logger.info(
            "Run finished: thresholds passed=%d failed=%d",
            len(threshold_results) - len(failed),
            len(failed),
        )

        return RunResult(
            metrics=self._snapshot.to_values(),
            thresholds=threshold_results,
            started_at=started_at,
            finished_at=utc_now(),
            teardown_error=teardown_error,
            aborted_by_threshold=self._aborted_by,
            setup_data=setup_data,
        )

    def run_sync(self) -> RunResult:
        """Run from synchronous code (creates an event loop)."""
        return asyncio.run(self.run())

    def stop(self) -> None:
        """
        Ask every pool to finish early (graceful).

        A stop requested before the pools exist (during setup) is kept, and
        the pools then stop before activating. Teardown still runs.
        """
        self._stop_requested = True
        for pool in self._pools:
            pool.stop()

    async def _run_setup(self) -> Any:
        if self._setup is None:
            return None
        target = self._make_target("setup")
        try:
            data = await _call_hook(self._setup, HookContext(self._sink, target))
        except Exception as exc:
            logger.error("Setup failed: %s", exc)
            raise SetupFailedError(
                f"Setup failed: {exc}",
                base_url=self._base_url,
                details={"cause": type(exc).__name__},
            ) from exc
        finally:
            if target is not None:
                await target.aclose()
        logger.info("Setup complete")
        return data

    async def _run_teardown(self, setup_data: Any) -> Optional[str]:
        if self._teardown is None:
            return None
        target = self._make_target("teardown")
        try:
            await _call_hook(
                self._teardown, HookContext(self._sink, target, setup_data)
            )
        except Exception as exc:
            error = TeardownError(
                f"Teardown failed: {exc}", details={"cause": type(exc).__name__}
            )
            logger.warning("%s", error.message)
            return error.message
        finally:
            if target is not None:
                await target.aclose()
        return None

    async def _monitor(self) -> None:
        """Evaluate abort-on-fail thresholds every check_interval."""
        assert self._check_interval is not None
        abortable = [t for t in self._thresholds if t.abort_on_fail]
        while True:
            await asyncio.sleep(self._check_interval)
            snapshot = self._sink.snapshot()
            for threshold in abortable:
                view = snapshot.get(threshold.metric)
                # No data yet is not a failure while the run is still going.
                if view is None or view.samples == 0:
                    continue
                if not threshold.check(snapshot).passed:
                    self._aborted_by = threshold.label
                    logger.warning("Threshold %s failed, stopping run", threshold.label)
                    self.stop()
                    return

    def _make_target(self, phase: str) -> Optional[HttpTarget]:
        if self._target_factory is None:
            return None
        return self._target_factory({"phase": phase})


async def _call_hook(hook: Hook, context: HookContext) -> Any:
    if inspect.iscoroutinefunction(hook):
        return await hook(context)
    result = await asyncio.to_thread(hook, context)
    if inspect.isawaitable(result):
        result = await result
    return result
