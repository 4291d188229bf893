"""
VU pool: a set of virtual users whose size follows a ramp schedule.

Architecture:
    run() → wait for activation → every tick: target = schedule.target_at(t)
          → spawn or signal workers → after the last stage: drain

    Each worker is one asyncio task looping over the scenario executor.
    A worker whose scenario body is sync also owns one thread, so sync
    bodies run as concurrently as async ones.
    Workers are never killed mid-iteration by a ramp-down: the pool sets
    the worker's stop event and the worker exits at its next iteration
    boundary (a pending inter-iteration delay ends early).

Convergence:
    The pool re-evaluates the target once per tick (default 0.1 s), and a
    single adjustment spawns or signals the whole difference at once, so
    the number of active workers equals the target within one tick.

Drain:
    When the last stage ends (or stop() is called), every worker is
    signalled. The pool waits up to the scenario's graceful_stop for them
    to finish; workers still running after that are cancelled and their
    in-flight iteration is discarded.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import random
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional

from stampede.executor import ScenarioExecutor
from stampede.http import HttpTarget, TargetFactory
from stampede.scenario import Scenario, ScenarioContext

logger = logging.getLogger(__name__)

DEFAULT_TICK_SECONDS = 0.1


@dataclass
class PoolStats:
    """Pool statistics snapshot."""

    scenario: str
    target: int       # target at the last adjustment
    active: int       # workers not signalled to stop
    draining: int     # signalled, finishing their current iteration
    in_flight: int    # workers inside the executor right now
    spawned: int      # workers ever started
    iterations: int   # completed iterations


@dataclass
class _Worker:
    vu_id: int
    stop: asyncio.Event = field(default_factory=asyncio.Event)
    task: Optional["asyncio.Task[None]"] = None


class VUPool:
    """
    Ramping pool of virtual users for one scenario.

    Example:
        pool = VUPool(scenario, ScenarioExecutor(sink), tick=0.1)
        await pool.run()          # returns once drained
        print(pool.stats())
    """

    def __init__(
        self,
        scenario: Scenario,
        executor: ScenarioExecutor,
        *,
        tick: float = DEFAULT_TICK_SECONDS,
        target_factory: Optional[TargetFactory] = None,
        setup_data: Any = None,
        clock: Callable[[], float] = time.monotonic,
        seed: int = 0,
    ) -> None:
        if tick <= 0:
            raise ValueError("tick must be > 0")
        self._scenario = scenario
        self._schedule = scenario.schedule
        self._executor = executor
        self._tick = tick
        self._target_factory = target_factory
        self._setup_data = setup_data
        self._clock = clock
        self._seed = seed

        self._workers: Dict[int, _Worker] = {}
        self._next_vu_id = 1
        self._target = 0
        self._in_flight = 0
        self._iterations = 0

        self._stop_requested = asyncio.Event()
        self._drained = asyncio.Event()
        self._started_at: Optional[float] = None

    @property
    def scenario(self) -> Scenario:
        return self._scenario

    @property
    def started_at(self) -> Optional[float]:
        """Clock reading at activation, None before activation."""
        return self._started_at

    @property
    def active_count(self) -> int:
        return sum(1 for w in self._workers.values() if not w.stop.is_set())

    @property
    def live_count(self) -> int:
        """Workers whose task has not exited yet (active + draining)."""
        return len(self._workers)

    @property
    def in_flight(self) -> int:
        return self._in_flight

    @property
    def drained(self) -> bool:
        return self._drained.is_set()

    async def run(self, activate_at: Optional[float] = None) -> None:
        """
        Activate at `activate_at` (clock reading), follow the schedule,
        then drain. Returns once no worker remains.
        """
        try:
            if activate_at is not None:
                wait = activate_at - self._clock()
                if wait > 0 and await self._wait_stop(wait):
                    logger.info(
                        "Pool %s stopped before activation", self._scenario.name
                    )
                    return

            self._started_at = self._clock()
            logger.info(
                "Pool %s activated: stages=%d duration=%.1fs max_vus=%d",
                self._scenario.name,
                len(self._schedule.stages),
                self._schedule.total_duration,
                self._schedule.max_target,
            )
            self._executor.declare(self._scenario)

            while not self._stop_requested.is_set():
                elapsed = self._clock() - self._started_at
                if elapsed >= self._schedule.total_duration:
                    break
                self.adjust(elapsed)
                remaining = self._schedule.total_duration - elapsed
                await self._wait_stop(min(self._tick, remaining))
        finally:
            await self.drain()

    def adjust(self, elapsed: float) -> int:
        """Bring the active worker count to the target at `elapsed`."""
        target = self._schedule.target_at(elapsed)
        self.scale_to(target)
        return target

    def scale_to(self, target: int) -> None:
        """Spawn or signal workers so exactly `target` are active."""
        if target < 0:
            raise ValueError("target must be >= 0")
        self._target = target
        active = [w for w in self._workers.values() if not w.stop.is_set()]

        if target > len(active):
            for _ in range(target - len(active)):
                self._spawn_worker()
            logger.debug(
                "Scaled up: scenario=%s active=%d", self._scenario.name, target
            )
        elif target < len(active):
            # Newest workers stop first.
            excess = sorted(active, key=lambda w: w.vu_id)[target:]
            for worker in excess:
                worker.stop.set()
            logger.debug(
                "Scaled down: scenario=%s active=%d draining=%d",
                self._scenario.name,
                target,
                len(excess),
            )

    def stop(self) -> None:
        """Ask the pool to finish early. Idempotent."""
        self._stop_requested.set()

    async def drain(self) -> None:
        """Signal every worker and wait for them, bounded by graceful_stop."""
        if self._drained.is_set():
            return
        self._target = 0
        for worker in self._workers.values():
            worker.stop.set()

        tasks = [w.task for w in self._workers.values() if w.task is not None]
        if tasks:
            timeout = self._scenario.graceful_stop
            _, pending = await asyncio.wait(tasks, timeout=timeout)
            if pending:
                logger.warning(
                    "Pool %s: %d workers still running after graceful stop "
                    "(%.1fs), cancelling",
                    self._scenario.name,
                    len(pending),
                    timeout,
                )
                for task in pending:
                    task.cancel()
            results = await asyncio.gather(*tasks, return_exceptions=True)
            for result in results:
                if isinstance(result, Exception):
                    logger.error(
                        "Pool %s worker error: %s", self._scenario.name, result
                    )
        # Tasks cancelled before their first step never ran their cleanup.
        self._workers.clear()

        self._drained.set()
        logger.info(
            "Pool %s drained: spawned=%d iterations=%d",
            self._scenario.name,
            self._next_vu_id - 1,
            self._iterations,
        )

    def stats(self) -> PoolStats:
        active = self.active_count
        return PoolStats(
            scenario=self._scenario.name,
            target=self._target,
            active=active,
            draining=len(self._workers) - active,
            in_flight=self._in_flight,
            spawned=self._next_vu_id - 1,
            iterations=self._iterations,
        )

    def _spawn_worker(self) -> None:
        worker = _Worker(vu_id=self._next_vu_id)
        self._next_vu_id += 1
        self._workers[worker.vu_id] = worker
        worker.task = asyncio.create_task(
            self._worker_loop(worker),
            name=f"vu-{self._scenario.name}-{worker.vu_id}",
        )

    async def _worker_loop(self, worker: _Worker) -> None:
        """
        Worker coroutine: run iterations until signalled.

        The stop event is only checked between iterations.
        """
        target: Optional[HttpTarget] = None
        if self._target_factory is not None:
            target = self._target_factory({"scenario": self._scenario.name})
        threads: Optional[ThreadPoolExecutor] = None
        if not inspect.iscoroutinefunction(self._scenario.body):
            threads = ThreadPoolExecutor(
                max_workers=1,
                thread_name_prefix=f"vu-{self._scenario.name}-{worker.vu_id}",
            )
        rng = random.Random(f"{self._seed}:{self._scenario.name}:{worker.vu_id}")
        iteration = 0
        try:
            while not worker.stop.is_set():
                context = ScenarioContext(
                    scenario=self._scenario.name,
                    vu_id=worker.vu_id,
                    iteration=iteration,
                    sink=self._executor.sink,
                    setup_data=self._setup_data,
                    target=target,
                    rng=rng,
                )
                self._in_flight += 1
                try:
                    await self._executor.execute(
                        self._scenario, context, stop=worker.stop, threads=threads
                    )
                finally:
                    self._in_flight -= 1
                iteration += 1
                self._iterations += 1
        finally:
            self._workers.pop(worker.vu_id, None)
            if target is not None:
                await target.aclose()
            if threads is not None:
                # A cancelled sync body keeps its thread until the body returns.
                threads.shutdown(wait=False)

    async def _wait_stop(self, timeout: float) -> bool:
        """Sleep up to `timeout`; True if stop() was called meanwhile."""
        if timeout <= 0:
            return self._stop_requested.is_set()
        try:
            await asyncio.wait_for(self._stop_requested.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            return False
        return True
