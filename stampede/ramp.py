"""
Ramp schedules: target concurrency as a function of time.

A schedule is an ordered list of RampStage {duration, target}. Under the
LINEAR policy the target moves in a straight line from the previous
stage's target (start_vus for the first stage) to the stage's target over
the stage duration; a zero-length stage jumps immediately. Under HOLD the
target is the stage's own target for the whole stage.

Targets are rounded to the nearest integer, halves rounding up.
"""

from __future__ import annotations

import math
from typing import List, Sequence, Tuple

from stampede.models import RampPolicy, RampStage


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


class RampSchedule:
    """
    Piecewise concurrency curve for one scenario.

    Example:
        schedule = RampSchedule(
            [RampStage(duration=10, target=50), RampStage(duration=10, target=50)]
        )
        schedule.target_at(5.0)   # 25
        schedule.target_at(15.0)  # 50
    """

    def __init__(
        self,
        stages: Sequence[RampStage],
        *,
        start_vus: int = 0,
        policy: RampPolicy = RampPolicy.LINEAR,
    ) -> None:
        if start_vus < 0:
            raise ValueError("start_vus must be >= 0")
        self._stages: Tuple[RampStage, ...] = tuple(stages)
        self._start_vus = start_vus
        self._policy = RampPolicy(policy)

        # (stage_start, stage_end, from_target, to_target)
        self._segments: List[Tuple[float, float, int, int]] = []
        elapsed = 0.0
        previous = start_vus
        for stage in self._stages:
            self._segments.append(
                (elapsed, elapsed + stage.duration, previous, stage.target)
            )
            elapsed += stage.duration
            previous = stage.target
        self._total = elapsed

    @property
    def stages(self) -> Tuple[RampStage, ...]:
        return self._stages

    @property
    def policy(self) -> RampPolicy:
        return self._policy

    @property
    def start_vus(self) -> int:
        return self._start_vus

    @property
    def total_duration(self) -> float:
        """Sum of stage durations, in seconds."""
        return self._total

    @property
    def max_target(self) -> int:
        return max([self._start_vus] + [s.target for s in self._stages])

    def target_at(self, elapsed: float) -> int:
        """Target concurrency at `elapsed` seconds after activation."""
        if not self._segments:
            return self._start_vus
        if elapsed < 0:
            elapsed = 0.0

        for start, end, from_target, to_target in self._segments:
            if elapsed >= end:
                continue
            if self._policy is RampPolicy.HOLD:
                return to_target
            duration = end - start
            fraction = (elapsed - start) / duration
            return _round_half_up(from_target + (to_target - from_target) * fraction)

        return self._segments[-1][3]
