"""Tests for ramp schedules."""

import pytest

from stampede.models import RampPolicy, RampStage
from stampede.ramp import RampSchedule


def stages(*pairs):
    return [RampStage(duration=d, target=t) for d, t in pairs]


class TestLinear:
    def test_interpolates_within_stage(self):
        schedule = RampSchedule(stages((10, 100)))
        assert schedule.target_at(0) == 0
        assert schedule.target_at(2.5) == 25
        assert schedule.target_at(5) == 50
        assert schedule.target_at(9.99) == 100

    def test_rounds_half_up(self):
        schedule = RampSchedule(stages((10, 1)))
        assert schedule.target_at(4.9) == 0
        assert schedule.target_at(5.0) == 1

    def test_multi_stage_curve(self):
        schedule = RampSchedule(stages((30, 200), (60, 500), (300, 500), (30, 0)))
        assert schedule.total_duration == 420
        assert schedule.max_target == 500
        assert schedule.target_at(15) == 100
        assert schedule.target_at(60) == 350
        assert schedule.target_at(200) == 500
        assert schedule.target_at(405) == 250

    def test_ramp_then_hold(self):
        schedule = RampSchedule(stages((10, 50), (10, 50)))
        assert schedule.target_at(9.9) == 50
        assert schedule.target_at(10) == 50
        assert schedule.target_at(15) == 50

    def test_starts_from_start_vus(self):
        schedule = RampSchedule(stages((10, 0)), start_vus=20)
        assert schedule.target_at(0) == 20
        assert schedule.target_at(5) == 10

    def test_zero_length_stage_jumps(self):
        schedule = RampSchedule(stages((0, 40), (10, 40)))
        assert schedule.target_at(0) == 40
        assert schedule.target_at(5) == 40

    def test_after_end_keeps_last_target(self):
        schedule = RampSchedule(stages((1, 5)))
        assert schedule.target_at(100) == 5

    def test_negative_elapsed_clamps(self):
        schedule = RampSchedule(stages((10, 10)), start_vus=2)
        assert schedule.target_at(-3) == 2


class TestHold:
    def test_stage_target_for_whole_stage(self):
        schedule = RampSchedule(stages((10, 30), (10, 60)), policy=RampPolicy.HOLD)
        assert schedule.target_at(0) == 30
        assert schedule.target_at(9.9) == 30
        assert schedule.target_at(10) == 60

    def test_policy_accepts_string(self):
        assert RampSchedule(stages((1, 1)), policy="hold").policy is RampPolicy.HOLD


class TestEdgeCases:
    def test_no_stages(self):
        schedule = RampSchedule([], start_vus=3)
        assert schedule.total_duration == 0
        assert schedule.target_at(1) == 3

    def test_negative_start_vus(self):
        with pytest.raises(ValueError):
            RampSchedule(stages((1, 1)), start_vus=-1)
