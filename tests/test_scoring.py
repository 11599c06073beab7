"""Tests for the metric primitives."""

import math
from datetime import timedelta

import pytest

from trendwatch.services.scoring import (
    engagement_rate,
    growth_rate,
    momentum,
    trend_score,
    velocity,
    viral_score,
)
from tests.conftest import BASE_TIME


@pytest.mark.parametrize("previous", [1, 7, 1_000, 123_456_789, 10**18])
@pytest.mark.parametrize("change", [0.0, 0.5, -0.25, 2.0, 12.5])
def test_growth_rate_matches_relative_change(previous, change):
    current = previous * (1 + change)
    assert growth_rate(current, previous) == pytest.approx(change * 100, rel=1e-9, abs=1e-9)


def test_growth_rate_zero_baseline():
    assert growth_rate(5, 0) == 100
    assert growth_rate(0, 0) == 0


def test_growth_rate_is_unclamped():
    assert growth_rate(50, 100) == -50
    assert growth_rate(5_000, 100) == 4_900


def test_growth_rate_exact_for_huge_counters():
    assert growth_rate(2**70, 2**69) == 100.0
    # 10**30 does not fit a double exactly; integer arithmetic keeps the digits
    assert growth_rate(10**30 + 10**12, 10**30) == pytest.approx(1e-16, rel=1e-9)
    assert growth_rate(10**30 - 1, 10**30) < 0


def test_velocity_needs_two_points():
    assert velocity([]) == 0
    assert velocity([(100, BASE_TIME)]) == 0


def test_velocity_one_hour_apart():
    points = [(100, BASE_TIME), (150, BASE_TIME + timedelta(hours=1))]
    assert velocity(points) == 50


def test_velocity_sorts_by_timestamp():
    points = [
        (300, BASE_TIME + timedelta(hours=2)),
        (100, BASE_TIME),
        (200, BASE_TIME + timedelta(hours=1)),
    ]
    assert velocity(points) == 100


def test_velocity_averages_interval_rates():
    points = [
        (0, BASE_TIME),
        (100, BASE_TIME + timedelta(hours=1)),   # 100/h
        (400, BASE_TIME + timedelta(hours=3)),   # 150/h
    ]
    assert velocity(points) == 125


def test_velocity_skips_coinciding_timestamps():
    points = [
        (100, BASE_TIME),
        (200, BASE_TIME),
        (300, BASE_TIME + timedelta(hours=1)),
    ]
    result = velocity(points)
    assert result == 100
    assert math.isfinite(result)


def test_velocity_all_timestamps_equal():
    assert velocity([(1, BASE_TIME), (2, BASE_TIME), (3, BASE_TIME)]) == 0


def test_velocity_can_be_negative():
    points = [(500, BASE_TIME), (300, BASE_TIME + timedelta(hours=2))]
    assert velocity(points) == -100


def test_engagement_rate():
    assert engagement_rate(10, 5, 5, 100) == 20
    assert engagement_rate(10, 5, 5, 0) == 0


def test_trend_score_known_value():
    # view 12 + growth 15 + velocity 12.5 + engagement 7.5 + decay 10
    assert trend_score(999_999, 5, 2.5, 10, 1) == 57


def test_trend_score_defaults():
    assert trend_score(0, 0, 0) == 10


def test_trend_score_rounds_half_up():
    assert trend_score(0, 0, 0, 0, 0.25) == 3


def test_trend_score_negative_inputs_floor_at_zero():
    assert trend_score(0, -500, -20, -5, 0) == 0
    assert trend_score(999_999, -500, -20) == trend_score(999_999, 0, 0)


def test_trend_score_extremes_stay_in_range():
    assert trend_score(10**15, 10**6, 10**6, 10**6, 1) == 100
    assert trend_score(10**40, 10**9, 10**9, 10**9, 5) == 100
    assert trend_score(0, 0, 0, 0, 0) == 0


def test_trend_score_rejects_negative_views():
    with pytest.raises(ValueError):
        trend_score(-1, 0, 0)


@pytest.mark.parametrize("position", range(5))
def test_trend_score_monotonic_in_each_input(position):
    base = [1_000, 2.0, 1.0, 3.0, 0.5]
    steps = {
        0: [0, 10, 1_000, 10**6, 10**9, 10**12],
        1: [0, 1, 5, 9.9, 10, 50, 10**4],
        2: [0, 0.5, 2, 4.9, 5, 100],
        3: [0, 1, 10, 19.9, 20, 400],
        4: [0, 0.1, 0.5, 0.9, 1.0],
    }[position]

    previous = -1
    for value in steps:
        args = list(base)
        args[position] = value
        score = trend_score(*args)
        assert 0 <= score <= 100
        assert score >= previous
        previous = score


def test_viral_score_fresh_video():
    # views/hour 1000 -> 20.0, engagement 10% -> 30, shares 1% -> 4, recency 10
    score = viral_score(1_000, 50, 10, 40, created_at=BASE_TIME, now=BASE_TIME)
    assert score == 64


def test_viral_score_without_views():
    assert viral_score(0, 0, 0, 0, created_at=BASE_TIME, now=BASE_TIME) == 10


def test_viral_score_decays_with_age():
    fresh = viral_score(50_000, 2_000, 300, 100, BASE_TIME, BASE_TIME + timedelta(hours=1))
    old = viral_score(50_000, 2_000, 300, 100, BASE_TIME, BASE_TIME + timedelta(hours=240))
    assert fresh > old
    assert 0 <= old <= 100


def test_viral_score_bounded_for_huge_counts():
    score = viral_score(10**15, 10**15, 10**15, 10**15, BASE_TIME, BASE_TIME)
    assert score == 100


def test_viral_score_future_creation_time_counts_as_new():
    score = viral_score(1_000, 50, 10, 40, BASE_TIME + timedelta(hours=3), BASE_TIME)
    assert score == 64


def test_momentum():
    assert momentum([60, 80], 50) == 40
    assert momentum([], 50) == 0
    assert momentum([10, 20], 0) == 0
