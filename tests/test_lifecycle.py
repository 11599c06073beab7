from datetime import timedelta

import pytest

from trendwatch.services.lifecycle import LifecycleStage, classify_lifecycle
from tests.conftest import BASE_TIME


def _history(scores):
    return [(BASE_TIME + timedelta(hours=i), s) for i, s in enumerate(scores)]


@pytest.mark.parametrize(
    "scores,stage",
    [
        ([], LifecycleStage.EMERGING),
        ([90, 95], LifecycleStage.EMERGING),
        ([10, 20, 30, 40, 50], LifecycleStage.EMERGING),
        ([60, 70, 80, 85, 90], LifecycleStage.GROWING),
        ([80, 82, 81, 80, 81], LifecycleStage.PEAK),
        ([90, 80, 70, 60, 50], LifecycleStage.DECLINING),
        ([40, 42, 40, 42, 40], LifecycleStage.STABLE),
    ],
)
def test_classify_lifecycle(scores, stage):
    assert classify_lifecycle(_history(scores)) == stage


def test_rising_rule_wins_over_peak():
    # High and flat, but three increases come first in the rule order
    assert classify_lifecycle(_history([80, 81, 79, 80, 82])) == LifecycleStage.GROWING


def test_high_declining_history_with_wide_spread():
    # mean 85 but variance 50 is not below the peak bound
    assert classify_lifecycle(_history([95, 90, 85, 80, 75])) == LifecycleStage.DECLINING


def test_input_order_does_not_matter():
    history = _history([10, 20, 30, 40, 50])
    shuffled = [history[3], history[0], history[4], history[1], history[2]]
    assert classify_lifecycle(shuffled) == LifecycleStage.EMERGING


def test_only_last_five_points_are_used():
    # The two oldest points would pull the mean below 50
    history = _history([0, 0, 60, 70, 80, 85, 90])
    assert classify_lifecycle(history) == LifecycleStage.GROWING


def test_accepts_generator():
    gen = ((ts, s) for ts, s in _history([80, 82, 81, 80, 81]))
    assert classify_lifecycle(gen) == LifecycleStage.PEAK


def test_stage_values_are_lowercase_names():
    assert [s.value for s in LifecycleStage] == [
        "emerging",
        "growing",
        "peak",
        "declining",
        "stable",
    ]
