"""Trend lifecycle classification.

Maps a short history of trend scores to a qualitative stage:
  EMERGING:  rising from a low base (or too little history to tell)
  GROWING:   rising with an already high average
  PEAK:      high and flat
  DECLINING: mostly falling
  STABLE:    none of the above
"""

import enum
from datetime import datetime
from typing import Iterable

# Points considered from the end of the history
WINDOW_SIZE = 5
MIN_POINTS = 3
MIN_DIRECTIONAL_MOVES = 3
GROWING_MEAN = 50
PEAK_MEAN = 80
PEAK_MAX_VARIANCE = 50


class LifecycleStage(str, enum.Enum):
    EMERGING = "emerging"
    GROWING = "growing"
    PEAK = "peak"
    DECLINING = "declining"
    STABLE = "stable"


def classify_lifecycle(history: Iterable[tuple[datetime, float]]) -> LifecycleStage:
    """Classify ``(timestamp, trend_score)`` history into a lifecycle stage.

    History is sorted by time (stable) and only the last five points are used.
    Rules are checked in order and the first match wins.
    """
    points = sorted(history, key=lambda p: p[0])
    if len(points) < MIN_POINTS:
        return LifecycleStage.EMERGING

    scores = [score for _, score in points[-WINDOW_SIZE:]]

    increases = 0
    decreases = 0
    for prev, cur in zip(scores, scores[1:]):
        if cur > prev:
            increases += 1
        elif cur < prev:
            decreases += 1

    mean = sum(scores) / len(scores)
    variance = sum((s - mean) ** 2 for s in scores) / len(scores)

    if increases >= MIN_DIRECTIONAL_MOVES and mean < GROWING_MEAN:
        return LifecycleStage.EMERGING
    if increases >= MIN_DIRECTIONAL_MOVES:
        return LifecycleStage.GROWING
    if mean >= PEAK_MEAN and variance < PEAK_MAX_VARIANCE:
        return LifecycleStage.PEAK
    if decreases >= MIN_DIRECTIONAL_MOVES:
        return LifecycleStage.DECLINING
    return LifecycleStage.STABLE
