"""Metric primitives for trend scoring.

Pure functions with no I/O: growth rate, velocity, engagement rate, the
composite trend score used for hashtags/sounds/creators and the viral score
used for individual videos.

Volume counters are Python ints of arbitrary size. Ratios are computed with
exact integer arithmetic up to a single final division, and log10 is taken
on the exact integer, so very large counters never lose their sign or
leading digits to an early float conversion.
"""

import math
from datetime import datetime, timezone
from typing import Iterable, Sequence, Union

Number = Union[int, float]

# Trend score weights (sum to 100)
VIEW_WEIGHT = 20
GROWTH_WEIGHT = 30
VELOCITY_WEIGHT = 25
ENGAGEMENT_WEIGHT = 15
DECAY_WEIGHT = 10

# Values at which each trend sub-score saturates
VIEW_LOG_CAP = 10          # log10(views + 1) of 10 => 10 billion views
GROWTH_CAP = 10.0          # percent
VELOCITY_CAP = 5.0         # units per hour
ENGAGEMENT_CAP = 20.0      # percent

# Viral score weights and caps
VIRAL_VIEWS_WEIGHT = 40
VIRAL_ENGAGEMENT_WEIGHT = 30
VIRAL_SHARE_WEIGHT = 20
VIRAL_RECENCY_WEIGHT = 10
VIRAL_VIEWS_LOG_CAP = 6    # one million views per hour
VIRAL_ENGAGEMENT_CAP = 10.0
VIRAL_SHARE_CAP = 5.0
RECENCY_DECAY_HOURS = 48.0

SECONDS_PER_HOUR = 3600.0


def _ratio(numerator: Number, denominator: Number) -> float:
    """Divide, keeping ints exact until the final true division.

    int / int is correctly rounded in Python regardless of magnitude; a float
    operand is range-checked so an oversized int raises instead of turning
    into inf.
    """
    try:
        if isinstance(numerator, int) and isinstance(denominator, int):
            return numerator / denominator
        return float(numerator) / float(denominator)
    except OverflowError as exc:
        raise ValueError(f"counter too large for float arithmetic: {exc}") from exc


def _log10_count(value: int) -> float:
    """log10 of a non-negative counter (exact for arbitrarily large ints)."""
    if value < 0:
        raise ValueError(f"volume counters must be non-negative, got {value}")
    return math.log10(value + 1)


def _unit(value: float) -> float:
    """Clamp a normalized sub-score to [0, 1]."""
    if value != value:  # NaN
        return 0.0
    return max(0.0, min(value, 1.0))


def _round_half_up(value: float) -> int:
    return math.floor(value + 0.5)


def growth_rate(current: Number, previous: Number) -> float:
    """Percent change from ``previous`` to ``current``.

    A zero baseline yields 100 when anything appeared and 0 otherwise.
    Unclamped: declines are negative and viral spikes can exceed 1000.
    """
    if previous == 0:
        return 100.0 if current > 0 else 0.0
    if isinstance(current, int) and isinstance(previous, int):
        return _ratio((current - previous) * 100, previous)
    return _ratio(current - previous, previous) * 100


def velocity(points: Iterable[tuple[Number, datetime]]) -> float:
    """Mean hourly rate of change across consecutive ``(value, timestamp)`` points.

    Points are stable-sorted by timestamp, so ties keep their input order.
    Pairs with coinciding timestamps are left out of the average. Returns 0
    when fewer than two usable points exist.
    """
    ordered = sorted(points, key=lambda p: p[1])
    if len(ordered) < 2:
        return 0.0

    rates = []
    for (prev_value, prev_ts), (value, ts) in zip(ordered, ordered[1:]):
        hours = (ts - prev_ts).total_seconds() / SECONDS_PER_HOUR
        if hours <= 0:
            continue
        rates.append(_ratio(value - prev_value, 1) / hours)

    if not rates:
        return 0.0
    return sum(rates) / len(rates)


def engagement_rate(likes: int, comments: int, shares: int, views: int) -> float:
    """Interactions as a percentage of views (0 when there are no views)."""
    if views == 0:
        return 0.0
    return _ratio(likes + comments + shares, views) * 100


def trend_score(
    view_count: int,
    growth_rate: float,
    velocity: float,
    engagement_rate: float = 0.0,
    time_decay: float = 1.0,
) -> int:
    """Composite 0-100 popularity/momentum score for an entity.

    Each sub-score is capped and floored independently before weighting, so
    a negative growth or velocity contributes 0 rather than subtracting.
    """
    view_score = min(_log10_count(view_count) / VIEW_LOG_CAP, 1.0) * VIEW_WEIGHT
    growth_score = _unit(growth_rate / GROWTH_CAP) * GROWTH_WEIGHT
    velocity_score = _unit(velocity / VELOCITY_CAP) * VELOCITY_WEIGHT
    engagement_score = _unit(engagement_rate / ENGAGEMENT_CAP) * ENGAGEMENT_WEIGHT
    decay_score = _unit(time_decay) * DECAY_WEIGHT

    total = view_score + growth_score + velocity_score + engagement_score + decay_score
    return max(0, min(_round_half_up(total), 100))


def viral_score(
    view_count: int,
    like_count: int,
    share_count: int,
    comment_count: int,
    created_at: datetime,
    now: datetime,
) -> int:
    """Composite 0-100 momentum score for a single content item.

    Weighted 40/30/20/10 across views per hour (log scale), engagement rate,
    share rate and an exponential recency term with a 48 hour constant.
    """
    if created_at.tzinfo is None:
        created_at = created_at.replace(tzinfo=timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)

    age_hours = max(0.0, (now - created_at).total_seconds() / SECONDS_PER_HOUR)

    views_per_hour = _ratio(view_count, 1) / max(age_hours, 1.0)
    engagement = engagement_rate(like_count, comment_count, share_count, view_count)
    share_rate = _ratio(share_count, view_count) * 100 if view_count else 0.0
    recency = math.exp(-age_hours / RECENCY_DECAY_HOURS)

    score = (
        min(math.log10(views_per_hour + 1) / VIRAL_VIEWS_LOG_CAP, 1.0) * VIRAL_VIEWS_WEIGHT
        + _unit(engagement / VIRAL_ENGAGEMENT_CAP) * VIRAL_ENGAGEMENT_WEIGHT
        + _unit(share_rate / VIRAL_SHARE_CAP) * VIRAL_SHARE_WEIGHT
        + recency * VIRAL_RECENCY_WEIGHT
    )
    return max(0, min(_round_half_up(score), 100))


def momentum(recent_scores: Sequence[float], historical_average: float) -> float:
    """Percent difference between the recent mean score and a historical mean."""
    if not recent_scores or historical_average == 0:
        return 0.0
    recent_average = sum(recent_scores) / len(recent_scores)
    return (recent_average - historical_average) / historical_average * 100
