"""Alert rule evaluation.

Each active rule is checked against the growth rate stored on its entity's
latest snapshot; rules not bound to an entity never trigger. A rule is in
one of two states:
  armed:   active and not yet triggered in this cycle
  cooling: triggered in this cycle; armed again on the next one

Re-triggering on every cycle while the condition holds is expected, unless
the rule opts into ``cooldown_seconds``. Overlapping cycles are prevented by
a CycleLock, so each rule is evaluated at most once per cycle.
"""

import asyncio
import time
from datetime import datetime, timedelta
from typing import Callable, Optional

import structlog

from trendwatch.errors import PersistenceError
from trendwatch.locks import CycleLock, LocalCycleLock
from trendwatch.metrics import ALERTS_TRIGGERED, CYCLE_DURATION
from trendwatch.schemas.trend import (
    AlertCondition,
    AlertRule,
    EntityType,
    Snapshot,
    TrackedEntity,
    TriggerEvent,
)
from trendwatch.services.ingestion import utc_now
from trendwatch.stores.base import RuleStore, SnapshotStore

log = structlog.get_logger(__name__)

DEFAULT_CONCURRENCY = 8

# Metric evaluated per entity type (growth of the primary volume)
METRIC_NAMES: dict[EntityType, str] = {
    EntityType.hashtag: "view_count_growth",
    EntityType.sound: "play_count_growth",
    EntityType.creator: "follower_growth",
}

_CONDITIONS: dict[str, Callable[[float, float], bool]] = {
    AlertCondition.gte.value: lambda value, threshold: value >= threshold,
}


def in_cooldown(rule: AlertRule, now: datetime) -> bool:
    """Whether an opt-in cooldown still suppresses ``rule``."""
    if not rule.cooldown_seconds or rule.last_triggered_at is None:
        return False
    return now - rule.last_triggered_at < timedelta(seconds=rule.cooldown_seconds)


class AlertEvaluator:
    def __init__(
        self,
        snapshots: SnapshotStore,
        rules: RuleStore,
        lock: Optional[CycleLock] = None,
        clock: Callable[[], datetime] = utc_now,
        max_concurrency: int = DEFAULT_CONCURRENCY,
    ) -> None:
        self.snapshots = snapshots
        self.rules = rules
        self.lock = lock or LocalCycleLock()
        self.max_concurrency = max_concurrency
        self._clock = clock

    async def evaluate_alerts(self) -> list[TriggerEvent]:
        """Run one alert-check pass and return the trigger events, in rule order.

        Returns an empty list without evaluating anything when another cycle
        still holds the lock.
        """
        async with self.lock.hold() as acquired:
            if not acquired:
                log.info("alert_cycle_skipped", reason="cycle_in_progress")
                return []
            return await self._evaluate_all()

    async def _evaluate_all(self) -> list[TriggerEvent]:
        started = time.monotonic()
        now = self._clock()

        rules: dict[int, AlertRule] = {}
        for rule in await self.rules.active_rules():
            if rule.is_active:
                rules.setdefault(rule.id, rule)

        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def _run(rule: AlertRule) -> Optional[TriggerEvent]:
            async with semaphore:
                try:
                    return await self.evaluate_rule(rule, now)
                except Exception:
                    log.error("alert_rule_error", rule_id=rule.id, exc_info=True)
                    return None

        outcomes = await asyncio.gather(*(_run(r) for r in rules.values()))
        events = [e for e in outcomes if e is not None]

        elapsed = time.monotonic() - started
        CYCLE_DURATION.labels(cycle="alerts").observe(elapsed)
        log.info(
            "alert_cycle_completed",
            rules_evaluated=len(rules),
            triggered=len(events),
            duration_ms=round(elapsed * 1000),
        )
        return events

    async def evaluate_rule(self, rule: AlertRule, now: datetime) -> Optional[TriggerEvent]:
        """Evaluate a single rule; returns its TriggerEvent or None."""
        if not rule.is_active:
            return None

        check = _CONDITIONS.get(rule.condition)
        if check is None:
            log.warning("alert_rule_unknown_condition", rule_id=rule.id, condition=rule.condition)
            return None

        if in_cooldown(rule, now):
            log.debug("alert_rule_cooling_down", rule_id=rule.id)
            return None

        candidate = await self._candidate(rule)
        if candidate is None:
            return None
        entity, latest = candidate

        if not check(latest.growth_rate, rule.threshold):
            return None

        event = TriggerEvent(
            rule_id=rule.id,
            user_id=rule.user_id,
            entity_type=rule.entity_type,
            entity_id=entity.id,
            display_name=entity.display_name,
            metric=METRIC_NAMES[rule.entity_type],
            current_value=latest.growth_rate,
            threshold=rule.threshold,
            triggered_at=now,
        )

        try:
            await self.rules.stamp_triggered(rule.id, now)
        except PersistenceError as exc:
            log.error("alert_rule_stamp_failed", rule_id=rule.id, error=str(exc))

        ALERTS_TRIGGERED.labels(entity_type=rule.entity_type.value).inc()
        log.info(
            "alert_triggered",
            rule_id=rule.id,
            entity_id=entity.id,
            metric=event.metric,
            value=event.current_value,
            threshold=rule.threshold,
        )
        return event

    async def _candidate(self, rule: AlertRule) -> Optional[tuple[TrackedEntity, Snapshot]]:
        """Pick the entity/latest-snapshot pair the rule is checked against.

        Only rules bound to an entity are checked. Unbound rules never
        trigger. Entities with fewer than two snapshots are not eligible.
        """
        if rule.entity_id is None:
            log.debug("alert_rule_unbound", rule_id=rule.id, entity_type=rule.entity_type.value)
            return None

        entity = await self.snapshots.get_entity(rule.entity_id)
        if entity is None:
            log.warning("alert_rule_entity_missing", rule_id=rule.id, entity_id=rule.entity_id)
            return None
        latest = await self._latest_with_history(entity)
        return (entity, latest) if latest is not None else None

    async def _latest_with_history(self, entity: TrackedEntity) -> Optional[Snapshot]:
        recent = await self.snapshots.latest_snapshots(entity.id, 2)
        if len(recent) < 2:
            return None
        return recent[0]
