"""In-process store implementations.

Used by tests and by single-process deployments that keep history in memory.
One asyncio.Lock per store makes ``record_observation`` atomic with respect to
concurrent readers.
"""

import asyncio
from collections import defaultdict
from datetime import datetime
from typing import Any, Optional

from trendwatch.errors import PersistenceError
from trendwatch.schemas.trend import (
    AlertRule,
    EntityCounters,
    EntityType,
    Recipient,
    Snapshot,
    TrackedEntity,
    TriggerEvent,
)
from trendwatch.stores.base import (
    NotificationStore,
    RecipientDirectory,
    RuleStore,
    SnapshotStore,
)


class InMemorySnapshotStore(SnapshotStore):
    def __init__(self) -> None:
        self._entities: dict[int, TrackedEntity] = {}
        self._snapshots: dict[int, list[Snapshot]] = defaultdict(list)
        self._lock = asyncio.Lock()

    def add_entity(self, entity: TrackedEntity) -> TrackedEntity:
        self._entities[entity.id] = entity
        return entity

    async def tracked_entities(self, entity_type: EntityType) -> list[TrackedEntity]:
        async with self._lock:
            return [
                e.model_copy()
                for e in self._entities.values()
                if e.entity_type == entity_type
            ]

    async def get_entity(self, entity_id: int) -> Optional[TrackedEntity]:
        async with self._lock:
            entity = self._entities.get(entity_id)
            return entity.model_copy() if entity else None

    async def latest_snapshots(self, entity_id: int, n: int) -> list[Snapshot]:
        if n <= 0:
            return []
        async with self._lock:
            return list(reversed(self._snapshots[entity_id][-n:]))

    async def snapshots_since(self, entity_id: int, since: datetime) -> list[Snapshot]:
        async with self._lock:
            return [s for s in self._snapshots[entity_id] if s.observed_at >= since]

    async def append_snapshot(self, snapshot: Snapshot) -> None:
        async with self._lock:
            self._check_append(snapshot)
            self._snapshots[snapshot.entity_id].append(snapshot)

    async def update_entity_counters(
        self, entity_id: int, counters: EntityCounters, updated_at: datetime
    ) -> None:
        async with self._lock:
            self._apply_counters(self._require_entity(entity_id), counters, updated_at)

    async def record_observation(
        self,
        snapshot: Snapshot,
        counters: EntityCounters,
        previous_at: Optional[datetime],
    ) -> None:
        async with self._lock:
            # Validate everything before mutating so a failure leaves no partial state
            entity = self._require_entity(snapshot.entity_id)
            history = self._snapshots[snapshot.entity_id]
            latest_at = history[-1].observed_at if history else None
            if latest_at != previous_at:
                raise PersistenceError(
                    f"entity {snapshot.entity_id} history changed while computing its snapshot"
                )
            self._check_append(snapshot)
            self._snapshots[snapshot.entity_id].append(snapshot)
            self._apply_counters(entity, counters, snapshot.observed_at)

    def _require_entity(self, entity_id: int) -> TrackedEntity:
        entity = self._entities.get(entity_id)
        if entity is None:
            raise PersistenceError(f"unknown entity {entity_id}")
        return entity

    def _check_append(self, snapshot: Snapshot) -> None:
        if snapshot.entity_id not in self._entities:
            raise PersistenceError(f"unknown entity {snapshot.entity_id}")
        history = self._snapshots[snapshot.entity_id]
        if history and snapshot.observed_at <= history[-1].observed_at:
            raise PersistenceError(
                f"snapshot for entity {snapshot.entity_id} at {snapshot.observed_at.isoformat()} "
                f"is not newer than {history[-1].observed_at.isoformat()}"
            )

    def _apply_counters(
        self, entity: TrackedEntity, counters: EntityCounters, updated_at: datetime
    ) -> None:
        self._entities[entity.id] = entity.model_copy(
            update={
                "primary_volume": counters.primary_volume,
                "secondary_count": counters.secondary_count,
                "last_updated_at": updated_at,
                "first_seen_at": entity.first_seen_at or updated_at,
            }
        )


class InMemoryRuleStore(RuleStore):
    def __init__(self, rules: Optional[list[AlertRule]] = None) -> None:
        self._rules: dict[int, AlertRule] = {r.id: r for r in rules or []}

    def add_rule(self, rule: AlertRule) -> AlertRule:
        self._rules[rule.id] = rule
        return rule

    def get(self, rule_id: int) -> Optional[AlertRule]:
        return self._rules.get(rule_id)

    async def active_rules(self) -> list[AlertRule]:
        return [r.model_copy() for r in self._rules.values() if r.is_active]

    async def stamp_triggered(self, rule_id: int, when: datetime) -> None:
        rule = self._rules.get(rule_id)
        if rule is None:
            raise PersistenceError(f"unknown alert rule {rule_id}")
        self._rules[rule_id] = rule.model_copy(update={"last_triggered_at": when})


class InMemoryNotificationStore(NotificationStore):
    def __init__(self) -> None:
        self.notifications: dict[str, dict[str, Any]] = {}

    async def create_notification(
        self,
        event: TriggerEvent,
        title: str,
        message: str,
        data: dict[str, Any],
    ) -> bool:
        if event.dedupe_key in self.notifications:
            return False
        self.notifications[event.dedupe_key] = {
            "user_id": event.user_id,
            "alert_rule_id": event.rule_id,
            "type": "TREND_ALERT",
            "title": title,
            "message": message,
            "data": data,
            "read": False,
        }
        return True

    async def create_digest_notification(
        self,
        user_id: str,
        title: str,
        message: str,
        data: dict[str, Any],
        dedupe_key: str,
    ) -> bool:
        if dedupe_key in self.notifications:
            return False
        self.notifications[dedupe_key] = {
            "user_id": user_id,
            "alert_rule_id": None,
            "type": "DAILY_DIGEST",
            "title": title,
            "message": message,
            "data": data,
            "read": False,
        }
        return True


class InMemoryRecipientDirectory(RecipientDirectory):
    def __init__(self, recipients: Optional[list[Recipient]] = None) -> None:
        self._recipients = {r.user_id: r for r in recipients or []}

    async def recipient(self, user_id: str) -> Optional[Recipient]:
        return self._recipients.get(user_id)

    async def digest_recipients(self, digest_time: str) -> list[Recipient]:
        return [
            r for r in self._recipients.values() if r.daily_digest and r.digest_time == digest_time
        ]
