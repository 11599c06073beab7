"""Repository contracts the engine depends on.

Every method returns plain value types from ``trendwatch.schemas.trend``.
Implementations raise PersistenceError for write failures.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Optional

from trendwatch.schemas.trend import (
    AlertRule,
    EntityCounters,
    EntityType,
    Recipient,
    Snapshot,
    TrackedEntity,
    TriggerEvent,
)


class SnapshotStore(ABC):
    """Tracked entities and their append-only snapshot history."""

    @abstractmethod
    async def tracked_entities(self, entity_type: EntityType) -> list[TrackedEntity]:
        pass

    @abstractmethod
    async def get_entity(self, entity_id: int) -> Optional[TrackedEntity]:
        pass

    @abstractmethod
    async def latest_snapshots(self, entity_id: int, n: int) -> list[Snapshot]:
        """Return up to ``n`` snapshots for the entity, newest first."""
        pass

    @abstractmethod
    async def snapshots_since(self, entity_id: int, since: datetime) -> list[Snapshot]:
        """Return snapshots observed at or after ``since``, oldest first."""
        pass

    @abstractmethod
    async def append_snapshot(self, snapshot: Snapshot) -> None:
        """Append a snapshot. Must be strictly newer than the entity's latest one."""
        pass

    @abstractmethod
    async def update_entity_counters(
        self, entity_id: int, counters: EntityCounters, updated_at: datetime
    ) -> None:
        pass

    @abstractmethod
    async def record_observation(
        self,
        snapshot: Snapshot,
        counters: EntityCounters,
        previous_at: Optional[datetime],
    ) -> None:
        """Append ``snapshot`` and update the entity's counters as one unit.

        Either both writes become visible to readers or neither does.
        ``previous_at`` is the observation time of the snapshot the derived
        metrics were computed against (None when there was no history). If the
        entity's latest snapshot is no longer that one, PersistenceError is
        raised and nothing is written.
        """
        pass


class RuleStore(ABC):
    @abstractmethod
    async def active_rules(self) -> list[AlertRule]:
        pass

    @abstractmethod
    async def stamp_triggered(self, rule_id: int, when: datetime) -> None:
        pass


class NotificationStore(ABC):
    @abstractmethod
    async def create_notification(
        self,
        event: TriggerEvent,
        title: str,
        message: str,
        data: dict[str, Any],
    ) -> bool:
        """Persist a notification for ``event``.

        Returns False when a notification with the same dedupe key already
        exists, meaning the event was delivered before.
        """
        pass

    @abstractmethod
    async def create_digest_notification(
        self,
        user_id: str,
        title: str,
        message: str,
        data: dict[str, Any],
        dedupe_key: str,
    ) -> bool:
        """Persist a daily digest notification; False if ``dedupe_key`` exists."""
        pass


class RecipientDirectory(ABC):
    @abstractmethod
    async def recipient(self, user_id: str) -> Optional[Recipient]:
        pass

    @abstractmethod
    async def digest_recipients(self, digest_time: str) -> list[Recipient]:
        """Recipients with the daily digest enabled at ``digest_time`` ("HH:MM")."""
        pass
