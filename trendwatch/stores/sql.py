"""PostgreSQL store implementations on SQLAlchemy's async session.

Each public method runs in its own session. ``record_observation`` inserts
the snapshot and updates the entity counters inside one transaction, so a
reader sees either both writes or neither.
"""

from datetime import datetime
from typing import Any, Optional

from sqlalchemy import select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from trendwatch.errors import PersistenceError
from trendwatch.models import (
    AlertRuleRecord,
    Entity,
    EntitySnapshot,
    Notification,
    NotificationPreference,
)
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


class SqlSnapshotStore(SnapshotStore):
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def tracked_entities(self, entity_type: EntityType) -> list[TrackedEntity]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(Entity).where(Entity.entity_type == entity_type.value).order_by(Entity.id)
            )
            return [TrackedEntity.model_validate(row) for row in result.scalars().all()]

    async def get_entity(self, entity_id: int) -> Optional[TrackedEntity]:
        async with self._session_factory() as session:
            entity = await session.get(Entity, entity_id)
            return TrackedEntity.model_validate(entity) if entity else None

    async def latest_snapshots(self, entity_id: int, n: int) -> list[Snapshot]:
        if n <= 0:
            return []
        async with self._session_factory() as session:
            result = await session.execute(
                select(EntitySnapshot)
                .where(EntitySnapshot.entity_id == entity_id)
                .order_by(EntitySnapshot.observed_at.desc())
                .limit(n)
            )
            return [Snapshot.model_validate(row) for row in result.scalars().all()]

    async def snapshots_since(self, entity_id: int, since: datetime) -> list[Snapshot]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(EntitySnapshot)
                .where(EntitySnapshot.entity_id == entity_id)
                .where(EntitySnapshot.observed_at >= since)
                .order_by(EntitySnapshot.observed_at.asc())
            )
            return [Snapshot.model_validate(row) for row in result.scalars().all()]

    async def append_snapshot(self, snapshot: Snapshot) -> None:
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    await self._insert_snapshot(session, snapshot, None, check_previous=False)
        except SQLAlchemyError as exc:
            raise PersistenceError(f"snapshot append failed: {exc}") from exc

    async def update_entity_counters(
        self, entity_id: int, counters: EntityCounters, updated_at: datetime
    ) -> None:
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    await self._update_counters(session, entity_id, counters, updated_at)
        except SQLAlchemyError as exc:
            raise PersistenceError(f"entity counter update failed: {exc}") from exc

    async def record_observation(
        self,
        snapshot: Snapshot,
        counters: EntityCounters,
        previous_at: Optional[datetime],
    ) -> None:
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    # Row lock serializes concurrent writers for the same entity
                    await session.execute(
                        select(Entity.id).where(Entity.id == snapshot.entity_id).with_for_update()
                    )
                    await self._insert_snapshot(session, snapshot, previous_at, check_previous=True)
                    await self._update_counters(
                        session, snapshot.entity_id, counters, snapshot.observed_at
                    )
        except SQLAlchemyError as exc:
            raise PersistenceError(
                f"recording observation for entity {snapshot.entity_id} failed: {exc}"
            ) from exc

    async def _insert_snapshot(
        self,
        session: AsyncSession,
        snapshot: Snapshot,
        previous_at: Optional[datetime],
        check_previous: bool,
    ) -> None:
        latest = await session.execute(
            select(EntitySnapshot.observed_at)
            .where(EntitySnapshot.entity_id == snapshot.entity_id)
            .order_by(EntitySnapshot.observed_at.desc())
            .limit(1)
        )
        latest_at = latest.scalar_one_or_none()
        if check_previous and latest_at != previous_at:
            raise PersistenceError(
                f"entity {snapshot.entity_id} history changed while computing its snapshot"
            )
        if latest_at is not None and snapshot.observed_at <= latest_at:
            raise PersistenceError(
                f"snapshot for entity {snapshot.entity_id} is not newer than {latest_at.isoformat()}"
            )
        session.add(EntitySnapshot(**snapshot.model_dump()))
        await session.flush()

    async def _update_counters(
        self,
        session: AsyncSession,
        entity_id: int,
        counters: EntityCounters,
        updated_at: datetime,
    ) -> None:
        result = await session.execute(
            update(Entity)
            .where(Entity.id == entity_id)
            .values(
                primary_volume=counters.primary_volume,
                secondary_count=counters.secondary_count,
                last_updated_at=updated_at,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise PersistenceError(f"unknown entity {entity_id}")


class SqlRuleStore(RuleStore):
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def active_rules(self) -> list[AlertRule]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(AlertRuleRecord)
                .where(AlertRuleRecord.is_active.is_(True))
                .order_by(AlertRuleRecord.id)
            )
            return [AlertRule.model_validate(row) for row in result.scalars().all()]

    async def stamp_triggered(self, rule_id: int, when: datetime) -> None:
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    await session.execute(
                        update(AlertRuleRecord)
                        .where(AlertRuleRecord.id == rule_id)
                        .values(last_triggered_at=when)
                        .execution_options(synchronize_session=False)
                    )
        except SQLAlchemyError as exc:
            raise PersistenceError(f"stamping alert rule {rule_id} failed: {exc}") from exc


class SqlNotificationStore(NotificationStore):
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def create_notification(
        self,
        event: TriggerEvent,
        title: str,
        message: str,
        data: dict[str, Any],
    ) -> bool:
        return await self._insert(
            user_id=event.user_id,
            alert_rule_id=event.rule_id,
            type="TREND_ALERT",
            title=title,
            message=message,
            data=data,
            dedupe_key=event.dedupe_key,
        )

    async def create_digest_notification(
        self,
        user_id: str,
        title: str,
        message: str,
        data: dict[str, Any],
        dedupe_key: str,
    ) -> bool:
        return await self._insert(
            user_id=user_id,
            alert_rule_id=None,
            type="DAILY_DIGEST",
            title=title,
            message=message,
            data=data,
            dedupe_key=dedupe_key,
        )

    async def _insert(self, **values: Any) -> bool:
        stmt = (
            pg_insert(Notification)
            .values(**values)
            .on_conflict_do_nothing(index_elements=["dedupe_key"])
            .returning(Notification.id)
        )
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    result = await session.execute(stmt)
                    inserted = result.scalar_one_or_none()
        except SQLAlchemyError as exc:
            raise PersistenceError(f"recording notification failed: {exc}") from exc
        return inserted is not None


class SqlRecipientDirectory(RecipientDirectory):
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def recipient(self, user_id: str) -> Optional[Recipient]:
        async with self._session_factory() as session:
            prefs = await session.get(NotificationPreference, user_id)
            return Recipient.model_validate(prefs) if prefs else None

    async def digest_recipients(self, digest_time: str) -> list[Recipient]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(NotificationPreference)
                .where(NotificationPreference.daily_digest.is_(True))
                .where(NotificationPreference.digest_time == digest_time)
                .order_by(NotificationPreference.user_id)
            )
            return [Recipient.model_validate(row) for row in result.scalars().all()]
