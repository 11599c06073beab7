"""Read-side trend detection over stored snapshots.

Compares recent snapshot windows per entity to surface trending and
emerging entities, and ranks entities for dashboards and daily digests.
"""

from datetime import datetime, timedelta
from typing import Callable, Optional

import structlog
from pydantic import BaseModel

from trendwatch.schemas.trend import EntityType, Snapshot, TrackedEntity
from trendwatch.services.ingestion import utc_now
from trendwatch.services.lifecycle import LifecycleStage, classify_lifecycle
from trendwatch.services.scoring import growth_rate
from trendwatch.stores.base import SnapshotStore

log = structlog.get_logger(__name__)

# Trending: latest day vs the day before
MIN_TRENDING_GROWTH = 50.0
MIN_TRENDING_VOLUME = 1_000_000
TRENDING_WINDOW = timedelta(hours=24)

# Emerging: fast in the last 6 hours, small or absent in the 6 before
MIN_EMERGING_VELOCITY = 2.0
EMERGING_WINDOW = timedelta(hours=6)
MAX_EMERGING_PRIOR_VOLUME = 500_000

LIFECYCLE_HISTORY = 5


class TrendRow(BaseModel):
    entity: TrackedEntity
    snapshot: Snapshot
    growth_rate: float


def _latest_in(
    snapshots: list[Snapshot], start: datetime, end: Optional[datetime] = None
) -> Optional[Snapshot]:
    """Newest snapshot with ``start <= observed_at < end`` (input oldest first)."""
    for snap in reversed(snapshots):
        if snap.observed_at >= start and (end is None or snap.observed_at < end):
            return snap
    return None


class TrendDetector:
    def __init__(self, store: SnapshotStore, clock: Callable[[], datetime] = utc_now) -> None:
        self.store = store
        self._clock = clock

    async def detect_trending(
        self,
        entity_type: EntityType,
        min_growth_rate: float = MIN_TRENDING_GROWTH,
        min_volume: int = MIN_TRENDING_VOLUME,
    ) -> list[TrendRow]:
        """Entities whose volume grew at least ``min_growth_rate`` percent day over day.

        An entity with no snapshot in the prior day counts as 100% growth.
        """
        now = self._clock()
        day_ago = now - TRENDING_WINDOW
        two_days_ago = day_ago - TRENDING_WINDOW

        rows = []
        for entity in await self.store.tracked_entities(entity_type):
            history = await self.store.snapshots_since(entity.id, two_days_ago)
            current = _latest_in(history, day_ago)
            if current is None or current.primary_volume < min_volume:
                continue
            prior = _latest_in(history, two_days_ago, day_ago)
            rate = (
                growth_rate(current.primary_volume, prior.primary_volume)
                if prior is not None
                else 100.0
            )
            if rate >= min_growth_rate:
                rows.append(TrendRow(entity=entity, snapshot=current, growth_rate=rate))

        rows.sort(key=lambda r: r.snapshot.trend_score, reverse=True)
        log.debug("trending_detected", entity_type=entity_type.value, count=len(rows))
        return rows

    async def detect_emerging(self, entity_type: EntityType) -> list[TrendRow]:
        """Entities moving fast right now that were small or unseen shortly before."""
        now = self._clock()
        recent_start = now - EMERGING_WINDOW
        older_start = recent_start - EMERGING_WINDOW

        rows = []
        for entity in await self.store.tracked_entities(entity_type):
            history = await self.store.snapshots_since(entity.id, older_start)
            current = _latest_in(history, recent_start)
            if current is None or current.velocity <= MIN_EMERGING_VELOCITY:
                continue
            older = _latest_in(history, older_start, recent_start)
            if older is not None and older.primary_volume >= MAX_EMERGING_PRIOR_VOLUME:
                continue
            rows.append(TrendRow(entity=entity, snapshot=current, growth_rate=current.growth_rate))

        rows.sort(key=lambda r: r.snapshot.velocity, reverse=True)
        return rows

    async def top_trends(self, entity_type: EntityType, limit: int = 10) -> list[TrendRow]:
        """One row per entity with a snapshot in the last day, best trend score first."""
        since = self._clock() - TRENDING_WINDOW
        rows = []
        for entity in await self.store.tracked_entities(entity_type):
            latest = await self.store.latest_snapshots(entity.id, 1)
            if latest and latest[0].observed_at >= since:
                rows.append(
                    TrendRow(entity=entity, snapshot=latest[0], growth_rate=latest[0].growth_rate)
                )
        rows.sort(key=lambda r: r.snapshot.trend_score, reverse=True)
        return rows[:limit]

    async def lifecycle_for(self, entity_id: int) -> LifecycleStage:
        """Lifecycle stage from the entity's most recent trend scores."""
        recent = await self.store.latest_snapshots(entity_id, LIFECYCLE_HISTORY)
        return classify_lifecycle((s.observed_at, s.trend_score) for s in recent)
