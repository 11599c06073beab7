"""Ingestion pipeline: fetch raw counters, derive metrics, append snapshots.

One pass per entity type. Each entity is an independent unit:
1. Fetch current counters from the data source (bounded by a timeout)
2. Growth rate against the immediately preceding snapshot
3. Velocity over the snapshots of the trailing 24 hours
4. Engagement rate and composite trend score
5. Append the snapshot and update the entity counters atomically

A failing entity is logged and counted, never aborts the pass. Retries happen
on the scheduler's next cycle, not inside a pass.
"""

import asyncio
import time
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

import structlog

from trendwatch.clients.source import DataSource
from trendwatch.errors import FetchError, PersistenceError
from trendwatch.metrics import CYCLE_DURATION, ENTITIES_FAILED, ENTITIES_INGESTED
from trendwatch.schemas.trend import (
    CycleResult,
    EntityCounters,
    EntityType,
    Snapshot,
    TrackedEntity,
)
from trendwatch.services.scoring import engagement_rate, growth_rate, trend_score, velocity
from trendwatch.stores.base import SnapshotStore

log = structlog.get_logger(__name__)

VELOCITY_WINDOW = timedelta(hours=24)
DEFAULT_CONCURRENCY = 4


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def counters_engagement_rate(counters: EntityCounters) -> float:
    """Engagement rate for fresh counters; 0 when the source reports none."""
    engagement = counters.engagement
    if engagement is None:
        return 0.0
    views = engagement.views if engagement.views is not None else counters.primary_volume
    return engagement_rate(engagement.likes, engagement.comments, engagement.shares, views)


class IngestionPipeline:
    def __init__(
        self,
        source: DataSource,
        store: SnapshotStore,
        fetch_timeout: Optional[float] = None,
        max_concurrency: int = DEFAULT_CONCURRENCY,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        self.source = source
        self.store = store
        self.fetch_timeout = fetch_timeout
        self.max_concurrency = max_concurrency
        self._clock = clock

    async def ingest_cycle(
        self,
        entity_type: EntityType,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> CycleResult:
        """Run one ingestion pass over every tracked entity of ``entity_type``.

        Setting ``cancel_event`` stops the pass before the next entity starts;
        entities not reached are counted as skipped. Snapshots already
        appended are kept.
        """
        result = CycleResult(entity_type=entity_type)
        started = time.monotonic()

        entities = await self.store.tracked_entities(entity_type)
        # At most one snapshot per entity per cycle
        unique: dict[int, TrackedEntity] = {}
        for entity in entities:
            unique.setdefault(entity.id, entity)

        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def _run(entity: TrackedEntity) -> None:
            async with semaphore:
                if cancel_event is not None and cancel_event.is_set():
                    result.skipped += 1
                    return
                await self._process_entity(entity, result)

        await asyncio.gather(*(_run(e) for e in unique.values()))

        result.cancelled = result.skipped > 0
        elapsed = time.monotonic() - started
        CYCLE_DURATION.labels(cycle="ingestion").observe(elapsed)
        log.info(
            "ingestion_cycle_completed",
            entity_type=entity_type.value,
            processed=result.processed,
            failed=result.failed,
            skipped=result.skipped,
            duration_ms=round(elapsed * 1000),
        )
        return result

    async def ingest_all(
        self, cancel_event: Optional[asyncio.Event] = None
    ) -> dict[EntityType, CycleResult]:
        """Run a pass for hashtags, sounds and creators in turn."""
        results = {}
        for entity_type in EntityType:
            if cancel_event is not None and cancel_event.is_set():
                break
            results[entity_type] = await self.ingest_cycle(entity_type, cancel_event)
        return results

    async def _process_entity(self, entity: TrackedEntity, result: CycleResult) -> None:
        kind = entity.entity_type.value
        try:
            snapshot = await self.ingest_entity(entity)
        except (FetchError, asyncio.TimeoutError) as exc:
            reason = "timeout" if isinstance(exc, asyncio.TimeoutError) else "fetch"
            log.warning(
                "entity_fetch_failed",
                entity_id=entity.id,
                entity_type=kind,
                external_id=entity.external_id,
                error=str(exc) or reason,
            )
            self._fail(result, entity, reason, str(exc) or reason)
        except PersistenceError as exc:
            log.error(
                "entity_persist_failed",
                entity_id=entity.id,
                entity_type=kind,
                error=str(exc),
            )
            self._fail(result, entity, "persistence", str(exc))
        except Exception as exc:
            log.error(
                "entity_ingest_error",
                entity_id=entity.id,
                entity_type=kind,
                exc_info=True,
            )
            self._fail(result, entity, "error", str(exc))
        else:
            result.processed += 1
            ENTITIES_INGESTED.labels(entity_type=kind).inc()
            log.debug(
                "snapshot_recorded",
                entity_id=entity.id,
                entity_type=kind,
                growth_rate=snapshot.growth_rate,
                velocity=snapshot.velocity,
                trend_score=snapshot.trend_score,
            )

    @staticmethod
    def _fail(result: CycleResult, entity: TrackedEntity, reason: str, message: str) -> None:
        result.failed += 1
        result.errors[entity.id] = message
        ENTITIES_FAILED.labels(entity_type=entity.entity_type.value, reason=reason).inc()

    async def ingest_entity(self, entity: TrackedEntity) -> Snapshot:
        """Fetch, derive and record one snapshot for ``entity``.

        Raises:
            FetchError / asyncio.TimeoutError: The data source call failed.
            PersistenceError: The snapshot and counter update were not written.
        """
        counters = await asyncio.wait_for(
            self.source.fetch_entity_counters(entity.entity_type, entity.external_id),
            timeout=self.fetch_timeout,
        )
        observed_at = self._clock()

        previous = await self.store.latest_snapshots(entity.id, 1)
        previous_at = previous[0].observed_at if previous else None
        growth = (
            growth_rate(counters.primary_volume, previous[0].primary_volume)
            if previous
            else 0.0
        )

        window = await self.store.snapshots_since(entity.id, observed_at - VELOCITY_WINDOW)
        speed = velocity([(s.primary_volume, s.observed_at) for s in window])

        engagement = counters_engagement_rate(counters)
        score = trend_score(counters.primary_volume, growth, speed, engagement)

        eng = counters.engagement
        snapshot = Snapshot(
            entity_id=entity.id,
            observed_at=observed_at,
            primary_volume=counters.primary_volume,
            secondary_count=counters.secondary_count,
            likes=eng.likes if eng else None,
            shares=eng.shares if eng else None,
            comments=eng.comments if eng else None,
            growth_rate=growth,
            velocity=speed,
            engagement_rate=engagement,
            trend_score=score,
        )
        await self.store.record_observation(snapshot, counters, previous_at)
        return snapshot
