"""Ingestion worker: refreshes every tracked entity on a fixed interval.

Each iteration runs one ingestion pass per entity type. Failures inside a
pass are isolated per entity by the pipeline; anything escaping a pass is
logged and the loop waits for the next interval.
"""

import asyncio
from typing import Optional

import structlog

from trendwatch.config import settings
from trendwatch.schemas.trend import CycleResult, EntityType
from trendwatch.services.ingestion import IngestionPipeline

log = structlog.get_logger(__name__)


async def run_ingestion_cycle(
    pipeline: IngestionPipeline, cancel_event: Optional[asyncio.Event] = None
) -> dict[EntityType, CycleResult]:
    """Run one pass over all entity types and log the totals."""
    results = await pipeline.ingest_all(cancel_event)
    log.info(
        "ingestion_run_completed",
        processed=sum(r.processed for r in results.values()),
        failed=sum(r.failed for r in results.values()),
        skipped=sum(r.skipped for r in results.values()),
    )
    return results


async def ingestion_worker_loop(
    pipeline: IngestionPipeline,
    stop_event: asyncio.Event,
    interval: Optional[float] = None,
) -> None:
    """Poll until ``stop_event`` is set. Setting it also cancels an in-flight pass between entities."""
    interval = interval if interval is not None else settings.ingestion_interval_seconds
    log.info("ingestion_worker_started", interval_seconds=interval)

    while not stop_event.is_set():
        try:
            await run_ingestion_cycle(pipeline, stop_event)
        except Exception:
            log.error("ingestion_worker_error", exc_info=True)
        try:
            await asyncio.wait_for(stop_event.wait(), timeout=interval)
        except asyncio.TimeoutError:
            pass

    log.info("ingestion_worker_stopped")
