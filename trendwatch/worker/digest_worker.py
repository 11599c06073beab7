"""Digest worker: sends daily digests to users whose digest time has come.

Wakes at the start of every minute (UTC), looks up recipients whose
``digest_time`` matches the current "HH:MM" and emails each one a digest of
the top trends. Digests are recorded once per user and day, so a repeated
minute never sends twice.
"""

import asyncio
from datetime import datetime
from typing import Callable, Optional

import structlog

from trendwatch.config import settings
from trendwatch.schemas.trend import DispatchResult
from trendwatch.services.detection import TrendDetector
from trendwatch.services.digest import build_digest
from trendwatch.services.ingestion import utc_now
from trendwatch.services.notifications import NotificationDispatcher

log = structlog.get_logger(__name__)

# Wake slightly after the boundary so the new minute has begun
SLOT_MARGIN_SECONDS = 0.5


async def run_digest_cycle(
    detector: TrendDetector, dispatcher: NotificationDispatcher, now: datetime
) -> list[DispatchResult]:
    """Send the digests scheduled for ``now``'s minute.

    A failure for one recipient is logged and does not block the rest.
    """
    digest_time = f"{now:%H:%M}"
    recipients = await dispatcher.recipients.digest_recipients(digest_time)
    results = []
    for recipient in recipients:
        try:
            digest = await build_digest(detector, recipient, now)
            results.append(await dispatcher.send_digest(recipient, digest))
        except Exception:
            log.error("digest_dispatch_error", user_id=recipient.user_id, exc_info=True)
    if recipients:
        log.info(
            "digest_run_completed",
            digest_time=digest_time,
            recipients=len(recipients),
            sent=sum(1 for r in results if r.email_sent),
        )
    return results


def seconds_until_next_slot(now: datetime, interval: float) -> float:
    return interval - (now.timestamp() % interval) + SLOT_MARGIN_SECONDS


async def digest_worker_loop(
    detector: TrendDetector,
    dispatcher: NotificationDispatcher,
    stop_event: asyncio.Event,
    interval: Optional[float] = None,
    clock: Callable[[], datetime] = utc_now,
) -> None:
    interval = interval if interval is not None else settings.digest_interval_seconds
    log.info("digest_worker_started", interval_seconds=interval)

    while not stop_event.is_set():
        try:
            await run_digest_cycle(detector, dispatcher, clock())
        except Exception:
            log.error("digest_worker_error", exc_info=True)
        try:
            await asyncio.wait_for(
                stop_event.wait(), timeout=seconds_until_next_slot(clock(), interval)
            )
        except asyncio.TimeoutError:
            pass

    log.info("digest_worker_stopped")
