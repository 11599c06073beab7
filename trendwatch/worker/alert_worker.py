"""Alert worker: evaluates active rules and dispatches trigger events.

Runs every ``alert_interval_seconds``. Each cycle evaluates rules under the
cycle lock, then hands every trigger event to the notification dispatcher.
"""

import asyncio
from typing import Optional

import structlog

from trendwatch.config import settings
from trendwatch.schemas.trend import DispatchResult
from trendwatch.services.alerts import AlertEvaluator
from trendwatch.services.notifications import NotificationDispatcher

log = structlog.get_logger(__name__)


async def run_alert_cycle(
    evaluator: AlertEvaluator, dispatcher: NotificationDispatcher
) -> list[DispatchResult]:
    """Evaluate alerts once and deliver the resulting events.

    A dispatch failure for one event is logged and does not block the rest.
    """
    events = await evaluator.evaluate_alerts()
    results = []
    for event in events:
        try:
            results.append(await dispatcher.dispatch(event))
        except Exception:
            log.error("alert_dispatch_error", rule_id=event.rule_id, exc_info=True)
    if events:
        log.info("alert_run_completed", triggered=len(events), dispatched=len(results))
    return results


async def alert_worker_loop(
    evaluator: AlertEvaluator,
    dispatcher: NotificationDispatcher,
    stop_event: asyncio.Event,
    interval: Optional[float] = None,
) -> None:
    interval = interval if interval is not None else settings.alert_interval_seconds
    log.info("alert_worker_started", interval_seconds=interval)

    while not stop_event.is_set():
        try:
            await run_alert_cycle(evaluator, dispatcher)
        except Exception:
            log.error("alert_worker_error", exc_info=True)
        try:
            await asyncio.wait_for(stop_event.wait(), timeout=interval)
        except asyncio.TimeoutError:
            pass

    log.info("alert_worker_stopped")
