"""Run the ingestion, alert and digest workers against PostgreSQL and Redis.

    python -m trendwatch.worker
"""

import asyncio
import signal

import redis.asyncio as aioredis
import structlog
from prometheus_client import start_http_server

from trendwatch.clients.mailer import SmtpEmailSender
from trendwatch.clients.source import TikTokDataSource
from trendwatch.clients.webhook import WebhookSender
from trendwatch.config import settings
from trendwatch.database import async_session_factory, engine
from trendwatch.locks import RedisCycleLock
from trendwatch.logging_config import configure_logging
from trendwatch.services.alerts import AlertEvaluator
from trendwatch.services.detection import TrendDetector
from trendwatch.services.ingestion import IngestionPipeline
from trendwatch.services.notifications import NotificationDispatcher
from trendwatch.stores.sql import (
    SqlNotificationStore,
    SqlRecipientDirectory,
    SqlRuleStore,
    SqlSnapshotStore,
)
from trendwatch.worker.alert_worker import alert_worker_loop
from trendwatch.worker.digest_worker import digest_worker_loop
from trendwatch.worker.ingestion_worker import ingestion_worker_loop

log = structlog.get_logger(__name__)

METRICS_PORT = 9100


async def main() -> None:
    configure_logging()
    start_http_server(METRICS_PORT)

    redis = aioredis.from_url(settings.redis_url, encoding="utf-8", decode_responses=True)
    source = TikTokDataSource()
    webhook = WebhookSender()
    snapshots = SqlSnapshotStore(async_session_factory)

    pipeline = IngestionPipeline(
        source,
        snapshots,
        fetch_timeout=settings.fetch_timeout,
        max_concurrency=settings.ingestion_concurrency,
    )
    evaluator = AlertEvaluator(
        snapshots,
        SqlRuleStore(async_session_factory),
        lock=RedisCycleLock(redis, "trendwatch:alert-cycle", settings.alert_lock_ttl_seconds),
        max_concurrency=settings.alert_concurrency,
    )
    dispatcher = NotificationDispatcher(
        SqlNotificationStore(async_session_factory),
        SqlRecipientDirectory(async_session_factory),
        email_sender=SmtpEmailSender(),
        webhook_sender=webhook,
    )

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop_event.set)

    try:
        await asyncio.gather(
            ingestion_worker_loop(pipeline, stop_event),
            alert_worker_loop(evaluator, dispatcher, stop_event),
            digest_worker_loop(TrendDetector(snapshots), dispatcher, stop_event),
        )
    finally:
        await source.close()
        await webhook.close()
        await redis.aclose()
        await engine.dispose()
        log.info("workers_shutdown")


if __name__ == "__main__":
    asyncio.run(main())
