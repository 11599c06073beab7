"""Tests for the ingestion and alert worker loops."""

import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

from trendwatch.schemas.trend import (
    CycleResult,
    DispatchResult,
    EntityCounters,
    EntityType,
    Recipient,
)
from trendwatch.services.alerts import AlertEvaluator
from trendwatch.services.ingestion import IngestionPipeline
from trendwatch.services.notifications import NotificationDispatcher
from trendwatch.stores.memory import (
    InMemoryNotificationStore,
    InMemoryRecipientDirectory,
)
from trendwatch.worker.alert_worker import alert_worker_loop, run_alert_cycle
from trendwatch.worker.ingestion_worker import ingestion_worker_loop, run_ingestion_cycle
from tests.conftest import BASE_TIME, ScriptedSource, make_entity, make_rule, make_snapshot


def test_run_ingestion_cycle(store, clock):
    store.add_entity(make_entity(1))
    source = ScriptedSource({"ext-1": EntityCounters(primary_volume=100)})
    pipeline = IngestionPipeline(source, store, clock=clock)

    results = asyncio.run(run_ingestion_cycle(pipeline))

    assert results[EntityType.hashtag].processed == 1


def test_ingestion_loop_stops_on_event():
    """The loop exits once the stop event is set, even mid-interval."""
    pipeline = MagicMock()
    calls = []

    async def ingest_all(cancel_event):
        calls.append(cancel_event)
        return {EntityType.hashtag: CycleResult(entity_type=EntityType.hashtag, processed=1)}

    pipeline.ingest_all = ingest_all

    async def scenario():
        stop = asyncio.Event()
        task = asyncio.create_task(ingestion_worker_loop(pipeline, stop, interval=60))
        await asyncio.sleep(0.05)
        stop.set()
        await asyncio.wait_for(task, timeout=1)
        return stop

    stop = asyncio.run(scenario())

    assert len(calls) == 1
    assert calls[0] is stop


def test_ingestion_loop_survives_errors():
    pipeline = MagicMock()
    pipeline.ingest_all = AsyncMock(side_effect=RuntimeError("db gone"))

    async def scenario():
        stop = asyncio.Event()
        task = asyncio.create_task(ingestion_worker_loop(pipeline, stop, interval=0.01))
        await asyncio.sleep(0.1)
        stop.set()
        await asyncio.wait_for(task, timeout=1)

    asyncio.run(scenario())

    assert pipeline.ingest_all.await_count >= 2


def _seed_trending(store):
    store.add_entity(make_entity(1))

    async def append():
        await store.append_snapshot(make_snapshot(1, BASE_TIME - timedelta(hours=2), 1_000))
        await store.append_snapshot(make_snapshot(1, BASE_TIME - timedelta(hours=1), 1_600, growth=60.0))

    asyncio.run(append())


def test_run_alert_cycle_dispatches_events(store, rule_store, clock):
    _seed_trending(store)
    rule_store.add_rule(make_rule(1))
    notifications = InMemoryNotificationStore()
    dispatcher = NotificationDispatcher(
        notifications, InMemoryRecipientDirectory([Recipient(user_id="user-1")])
    )
    evaluator = AlertEvaluator(store, rule_store, clock=clock)

    results = asyncio.run(run_alert_cycle(evaluator, dispatcher))

    assert [r.recorded for r in results] == [True]
    assert len(notifications.notifications) == 1


def test_run_alert_cycle_isolates_dispatch_errors(store, rule_store, clock):
    _seed_trending(store)
    rule_store.add_rule(make_rule(1))
    rule_store.add_rule(make_rule(2))
    dispatcher = MagicMock()
    dispatcher.dispatch = AsyncMock(
        side_effect=[RuntimeError("smtp exploded"), DispatchResult(dedupe_key="2:x", recorded=True)]
    )
    evaluator = AlertEvaluator(store, rule_store, clock=clock)

    results = asyncio.run(run_alert_cycle(evaluator, dispatcher))

    assert dispatcher.dispatch.await_count == 2
    assert [r.dedupe_key for r in results] == ["2:x"]


def test_alert_loop_stops_on_event():
    evaluator = MagicMock()
    evaluator.evaluate_alerts = AsyncMock(return_value=[])
    dispatcher = MagicMock()

    async def scenario():
        stop = asyncio.Event()
        task = asyncio.create_task(alert_worker_loop(evaluator, dispatcher, stop, interval=60))
        await asyncio.sleep(0.05)
        stop.set()
        await asyncio.wait_for(task, timeout=1)

    asyncio.run(scenario())

    assert evaluator.evaluate_alerts.await_count == 1
