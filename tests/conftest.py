"""Shared fixtures: a controllable clock, a scripted data source and factories."""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Optional, Union

import pytest

from trendwatch.clients.source import DataSource
from trendwatch.errors import FetchError
from trendwatch.schemas.trend import (
    AlertRule,
    EntityCounters,
    EntityType,
    Snapshot,
    TrackedEntity,
)
from trendwatch.stores.memory import InMemoryRuleStore, InMemorySnapshotStore

BASE_TIME = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, start: datetime = BASE_TIME) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


class ScriptedSource(DataSource):
    """Returns canned counters per external id; exceptions are raised instead."""

    def __init__(self, responses: dict[str, Union[EntityCounters, Exception]], delay: float = 0.0):
        self.responses = responses
        self.delay = delay
        self.calls: list[tuple[EntityType, str]] = []

    async def fetch_entity_counters(self, entity_type: EntityType, external_id: str) -> EntityCounters:
        self.calls.append((entity_type, external_id))
        if self.delay:
            await asyncio.sleep(self.delay)
        response = self.responses.get(external_id)
        if response is None:
            raise FetchError("not found", entity_type.value, external_id)
        if isinstance(response, Exception):
            raise response
        return response


def make_entity(
    entity_id: int,
    entity_type: EntityType = EntityType.hashtag,
    name: Optional[str] = None,
    volume: int = 0,
) -> TrackedEntity:
    return TrackedEntity(
        id=entity_id,
        external_id=f"ext-{entity_id}",
        entity_type=entity_type,
        display_name=name or f"#tag{entity_id}",
        primary_volume=volume,
    )


def make_snapshot(
    entity_id: int,
    observed_at: datetime,
    volume: int,
    growth: float = 0.0,
    velocity: float = 0.0,
    score: int = 0,
) -> Snapshot:
    return Snapshot(
        entity_id=entity_id,
        observed_at=observed_at,
        primary_volume=volume,
        growth_rate=growth,
        velocity=velocity,
        trend_score=score,
    )


def make_rule(rule_id: int = 1, entity_id: Optional[int] = 1, threshold: float = 50.0, **kwargs) -> AlertRule:
    kwargs.setdefault("entity_type", EntityType.hashtag)
    kwargs.setdefault("user_id", "user-1")
    return AlertRule(id=rule_id, entity_id=entity_id, threshold=threshold, **kwargs)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    return InMemorySnapshotStore()


@pytest.fixture
def rule_store():
    return InMemoryRuleStore()
