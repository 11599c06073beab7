"""Plain value types exchanged between the engine and its stores.

Stores return these instead of ORM rows so the scoring, ingestion and alert
code only depends on narrow read/write contracts.
"""

import enum
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class EntityType(str, enum.Enum):
    hashtag = "hashtag"
    sound = "sound"
    creator = "creator"


class AlertCondition(str, enum.Enum):
    gte = "gte"


class TrackedEntity(BaseModel):
    """A hashtag, sound or creator with its denormalized current counters."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    external_id: str
    entity_type: EntityType
    display_name: str
    # views for hashtags, plays for sounds, followers for creators
    primary_volume: int = Field(default=0, ge=0)
    secondary_count: int = Field(default=0, ge=0)
    first_seen_at: Optional[datetime] = None
    last_updated_at: Optional[datetime] = None


class EngagementCounters(BaseModel):
    model_config = ConfigDict(frozen=True)

    likes: int = Field(default=0, ge=0)
    comments: int = Field(default=0, ge=0)
    shares: int = Field(default=0, ge=0)
    # Denominator for the engagement rate; falls back to the primary volume
    views: Optional[int] = Field(default=None, ge=0)


class EntityCounters(BaseModel):
    """Raw counters returned by the data source for one entity."""

    model_config = ConfigDict(frozen=True)

    primary_volume: int = Field(ge=0)
    secondary_count: int = Field(default=0, ge=0)
    engagement: Optional[EngagementCounters] = None


class Snapshot(BaseModel):
    """Immutable timestamped observation of one entity's metrics."""

    model_config = ConfigDict(frozen=True, from_attributes=True)

    entity_id: int
    observed_at: datetime
    primary_volume: int = Field(ge=0)
    secondary_count: int = Field(default=0, ge=0)
    likes: Optional[int] = None
    shares: Optional[int] = None
    comments: Optional[int] = None
    growth_rate: float = 0.0
    velocity: float = 0.0
    engagement_rate: float = 0.0
    trend_score: int = Field(default=0, ge=0, le=100)


class AlertRule(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: str
    entity_type: EntityType
    entity_id: Optional[int] = None
    threshold: float
    condition: str = AlertCondition.gte.value
    is_active: bool = True
    last_triggered_at: Optional[datetime] = None
    # Opt-in: suppress re-triggering until this many seconds have passed
    cooldown_seconds: Optional[int] = Field(default=None, ge=0)


class TriggerEvent(BaseModel):
    """Evaluator output for a rule whose condition held in this cycle."""

    model_config = ConfigDict(frozen=True)

    rule_id: int
    user_id: str
    entity_type: EntityType
    entity_id: int
    display_name: str
    metric: str
    current_value: float
    threshold: float
    triggered_at: datetime

    @property
    def dedupe_key(self) -> str:
        return f"{self.rule_id}:{self.triggered_at.isoformat()}"


class CycleResult(BaseModel):
    """Summary of one ingestion pass for one entity type."""

    entity_type: EntityType
    processed: int = 0
    failed: int = 0
    skipped: int = 0
    cancelled: bool = False
    errors: dict[int, str] = Field(default_factory=dict)


class Recipient(BaseModel):
    """Where a user wants trend alerts delivered."""

    model_config = ConfigDict(from_attributes=True)

    user_id: str
    email: Optional[str] = None
    email_notifications: bool = True
    webhook_notifications: bool = False
    webhook_url: Optional[str] = None

    # Daily digest: sent once a day at digest_time (UTC, "HH:MM")
    daily_digest: bool = False
    digest_time: str = "09:00"
    min_view_count: int = 0
    min_growth_rate: float = 0.0


class DispatchResult(BaseModel):
    dedupe_key: str
    recorded: bool = False
    duplicate: bool = False
    email_sent: bool = False
    webhook_sent: bool = False
    errors: list[str] = Field(default_factory=list)
