"""Notification records written by the dispatcher.

``dedupe_key`` is unique: a trigger event that was already recorded is not
delivered a second time.
"""

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import BigInteger, Boolean, DateTime, Float, String, Text, func
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base


class Notification(Base):
    __tablename__ = "notifications"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    user_id: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    alert_rule_id: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    type: Mapped[str] = mapped_column(String(20), nullable=False, server_default="TREND_ALERT")
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    data: Mapped[Optional[dict]] = mapped_column(JSONB, nullable=True)
    read: Mapped[bool] = mapped_column(Boolean, nullable=False, server_default="false")
    dedupe_key: Mapped[str] = mapped_column(String(128), nullable=False, unique=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )


class NotificationPreference(Base):
    __tablename__ = "notification_preferences"

    user_id: Mapped[str] = mapped_column(String(100), primary_key=True)
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    email_notifications: Mapped[bool] = mapped_column(
        Boolean, nullable=False, server_default="true"
    )
    webhook_notifications: Mapped[bool] = mapped_column(
        Boolean, nullable=False, server_default="false"
    )
    webhook_url: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    daily_digest: Mapped[bool] = mapped_column(Boolean, nullable=False, server_default="false")
    digest_time: Mapped[str] = mapped_column(String(5), nullable=False, server_default="09:00")
    min_view_count: Mapped[int] = mapped_column(BigInteger, nullable=False, server_default="0")
    min_growth_rate: Mapped[float] = mapped_column(Float, nullable=False, server_default="0")
