"""Entity snapshot model.

Append-only time series of per-entity metrics. Rows are never updated or
deleted; (entity_id, observed_at) is unique so history stays totally ordered.
"""

from datetime import datetime
from typing import TYPE_CHECKING, Optional

from sqlalchemy import (
    BigInteger,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base

if TYPE_CHECKING:
    from .entity import Entity


class EntitySnapshot(Base):
    __tablename__ = "entity_snapshots"
    __table_args__ = (
        UniqueConstraint("entity_id", "observed_at", name="uq_entity_snapshots_entity_observed"),
    )

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    entity_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("tracked_entities.id"), nullable=False
    )
    observed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    primary_volume: Mapped[int] = mapped_column(BigInteger, nullable=False)
    secondary_count: Mapped[int] = mapped_column(
        BigInteger, nullable=False, server_default="0"
    )
    likes: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    shares: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    comments: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)

    # Derived at ingestion time
    growth_rate: Mapped[float] = mapped_column(Float, nullable=False, server_default="0.0")
    velocity: Mapped[float] = mapped_column(Float, nullable=False, server_default="0.0")
    engagement_rate: Mapped[float] = mapped_column(
        Float, nullable=False, server_default="0.0"
    )
    trend_score: Mapped[int] = mapped_column(Integer, nullable=False, server_default="0")

    entity: Mapped["Entity"] = relationship("Entity", back_populates="snapshots")
