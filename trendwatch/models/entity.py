"""Tracked entity model.

One row per hashtag, sound or creator. The counters are denormalized copies
of the latest snapshot, written together with it by the ingestion pipeline.
"""

from datetime import datetime
from typing import TYPE_CHECKING, Optional

from sqlalchemy import BigInteger, DateTime, String, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base

if TYPE_CHECKING:
    from .snapshot import EntitySnapshot


class Entity(Base):
    __tablename__ = "tracked_entities"
    __table_args__ = (
        UniqueConstraint("entity_type", "external_id", name="uq_tracked_entities_type_external_id"),
    )

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    external_id: Mapped[str] = mapped_column(String(255), nullable=False)
    entity_type: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    display_name: Mapped[str] = mapped_column(String(255), nullable=False)

    # views (hashtag), plays (sound) or followers (creator)
    primary_volume: Mapped[int] = mapped_column(
        BigInteger, nullable=False, server_default="0"
    )
    secondary_count: Mapped[int] = mapped_column(
        BigInteger, nullable=False, server_default="0"
    )

    first_seen_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    last_updated_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    snapshots: Mapped[list["EntitySnapshot"]] = relationship(
        "EntitySnapshot", back_populates="entity"
    )
