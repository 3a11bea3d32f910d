"""Append-only reward event log."""

from __future__ import annotations

from enum import Enum

from sqlalchemy import (
    Column,
    DateTime,
    Enum as SqlEnum,
    Float,
    Index,
    Integer,
    JSON,
    String,
    UniqueConstraint,
    func,
)

from credit_rewards.db.base import Base


class RewardEventStatus(str, Enum):
    """Lifecycle statuses for reward events."""

    PENDING = "pending"
    AWARDED = "awarded"
    CAPPED = "capped"
    UNQUALIFIED = "unqualified"


class RewardEvent(Base):
    """One version of a reward event.

    Rows are never updated in place: a status or amount change is a new row
    for the same key with ``version`` incremented, and readers take the
    highest version per key.
    """

    __tablename__ = "reward_events"
    __table_args__ = (
        UniqueConstraint(
            "type",
            "to_user_id",
            "by_user_id",
            "for_id",
            "version",
            name="uq_reward_events_key_version",
        ),
        Index("ix_reward_events_type_status", "type", "status"),
        Index("ix_reward_events_to_user_time", "to_user_id", "time"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    type = Column(String, nullable=False)
    to_user_id = Column(Integer, nullable=False)
    by_user_id = Column(Integer, nullable=False)
    for_id = Column(String, nullable=False)
    award_amount = Column(Integer, nullable=False, default=0, server_default="0")
    multiplier = Column(Float, nullable=False, default=1.0, server_default="1")
    status = Column(
        SqlEnum(
            RewardEventStatus,
            name="reward_event_status",
            values_callable=lambda enum: [member.value for member in enum],
        ),
        nullable=False,
        default=RewardEventStatus.PENDING,
        server_default=RewardEventStatus.PENDING.value,
    )
    ip = Column(String, nullable=True)
    transaction_details = Column(JSON, nullable=True)
    version = Column(Integer, nullable=False, default=1, server_default="1")
    time = Column(DateTime(timezone=True), nullable=False)
    recorded_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)


__all__ = ["RewardEvent", "RewardEventStatus"]
