"""Minimal view of reward-eligible content owned by users."""

from __future__ import annotations

from sqlalchemy import Column, DateTime, Integer, String, func

from credit_rewards.db.base import Base


class ContentItem(Base):
    """Posts, images and articles referenced by reward payloads."""

    __tablename__ = "content_items"

    id = Column(String, primary_key=True)
    owner_id = Column(Integer, nullable=False, index=True)
    kind = Column(String(length=32), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)


__all__ = ["ContentItem"]
