"""Credit balance ledger models."""

from __future__ import annotations

from enum import Enum
from uuid import uuid4

from sqlalchemy import (
    Column,
    DateTime,
    Enum as SqlEnum,
    Integer,
    JSON,
    String,
    func,
)

from credit_rewards.db.base import Base


class CreditTransactionType(str, Enum):
    """Kinds of balance movements recorded by the ledger."""

    REWARD = "reward"
    REFUND = "refund"


class CreditAccount(Base):
    """Running credit balance for a user account."""

    __tablename__ = "credit_accounts"

    account_id = Column(Integer, primary_key=True, autoincrement=False)
    balance = Column(Integer, nullable=False, default=0, server_default="0")
    lifetime_credited = Column(Integer, nullable=False, default=0, server_default="0")
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)


class CreditTransaction(Base):
    """Immutable transfer between two credit accounts."""

    __tablename__ = "credit_transactions"

    id = Column(String, primary_key=True, default=lambda: uuid4().hex)
    transaction_type = Column(
        SqlEnum(
            CreditTransactionType,
            name="credit_transaction_type",
            values_callable=lambda enum: [member.value for member in enum],
        ),
        nullable=False,
    )
    from_account_id = Column(Integer, nullable=False)
    to_account_id = Column(Integer, nullable=False, index=True)
    amount = Column(Integer, nullable=False)
    description = Column(String, nullable=True)
    details = Column(JSON, nullable=True)
    external_transaction_id = Column(String, nullable=True, unique=True)
    refunded_by_id = Column(String, nullable=True)
    refund_reason = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)


__all__ = ["CreditAccount", "CreditTransaction", "CreditTransactionType"]
