"""Add reward event log, credit ledger and content lookup tables.

Revision ID: 20261018_01
Revises:
Create Date: 2026-10-18
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


revision: str = "20261018_01"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


reward_event_status = sa.Enum("pending", "awarded", "capped", "unqualified", name="reward_event_status")
credit_transaction_type = sa.Enum("reward", "refund", name="credit_transaction_type")


def upgrade() -> None:
    op.create_table(
        "reward_events",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("type", sa.String(), nullable=False),
        sa.Column("to_user_id", sa.Integer(), nullable=False),
        sa.Column("by_user_id", sa.Integer(), nullable=False),
        sa.Column("for_id", sa.String(), nullable=False),
        sa.Column("award_amount", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("multiplier", sa.Float(), nullable=False, server_default="1"),
        sa.Column("status", reward_event_status, nullable=False, server_default="pending"),
        sa.Column("ip", sa.String(), nullable=True),
        sa.Column("transaction_details", sa.JSON(), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("recorded_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint(
            "type",
            "to_user_id",
            "by_user_id",
            "for_id",
            "version",
            name="uq_reward_events_key_version",
        ),
    )
    op.create_index("ix_reward_events_type_status", "reward_events", ["type", "status"])
    op.create_index("ix_reward_events_to_user_time", "reward_events", ["to_user_id", "time"])

    op.create_table(
        "credit_accounts",
        sa.Column("account_id", sa.Integer(), primary_key=True, autoincrement=False),
        sa.Column("balance", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("lifetime_credited", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )

    op.create_table(
        "credit_transactions",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("transaction_type", credit_transaction_type, nullable=False),
        sa.Column("from_account_id", sa.Integer(), nullable=False),
        sa.Column("to_account_id", sa.Integer(), nullable=False),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("description", sa.String(), nullable=True),
        sa.Column("details", sa.JSON(), nullable=True),
        sa.Column("external_transaction_id", sa.String(), nullable=True, unique=True),
        sa.Column("refunded_by_id", sa.String(), nullable=True),
        sa.Column("refund_reason", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_credit_transactions_to_account_id", "credit_transactions", ["to_account_id"])

    op.create_table(
        "content_items",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("owner_id", sa.Integer(), nullable=False),
        sa.Column("kind", sa.String(length=32), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_content_items_owner_id", "content_items", ["owner_id"])


def downgrade() -> None:
    op.drop_index("ix_content_items_owner_id", table_name="content_items")
    op.drop_table("content_items")
    op.drop_index("ix_credit_transactions_to_account_id", table_name="credit_transactions")
    op.drop_table("credit_transactions")
    op.drop_table("credit_accounts")
    op.drop_index("ix_reward_events_to_user_time", table_name="reward_events")
    op.drop_index("ix_reward_events_type_status", table_name="reward_events")
    op.drop_table("reward_events")
    reward_event_status.drop(op.get_bind(), checkfirst=True)
    credit_transaction_type.drop(op.get_bind(), checkfirst=True)
