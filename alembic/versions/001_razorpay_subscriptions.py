"""Create razorpay_subscriptions table.

Revision ID: 001_razorpay_subscriptions
Revises:
Create Date: 2026-10-18
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


revision: str = "001_razorpay_subscriptions"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Idempotent: skips tables that already exist (e.g. created by create_all)."""
    inspector = sa.inspect(op.get_bind())
    if inspector.has_table("razorpay_subscriptions"):
        return

    op.create_table(
        "razorpay_subscriptions",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("user_id", sa.String(), nullable=True),
        sa.Column("razorpay_subscription_id", sa.String(), nullable=False),
        sa.Column("razorpay_plan_id", sa.String(), nullable=True),
        sa.Column("razorpay_customer_id", sa.String(), nullable=True),
        sa.Column("status", sa.String(), nullable=False, server_default="created"),
        sa.Column("current_period_end", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        # Reconciliation key: concurrent upserts from both channels resolve on this
        sa.UniqueConstraint("razorpay_subscription_id"),
    )
    op.create_index("ix_razorpay_subscriptions_user_id", "razorpay_subscriptions", ["user_id"])


def downgrade() -> None:
    op.drop_index("ix_razorpay_subscriptions_user_id", table_name="razorpay_subscriptions")
    op.drop_table("razorpay_subscriptions")
