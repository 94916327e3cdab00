"""Create chatbot_interactions table (daily free-tier usage).

Revision ID: 002_chatbot_interactions
Revises: 001_razorpay_subscriptions
Create Date: 2026-10-18
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


revision: str = "002_chatbot_interactions"
down_revision: Union[str, None] = "001_razorpay_subscriptions"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    inspector = sa.inspect(op.get_bind())
    if inspector.has_table("chatbot_interactions"):
        return

    op.create_table(
        "chatbot_interactions",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("day", sa.String(), nullable=False),
        sa.Column("user_id", sa.String(), nullable=False),
        sa.Column("count", sa.Integer(), nullable=False, server_default="0"),
        sa.UniqueConstraint("day", "user_id", name="uq_chatbot_interactions_day_user"),
    )
    op.create_index("ix_chatbot_interactions_user_id", "chatbot_interactions", ["user_id"])


def downgrade() -> None:
    op.drop_index("ix_chatbot_interactions_user_id", table_name="chatbot_interactions")
    op.drop_table("chatbot_interactions")
