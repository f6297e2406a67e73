"""initial subscription schema

Revision ID: 0001_framecast
Revises:
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision = "0001_framecast"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "subscriptions",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("fid", sa.BigInteger(), nullable=False),
        sa.Column("app_key", sa.String(length=255), nullable=False),
        sa.Column("app_url", sa.Text(), nullable=False),
        sa.Column("token", sa.String(length=512), nullable=False),
        sa.Column("status", sa.String(length=32), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("fid", "app_key", name="uq_subscriptions_fid_app_key"),
    )
    op.create_index("ix_subscriptions_fid", "subscriptions", ["fid"])
    op.create_index("ix_subscriptions_app_key", "subscriptions", ["app_key"])
    op.create_index("ix_subscriptions_token", "subscriptions", ["token"])
    op.create_index("ix_subscriptions_status", "subscriptions", ["status"])

    op.create_table(
        "webhook_events",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("event_type", sa.String(length=255), nullable=False),
        sa.Column("fid", sa.BigInteger(), nullable=False),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
        sa.Column("full_event", postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_webhook_events_event_type", "webhook_events", ["event_type"])
    op.create_index("ix_webhook_events_fid", "webhook_events", ["fid"])


def downgrade() -> None:
    op.drop_index("ix_webhook_events_fid", table_name="webhook_events")
    op.drop_index("ix_webhook_events_event_type", table_name="webhook_events")
    op.drop_table("webhook_events")
    op.drop_index("ix_subscriptions_status", table_name="subscriptions")
    op.drop_index("ix_subscriptions_token", table_name="subscriptions")
    op.drop_index("ix_subscriptions_app_key", table_name="subscriptions")
    op.drop_index("ix_subscriptions_fid", table_name="subscriptions")
    op.drop_table("subscriptions")
