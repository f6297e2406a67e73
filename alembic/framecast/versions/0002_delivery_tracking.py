"""delivered tokens and scheduled tasks

Revision ID: 0002_framecast_delivery
Revises: 0001_framecast
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision = "0002_framecast_delivery"
down_revision = "0001_framecast"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "post_delivered_tokens",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("post_id", sa.BigInteger(), nullable=False),
        sa.Column("token", sa.String(length=512), nullable=False),
        sa.Column("delivered_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("post_id", "token", name="uq_post_delivered_token"),
    )
    op.create_index("ix_post_delivered_tokens_post_id", "post_delivered_tokens", ["post_id"])

    op.create_table(
        "scheduled_tasks",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("kind", sa.String(), nullable=False),
        sa.Column("payload", postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column("run_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("status", sa.String(), nullable=False, server_default="PENDING"),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_scheduled_tasks_kind", "scheduled_tasks", ["kind"])
    op.create_index("ix_scheduled_tasks_run_at", "scheduled_tasks", ["run_at"])
    op.create_index("ix_scheduled_tasks_status", "scheduled_tasks", ["status"])
    op.create_index(
        "ix_scheduled_tasks_pending_due",
        "scheduled_tasks",
        ["run_at"],
        postgresql_where=sa.text("status = 'PENDING'"),
    )


def downgrade() -> None:
    op.drop_index("ix_scheduled_tasks_pending_due", table_name="scheduled_tasks")
    op.drop_index("ix_scheduled_tasks_status", table_name="scheduled_tasks")
    op.drop_index("ix_scheduled_tasks_run_at", table_name="scheduled_tasks")
    op.drop_index("ix_scheduled_tasks_kind", table_name="scheduled_tasks")
    op.drop_table("scheduled_tasks")
    op.drop_index("ix_post_delivered_tokens_post_id", table_name="post_delivered_tokens")
    op.drop_table("post_delivered_tokens")
