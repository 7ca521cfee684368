"""Initial schema: re-engagement campaigns, notifications, settings, daily metrics, task queue.

The platform tables the engine reads (users, pets, courses, user_courses,
course_reviews, user_trainings, user_steps, push_subscriptions) are owned by
the training platform and are not created here.

Revision ID: 001
Revises:
Create Date: 2026-10-18
"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Campaigns
    op.create_table(
        "reengagement_campaigns",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("last_activity_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("campaign_start_date", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("current_level", sa.Integer, nullable=False, server_default="1"),
        sa.Column("next_notification_date", sa.DateTime(timezone=True)),
        sa.Column("last_notification_sent", sa.DateTime(timezone=True)),
        sa.Column("total_notifications_sent", sa.Integer, nullable=False, server_default="0"),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("returned", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("returned_at", sa.DateTime(timezone=True)),
        sa.Column("unsubscribed", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_reengagement_campaigns_user_id", "reengagement_campaigns", ["user_id"])
    op.create_index(
        "ix_reengagement_campaigns_due", "reengagement_campaigns",
        ["is_active", "next_notification_date"],
    )
    # At most one active campaign per user
    op.create_index(
        "uq_reengagement_campaigns_active_user", "reengagement_campaigns", ["user_id"],
        unique=True,
        postgresql_where=sa.text("is_active = true"),
    )

    # Notifications
    op.create_table(
        "reengagement_notifications",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "campaign_id", postgresql.UUID(as_uuid=True),
            sa.ForeignKey("reengagement_campaigns.id"), nullable=False,
        ),
        sa.Column("level", sa.Integer, nullable=False),
        sa.Column("message_type", sa.String(20), nullable=False),
        sa.Column("variant_id", sa.String(50), nullable=False),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("body", sa.Text, nullable=False),
        sa.Column("url", sa.String(500), nullable=False),
        sa.Column("sent", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("sent_at", sa.DateTime(timezone=True)),
        sa.Column("success_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("failed_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("clicked", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("clicked_at", sa.DateTime(timezone=True)),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index(
        "ix_reengagement_notifications_campaign_id", "reengagement_notifications", ["campaign_id"],
    )
    op.create_index("ix_reengagement_notifications_sent_at", "reengagement_notifications", ["sent_at"])

    # Per-user opt-out
    op.create_table(
        "reengagement_settings",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("user_id", sa.String(64), nullable=False, unique=True),
        sa.Column("enabled", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("unsubscribed_at", sa.DateTime(timezone=True)),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    # Daily snapshots
    op.create_table(
        "reengagement_daily_metrics",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("day", sa.Date, nullable=False, unique=True),
        sa.Column("active_campaigns", sa.Integer, nullable=False, server_default="0"),
        sa.Column("notifications_sent", sa.Integer, nullable=False, server_default="0"),
        sa.Column("users_returned", sa.Integer, nullable=False, server_default="0"),
        sa.Column("sent_by_level", postgresql.JSONB, server_default="{}"),
        sa.Column("sent_by_type", postgresql.JSONB, server_default="{}"),
        sa.Column("click_rate", sa.Float, nullable=False, server_default="0"),
        sa.Column("return_rate", sa.Float, nullable=False, server_default="0"),
        sa.Column("open_rate", sa.Float),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    # Durable job queue
    op.create_table(
        "task_queue",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("task_type", sa.String(50), nullable=False),
        sa.Column("payload", postgresql.JSONB),
        sa.Column("dedup_key", sa.String(100)),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("priority", sa.Integer, server_default="5"),
        sa.Column("retry_count", sa.Integer, server_default="0"),
        sa.Column("max_retries", sa.Integer, server_default="3"),
        sa.Column("scheduled_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("started_at", sa.DateTime(timezone=True)),
        sa.Column("completed_at", sa.DateTime(timezone=True)),
        sa.Column("error_message", sa.Text),
        sa.Column("result_data", postgresql.JSONB),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_task_queue_processing", "task_queue", ["status", "scheduled_at", "priority"])
    op.create_index("ix_task_queue_dedup", "task_queue", ["dedup_key", "status"])


def downgrade() -> None:
    op.drop_table("task_queue")
    op.drop_table("reengagement_daily_metrics")
    op.drop_table("reengagement_settings")
    op.drop_index("ix_reengagement_notifications_sent_at", table_name="reengagement_notifications")
    op.drop_index("ix_reengagement_notifications_campaign_id", table_name="reengagement_notifications")
    op.drop_table("reengagement_notifications")
    op.drop_index("uq_reengagement_campaigns_active_user", table_name="reengagement_campaigns")
    op.drop_index("ix_reengagement_campaigns_due", table_name="reengagement_campaigns")
    op.drop_index("ix_reengagement_campaigns_user_id", table_name="reengagement_campaigns")
    op.drop_table("reengagement_campaigns")
