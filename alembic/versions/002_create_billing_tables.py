"""Create subscriptions, payment_records, payouts and webhook tables.

Revision ID: 002_billing
Revises: 001_core
Create Date: 2026-09-04
"""

from collections.abc import Sequence

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB, UUID

from alembic import op

revision: str = "002_billing"
down_revision: str | None = "001_core"
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def _id_column() -> sa.Column:
    return sa.Column(
        "id",
        UUID(as_uuid=True),
        server_default=sa.text("gen_random_uuid()"),
        primary_key=True,
    )


def _timestamp(name: str) -> sa.Column:
    return sa.Column(
        name,
        sa.DateTime(timezone=True),
        nullable=False,
        server_default=sa.text("NOW()"),
    )


def upgrade() -> None:
    op.create_table(
        "subscriptions",
        _id_column(),
        sa.Column(
            "user_id",
            UUID(as_uuid=True),
            sa.ForeignKey("user_profiles.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column(
            "gallery_id",
            UUID(as_uuid=True),
            sa.ForeignKey("galleries.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("stripe_customer_id", sa.Text(), nullable=True),
        sa.Column("stripe_subscription_id", sa.Text(), nullable=False, unique=True),
        sa.Column("status", sa.Text(), nullable=False),
        sa.Column("plan_type", sa.Text(), nullable=True),
        sa.Column("current_period_start", sa.DateTime(timezone=True), nullable=True),
        sa.Column("current_period_end", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "cancel_at_period_end",
            sa.Boolean(),
            nullable=False,
            server_default=sa.text("FALSE"),
        ),
        sa.Column("canceled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "payment_failure_count",
            sa.Integer(),
            nullable=False,
            server_default=sa.text("0"),
        ),
        sa.Column("last_payment_failure_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "access_suspended",
            sa.Boolean(),
            nullable=False,
            server_default=sa.text("FALSE"),
        ),
        sa.Column("access_suspended_at", sa.DateTime(timezone=True), nullable=True),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.CheckConstraint(
            "status IN ('active','past_due','canceled','trialing','incomplete',"
            "'incomplete_expired','unpaid','paused')",
            name="ck_subscription_status",
        ),
    )
    op.create_index("idx_subscriptions_user", "subscriptions", ["user_id"])
    op.create_index("idx_subscriptions_customer", "subscriptions", ["stripe_customer_id"])

    op.create_table(
        "payment_records",
        _id_column(),
        sa.Column("stripe_invoice_id", sa.Text(), nullable=False),
        sa.Column("stripe_subscription_id", sa.Text(), nullable=True),
        sa.Column("status", sa.Text(), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("currency", sa.Text(), nullable=True),
        sa.Column("paid_at", sa.DateTime(timezone=True), nullable=True),
        _timestamp("created_at"),
        sa.UniqueConstraint(
            "stripe_invoice_id", "status", name="uq_payment_records_invoice_status"
        ),
        sa.CheckConstraint("status IN ('succeeded','failed')", name="ck_payment_record_status"),
    )

    op.create_table(
        "payouts",
        _id_column(),
        sa.Column(
            "photographer_id",
            UUID(as_uuid=True),
            sa.ForeignKey("user_profiles.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("stripe_payout_id", sa.Text(), nullable=False, unique=True),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("currency", sa.Text(), nullable=False),
        sa.Column("status", sa.Text(), nullable=False),
        sa.Column("arrival_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        _timestamp("created_at"),
    )

    op.create_table(
        "webhook_events",
        _id_column(),
        sa.Column("provider_event_id", sa.Text(), nullable=False, unique=True),
        sa.Column("event_type", sa.Text(), nullable=False),
        sa.Column(
            "payload",
            JSONB(),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
        sa.Column("result_message", sa.Text(), nullable=True),
        _timestamp("received_at"),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("idx_webhook_events_received", "webhook_events", ["received_at"])

    op.create_table(
        "webhook_logs",
        _id_column(),
        sa.Column("event_id", sa.Text(), nullable=True),
        sa.Column("event_type", sa.Text(), nullable=False),
        sa.Column("status", sa.Text(), nullable=False),
        sa.Column("message", sa.Text(), nullable=True),
        sa.Column("processing_time_ms", sa.Integer(), nullable=True),
        _timestamp("created_at"),
        sa.CheckConstraint(
            "status IN ('success','duplicate','failed','rejected')",
            name="ck_webhook_log_status",
        ),
    )
    op.create_index("idx_webhook_logs_time", "webhook_logs", ["created_at"])


def downgrade() -> None:
    op.drop_index("idx_webhook_logs_time", table_name="webhook_logs")
    op.drop_table("webhook_logs")
    op.drop_index("idx_webhook_events_received", table_name="webhook_events")
    op.drop_table("webhook_events")
    op.drop_table("payouts")
    op.drop_table("payment_records")
    op.drop_index("idx_subscriptions_customer", table_name="subscriptions")
    op.drop_index("idx_subscriptions_user", table_name="subscriptions")
    op.drop_table("subscriptions")
