"""Stripe subscription state, mutated only by webhook processing."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Text,
    text,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from photovault.models.base import Base

SUBSCRIPTION_STATUSES = (
    "active",
    "past_due",
    "canceled",
    "trialing",
    "incomplete",
    "incomplete_expired",
    "unpaid",
    "paused",
)


class Subscription(Base):
    __tablename__ = "subscriptions"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, server_default=text("gen_random_uuid()")
    )
    # Nullable: a cancellation may arrive for a customer we never linked.
    user_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("user_profiles.id", ondelete="SET NULL")
    )
    gallery_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("galleries.id", ondelete="SET NULL")
    )
    stripe_customer_id: Mapped[str | None] = mapped_column(Text)
    stripe_subscription_id: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    status: Mapped[str] = mapped_column(Text, nullable=False)
    plan_type: Mapped[str | None] = mapped_column(Text)
    current_period_start: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    current_period_end: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    cancel_at_period_end: Mapped[bool] = mapped_column(
        Boolean, nullable=False, server_default=text("FALSE")
    )
    canceled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    payment_failure_count: Mapped[int] = mapped_column(
        Integer, nullable=False, server_default=text("0")
    )
    last_payment_failure_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    access_suspended: Mapped[bool] = mapped_column(
        Boolean, nullable=False, server_default=text("FALSE")
    )
    access_suspended_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=text("NOW()")
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=text("NOW()")
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('active','past_due','canceled','trialing','incomplete',"
            "'incomplete_expired','unpaid','paused')",
            name="ck_subscription_status",
        ),
        Index("idx_subscriptions_user", "user_id"),
        Index("idx_subscriptions_customer", "stripe_customer_id"),
    )
