"""Notification queue persistence models (logical notifications + deliveries)."""

from datetime import datetime
from uuid import uuid4

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, Index, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from cliq.common.db import Base
from cliq.common.state_machine import PENDING


class Notification(Base):
    """One logical message addressed to one user; never updated after insert."""

    __tablename__ = "notification"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid4()))
    user_id: Mapped[str | None] = mapped_column(String, index=True, nullable=True)
    title: Mapped[str] = mapped_column(Text)
    message: Mapped[str] = mapped_column(Text)
    # `metadata` is reserved on declarative classes.
    meta: Mapped[str | None] = mapped_column("metadata", Text, nullable=True)
    navigate: Mapped[str | None] = mapped_column(Text, nullable=True)
    app_badge: Mapped[int | None] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class NotificationDelivery(Base):
    """One (notification x subscription) attempt record, leased by workers."""

    __tablename__ = "notification_delivery"
    __table_args__ = (
        Index("ix_notification_delivery_status_created_at", "status", "created_at"),
        CheckConstraint(
            "status IN ('pending', 'processing', 'sent', 'failed')",
            name="ck_notification_delivery_status",
        ),
    )

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid4()))
    notification_id: Mapped[str] = mapped_column(
        String, ForeignKey("notification.id", ondelete="CASCADE"), index=True
    )
    # Nulled when the subscription is removed; `endpoint_snapshot` keeps the target.
    subscription_id: Mapped[str | None] = mapped_column(
        String, ForeignKey("push_subscriptions.id", ondelete="SET NULL"), index=True, nullable=True
    )
    endpoint_snapshot: Mapped[str] = mapped_column(Text)
    status: Mapped[str] = mapped_column(String, default=PENDING)
    retries: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    locked_by: Mapped[str | None] = mapped_column(String, nullable=True)
    locked_until: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
