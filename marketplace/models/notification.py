"""Customer notification, fanned out from outbox events."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import Boolean, DateTime, Index, String
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from marketplace.database.base import Base, TimestampMixin, UUIDPrimaryKeyMixin
from marketplace.models.enums import NotificationPriority, NotificationType


class Notification(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "notifications"

    user_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    # Source outbox event; unique so a replayed event cannot notify twice
    event_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False, unique=True)
    order_id: Mapped[str | None] = mapped_column(String(32))

    type: Mapped[NotificationType] = mapped_column(nullable=False)
    priority: Mapped[NotificationPriority] = mapped_column(nullable=False, server_default="MEDIUM")
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    message: Mapped[str] = mapped_column(String(1000), nullable=False)

    is_read: Mapped[bool] = mapped_column(Boolean, nullable=False, server_default="false")
    read_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    __table_args__ = (
        Index("ix_notifications_user_unread", "user_id", "is_read", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<Notification user={self.user_id} type={self.type} order={self.order_id}>"
