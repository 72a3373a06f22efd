"""Pydantic v2 schemas for the notification inbox."""

from __future__ import annotations

import uuid
from datetime import datetime

from pydantic import BaseModel, ConfigDict

from marketplace.models.enums import NotificationPriority, NotificationType


class NotificationResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    order_id: str | None = None
    type: NotificationType
    priority: NotificationPriority
    title: str
    message: str
    is_read: bool
    read_at: datetime | None = None
    created_at: datetime


class NotificationListResponse(BaseModel):
    items: list[NotificationResponse]
    total: int
    unread: int
    limit: int
    offset: int


class MarkAllReadResponse(BaseModel):
    updated: int
