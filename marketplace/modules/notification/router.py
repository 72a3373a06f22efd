"""Customer notification inbox API."""

from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.database.session import get_db
from marketplace.modules.auth.dependencies import AuthenticatedUser, get_current_user
from marketplace.modules.notification.schemas import (
    MarkAllReadResponse,
    NotificationListResponse,
    NotificationResponse,
)
from marketplace.modules.notification.service import NotificationService

router = APIRouter(prefix="/notifications", tags=["notifications"])


@router.get("/", response_model=NotificationListResponse)
async def list_notifications(
    unread_only: bool = Query(False),
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    items, total, unread = await NotificationService(db).list_for_user(
        user.id, unread_only=unread_only, limit=limit, offset=offset
    )
    return NotificationListResponse(
        items=[NotificationResponse.model_validate(n) for n in items],
        total=total,
        unread=unread,
        limit=limit,
        offset=offset,
    )


@router.post("/read-all", response_model=MarkAllReadResponse)
async def mark_all_read(
    user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return MarkAllReadResponse(updated=await NotificationService(db).mark_all_read(user.id))


@router.post("/{notification_id}/read", response_model=NotificationResponse)
async def mark_read(
    notification_id: uuid.UUID,
    user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    notification = await NotificationService(db).mark_read(user.id, notification_id)
    return NotificationResponse.model_validate(notification)
