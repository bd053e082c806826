"""
services/notification/router.py
In-app notification endpoints: list with stats, bulk read/delete,
per-notification read/important toggles.
"""

from datetime import datetime, timezone
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from services.notification import service
from shared.middleware.auth import get_current_user, require_admin
from shared.models.models import Notification, NotificationType, User
from shared.schemas.schemas import (
    MessageResponse,
    NotificationCreateRequest,
    NotificationDeleteRequest,
    NotificationIdsRequest,
    NotificationResponse,
    NotificationUpdateRequest,
)
from shared.utils.exceptions import InternalError, NotFound, ValidationError
from shared.utils.permissions import ensure_can

router = APIRouter(prefix="/notifications", tags=["Notifications"])


async def _get_notification_for(
    db: AsyncSession, notification_id: UUID, user: User
) -> Notification:
    notification = await db.get(Notification, notification_id)
    if not notification:
        raise NotFound("Notification not found")
    ensure_can(user, "manage", notification)
    return notification


# ── Collection ────────────────────────────────────────────────

@router.get("")
async def get_my_notifications(
    type_filter: Optional[str] = Query(None, alias="type"),
    is_read: Optional[bool] = Query(None),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=50),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Authenticated user's notifications with total/unread/read stats."""
    notification_type = None
    if type_filter:
        try:
            notification_type = NotificationType(type_filter.upper())
        except ValueError:
            raise ValidationError(f"Invalid notification type: {type_filter}")

    data = await service.get_user_notifications(
        db, current_user.id, page, page_size, notification_type, is_read
    )
    data["items"] = [NotificationResponse.model_validate(n) for n in data["items"]]
    return data


@router.post("", response_model=NotificationResponse, status_code=status.HTTP_201_CREATED)
async def send_notification(
    data: NotificationCreateRequest,
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Admin sends a notification to a user."""
    recipient = await db.get(User, data.user_id)
    if not recipient:
        raise NotFound("User not found")

    notification = await service.create_notification(
        db,
        recipient.id,
        data.title,
        data.message,
        NotificationType(data.type),
        related_id=data.related_id,
        important=data.important,
    )
    if notification is None:
        raise InternalError("Could not create notification")
    await db.commit()
    return NotificationResponse.model_validate(notification)


@router.put("", response_model=MessageResponse)
async def mark_notifications_read(
    data: Optional[NotificationIdsRequest] = None,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Mark the given notifications read; without ids, mark all unread."""
    ids = data.ids if data else None
    count = await service.mark_as_read(db, current_user.id, ids)
    await db.commit()
    return MessageResponse(message=f"Marked {count} notification(s) as read")


@router.delete("", response_model=MessageResponse)
async def delete_notifications(
    data: NotificationDeleteRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    count = await service.delete_notifications(db, current_user.id, data.ids)
    await db.commit()
    return MessageResponse(message=f"Deleted {count} notification(s)")


@router.get("/unread-count")
async def unread_count(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return {"unread_count": await service.unread_count(db, current_user.id)}


# ── Single Notification ───────────────────────────────────────

@router.get("/{notification_id}", response_model=NotificationResponse)
async def get_notification(
    notification_id: UUID,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    notification = await _get_notification_for(db, notification_id, current_user)
    return NotificationResponse.model_validate(notification)


@router.put("/{notification_id}", response_model=NotificationResponse)
async def update_notification(
    notification_id: UUID,
    data: NotificationUpdateRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Toggle read / important flags. Nothing else on a notification is mutable."""
    notification = await _get_notification_for(db, notification_id, current_user)
    if data.is_read is not None:
        notification.is_read = data.is_read
        notification.read_at = datetime.now(timezone.utc) if data.is_read else None
    if data.important is not None:
        notification.important = data.important
    await db.commit()
    return NotificationResponse.model_validate(notification)


@router.delete("/{notification_id}", response_model=MessageResponse)
async def delete_notification(
    notification_id: UUID,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    notification = await _get_notification_for(db, notification_id, current_user)
    await db.delete(notification)
    await db.commit()
    return MessageResponse(message="Notification deleted")
