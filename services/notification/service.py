"""
services/notification/service.py
In-app notification writer, templates and queries.

Delivery is best-effort: a failed insert is logged and swallowed so it never
rolls back the booking or payment write that triggered it.
"""

import logging
import math
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Iterable, Optional

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from shared.models.models import Notification, NotificationType

logger = logging.getLogger(__name__)


# ── Templates ─────────────────────────────────────────────────
# Each returns (title, message, type, important)

def booking_created(property_title: str, booking_number: str) -> tuple:
    return (
        "Booking Request Received",
        f"Your booking {booking_number} for {property_title} has been received and is awaiting confirmation.",
        NotificationType.BOOKING,
        False,
    )


def new_booking_request(property_title: str, guest_name: str, booking_number: str) -> tuple:
    return (
        "New Booking Request",
        f"{guest_name} requested to book {property_title} (booking {booking_number}).",
        NotificationType.BOOKING,
        False,
    )


def booking_confirmed(property_title: str, booking_number: str) -> tuple:
    return (
        "Booking Confirmed",
        f"Your booking {booking_number} for {property_title} has been confirmed.",
        NotificationType.BOOKING,
        False,
    )


def booking_cancelled(property_title: str, booking_number: str, reason: Optional[str] = None) -> tuple:
    message = f"Your booking {booking_number} for {property_title} has been cancelled."
    if reason:
        message += f" Reason: {reason}"
    return ("Booking Cancelled", message, NotificationType.BOOKING, False)


def payment_received(amount: Decimal, currency: str, booking_number: str) -> tuple:
    return (
        "Payment Received",
        f"Payment of {amount} {currency.upper()} received for booking {booking_number}.",
        NotificationType.PAYMENT,
        False,
    )


def payment_failed(booking_number: str, reason: Optional[str] = None) -> tuple:
    message = f"Payment for booking {booking_number} failed."
    if reason:
        message += f" {reason}"
    message += " Please try again or use a different payment method."
    return ("Payment Failed", message, NotificationType.PAYMENT, True)


def property_published(property_title: str) -> tuple:
    return (
        "Property Published",
        f"Your property {property_title} is now live and visible to guests.",
        NotificationType.PROPERTY,
        False,
    )


def agent_verification(verified: bool, notes: Optional[str] = None) -> tuple:
    if verified:
        title, message = "Agent Account Verified", "Your agent account has been verified."
    else:
        title, message = "Agent Verification Update", "Your agent account was not verified."
    if notes:
        message += f" Notes: {notes}"
    return (title, message, NotificationType.SYSTEM, not verified)


def new_message(sender_name: str, subject: str) -> tuple:
    return (
        "New Message",
        f"You have a new message from {sender_name}: {subject}",
        NotificationType.SYSTEM,
        False,
    )


def system_update(title: str, message: str) -> tuple:
    return (title, message, NotificationType.SYSTEM, True)


# ── Writer ────────────────────────────────────────────────────

async def create_notification(
    db: AsyncSession,
    user_id: uuid.UUID,
    title: str,
    message: str,
    type: NotificationType,
    related_id: Optional[Any] = None,
    important: bool = False,
) -> Optional[Notification]:
    """
    Persist one notification inside a SAVEPOINT.
    Returns None (and logs) on failure; the caller's transaction is untouched.
    """
    try:
        async with db.begin_nested():
            notification = Notification(
                user_id=user_id,
                title=title,
                message=message,
                type=type,
                related_id=str(related_id) if related_id is not None else None,
                important=important,
            )
            db.add(notification)
        return notification
    except SQLAlchemyError as e:
        logger.error(f"Failed to create notification for user {user_id}: {e}")
        return None


async def notify(
    db: AsyncSession,
    user_id: uuid.UUID,
    template: tuple,
    related_id: Optional[Any] = None,
) -> Optional[Notification]:
    """Create a notification from a template tuple."""
    title, message, type_, important = template
    return await create_notification(db, user_id, title, message, type_, related_id, important)


# ── Queries ───────────────────────────────────────────────────

async def get_user_notifications(
    db: AsyncSession,
    user_id: uuid.UUID,
    page: int = 1,
    page_size: int = 20,
    type: Optional[NotificationType] = None,
    is_read: Optional[bool] = None,
) -> dict:
    """Paginated notifications plus total/unread/read counts for the user."""
    query = select(Notification).where(Notification.user_id == user_id)
    if type is not None:
        query = query.where(Notification.type == type)
    if is_read is not None:
        query = query.where(Notification.is_read == is_read)

    total = await db.scalar(select(func.count()).select_from(query.subquery())) or 0
    result = await db.execute(
        query.order_by(Notification.created_at.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
    )

    all_count = await db.scalar(
        select(func.count(Notification.id)).where(Notification.user_id == user_id)
    ) or 0
    unread = await db.scalar(
        select(func.count(Notification.id)).where(
            Notification.user_id == user_id,
            Notification.is_read == False,  # noqa: E712
        )
    ) or 0

    return {
        "items": list(result.scalars().all()),
        "total": total,
        "page": page,
        "page_size": page_size,
        "pages": math.ceil(total / page_size) if total else 0,
        "stats": {"total": all_count, "unread": unread, "read": all_count - unread},
    }


async def unread_count(db: AsyncSession, user_id: uuid.UUID) -> int:
    count = await db.scalar(
        select(func.count(Notification.id)).where(
            Notification.user_id == user_id,
            Notification.is_read == False,  # noqa: E712
        )
    )
    return count or 0


async def mark_as_read(
    db: AsyncSession,
    user_id: uuid.UUID,
    ids: Optional[Iterable[uuid.UUID]] = None,
) -> int:
    """
    Mark notifications read in a single UPDATE scoped to user_id.
    Without ids, every unread notification of that user is marked.
    """
    stmt = update(Notification).where(
        Notification.user_id == user_id,
        Notification.is_read == False,  # noqa: E712
    )
    if ids is not None:
        stmt = stmt.where(Notification.id.in_(list(ids)))
    result = await db.execute(
        stmt.values(is_read=True, read_at=datetime.now(timezone.utc)).execution_options(
            synchronize_session="fetch"
        )
    )
    return result.rowcount or 0


async def delete_notifications(
    db: AsyncSession,
    user_id: uuid.UUID,
    ids: Iterable[uuid.UUID],
) -> int:
    result = await db.execute(
        delete(Notification)
        .where(Notification.user_id == user_id, Notification.id.in_(list(ids)))
        .execution_options(synchronize_session="fetch")
    )
    return result.rowcount or 0
