"""
services/booking/service.py
Booking lifecycle: creation, pricing, availability and status transitions.

States: PENDING → CONFIRMED | CANCELLED
        CONFIRMED → COMPLETED | CANCELLED
CANCELLED and COMPLETED are terminal. A rejected transition never writes.
"""

import logging
import math
import random
import string
import uuid
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from fastapi import Request
from sqlalchemy import func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import settings
from services.audit import service as audit
from services.notification import service as notifications
from shared.models.models import (
    Booking,
    BookingStatus,
    Payment,
    PaymentStatus,
    Property,
    PropertyStatus,
    User,
    UserRole,
)
from shared.schemas.schemas import (
    BookingCreateRequest,
    BookingResponse,
    PropertySummary,
    UserSummary,
)
from shared.utils.exceptions import (
    ConflictError,
    InvalidStateTransition,
    NotFound,
    ValidationError,
)
from shared.utils.permissions import ensure_can

logger = logging.getLogger(__name__)

TRANSITIONS: dict[BookingStatus, frozenset] = {
    BookingStatus.PENDING: frozenset({BookingStatus.CONFIRMED, BookingStatus.CANCELLED}),
    BookingStatus.CONFIRMED: frozenset({BookingStatus.CANCELLED, BookingStatus.COMPLETED}),
    BookingStatus.CANCELLED: frozenset(),
    BookingStatus.COMPLETED: frozenset(),
}

# Bookings in these states hold their dates
ACTIVE_STATUSES = (BookingStatus.PENDING, BookingStatus.CONFIRMED)

CENTS = Decimal("0.01")


# ── Helpers ───────────────────────────────────────────────────

def _generate_booking_number() -> str:
    """Human-readable booking number like RE-2026-X7K9M."""
    year = datetime.now(timezone.utc).year
    suffix = "".join(random.choices(string.ascii_uppercase + string.digits, k=5))
    return f"RE-{year}-{suffix}"


def as_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def allowed_sources(target: BookingStatus) -> list[BookingStatus]:
    return [src for src, targets in TRANSITIONS.items() if target in targets]


def ensure_transition(booking: Booking, target: BookingStatus, action: str) -> None:
    """Raise InvalidStateTransition unless booking.status → target is in the table."""
    current = BookingStatus(booking.status)
    if target not in TRANSITIONS[current]:
        raise InvalidStateTransition("booking", action, current, allowed_sources(target))


def count_nights(start: datetime, end: datetime) -> int:
    return max(1, math.ceil((end - start).total_seconds() / 86400))


def quote(prop: Property, nights: int) -> dict[str, Decimal]:
    """Price a stay: nightly rate x nights + cleaning fee + service fee."""
    nightly = Decimal(prop.rent_price if prop.rent_price is not None else prop.price)
    subtotal = (nightly * nights).quantize(CENTS, ROUND_HALF_UP)
    cleaning_fee = Decimal(prop.cleaning_fee or 0).quantize(CENTS, ROUND_HALF_UP)
    service_fee = (
        subtotal * Decimal(str(settings.SERVICE_FEE_PERCENT)) / 100
    ).quantize(CENTS, ROUND_HALF_UP)
    return {
        "subtotal": subtotal,
        "cleaning_fee": cleaning_fee,
        "service_fee": service_fee,
        "total": subtotal + cleaning_fee + service_fee,
    }


def stay_problems(prop: Property, nights: int, guest_count: int) -> list[str]:
    problems = []
    if prop.status != PropertyStatus.PUBLISHED:
        problems.append("Property is not available for booking")
    if guest_count > prop.max_guests:
        problems.append(f"Property allows at most {prop.max_guests} guests")
    if prop.min_stay and nights < prop.min_stay:
        problems.append(f"Minimum stay is {prop.min_stay} nights")
    if prop.max_stay and nights > prop.max_stay:
        problems.append(f"Maximum stay is {prop.max_stay} nights")
    return problems


async def find_conflicts(
    db: AsyncSession,
    property_id: uuid.UUID,
    start: datetime,
    end: datetime,
    exclude_id: Optional[uuid.UUID] = None,
) -> list[Booking]:
    """Active bookings of the property overlapping [start, end)."""
    query = select(Booking).where(
        Booking.property_id == property_id,
        Booking.status.in_(ACTIVE_STATUSES),
        Booking.start_date < end,
        Booking.end_date > start,
    )
    if exclude_id is not None:
        query = query.where(Booking.id != exclude_id)
    result = await db.execute(query.order_by(Booking.start_date))
    return list(result.scalars().all())


async def get_booking_or_404(db: AsyncSession, booking_id: uuid.UUID) -> Booking:
    booking = await db.get(Booking, booking_id)
    if not booking:
        raise NotFound("Booking not found")
    return booking


async def get_property_or_404(db: AsyncSession, property_id: uuid.UUID) -> Property:
    prop = await db.get(Property, property_id)
    if not prop:
        raise NotFound("Property not found")
    return prop


def to_response(
    booking: Booking,
    prop: Optional[Property] = None,
    guest: Optional[User] = None,
) -> BookingResponse:
    """Booking columns plus property and guest summaries."""
    data = {col.name: getattr(booking, col.name) for col in Booking.__table__.columns}
    if prop is not None:
        data["property"] = PropertySummary.model_validate(prop)
    if guest is not None:
        data["guest"] = UserSummary.model_validate(guest)
    return BookingResponse(**data)


# ── Operations ────────────────────────────────────────────────

async def create_booking(
    db: AsyncSession,
    guest: User,
    data: BookingCreateRequest,
) -> tuple[Booking, Property]:
    """Validate and create a PENDING, UNPAID booking; notify guest and owner."""
    start = as_utc(data.start_date)
    end = as_utc(data.end_date)

    if start >= end:
        raise ValidationError("start_date must be before end_date")
    if start <= datetime.now(timezone.utc):
        raise ValidationError("start_date must be in the future")

    prop = await get_property_or_404(db, data.property_id)
    nights = count_nights(start, end)
    problems = stay_problems(prop, nights, data.guest_count)
    if problems:
        raise ValidationError(problems[0], extra={"reasons": problems})

    if settings.BOOKING_PREVENT_OVERLAP:
        conflicts = await find_conflicts(db, prop.id, start, end)
        if conflicts:
            raise ConflictError(
                "Property is already booked for the selected dates",
                extra={"conflicts": [str(b.id) for b in conflicts]},
            )

    price = quote(prop, nights)
    booking = Booking(
        booking_number=_generate_booking_number(),
        property_id=prop.id,
        user_id=guest.id,
        start_date=start,
        end_date=end,
        total_days=nights,
        guest_count=data.guest_count,
        guest_name=data.guest_name or guest.name,
        guest_email=data.guest_email or guest.email,
        guest_phone=data.guest_phone or guest.phone,
        special_requests=data.special_requests,
        status=BookingStatus.PENDING,
        cleaning_fee=price["cleaning_fee"] or None,
        service_fee=price["service_fee"] or None,
        total_amount=price["total"],
    )
    db.add(booking)
    await db.flush()

    await notifications.notify(
        db, guest.id,
        notifications.booking_created(prop.title, booking.booking_number),
        related_id=booking.id,
    )
    if prop.owner_id != guest.id:
        await notifications.notify(
            db, prop.owner_id,
            notifications.new_booking_request(prop.title, booking.guest_name, booking.booking_number),
            related_id=booking.id,
        )

    await db.commit()
    logger.info(f"Booking {booking.booking_number} created for property {prop.id} by {guest.id}")
    return booking, prop


async def confirm_booking(
    db: AsyncSession,
    booking_id: uuid.UUID,
    actor: User,
    request: Optional[Request] = None,
) -> tuple[Booking, Property]:
    """
    PENDING → CONFIRMED by the property owner, its agent or an admin.
    Records a CONFIRM audit entry. No notification is sent, only a log line.
    """
    booking = await get_booking_or_404(db, booking_id)
    prop = await get_property_or_404(db, booking.property_id)

    ensure_can(actor, "confirm", booking, prop)
    ensure_transition(booking, BookingStatus.CONFIRMED, "confirm")

    previous = BookingStatus(booking.status)
    booking.status = BookingStatus.CONFIRMED
    booking.confirmed_at = datetime.now(timezone.utc)

    await audit.record(
        db,
        action="CONFIRM",
        entity_type="Booking",
        entity_id=booking.id,
        actor=actor,
        old_values={"status": previous.value},
        new_values={"status": BookingStatus.CONFIRMED.value, "confirmed_at": booking.confirmed_at},
        request=request,
    )
    await db.commit()

    logger.info(f"Booking {booking.booking_number} confirmed by {actor.id}")
    return booking, prop


async def cancel_booking(
    db: AsyncSession,
    booking_id: uuid.UUID,
    actor: User,
    reason: Optional[str] = None,
    request: Optional[Request] = None,
) -> tuple[Booking, Property]:
    """PENDING | CONFIRMED → CANCELLED. Voids pending payment attempts and notifies the guest."""
    booking = await get_booking_or_404(db, booking_id)
    prop = await get_property_or_404(db, booking.property_id)

    ensure_can(actor, "cancel", booking, prop)
    ensure_transition(booking, BookingStatus.CANCELLED, "cancel")

    previous = BookingStatus(booking.status)
    booking.status = BookingStatus.CANCELLED
    booking.cancelled_at = datetime.now(timezone.utc)
    booking.cancellation_reason = reason

    await db.execute(
        update(Payment)
        .where(Payment.booking_id == booking.id, Payment.status == PaymentStatus.PENDING)
        .values(status=PaymentStatus.CANCELLED)
        .execution_options(synchronize_session="fetch")
    )

    await audit.record(
        db,
        action="CANCEL",
        entity_type="Booking",
        entity_id=booking.id,
        actor=actor,
        old_values={"status": previous.value},
        new_values={"status": BookingStatus.CANCELLED.value, "reason": reason},
        request=request,
    )
    await notifications.notify(
        db, booking.user_id,
        notifications.booking_cancelled(prop.title, booking.booking_number, reason),
        related_id=booking.id,
    )
    await db.commit()

    logger.info(f"Booking {booking.booking_number} cancelled by {actor.id}")
    return booking, prop


async def complete_booking(
    db: AsyncSession,
    booking_id: uuid.UUID,
    actor: User,
    request: Optional[Request] = None,
) -> tuple[Booking, Property]:
    """CONFIRMED → COMPLETED by the property owner, its agent or an admin."""
    booking = await get_booking_or_404(db, booking_id)
    prop = await get_property_or_404(db, booking.property_id)

    ensure_can(actor, "complete", booking, prop)
    ensure_transition(booking, BookingStatus.COMPLETED, "complete")

    booking.status = BookingStatus.COMPLETED
    booking.completed_at = datetime.now(timezone.utc)

    await audit.record(
        db,
        action="COMPLETE",
        entity_type="Booking",
        entity_id=booking.id,
        actor=actor,
        old_values={"status": BookingStatus.CONFIRMED.value},
        new_values={"status": BookingStatus.COMPLETED.value},
        request=request,
    )
    await db.commit()
    return booking, prop


async def get_booking(db: AsyncSession, booking_id: uuid.UUID, actor: User) -> tuple[Booking, Property]:
    booking = await get_booking_or_404(db, booking_id)
    prop = await get_property_or_404(db, booking.property_id)
    ensure_can(actor, "view", booking, prop)
    return booking, prop


async def list_bookings(
    db: AsyncSession,
    actor: User,
    page: int = 1,
    page_size: int = 10,
    status: Optional[BookingStatus] = None,
    property_id: Optional[uuid.UUID] = None,
) -> dict:
    """
    Guests see their own bookings, owners/agents also see bookings on
    properties they manage, admins see everything.
    """
    filters = []
    if actor.role != UserRole.ADMIN:
        filters.append(
            or_(
                Booking.user_id == actor.id,
                Property.owner_id == actor.id,
                Property.agent_id == actor.id,
            )
        )
    if status is not None:
        filters.append(Booking.status == status)
    if property_id is not None:
        filters.append(Booking.property_id == property_id)

    total = await db.scalar(
        select(func.count(Booking.id))
        .join(Property, Property.id == Booking.property_id)
        .where(*filters)
    ) or 0
    result = await db.execute(
        select(Booking, Property, User)
        .join(Property, Property.id == Booking.property_id)
        .join(User, User.id == Booking.user_id)
        .where(*filters)
        .order_by(Booking.created_at.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    return {
        "items": [to_response(b, p, g) for b, p, g in result.all()],
        "total": total,
        "page": page,
        "page_size": page_size,
        "pages": math.ceil(total / page_size) if total else 0,
    }
