"""
services/booking/router.py
Booking endpoints. Business rules live in services/booking/service.py.
"""

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from services.booking import service
from shared.middleware.auth import get_current_user
from shared.models.models import BookingStatus, User
from shared.schemas.schemas import (
    BookingCancelRequest,
    BookingCreateRequest,
    BookingResponse,
    PaginatedResponse,
)
from shared.utils.exceptions import ValidationError

router = APIRouter(prefix="/bookings", tags=["Bookings"])


async def _respond(db: AsyncSession, booking, prop) -> BookingResponse:
    guest = await db.get(User, booking.user_id)
    return service.to_response(booking, prop, guest)


@router.post("", response_model=BookingResponse, status_code=status.HTTP_201_CREATED)
async def create_booking(
    data: BookingCreateRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """
    Request a stay. Steps:
    1. Validate dates (start before end, start in the future)
    2. Validate property is published and the stay fits its rules
    3. Reject overlapping active bookings
    4. Create PENDING / UNPAID booking and notify guest + owner
    """
    booking, prop = await service.create_booking(db, current_user, data)
    return service.to_response(booking, prop, current_user)


@router.post("/{booking_id}/confirm", response_model=BookingResponse)
async def confirm_booking(
    booking_id: UUID,
    request: Request,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Owner, assigned agent or admin confirms a PENDING booking."""
    booking, prop = await service.confirm_booking(db, booking_id, current_user, request)
    return await _respond(db, booking, prop)


@router.post("/{booking_id}/cancel", response_model=BookingResponse)
async def cancel_booking(
    booking_id: UUID,
    request: Request,
    data: Optional[BookingCancelRequest] = None,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Guest, owner, agent or admin cancels a PENDING or CONFIRMED booking."""
    reason = data.reason if data else None
    booking, prop = await service.cancel_booking(db, booking_id, current_user, reason, request)
    return await _respond(db, booking, prop)


@router.post("/{booking_id}/complete", response_model=BookingResponse)
async def complete_booking(
    booking_id: UUID,
    request: Request,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Owner, assigned agent or admin marks a CONFIRMED stay as completed."""
    booking, prop = await service.complete_booking(db, booking_id, current_user, request)
    return await _respond(db, booking, prop)


# ── Read Endpoints ────────────────────────────────────────────

@router.get("/{booking_id}", response_model=BookingResponse)
async def get_booking(
    booking_id: UUID,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    booking, prop = await service.get_booking(db, booking_id, current_user)
    return await _respond(db, booking, prop)


@router.get("", response_model=PaginatedResponse)
async def list_bookings(
    status_filter: Optional[str] = Query(None, alias="status"),
    property_id: Optional[UUID] = Query(None),
    page: int = Query(1, ge=1),
    page_size: int = Query(10, ge=1, le=50),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Bookings visible to the current user, newest first."""
    booking_status = None
    if status_filter:
        try:
            booking_status = BookingStatus(status_filter.upper())
        except ValueError:
            raise ValidationError(f"Invalid status: {status_filter}")

    return await service.list_bookings(
        db, current_user, page, page_size, booking_status, property_id
    )
