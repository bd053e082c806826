"""
services/property/router.py
Property listings: create/update by owners and agents, publish,
public browsing and availability checks.
"""

import math
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from config.settings import settings
from services.audit import service as audit
from services.booking.service import (
    as_utc,
    count_nights,
    find_conflicts,
    get_property_or_404,
    quote,
    stay_problems,
)
from services.notification import service as notifications
from shared.middleware.auth import get_current_user, get_optional_user, require_lister
from shared.models.models import Property, PropertyStatus, User, UserRole
from shared.schemas.schemas import (
    AvailabilityResponse,
    PaginatedResponse,
    PropertyCreateRequest,
    PropertyResponse,
    PropertyUpdateRequest,
)
from shared.utils.exceptions import NotFound, ValidationError
from shared.utils.permissions import can, ensure_can

router = APIRouter(prefix="/properties", tags=["Properties"])


# ── Listing Management ────────────────────────────────────────

@router.post("", response_model=PropertyResponse, status_code=status.HTTP_201_CREATED)
async def create_property(
    data: PropertyCreateRequest,
    current_user: User = Depends(require_lister),
    db: AsyncSession = Depends(get_db),
):
    """Create a DRAFT listing owned by the caller."""
    if data.agent_id is not None:
        agent = await db.get(User, data.agent_id)
        if not agent or agent.role != UserRole.AGENT:
            raise ValidationError("agent_id must reference an agent account")

    prop = Property(owner_id=current_user.id, status=PropertyStatus.DRAFT, **data.model_dump())
    db.add(prop)
    await db.commit()
    return PropertyResponse.model_validate(prop)


@router.put("/{property_id}", response_model=PropertyResponse)
async def update_property(
    property_id: UUID,
    data: PropertyUpdateRequest,
    request: Request,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    prop = await get_property_or_404(db, property_id)
    ensure_can(current_user, "update", prop)

    changes = data.model_dump(exclude_unset=True)
    min_stay = changes.get("min_stay", prop.min_stay)
    max_stay = changes.get("max_stay", prop.max_stay)
    if max_stay is not None and max_stay < min_stay:
        raise ValidationError("max_stay must be greater than or equal to min_stay")

    old_values = {field: getattr(prop, field) for field in changes}
    for field, value in changes.items():
        setattr(prop, field, value)

    if changes:
        await audit.record(
            db, "UPDATE", "Property", prop.id,
            actor=current_user, old_values=old_values, new_values=changes, request=request,
        )
    await db.commit()
    return PropertyResponse.model_validate(prop)


@router.post("/{property_id}/publish", response_model=PropertyResponse)
async def publish_property(
    property_id: UUID,
    request: Request,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Make a listing bookable and tell the owner."""
    prop = await get_property_or_404(db, property_id)
    ensure_can(current_user, "publish", prop)
    if prop.status == PropertyStatus.PUBLISHED:
        raise ValidationError("Property is already published")

    previous = PropertyStatus(prop.status)
    prop.status = PropertyStatus.PUBLISHED
    prop.published_at = datetime.now(timezone.utc)

    await audit.record(
        db, "PUBLISH", "Property", prop.id,
        actor=current_user,
        old_values={"status": previous.value},
        new_values={"status": PropertyStatus.PUBLISHED.value},
        request=request,
    )
    await notifications.notify(
        db, prop.owner_id, notifications.property_published(prop.title), related_id=prop.id
    )
    await db.commit()
    return PropertyResponse.model_validate(prop)


# ── Public Browsing ───────────────────────────────────────────

@router.get("", response_model=PaginatedResponse)
async def list_properties(
    city: Optional[str] = Query(None),
    property_type: Optional[str] = Query(None),
    min_price: Optional[Decimal] = Query(None, ge=0),
    max_price: Optional[Decimal] = Query(None, ge=0),
    guests: Optional[int] = Query(None, ge=1),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=50),
    db: AsyncSession = Depends(get_db),
):
    """Published listings only."""
    filters = [Property.status == PropertyStatus.PUBLISHED]
    if city:
        filters.append(func.lower(Property.city) == city.lower())
    if property_type:
        filters.append(Property.property_type == property_type.upper())
    if min_price is not None:
        filters.append(Property.price >= min_price)
    if max_price is not None:
        filters.append(Property.price <= max_price)
    if guests is not None:
        filters.append(Property.max_guests >= guests)

    total = await db.scalar(select(func.count(Property.id)).where(*filters)) or 0
    result = await db.execute(
        select(Property)
        .where(*filters)
        .order_by(Property.created_at.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    return {
        "items": [PropertyResponse.model_validate(p) for p in result.scalars()],
        "total": total,
        "page": page,
        "page_size": page_size,
        "pages": math.ceil(total / page_size) if total else 0,
    }


@router.get("/search", response_model=PaginatedResponse)
async def search_properties(
    q: str = Query(..., min_length=2, max_length=100),
    city: Optional[str] = Query(None),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=50),
    db: AsyncSession = Depends(get_db),
):
    """Free-text search over published listings (title, description, address, city, state)."""
    pattern = f"%{q.lower()}%"
    filters = [
        Property.status == PropertyStatus.PUBLISHED,
        or_(*(
            func.lower(column).like(pattern)
            for column in (
                Property.title, Property.description, Property.address,
                Property.city, Property.state,
            )
        )),
    ]
    if city:
        filters.append(func.lower(Property.city) == city.lower())

    total = await db.scalar(select(func.count(Property.id)).where(*filters)) or 0
    result = await db.execute(
        select(Property)
        .where(*filters)
        .order_by(Property.created_at.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    return {
        "items": [PropertyResponse.model_validate(p) for p in result.scalars()],
        "total": total,
        "page": page,
        "page_size": page_size,
        "pages": math.ceil(total / page_size) if total else 0,
    }


@router.get("/count")
async def count_properties(db: AsyncSession = Depends(get_db)):
    """Headline numbers: published listings, distinct cities, agents."""
    published = Property.status == PropertyStatus.PUBLISHED
    return {
        "total": await db.scalar(select(func.count(Property.id)).where(published)) or 0,
        "cities": await db.scalar(
            select(func.count(func.distinct(func.lower(Property.city)))).where(published)
        ) or 0,
        "agents": await db.scalar(
            select(func.count(User.id)).where(User.role == UserRole.AGENT, User.is_active.is_(True))
        ) or 0,
    }


@router.get("/{property_id}", response_model=PropertyResponse)
async def get_property(
    property_id: UUID,
    current_user: Optional[User] = Depends(get_optional_user),
    db: AsyncSession = Depends(get_db),
):
    prop = await get_property_or_404(db, property_id)
    if prop.status != PropertyStatus.PUBLISHED and not can(current_user, "view", prop):
        # Unpublished listings are invisible to everyone else
        raise NotFound("Property not found")
    return PropertyResponse.model_validate(prop)


@router.get("/{property_id}/availability", response_model=AvailabilityResponse)
async def check_availability(
    property_id: UUID,
    start_date: datetime = Query(...),
    end_date: datetime = Query(...),
    guests: int = Query(1, ge=1),
    db: AsyncSession = Depends(get_db),
):
    """Same rules as booking creation, reported instead of raised."""
    start, end = as_utc(start_date), as_utc(end_date)
    if start >= end:
        raise ValidationError("start_date must be before end_date")

    prop = await get_property_or_404(db, property_id)
    nights = count_nights(start, end)
    reasons = stay_problems(prop, nights, guests)

    conflicts = []
    if settings.BOOKING_PREVENT_OVERLAP:
        conflicts = [
            {"start_date": b.start_date.isoformat(), "end_date": b.end_date.isoformat()}
            for b in await find_conflicts(db, prop.id, start, end)
        ]
        if conflicts:
            reasons.append("Property is already booked for the selected dates")

    return AvailabilityResponse(
        available=not reasons,
        nights=nights,
        total_amount=quote(prop, nights)["total"],
        reasons=reasons,
        conflicts=conflicts,
    )
