"""
services/user/router.py
User profiles and saved (favourite) properties.
"""

import math
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy import delete, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from services.audit import service as audit
from shared.middleware.auth import get_current_user
from shared.models.models import (
    AgentProfile,
    Booking,
    Favorite,
    Property,
    PropertyStatus,
    User,
    UserRole,
)
from shared.schemas.schemas import (
    AgentProfileResponse,
    FavoriteResponse,
    MessageResponse,
    PaginatedResponse,
    PropertyResponse,
    UserProfileResponse,
    UserResponse,
    UserUpdateRequest,
)
from shared.utils.exceptions import ConflictError, Forbidden, NotFound
from shared.utils.permissions import ensure_can

router = APIRouter(prefix="/users", tags=["Users"])


# ── Helpers ───────────────────────────────────────────────────

async def _get_user_or_404(db: AsyncSession, user_id: UUID) -> User:
    user = await db.get(User, user_id)
    if not user:
        raise NotFound("User not found")
    return user


async def _profile(db: AsyncSession, user: User) -> UserProfileResponse:
    """User columns plus agent details and activity counts."""
    profile = await db.scalar(select(AgentProfile).where(AgentProfile.user_id == user.id))
    stats = {
        "properties": await db.scalar(
            select(func.count(Property.id)).where(
                or_(Property.owner_id == user.id, Property.agent_id == user.id)
            )
        ) or 0,
        "bookings": await db.scalar(
            select(func.count(Booking.id)).where(Booking.user_id == user.id)
        ) or 0,
        "favorites": await db.scalar(
            select(func.count(Favorite.id)).where(Favorite.user_id == user.id)
        ) or 0,
    }
    return UserProfileResponse(
        **UserResponse.model_validate(user).model_dump(),
        agent_profile=AgentProfileResponse.model_validate(profile) if profile else None,
        stats=stats,
    )


async def _apply_update(
    db: AsyncSession,
    user: User,
    data: UserUpdateRequest,
    actor: User,
    request: Request,
) -> User:
    """
    Update profile fields. Only non-None fields are applied.
    role / is_active are admin-only and audited.
    """
    updates = data.model_dump(exclude_none=True)
    if not updates:
        return user

    privileged = {k: updates[k] for k in ("role", "is_active") if k in updates}
    if privileged and actor.role != UserRole.ADMIN:
        raise Forbidden("Only admins may change role or account status")

    if "phone" in updates:
        taken = await db.scalar(
            select(User.id).where(User.phone == updates["phone"], User.id != user.id)
        )
        if taken:
            raise ConflictError("Phone number already in use")

    if privileged:
        old_values = {"role": UserRole(user.role).value, "is_active": user.is_active}
        await audit.record(
            db, "UPDATE_USER", "User", user.id,
            actor=actor, old_values=old_values, new_values=privileged, request=request,
        )

    for field, value in updates.items():
        setattr(user, field, UserRole(value) if field == "role" else value)

    await db.commit()
    return user


# ── Profile ───────────────────────────────────────────────────

@router.get("/me", response_model=UserProfileResponse)
async def get_my_profile(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await _profile(db, current_user)


@router.put("/me", response_model=UserProfileResponse)
async def update_my_profile(
    data: UserUpdateRequest,
    request: Request,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Update name / phone of the current user."""
    user = await _apply_update(db, current_user, data, current_user, request)
    return await _profile(db, user)


# ── Favourites ────────────────────────────────────────────────

@router.get("/me/favorites", response_model=PaginatedResponse)
async def list_favorites(
    page: int = Query(1, ge=1),
    page_size: int = Query(10, ge=1, le=50),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Saved properties, most recently saved first."""
    total = await db.scalar(
        select(func.count(Favorite.id)).where(Favorite.user_id == current_user.id)
    ) or 0
    result = await db.execute(
        select(Favorite, Property)
        .join(Property, Property.id == Favorite.property_id)
        .where(Favorite.user_id == current_user.id)
        .order_by(Favorite.created_at.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    return {
        "items": [
            FavoriteResponse(property=PropertyResponse.model_validate(p), saved_at=f.created_at)
            for f, p in result.all()
        ],
        "total": total,
        "page": page,
        "page_size": page_size,
        "pages": math.ceil(total / page_size) if total else 0,
    }


@router.post("/me/favorites/{property_id}", response_model=MessageResponse)
async def add_favorite(
    property_id: UUID,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Save a published property. Saving twice is not an error."""
    prop = await db.get(Property, property_id)
    if not prop or prop.status != PropertyStatus.PUBLISHED:
        raise NotFound("Property not found")

    existing = await db.scalar(
        select(Favorite.id).where(
            Favorite.user_id == current_user.id,
            Favorite.property_id == property_id,
        )
    )
    if existing:
        return MessageResponse(message="Property already in favorites")

    db.add(Favorite(user_id=current_user.id, property_id=property_id))
    await db.commit()
    return MessageResponse(message="Property added to favorites")


@router.delete("/me/favorites/{property_id}", response_model=MessageResponse)
async def remove_favorite(
    property_id: UUID,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    await db.execute(
        delete(Favorite).where(
            Favorite.user_id == current_user.id,
            Favorite.property_id == property_id,
        )
    )
    await db.commit()
    return MessageResponse(message="Property removed from favorites")


# ── Other Accounts ────────────────────────────────────────────

@router.get("/{user_id}", response_model=UserProfileResponse)
async def get_user_profile(
    user_id: UUID,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """The account itself or an admin."""
    user = await _get_user_or_404(db, user_id)
    ensure_can(current_user, "view", user)
    return await _profile(db, user)


@router.put("/{user_id}", response_model=UserProfileResponse)
async def update_user_profile(
    user_id: UUID,
    data: UserUpdateRequest,
    request: Request,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    user = await _get_user_or_404(db, user_id)
    ensure_can(current_user, "update", user)
    user = await _apply_update(db, user, data, current_user, request)
    return await _profile(db, user)
