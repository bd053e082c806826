"""
services/agent/router.py
Public agent directory: browse agents, view a profile and its listings.
"""

import math
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy import case, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from shared.models.models import AgentProfile, Property, PropertyStatus, User, UserRole
from shared.schemas.schemas import AgentDirectoryEntry, PaginatedResponse, PropertyResponse
from shared.utils.exceptions import NotFound

router = APIRouter(prefix="/agents", tags=["Agents"])


# ── Helpers ───────────────────────────────────────────────────

async def _listing_stats(db: AsyncSession, agent_ids: list) -> dict:
    """{agent_id: {"total_properties", "published_properties"}} for the given agents."""
    if not agent_ids:
        return {}
    result = await db.execute(
        select(
            Property.agent_id,
            func.count(Property.id),
            func.sum(case((Property.status == PropertyStatus.PUBLISHED, 1), else_=0)),
        )
        .where(Property.agent_id.in_(agent_ids))
        .group_by(Property.agent_id)
    )
    return {
        agent_id: {"total_properties": total, "published_properties": int(published or 0)}
        for agent_id, total, published in result.all()
    }


def _entry(profile: AgentProfile, user: User, stats: Optional[dict]) -> AgentDirectoryEntry:
    return AgentDirectoryEntry(
        user_id=user.id,
        name=user.name,
        email=user.email,
        phone=user.phone,
        company=profile.company,
        license_number=profile.license_number,
        bio=profile.bio,
        verified=profile.verified,
        stats=stats or {"total_properties": 0, "published_properties": 0},
    )


async def _get_agent_or_404(db: AsyncSession, user_id: UUID) -> tuple[AgentProfile, User]:
    result = await db.execute(
        select(AgentProfile, User)
        .join(User, User.id == AgentProfile.user_id)
        .where(
            AgentProfile.user_id == user_id,
            User.role == UserRole.AGENT,
            User.is_active.is_(True),
        )
    )
    row = result.first()
    if not row:
        raise NotFound("Agent not found")
    return row[0], row[1]


# ── Public Endpoints ──────────────────────────────────────────

@router.get("", response_model=PaginatedResponse)
async def list_agents(
    verified: Optional[bool] = Query(None),
    search: Optional[str] = Query(None, max_length=100),
    page: int = Query(1, ge=1),
    page_size: int = Query(10, ge=1, le=50),
    db: AsyncSession = Depends(get_db),
):
    """Active agents, newest first. search matches name or company."""
    filters = [User.role == UserRole.AGENT, User.is_active.is_(True)]
    if verified is not None:
        filters.append(AgentProfile.verified.is_(verified))
    if search:
        pattern = f"%{search.lower()}%"
        filters.append(
            or_(func.lower(User.name).like(pattern), func.lower(AgentProfile.company).like(pattern))
        )

    total = await db.scalar(
        select(func.count(AgentProfile.id))
        .join(User, User.id == AgentProfile.user_id)
        .where(*filters)
    ) or 0
    result = await db.execute(
        select(AgentProfile, User)
        .join(User, User.id == AgentProfile.user_id)
        .where(*filters)
        .order_by(AgentProfile.created_at.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    rows = result.all()
    stats = await _listing_stats(db, [user.id for _, user in rows])
    return {
        "items": [_entry(profile, user, stats.get(user.id)) for profile, user in rows],
        "total": total,
        "page": page,
        "page_size": page_size,
        "pages": math.ceil(total / page_size) if total else 0,
    }


@router.get("/{user_id}", response_model=AgentDirectoryEntry)
async def get_agent(user_id: UUID, db: AsyncSession = Depends(get_db)):
    profile, user = await _get_agent_or_404(db, user_id)
    stats = await _listing_stats(db, [user.id])
    return _entry(profile, user, stats.get(user.id))


@router.get("/{user_id}/properties", response_model=PaginatedResponse)
async def get_agent_properties(
    user_id: UUID,
    page: int = Query(1, ge=1),
    page_size: int = Query(10, ge=1, le=50),
    db: AsyncSession = Depends(get_db),
):
    """Published listings handled by the agent."""
    await _get_agent_or_404(db, user_id)
    filters = [Property.agent_id == user_id, Property.status == PropertyStatus.PUBLISHED]

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
