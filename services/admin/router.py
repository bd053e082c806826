"""
services/admin/router.py
Admin-only endpoints: agent verification queue, platform stats,
and the read side of the audit log.

Every admin mutation writes an AuditLog row before committing.
"""

import math
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from services.audit import service as audit
from services.notification import service as notifications
from shared.middleware.auth import require_admin
from shared.models.models import (
    AgentProfile,
    AuditLog,
    Booking,
    BookingStatus,
    Payment,
    PaymentStatus,
    Property,
    PropertyStatus,
    User,
    UserRole,
)
from shared.schemas.schemas import AgentVerifyRequest, AuditLogResponse, MessageResponse
from shared.utils.exceptions import NotFound

router = APIRouter(prefix="/admin", tags=["Admin"])


def _page(items: list, total: int, page: int, page_size: int) -> dict:
    return {
        "items": items,
        "total": total,
        "page": page,
        "page_size": page_size,
        "pages": math.ceil(total / page_size) if total else 0,
    }


# ── Agent Verification Queue ──────────────────────────────────

@router.get("/agents/pending")
async def get_pending_agents(
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=50),
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Unverified agent profiles, oldest application first."""
    filters = [AgentProfile.verified.is_(False)]
    total = await db.scalar(select(func.count(AgentProfile.id)).where(*filters)) or 0
    result = await db.execute(
        select(AgentProfile, User)
        .join(User, User.id == AgentProfile.user_id)
        .where(*filters)
        .order_by(AgentProfile.created_at.asc())
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    items = [
        {
            "agent_profile_id": str(profile.id),
            "user_id": str(user.id),
            "name": user.name,
            "email": user.email,
            "phone": user.phone,
            "license_number": profile.license_number,
            "company": profile.company,
            "bio": profile.bio,
            "applied_at": profile.created_at.isoformat(),
        }
        for profile, user in result.all()
    ]
    return _page(items, total, page, page_size)


@router.post("/agents/{user_id}/verify", response_model=MessageResponse)
async def verify_agent(
    user_id: UUID,
    data: AgentVerifyRequest,
    request: Request,
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Approve or revoke an agent's verification and tell the agent."""
    result = await db.execute(select(AgentProfile).where(AgentProfile.user_id == user_id))
    profile = result.scalar_one_or_none()
    if not profile:
        raise NotFound("Agent profile not found")

    old_values = {"verified": profile.verified, "verification_notes": profile.verification_notes}
    profile.verified = data.verified
    profile.verification_notes = data.verification_notes
    profile.verified_at = datetime.now(timezone.utc) if data.verified else None
    profile.verified_by_id = current_user.id if data.verified else None

    await audit.record(
        db,
        "VERIFY_AGENT" if data.verified else "UNVERIFY_AGENT",
        "AgentProfile",
        profile.id,
        actor=current_user,
        old_values=old_values,
        new_values={"verified": data.verified, "verification_notes": data.verification_notes},
        request=request,
    )
    await notifications.notify(
        db, profile.user_id,
        notifications.agent_verification(data.verified, data.verification_notes),
        related_id=profile.id,
    )
    await db.commit()
    return MessageResponse(
        message="Agent verified" if data.verified else "Agent verification revoked"
    )


# ── Stats ─────────────────────────────────────────────────────

@router.get("/stats")
async def get_stats(
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Platform counters for the admin dashboard."""
    today_start = datetime.now(timezone.utc).replace(hour=0, minute=0, second=0, microsecond=0)

    users_by_role = dict(
        (await db.execute(select(User.role, func.count(User.id)).group_by(User.role))).all()
    )
    bookings_by_status = dict(
        (await db.execute(select(Booking.status, func.count(Booking.id)).group_by(Booking.status))).all()
    )
    published = await db.scalar(
        select(func.count(Property.id)).where(Property.status == PropertyStatus.PUBLISHED)
    )
    total_properties = await db.scalar(select(func.count(Property.id)))
    pending_agents = await db.scalar(
        select(func.count(AgentProfile.id)).where(AgentProfile.verified.is_(False))
    )
    bookings_today = await db.scalar(
        select(func.count(Booking.id)).where(Booking.created_at >= today_start)
    )
    payments_by_status = dict(
        (await db.execute(select(Payment.status, func.count(Payment.id)).group_by(Payment.status))).all()
    )
    revenue = await db.scalar(
        select(func.sum(Payment.amount)).where(Payment.status == PaymentStatus.COMPLETED)
    )
    recent = await db.execute(select(Booking).order_by(Booking.created_at.desc()).limit(5))

    return {
        "users": {role.value: users_by_role.get(role, 0) for role in UserRole},
        "properties": {"total": total_properties or 0, "published": published or 0},
        "bookings": {
            "total": sum(bookings_by_status.values()),
            "today": bookings_today or 0,
            **{s.value: bookings_by_status.get(s, 0) for s in BookingStatus},
        },
        "payments": {s.value: payments_by_status.get(s, 0) for s in PaymentStatus},
        "pending_agent_verifications": pending_agents or 0,
        "total_revenue": str(Decimal(str(revenue or 0))),
        "recent_bookings": [
            {
                "id": str(b.id),
                "booking_number": b.booking_number,
                "property_id": str(b.property_id),
                "status": BookingStatus(b.status).value,
                "total_amount": str(b.total_amount),
                "created_at": b.created_at.isoformat(),
            }
            for b in recent.scalars()
        ],
    }


# ── Audit Log ─────────────────────────────────────────────────

@router.get("/audit-logs")
async def get_audit_logs(
    action: Optional[str] = Query(None, description="e.g. CONFIRM, PAYMENT_COMPLETED"),
    entity_type: Optional[str] = Query(None),
    entity_id: Optional[str] = Query(None),
    actor_id: Optional[UUID] = Query(None),
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=200),
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Read-only, newest first."""
    filters = []
    if action:
        filters.append(AuditLog.action == action.upper())
    if entity_type:
        filters.append(AuditLog.entity_type == entity_type)
    if entity_id:
        filters.append(AuditLog.entity_id == entity_id)
    if actor_id:
        filters.append(AuditLog.actor_id == actor_id)

    total = await db.scalar(select(func.count(AuditLog.id)).where(*filters)) or 0
    result = await db.execute(
        select(AuditLog)
        .where(*filters)
        .order_by(AuditLog.created_at.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    items = [AuditLogResponse.model_validate(log) for log in result.scalars()]
    return _page(items, total, page, page_size)
