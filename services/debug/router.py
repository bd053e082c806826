"""
services/debug/router.py
Development-only inspection endpoints. Only mounted when APP_ENV=development.
"""

from fastapi import APIRouter, Depends
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from config.settings import settings
from shared.models.models import Property, PropertyStatus, User
from shared.schemas.schemas import PropertyResponse
from shared.utils.exceptions import Forbidden

router = APIRouter(prefix="/debug", tags=["Debug"], include_in_schema=False)


def _development_only():
    if not settings.is_development:
        raise Forbidden("Not available outside development")


@router.get("/properties", dependencies=[Depends(_development_only)])
async def debug_properties(db: AsyncSession = Depends(get_db)):
    """Latest 200 listings in any status, with their owner, plus counts per status."""
    total = await db.scalar(select(func.count(Property.id))) or 0
    by_status = dict(
        (await db.execute(
            select(Property.status, func.count(Property.id)).group_by(Property.status)
        )).all()
    )
    result = await db.execute(
        select(Property, User.name, User.email)
        .join(User, User.id == Property.owner_id)
        .order_by(Property.created_at.desc())
        .limit(200)
    )
    rows = result.all()
    return {
        "success": True,
        "total": total,
        "count": len(rows),
        "by_status": {s.value: by_status.get(s, 0) for s in PropertyStatus},
        "data": [
            {
                **PropertyResponse.model_validate(prop).model_dump(mode="json"),
                "owner": {"id": str(prop.owner_id), "name": name, "email": email},
            }
            for prop, name, email in rows
        ],
    }
