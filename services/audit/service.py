"""
services/audit/service.py
Append-only audit log writer.

Every state-changing action records who did it, what changed (before/after
snapshots serialized as JSON text) and the request origin. Rows are only ever
inserted; nothing in the application updates or deletes them.
"""

import json
import logging
from typing import Any, Optional

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession

from shared.models.models import AuditLog, User

logger = logging.getLogger(__name__)


def _serialize(values: Optional[dict[str, Any]]) -> Optional[str]:
    if values is None:
        return None
    return json.dumps(values, default=str, sort_keys=True)


def client_ip(request: Optional[Request]) -> Optional[str]:
    if request is None:
        return None
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()[:45]
    return request.client.host if request.client else None


def user_agent(request: Optional[Request]) -> Optional[str]:
    if request is None:
        return None
    agent = request.headers.get("user-agent")
    return agent[:500] if agent else None


def build_entry(
    action: str,
    entity_type: str,
    entity_id: Any,
    actor: Optional[User] = None,
    old_values: Optional[dict[str, Any]] = None,
    new_values: Optional[dict[str, Any]] = None,
    request: Optional[Request] = None,
) -> AuditLog:
    """Unattached AuditLog row. Also used by Celery tasks on a sync session."""
    return AuditLog(
        actor_id=actor.id if actor else None,
        action=action,
        entity_type=entity_type,
        entity_id=str(entity_id),
        old_values=_serialize(old_values),
        new_values=_serialize(new_values),
        ip_address=client_ip(request),
        user_agent=user_agent(request),
    )


async def record(
    db: AsyncSession,
    action: str,
    entity_type: str,
    entity_id: Any,
    actor: Optional[User] = None,
    old_values: Optional[dict[str, Any]] = None,
    new_values: Optional[dict[str, Any]] = None,
    request: Optional[Request] = None,
) -> AuditLog:
    """Add one AuditLog row to the session. The caller's commit persists it."""
    entry = build_entry(action, entity_type, entity_id, actor, old_values, new_values, request)
    db.add(entry)
    logger.info(
        f"Audit {action} {entity_type}:{entity_id} by {actor.id if actor else 'system'}"
    )
    return entry
