"""
shared/utils/permissions.py
Capability checks: can(actor, action, resource) -> bool.

Admins may do anything. Other rules depend on the resource:
- Booking:      confirm / complete   → property owner or assigned agent
                view / cancel / pay  → guest, property owner or assigned agent
- Property:     view / update / publish → owner or assigned agent
- Notification: manage → addressee
- Payment:      view / cancel → the paying user
- User:         view / update → the account itself
"""

from typing import Optional

from shared.models.models import Booking, Notification, Payment, Property, User, UserRole
from shared.utils.exceptions import Forbidden


def _manages_property(actor: User, prop: Optional[Property]) -> bool:
    if prop is None:
        return False
    return actor.id == prop.owner_id or (prop.agent_id is not None and actor.id == prop.agent_id)


def can(
    actor: Optional[User],
    action: str,
    resource: object,
    property_: Optional[Property] = None,
) -> bool:
    """
    Return True if actor may perform action on resource.
    For bookings the related property must be passed as property_.
    """
    if actor is None or not actor.is_active:
        return False
    if actor.role == UserRole.ADMIN:
        return True

    if isinstance(resource, Booking):
        if action in ("confirm", "complete"):
            return _manages_property(actor, property_)
        if action in ("view", "cancel"):
            return resource.user_id == actor.id or _manages_property(actor, property_)
        if action == "pay":
            return resource.user_id == actor.id
        return False

    if isinstance(resource, Property):
        if action in ("view", "update", "publish"):
            return _manages_property(actor, resource)
        return False

    if isinstance(resource, Notification):
        return action in ("view", "manage") and resource.user_id == actor.id

    if isinstance(resource, Payment):
        return action in ("view", "cancel") and resource.user_id == actor.id

    if isinstance(resource, User):
        return action in ("view", "update") and resource.id == actor.id

    return False


def ensure_can(
    actor: Optional[User],
    action: str,
    resource: object,
    property_: Optional[Property] = None,
) -> None:
    """Raise Forbidden unless can() allows it."""
    if not can(actor, action, resource, property_):
        name = type(resource).__name__.lower()
        raise Forbidden(f"Not authorized to {action} this {name}")
