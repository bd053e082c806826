"""
tests/test_notifications.py
Notification inbox: listing with stats, bulk read/delete, per-item flags,
admin broadcast, and best-effort creation.
"""

import uuid

import pytest
from httpx import AsyncClient
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from services.notification import service
from shared.models.models import Notification, NotificationType, User
from tests.conftest import auth_headers


async def _seed(db: AsyncSession, user: User, count: int, type=NotificationType.SYSTEM) -> list[Notification]:
    items = [
        Notification(user_id=user.id, title=f"Note {i}", message=f"Message {i}", type=type)
        for i in range(count)
    ]
    db.add_all(items)
    await db.commit()
    return items


async def _unread(db: AsyncSession, user: User) -> int:
    return await db.scalar(
        select(func.count(Notification.id)).where(
            Notification.user_id == user.id, Notification.is_read.is_(False)
        )
    )


# ── Listing ───────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_list_notifications_with_stats(client: AsyncClient, db: AsyncSession, user: User, other_user: User):
    notes = await _seed(db, user, 3)
    await _seed(db, user, 1, type=NotificationType.BOOKING)
    await _seed(db, other_user, 2)
    notes[0].is_read = True
    await db.commit()

    response = await client.get("/notifications", headers=auth_headers(user))
    assert response.status_code == 200
    data = response.json()
    assert data["total"] == 4
    assert data["stats"] == {"total": 4, "unread": 3, "read": 1}

    booking_only = await client.get("/notifications?type=booking", headers=auth_headers(user))
    assert booking_only.json()["total"] == 1

    unread_only = await client.get("/notifications?is_read=false", headers=auth_headers(user))
    assert unread_only.json()["total"] == 3


@pytest.mark.asyncio
async def test_list_notifications_invalid_type(client: AsyncClient, user: User):
    response = await client.get("/notifications?type=nope", headers=auth_headers(user))
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_unread_count(client: AsyncClient, db: AsyncSession, user: User):
    await _seed(db, user, 2)
    response = await client.get("/notifications/unread-count", headers=auth_headers(user))
    assert response.json() == {"unread_count": 2}


# ── Bulk Read / Delete ────────────────────────────────────────

@pytest.mark.asyncio
async def test_mark_all_read_only_touches_own_notifications(
    client: AsyncClient, db: AsyncSession, user: User, other_user: User
):
    await _seed(db, user, 3)
    await _seed(db, other_user, 2)

    response = await client.put("/notifications", headers=auth_headers(user))
    assert response.status_code == 200
    assert response.json()["message"] == "Marked 3 notification(s) as read"

    assert await _unread(db, user) == 0
    assert await _unread(db, other_user) == 2


@pytest.mark.asyncio
async def test_mark_selected_read(client: AsyncClient, db: AsyncSession, user: User, other_user: User):
    mine = await _seed(db, user, 3)
    theirs = await _seed(db, other_user, 1)

    response = await client.put(
        "/notifications",
        headers=auth_headers(user),
        json={"ids": [str(mine[0].id), str(theirs[0].id)]},
    )
    assert response.status_code == 200
    assert await _unread(db, user) == 2
    assert await _unread(db, other_user) == 1


@pytest.mark.asyncio
async def test_bulk_delete_only_own(client: AsyncClient, db: AsyncSession, user: User, other_user: User):
    mine = await _seed(db, user, 2)
    theirs = await _seed(db, other_user, 1)

    response = await client.request(
        "DELETE",
        "/notifications",
        headers=auth_headers(user),
        json={"ids": [str(mine[0].id), str(theirs[0].id)]},
    )
    assert response.status_code == 200
    assert response.json()["message"] == "Deleted 1 notification(s)"
    assert await db.scalar(select(func.count(Notification.id))) == 2


# ── Single Notification ───────────────────────────────────────

@pytest.mark.asyncio
async def test_toggle_read_and_important(client: AsyncClient, db: AsyncSession, user: User):
    note = (await _seed(db, user, 1))[0]

    response = await client.put(
        f"/notifications/{note.id}",
        headers=auth_headers(user),
        json={"is_read": True, "important": True},
    )
    assert response.status_code == 200
    data = response.json()
    assert data["is_read"] is True
    assert data["important"] is True


@pytest.mark.asyncio
async def test_cannot_touch_someone_elses_notification(client: AsyncClient, db: AsyncSession, user: User, other_user: User):
    note = (await _seed(db, other_user, 1))[0]

    assert (await client.get(f"/notifications/{note.id}", headers=auth_headers(user))).status_code == 403
    assert (
        await client.put(f"/notifications/{note.id}", headers=auth_headers(user), json={"is_read": True})
    ).status_code == 403
    assert (await client.delete(f"/notifications/{note.id}", headers=auth_headers(user))).status_code == 403


@pytest.mark.asyncio
async def test_unknown_notification(client: AsyncClient, user: User):
    response = await client.get(f"/notifications/{uuid.uuid4()}", headers=auth_headers(user))
    assert response.status_code == 404


# ── Admin Send ────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_admin_sends_notification(client: AsyncClient, admin_user: User, user: User):
    payload = {"user_id": str(user.id), "title": "Maintenance", "message": "Downtime tonight", "important": True}
    response = await client.post("/notifications", headers=auth_headers(admin_user), json=payload)
    assert response.status_code == 201
    assert response.json()["type"] == "SYSTEM"

    inbox = await client.get("/notifications", headers=auth_headers(user))
    assert inbox.json()["total"] == 1


@pytest.mark.asyncio
async def test_non_admin_cannot_send(client: AsyncClient, user: User, other_user: User):
    payload = {"user_id": str(other_user.id), "title": "Hi", "message": "Hello"}
    response = await client.post("/notifications", headers=auth_headers(user), json=payload)
    assert response.status_code == 403


# ── Writer ────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_failed_notification_does_not_break_caller(db: AsyncSession, user: User):
    """An insert failure is rolled back to its savepoint; earlier work in the transaction survives."""
    user.name = "Renamed Guest"
    result = await service.create_notification(db, None, "t", "m", NotificationType.SYSTEM)
    assert result is None

    await db.commit()
    await db.refresh(user)
    assert user.name == "Renamed Guest"
    assert await db.scalar(select(func.count(Notification.id))) == 0


@pytest.mark.asyncio
async def test_notify_uses_template(db: AsyncSession, user: User):
    note = await service.notify(db, user.id, service.payment_failed("RE-2030-ABCDE", "declined"), related_id=uuid.uuid4())
    await db.commit()
    assert note.type == NotificationType.PAYMENT
    assert note.important is True
    assert "RE-2030-ABCDE" in note.message


@pytest.mark.parametrize(
    "template, type_, important",
    [
        (service.booking_created("Loft", "RE-1"), NotificationType.BOOKING, False),
        (service.new_booking_request("Loft", "Guest", "RE-1"), NotificationType.BOOKING, False),
        (service.booking_confirmed("Loft", "RE-1"), NotificationType.BOOKING, False),
        (service.booking_cancelled("Loft", "RE-1", "plans changed"), NotificationType.BOOKING, False),
        (service.payment_received(325, "usd", "RE-1"), NotificationType.PAYMENT, False),
        (service.payment_failed("RE-1"), NotificationType.PAYMENT, True),
        (service.property_published("Loft"), NotificationType.PROPERTY, False),
        (service.agent_verification(False), NotificationType.SYSTEM, True),
        (service.new_message("Owner", "Check-in"), NotificationType.SYSTEM, False),
        (service.system_update("Maintenance", "Downtime tonight"), NotificationType.SYSTEM, True),
    ],
)
def test_templates(template, type_, important):
    title, message, got_type, got_important = template
    assert title and message
    assert got_type == type_
    assert got_important is important


def test_cancel_template_includes_reason():
    _, message, _, _ = service.booking_cancelled("Loft", "RE-1", "plans changed")
    assert "Reason: plans changed" in message
