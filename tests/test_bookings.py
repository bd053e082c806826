"""
tests/test_bookings.py
Booking lifecycle over HTTP: create → confirm → complete, or cancel.
"""

import uuid
from datetime import timedelta
from decimal import Decimal

import pytest
from httpx import AsyncClient
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from shared.models.models import (
    AuditLog,
    Booking,
    BookingStatus,
    Notification,
    Payment,
    PaymentStatus,
    Property,
    User,
)
from tests.conftest import auth_headers, future


async def _audit_rows(db: AsyncSession, booking: Booking, action: str) -> list[AuditLog]:
    result = await db.execute(
        select(AuditLog).where(
            AuditLog.entity_type == "Booking",
            AuditLog.entity_id == str(booking.id),
            AuditLog.action == action,
        )
    )
    return list(result.scalars())


# ── Creation ──────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_create_booking_success(client: AsyncClient, db: AsyncSession, user: User, property: Property):
    """A guest can request a stay on a published listing."""
    payload = {
        "property_id": str(property.id),
        "start_date": future(5).isoformat(),
        "end_date": future(8).isoformat(),
        "guest_count": 2,
    }

    response = await client.post("/bookings", headers=auth_headers(user), json=payload)
    assert response.status_code == 201
    data = response.json()
    assert data["status"] == "PENDING"
    assert data["payment_status"] == "UNPAID"
    assert data["booking_number"].startswith("RE-")
    assert data["total_days"] == 3
    assert Decimal(data["total_amount"]) == Decimal("325.00")
    assert data["guest_email"] == user.email
    assert data["property"]["title"] == property.title

    # Guest gets a confirmation, owner gets a request
    recipients = (await db.execute(select(Notification.user_id))).scalars().all()
    assert set(recipients) == {user.id, property.owner_id}


@pytest.mark.asyncio
async def test_create_booking_start_not_before_end_rejected(client: AsyncClient, user: User, property: Property):
    start = future(5)
    for end in (start, start - timedelta(days=1)):
        payload = {
            "property_id": str(property.id),
            "start_date": start.isoformat(),
            "end_date": end.isoformat(),
        }
        response = await client.post("/bookings", headers=auth_headers(user), json=payload)
        assert response.status_code == 400
        assert response.json()["code"] == "VALIDATION_ERROR"


@pytest.mark.asyncio
async def test_create_booking_in_past_rejected(client: AsyncClient, user: User, property: Property):
    payload = {
        "property_id": str(property.id),
        "start_date": future(-2).isoformat(),
        "end_date": future(1).isoformat(),
    }
    response = await client.post("/bookings", headers=auth_headers(user), json=payload)
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_create_booking_unknown_property(client: AsyncClient, user: User):
    payload = {
        "property_id": str(uuid.uuid4()),
        "start_date": future(5).isoformat(),
        "end_date": future(6).isoformat(),
    }
    response = await client.post("/bookings", headers=auth_headers(user), json=payload)
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_create_booking_too_many_guests(client: AsyncClient, user: User, property: Property):
    payload = {
        "property_id": str(property.id),
        "start_date": future(5).isoformat(),
        "end_date": future(6).isoformat(),
        "guest_count": property.max_guests + 1,
    }
    response = await client.post("/bookings", headers=auth_headers(user), json=payload)
    assert response.status_code == 400
    assert any("guests" in r for r in response.json()["reasons"])


@pytest.mark.asyncio
async def test_create_booking_overlap_rejected(
    client: AsyncClient, other_user: User, property: Property, booking: Booking
):
    """Dates overlapping an active booking are refused."""
    payload = {
        "property_id": str(property.id),
        "start_date": (booking.start_date + timedelta(days=1)).isoformat(),
        "end_date": (booking.end_date + timedelta(days=2)).isoformat(),
    }
    response = await client.post("/bookings", headers=auth_headers(other_user), json=payload)
    assert response.status_code == 409
    assert response.json()["code"] == "CONFLICT"


@pytest.mark.asyncio
async def test_back_to_back_booking_allowed(
    client: AsyncClient, other_user: User, property: Property, booking: Booking
):
    """Check-in on another stay's check-out day does not overlap."""
    payload = {
        "property_id": str(property.id),
        "start_date": booking.end_date.isoformat(),
        "end_date": (booking.end_date + timedelta(days=2)).isoformat(),
    }
    response = await client.post("/bookings", headers=auth_headers(other_user), json=payload)
    assert response.status_code == 201


@pytest.mark.asyncio
async def test_create_booking_requires_auth(client: AsyncClient, property: Property):
    payload = {
        "property_id": str(property.id),
        "start_date": future(5).isoformat(),
        "end_date": future(6).isoformat(),
    }
    response = await client.post("/bookings", json=payload)
    assert response.status_code == 401


# ── Confirm ───────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_owner_confirms_booking(
    client: AsyncClient, db: AsyncSession, owner_user: User, booking: Booking
):
    response = await client.post(f"/bookings/{booking.id}/confirm", headers=auth_headers(owner_user))
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "CONFIRMED"
    assert data["confirmed_at"] is not None

    assert data["guest"]["id"] == str(booking.user_id)
    assert data["guest"]["email"] == booking.guest_email
    assert data["property"]["title"] == "Sunny Loft"

    rows = await _audit_rows(db, booking, "CONFIRM")
    assert len(rows) == 1
    assert rows[0].actor_id == owner_user.id
    assert '"PENDING"' in rows[0].old_values
    assert '"CONFIRMED"' in rows[0].new_values


@pytest.mark.asyncio
async def test_agent_confirms_booking(client: AsyncClient, agent_user: User, booking: Booking):
    response = await client.post(f"/bookings/{booking.id}/confirm", headers=auth_headers(agent_user))
    assert response.status_code == 200


@pytest.mark.asyncio
async def test_admin_confirms_booking(client: AsyncClient, admin_user: User, booking: Booking):
    response = await client.post(f"/bookings/{booking.id}/confirm", headers=auth_headers(admin_user))
    assert response.status_code == 200


@pytest.mark.asyncio
async def test_guest_cannot_confirm_booking(
    client: AsyncClient, db: AsyncSession, user: User, booking: Booking
):
    """Only the owner, agent or an admin may confirm; nothing is written otherwise."""
    response = await client.post(f"/bookings/{booking.id}/confirm", headers=auth_headers(user))
    assert response.status_code == 403
    assert response.json()["code"] == "FORBIDDEN"

    await db.refresh(booking)
    assert booking.status == BookingStatus.PENDING
    assert booking.confirmed_at is None
    assert await _audit_rows(db, booking, "CONFIRM") == []


@pytest.mark.asyncio
async def test_confirm_twice_is_rejected(
    client: AsyncClient, db: AsyncSession, owner_user: User, booking: Booking
):
    first = await client.post(f"/bookings/{booking.id}/confirm", headers=auth_headers(owner_user))
    assert first.status_code == 200
    confirmed_at = first.json()["confirmed_at"]

    second = await client.post(f"/bookings/{booking.id}/confirm", headers=auth_headers(owner_user))
    assert second.status_code == 400
    body = second.json()
    assert body["code"] == "INVALID_STATE_TRANSITION"
    assert body["current_status"] == "CONFIRMED"
    assert body["allowed_from"] == ["PENDING"]

    await db.refresh(booking)
    assert booking.status == BookingStatus.CONFIRMED
    assert len(await _audit_rows(db, booking, "CONFIRM")) == 1

    fetched = await client.get(f"/bookings/{booking.id}", headers=auth_headers(owner_user))
    assert fetched.json()["confirmed_at"][:19] == confirmed_at[:19]


@pytest.mark.asyncio
async def test_confirm_cancelled_booking_rejected(
    client: AsyncClient, db: AsyncSession, owner_user: User, booking: Booking
):
    booking.status = BookingStatus.CANCELLED
    await db.commit()

    response = await client.post(f"/bookings/{booking.id}/confirm", headers=auth_headers(owner_user))
    assert response.status_code == 400
    assert response.json()["current_status"] == "CANCELLED"

    await db.refresh(booking)
    assert booking.status == BookingStatus.CANCELLED
    assert booking.confirmed_at is None


@pytest.mark.asyncio
async def test_confirm_unknown_booking(client: AsyncClient, owner_user: User):
    response = await client.post(f"/bookings/{uuid.uuid4()}/confirm", headers=auth_headers(owner_user))
    assert response.status_code == 404


# ── Cancel / Complete ─────────────────────────────────────────

@pytest.mark.asyncio
async def test_guest_cancels_booking_and_pending_payments(
    client: AsyncClient, db: AsyncSession, user: User, booking: Booking
):
    payment = Payment(
        booking_id=booking.id,
        user_id=user.id,
        gateway_payment_id="pi_pending_1",
        amount=booking.total_amount,
        currency="usd",
        payment_method="card",
        status=PaymentStatus.PENDING,
    )
    db.add(payment)
    await db.commit()

    response = await client.post(
        f"/bookings/{booking.id}/cancel",
        headers=auth_headers(user),
        json={"reason": "Plans changed"},
    )
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "CANCELLED"
    assert data["cancellation_reason"] == "Plans changed"

    await db.refresh(payment)
    assert payment.status == PaymentStatus.CANCELLED
    assert len(await _audit_rows(db, booking, "CANCEL")) == 1


@pytest.mark.asyncio
async def test_stranger_cannot_cancel(client: AsyncClient, other_user: User, booking: Booking):
    response = await client.post(f"/bookings/{booking.id}/cancel", headers=auth_headers(other_user))
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_complete_requires_confirmed(
    client: AsyncClient, db: AsyncSession, owner_user: User, booking: Booking
):
    early = await client.post(f"/bookings/{booking.id}/complete", headers=auth_headers(owner_user))
    assert early.status_code == 400
    assert early.json()["allowed_from"] == ["CONFIRMED"]

    await client.post(f"/bookings/{booking.id}/confirm", headers=auth_headers(owner_user))
    done = await client.post(f"/bookings/{booking.id}/complete", headers=auth_headers(owner_user))
    assert done.status_code == 200
    assert done.json()["status"] == "COMPLETED"
    assert len(await _audit_rows(db, booking, "COMPLETE")) == 1

    # Terminal
    again = await client.post(f"/bookings/{booking.id}/cancel", headers=auth_headers(owner_user))
    assert again.status_code == 400


# ── Reads ─────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_get_booking_visibility(
    client: AsyncClient, user: User, owner_user: User, other_user: User, booking: Booking
):
    assert (await client.get(f"/bookings/{booking.id}", headers=auth_headers(user))).status_code == 200
    assert (await client.get(f"/bookings/{booking.id}", headers=auth_headers(owner_user))).status_code == 200
    assert (await client.get(f"/bookings/{booking.id}", headers=auth_headers(other_user))).status_code == 403


@pytest.mark.asyncio
async def test_list_bookings_scoped_to_user(
    client: AsyncClient, db: AsyncSession, user: User, owner_user: User, other_user: User, booking: Booking
):
    mine = await client.get("/bookings", headers=auth_headers(user))
    assert mine.status_code == 200
    assert mine.json()["total"] == 1
    assert mine.json()["items"][0]["guest"]["name"] == user.name

    owners = await client.get("/bookings", headers=auth_headers(owner_user))
    assert owners.json()["total"] == 1

    strangers = await client.get("/bookings", headers=auth_headers(other_user))
    assert strangers.json()["total"] == 0

    filtered = await client.get("/bookings?status=confirmed", headers=auth_headers(user))
    assert filtered.json()["total"] == 0

    bad = await client.get("/bookings?status=bogus", headers=auth_headers(user))
    assert bad.status_code == 400

    assert await db.scalar(select(func.count(Booking.id))) == 1
