"""
tests/test_users.py
Profile read/update, admin-only account fields, and saved properties.
"""

import uuid

import pytest
from httpx import AsyncClient
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from shared.models.models import AuditLog, Booking, Favorite, Property, PropertyStatus, User, UserRole
from tests.conftest import auth_headers


# ── Profile ───────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_get_my_profile_with_stats(client: AsyncClient, user: User, booking: Booking):
    response = await client.get("/users/me", headers=auth_headers(user))
    assert response.status_code == 200
    data = response.json()
    assert data["id"] == str(user.id)
    assert data["agent_profile"] is None
    assert data["stats"] == {"properties": 0, "bookings": 1, "favorites": 0}


@pytest.mark.asyncio
async def test_agent_profile_is_included(client: AsyncClient, agent_user: User, property: Property):
    response = await client.get("/users/me", headers=auth_headers(agent_user))
    data = response.json()
    assert data["agent_profile"]["license_number"] == "LIC-001"
    assert data["agent_profile"]["verified"] is False
    assert data["stats"]["properties"] == 1


@pytest.mark.asyncio
async def test_update_my_profile(client: AsyncClient, db: AsyncSession, user: User):
    response = await client.put(
        "/users/me", headers=auth_headers(user), json={"name": "Renamed Guest", "phone": "+15551112222"}
    )
    assert response.status_code == 200
    assert response.json()["name"] == "Renamed Guest"

    await db.refresh(user)
    assert user.phone == "+15551112222"


@pytest.mark.asyncio
async def test_phone_already_in_use(client: AsyncClient, db: AsyncSession, user: User, other_user: User):
    other_user.phone = "+15559998888"
    await db.commit()
    response = await client.put("/users/me", headers=auth_headers(user), json={"phone": "+15559998888"})
    assert response.status_code == 409


@pytest.mark.asyncio
async def test_user_cannot_change_own_role(client: AsyncClient, db: AsyncSession, user: User):
    response = await client.put("/users/me", headers=auth_headers(user), json={"role": "ADMIN"})
    assert response.status_code == 403

    await db.refresh(user)
    assert user.role == UserRole.USER


@pytest.mark.asyncio
async def test_other_profiles_are_private(client: AsyncClient, user: User, other_user: User):
    assert (await client.get(f"/users/{other_user.id}", headers=auth_headers(user))).status_code == 403
    assert (
        await client.put(f"/users/{other_user.id}", headers=auth_headers(user), json={"name": "Hijacked"})
    ).status_code == 403
    assert (await client.get(f"/users/{user.id}", headers=auth_headers(user))).status_code == 200


@pytest.mark.asyncio
async def test_admin_changes_role_and_is_audited(
    client: AsyncClient, db: AsyncSession, admin_user: User, user: User
):
    response = await client.put(
        f"/users/{user.id}", headers=auth_headers(admin_user), json={"role": "OWNER", "is_active": False}
    )
    assert response.status_code == 200
    assert response.json()["role"] == "OWNER"
    assert response.json()["is_active"] is False

    audit = (await db.execute(select(AuditLog).where(AuditLog.action == "UPDATE_USER"))).scalar_one()
    assert audit.actor_id == admin_user.id
    assert audit.entity_id == str(user.id)
    assert '"role": "USER"' in audit.old_values


@pytest.mark.asyncio
async def test_unknown_user(client: AsyncClient, admin_user: User):
    response = await client.get(f"/users/{uuid.uuid4()}", headers=auth_headers(admin_user))
    assert response.status_code == 404


# ── Favourites ────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_add_favorite_is_idempotent(client: AsyncClient, db: AsyncSession, user: User, property: Property):
    first = await client.post(f"/users/me/favorites/{property.id}", headers=auth_headers(user))
    assert first.status_code == 200
    assert first.json()["message"] == "Property added to favorites"

    again = await client.post(f"/users/me/favorites/{property.id}", headers=auth_headers(user))
    assert again.status_code == 200
    assert again.json()["message"] == "Property already in favorites"

    assert await db.scalar(select(func.count(Favorite.id))) == 1


@pytest.mark.asyncio
async def test_cannot_favorite_draft_or_unknown(
    client: AsyncClient, db: AsyncSession, user: User, owner_user: User
):
    draft = Property(owner_id=owner_user.id, title="Draft", city="Town", price=1, status=PropertyStatus.DRAFT)
    db.add(draft)
    await db.commit()

    assert (await client.post(f"/users/me/favorites/{draft.id}", headers=auth_headers(user))).status_code == 404
    assert (await client.post(f"/users/me/favorites/{uuid.uuid4()}", headers=auth_headers(user))).status_code == 404


@pytest.mark.asyncio
async def test_list_favorites_is_per_user(
    client: AsyncClient, db: AsyncSession, user: User, other_user: User, property: Property
):
    db.add(Favorite(user_id=user.id, property_id=property.id))
    await db.commit()

    mine = await client.get("/users/me/favorites", headers=auth_headers(user))
    assert mine.status_code == 200
    data = mine.json()
    assert data["total"] == 1
    assert data["items"][0]["property"]["id"] == str(property.id)
    assert data["items"][0]["saved_at"]

    theirs = await client.get("/users/me/favorites", headers=auth_headers(other_user))
    assert theirs.json()["total"] == 0


@pytest.mark.asyncio
async def test_remove_favorite(client: AsyncClient, db: AsyncSession, user: User, property: Property):
    db.add(Favorite(user_id=user.id, property_id=property.id))
    await db.commit()

    response = await client.delete(f"/users/me/favorites/{property.id}", headers=auth_headers(user))
    assert response.status_code == 200
    assert await db.scalar(select(func.count(Favorite.id))) == 0


@pytest.mark.asyncio
async def test_favorites_require_auth(client: AsyncClient):
    response = await client.get("/users/me/favorites")
    assert response.status_code == 401
