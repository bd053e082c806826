"""
tests/test_app.py
Application wiring: middleware headers, error rendering, health and debug routes.
"""

import uuid

import pytest
from httpx import AsyncClient

from shared.models.models import Property, User
from tests.conftest import auth_headers


@pytest.mark.asyncio
async def test_request_id_and_process_time_headers(client: AsyncClient):
    response = await client.get("/", headers={"X-Request-ID": "req-123"})
    assert response.status_code == 200
    assert response.headers["X-Request-ID"] == "req-123"
    assert response.headers["X-Process-Time"].endswith("ms")


@pytest.mark.asyncio
async def test_app_errors_carry_code_and_request_id(client: AsyncClient, user: User):
    response = await client.get(f"/bookings/{uuid.uuid4()}", headers=auth_headers(user))
    assert response.status_code == 404
    body = response.json()
    assert body["code"] == "NOT_FOUND"
    assert body["request_id"] == response.headers["X-Request-ID"]


@pytest.mark.asyncio
async def test_request_validation_is_400(client: AsyncClient, user: User):
    response = await client.post("/bookings", headers=auth_headers(user), json={"property_id": "nope"})
    assert response.status_code == 400
    body = response.json()
    assert body["code"] == "VALIDATION_ERROR"
    assert body["errors"]


@pytest.mark.asyncio
async def test_health(client: AsyncClient):
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json()["database"] == "ok"


@pytest.mark.asyncio
async def test_debug_properties_in_development(client: AsyncClient, property: Property):
    response = await client.get("/debug/properties")
    assert response.status_code == 200
    data = response.json()
    assert data["total"] == 1
    assert data["by_status"]["PUBLISHED"] == 1
    assert data["data"][0]["owner"]["id"] == str(property.owner_id)
