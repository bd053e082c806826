"""
tests/conftest.py
Shared fixtures: a fresh in-memory SQLite database per test, fakeredis in place
of Redis, and an httpx client bound to the app with both dependencies overridden.
"""

import os
import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import AsyncGenerator

# Settings are read at import time
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("JWT_SECRET_KEY", "test-jwt-secret-key")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("APP_ENV", "development")
os.environ.setdefault("PAYMENT_WEBHOOK_SECRET", "whsec_test_secret")
os.environ.setdefault("STRIPE_SECRET_KEY", "sk_test_dummy")

import fakeredis.aioredis
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

import shared.models.models  # noqa: F401
from config.database import Base, get_db
from config.redis_client import get_redis
from main import app
from shared.models.models import (
    AgentProfile,
    Booking,
    BookingPaymentStatus,
    BookingStatus,
    Property,
    PropertyStatus,
    User,
    UserRole,
)
from shared.utils.security import create_access_token, hash_password

TEST_PASSWORD = "testpassword123"


def auth_headers(user: User) -> dict:
    token, _ = create_access_token(
        user_id=str(user.id), role=UserRole(user.role).value, email=user.email
    )
    return {"Authorization": f"Bearer {token}"}


def future(days: int) -> datetime:
    return (datetime.now(timezone.utc) + timedelta(days=days)).replace(microsecond=0)


# ── Infrastructure ────────────────────────────────────────────

@pytest_asyncio.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    # pysqlite's implicit transactions break SAVEPOINT; let SQLAlchemy emit BEGIN itself
    @event.listens_for(engine.sync_engine, "connect")
    def _connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _begin(conn):
        conn.exec_driver_sql("BEGIN")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def db(engine) -> AsyncGenerator[AsyncSession, None]:
    session_factory = async_sessionmaker(engine, expire_on_commit=False, autoflush=False)
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def redis():
    client = fakeredis.aioredis.FakeRedis(decode_responses=True)
    yield client
    await client.aclose()


@pytest_asyncio.fixture
async def client(db: AsyncSession, redis) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client that overrides the DB and Redis dependencies."""

    async def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_redis] = lambda: redis

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


# ── Accounts ──────────────────────────────────────────────────

async def _make_user(db: AsyncSession, role: UserRole, name: str) -> User:
    user = User(
        id=uuid.uuid4(),
        email=f"{name.lower().replace(' ', '.')}.{uuid.uuid4().hex[:6]}@example.com",
        name=name,
        phone="+15550000000",
        password_hash=hash_password(TEST_PASSWORD),
        role=role,
        is_active=True,
    )
    db.add(user)
    await db.commit()
    return user


@pytest_asyncio.fixture
async def user(db: AsyncSession) -> User:
    return await _make_user(db, UserRole.USER, "Guest User")


@pytest_asyncio.fixture
async def other_user(db: AsyncSession) -> User:
    return await _make_user(db, UserRole.USER, "Other User")


@pytest_asyncio.fixture
async def owner_user(db: AsyncSession) -> User:
    return await _make_user(db, UserRole.OWNER, "Owner User")


@pytest_asyncio.fixture
async def agent_user(db: AsyncSession) -> User:
    agent = await _make_user(db, UserRole.AGENT, "Agent User")
    db.add(AgentProfile(user_id=agent.id, license_number="LIC-001", company="Acme Realty"))
    await db.commit()
    return agent


@pytest_asyncio.fixture
async def admin_user(db: AsyncSession) -> User:
    return await _make_user(db, UserRole.ADMIN, "Admin User")


# ── Listings & Bookings ───────────────────────────────────────

@pytest_asyncio.fixture
async def property(db: AsyncSession, owner_user: User, agent_user: User) -> Property:
    prop = Property(
        id=uuid.uuid4(),
        owner_id=owner_user.id,
        agent_id=agent_user.id,
        title="Sunny Loft",
        description="Two bedrooms near the park",
        property_type="APARTMENT",
        address="1 Main Street",
        city="Springfield",
        price=Decimal("250000.00"),
        rent_price=Decimal("100.00"),
        cleaning_fee=Decimal("25.00"),
        min_stay=1,
        max_stay=30,
        max_guests=4,
        status=PropertyStatus.PUBLISHED,
        amenities=["wifi", "parking"],
        images=["https://img.example.com/loft.jpg"],
        published_at=datetime.now(timezone.utc),
    )
    db.add(prop)
    await db.commit()
    return prop


@pytest_asyncio.fixture
async def booking(db: AsyncSession, user: User, property: Property) -> Booking:
    """PENDING booking: 3 nights at 100.00 plus 25.00 cleaning."""
    booking = Booking(
        id=uuid.uuid4(),
        booking_number=f"RE-TEST-{uuid.uuid4().hex[:5].upper()}",
        property_id=property.id,
        user_id=user.id,
        start_date=future(10),
        end_date=future(13),
        total_days=3,
        guest_count=2,
        guest_name=user.name,
        guest_email=user.email,
        status=BookingStatus.PENDING,
        payment_status=BookingPaymentStatus.UNPAID,
        cleaning_fee=Decimal("25.00"),
        service_fee=Decimal("0.00"),
        total_amount=Decimal("325.00"),
    )
    db.add(booking)
    await db.commit()
    return booking
