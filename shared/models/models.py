"""
shared/models/models.py
All SQLAlchemy ORM models for the Real Estate Marketplace.
UUID primary keys throughout; portable across PostgreSQL and SQLite.
"""

import uuid
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum as PyEnum
from typing import List, Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from config.database import Base
from shared.models.types import JSONEncodedList


# ── Enumerations ──────────────────────────────────────────────

class UserRole(str, PyEnum):
    USER = "USER"
    OWNER = "OWNER"
    AGENT = "AGENT"
    ADMIN = "ADMIN"


class PropertyStatus(str, PyEnum):
    DRAFT = "DRAFT"
    PUBLISHED = "PUBLISHED"
    ARCHIVED = "ARCHIVED"


class BookingStatus(str, PyEnum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    CANCELLED = "CANCELLED"
    COMPLETED = "COMPLETED"


class BookingPaymentStatus(str, PyEnum):
    UNPAID = "UNPAID"
    PAID = "PAID"
    FAILED = "FAILED"


class PaymentStatus(str, PyEnum):
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"


class NotificationType(str, PyEnum):
    BOOKING = "BOOKING"
    PAYMENT = "PAYMENT"
    PROPERTY = "PROPERTY"
    SYSTEM = "SYSTEM"


# ── Mixins ────────────────────────────────────────────────────

def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TimestampMixin:
    """Adds created_at and updated_at to any model."""
    # Python-side values keep the attributes loaded after flush (no async lazy refresh)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        onupdate=utcnow,
        nullable=False,
    )


# ── Models ────────────────────────────────────────────────────

class User(TimestampMixin, Base):
    """Platform account. Role decides what the account may list or manage."""
    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    phone: Mapped[Optional[str]] = mapped_column(String(20))
    password_hash: Mapped[Optional[str]] = mapped_column(String(255))
    role: Mapped[UserRole] = mapped_column(
        Enum(UserRole), nullable=False, default=UserRole.USER
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    agent_profile: Mapped[Optional["AgentProfile"]] = relationship(
        back_populates="user", uselist=False, foreign_keys="AgentProfile.user_id"
    )
    notifications: Mapped[List["Notification"]] = relationship(
        back_populates="user", cascade="all, delete-orphan"
    )

    def __repr__(self) -> str:
        return f"<User {self.email} ({self.role})>"


class AgentProfile(TimestampMixin, Base):
    """Licensing details for AGENT accounts, verified by an admin."""
    __tablename__ = "agent_profiles"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True
    )
    license_number: Mapped[Optional[str]] = mapped_column(String(100))
    company: Mapped[Optional[str]] = mapped_column(String(255))
    bio: Mapped[Optional[str]] = mapped_column(Text)
    verified: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    verification_notes: Mapped[Optional[str]] = mapped_column(Text)
    verified_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    verified_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(ForeignKey("users.id"))

    user: Mapped["User"] = relationship(back_populates="agent_profile", foreign_keys=[user_id])


class Property(TimestampMixin, Base):
    """A listing. Referenced, never mutated, by the booking flow."""
    __tablename__ = "properties"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    owner_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    agent_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL")
    )
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    property_type: Mapped[str] = mapped_column(String(50), nullable=False, default="APARTMENT")
    address: Mapped[Optional[str]] = mapped_column(String(500))
    city: Mapped[str] = mapped_column(String(100), nullable=False)
    state: Mapped[Optional[str]] = mapped_column(String(100))

    # Pricing
    price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=0)
    rent_price: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2))  # per night
    cleaning_fee: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2))
    security_deposit: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2))

    # Stay rules
    min_stay: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    max_stay: Mapped[Optional[int]] = mapped_column(Integer)
    max_guests: Mapped[int] = mapped_column(Integer, default=1, nullable=False)

    status: Mapped[PropertyStatus] = mapped_column(
        Enum(PropertyStatus), default=PropertyStatus.DRAFT, nullable=False
    )
    amenities: Mapped[List[str]] = mapped_column(JSONEncodedList, default=list)
    images: Mapped[List[str]] = mapped_column(JSONEncodedList, default=list)
    published_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    bookings: Mapped[List["Booking"]] = relationship(back_populates="property")

    __table_args__ = (
        Index("ix_properties_status_city", "status", "city"),
    )


class Favorite(TimestampMixin, Base):
    """A property saved by a user. One row per (user, property)."""
    __tablename__ = "favorites"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    property_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("properties.id", ondelete="CASCADE"), nullable=False
    )

    __table_args__ = (
        UniqueConstraint("user_id", "property_id", name="uq_favorites_user_property"),
    )


class Booking(TimestampMixin, Base):
    """
    Reservation of a Property by a User for a date range.
    Lifecycle: PENDING → CONFIRMED | CANCELLED; CONFIRMED → COMPLETED | CANCELLED
    """
    __tablename__ = "bookings"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    booking_number: Mapped[str] = mapped_column(String(20), nullable=False, unique=True)
    property_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("properties.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    start_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    end_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    total_days: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    guest_count: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    # Guest contact
    guest_name: Mapped[str] = mapped_column(String(255), nullable=False)
    guest_email: Mapped[str] = mapped_column(String(255), nullable=False)
    guest_phone: Mapped[Optional[str]] = mapped_column(String(20))
    special_requests: Mapped[Optional[str]] = mapped_column(Text)

    status: Mapped[BookingStatus] = mapped_column(
        Enum(BookingStatus), default=BookingStatus.PENDING, nullable=False
    )
    payment_status: Mapped[BookingPaymentStatus] = mapped_column(
        Enum(BookingPaymentStatus), default=BookingPaymentStatus.UNPAID, nullable=False
    )

    # Amounts
    cleaning_fee: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2))
    service_fee: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2))
    total_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    payment_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid)

    # Lifecycle timestamps
    confirmed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    cancellation_reason: Mapped[Optional[str]] = mapped_column(Text)

    property: Mapped["Property"] = relationship(back_populates="bookings")
    user: Mapped["User"] = relationship(foreign_keys=[user_id])
    payments: Mapped[List["Payment"]] = relationship(back_populates="booking")

    __table_args__ = (
        CheckConstraint("start_date < end_date", name="check_booking_dates"),
        Index("ix_bookings_property_dates", "property_id", "start_date", "end_date"),
        Index("ix_bookings_user_status", "user_id", "status"),
    )


class Payment(TimestampMixin, Base):
    """One payment attempt against a booking. Driven by gateway webhooks after creation."""
    __tablename__ = "payments"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    booking_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("bookings.id", ondelete="CASCADE"), nullable=False, index=True
    )
    user_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("users.id"), nullable=False)
    gateway_payment_id: Mapped[Optional[str]] = mapped_column(String(255), unique=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), default="usd", nullable=False)
    payment_method: Mapped[str] = mapped_column(String(50), default="card", nullable=False)
    status: Mapped[PaymentStatus] = mapped_column(
        Enum(PaymentStatus), default=PaymentStatus.PENDING, nullable=False
    )
    failure_reason: Mapped[Optional[str]] = mapped_column(Text)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    booking: Mapped["Booking"] = relationship(back_populates="payments")


class Notification(TimestampMixin, Base):
    """In-app notification. Only is_read / important ever change after creation."""
    __tablename__ = "notifications"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    type: Mapped[NotificationType] = mapped_column(Enum(NotificationType), nullable=False)
    related_id: Mapped[Optional[str]] = mapped_column(String(64))
    is_read: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    important: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    read_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    user: Mapped["User"] = relationship(back_populates="notifications")

    __table_args__ = (
        Index("ix_notifications_user_read", "user_id", "is_read"),
    )


class AuditLog(Base):
    """
    Immutable record of state-changing actions.
    NEVER update or delete rows from this table.
    """
    __tablename__ = "audit_logs"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    actor_id: Mapped[Optional[uuid.UUID]] = mapped_column(ForeignKey("users.id"))  # None = system
    action: Mapped[str] = mapped_column(String(100), nullable=False)
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_id: Mapped[str] = mapped_column(String(64), nullable=False)
    old_values: Mapped[Optional[str]] = mapped_column(Text)
    new_values: Mapped[Optional[str]] = mapped_column(Text)
    ip_address: Mapped[Optional[str]] = mapped_column(String(45))
    user_agent: Mapped[Optional[str]] = mapped_column(String(500))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )

    __table_args__ = (
        Index("ix_audit_logs_entity", "entity_type", "entity_id"),
    )
