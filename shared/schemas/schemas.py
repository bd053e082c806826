"""
shared/schemas/schemas.py
All Pydantic v2 request/response schemas for the platform.
"""

import json
import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator, model_validator


# ── Base ──────────────────────────────────────────────────────

class BaseSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True, use_enum_values=True)


class PaginatedResponse(BaseSchema):
    items: List[Any]
    total: int
    page: int
    page_size: int
    pages: int


class MessageResponse(BaseSchema):
    message: str
    success: bool = True


# ── Auth ──────────────────────────────────────────────────────

class RegisterRequest(BaseSchema):
    email: EmailStr
    name: str = Field(..., min_length=2, max_length=255)
    password: str = Field(..., min_length=8, max_length=128)
    phone: Optional[str] = Field(None, max_length=20)
    role: str = Field("USER", pattern=r"^(USER|OWNER|AGENT)$")
    license_number: Optional[str] = Field(None, max_length=100)
    company: Optional[str] = Field(None, max_length=255)


class LoginRequest(BaseSchema):
    email: EmailStr
    password: str


class TokenResponse(BaseSchema):
    access_token: str
    token_type: str = "bearer"
    expires_in: int  # seconds
    user: "UserResponse"


class ForgotPasswordRequest(BaseSchema):
    email: EmailStr


class ResetPasswordRequest(BaseSchema):
    token: str = Field(..., min_length=10)
    password: str = Field(..., min_length=8, max_length=128)


# ── User ──────────────────────────────────────────────────────

class UserResponse(BaseSchema):
    id: uuid.UUID
    email: EmailStr
    name: str
    phone: Optional[str] = None
    role: str
    is_active: bool
    created_at: datetime


class UserSummary(BaseSchema):
    id: uuid.UUID
    name: str
    email: str
    phone: Optional[str] = None


class UserUpdateRequest(BaseSchema):
    name: Optional[str] = Field(None, min_length=2, max_length=255)
    phone: Optional[str] = Field(None, max_length=20)
    # Admin only
    role: Optional[str] = Field(None, pattern=r"^(USER|OWNER|AGENT|ADMIN)$")
    is_active: Optional[bool] = None


class AgentProfileResponse(BaseSchema):
    license_number: Optional[str] = None
    company: Optional[str] = None
    bio: Optional[str] = None
    verified: bool
    verified_at: Optional[datetime] = None


class UserProfileResponse(UserResponse):
    agent_profile: Optional[AgentProfileResponse] = None
    stats: Dict[str, int] = Field(default_factory=dict)


class AgentDirectoryEntry(BaseSchema):
    user_id: uuid.UUID
    name: str
    email: str
    phone: Optional[str] = None
    company: Optional[str] = None
    license_number: Optional[str] = None
    bio: Optional[str] = None
    verified: bool
    stats: Dict[str, int] = Field(default_factory=dict)


# ── Property ──────────────────────────────────────────────────

class PropertyCreateRequest(BaseSchema):
    title: str = Field(..., min_length=3, max_length=255)
    description: Optional[str] = None
    property_type: str = Field("APARTMENT", max_length=50)
    address: Optional[str] = Field(None, max_length=500)
    city: str = Field(..., min_length=2, max_length=100)
    state: Optional[str] = Field(None, max_length=100)
    price: Decimal = Field(..., ge=0)
    rent_price: Optional[Decimal] = Field(None, ge=0)
    cleaning_fee: Optional[Decimal] = Field(None, ge=0)
    security_deposit: Optional[Decimal] = Field(None, ge=0)
    min_stay: int = Field(1, ge=1)
    max_stay: Optional[int] = Field(None, ge=1)
    max_guests: int = Field(1, ge=1, le=100)
    agent_id: Optional[uuid.UUID] = None
    amenities: List[str] = Field(default_factory=list)
    images: List[str] = Field(default_factory=list)

    @model_validator(mode="after")
    def stay_range(self):
        if self.max_stay is not None and self.max_stay < self.min_stay:
            raise ValueError("max_stay must be greater than or equal to min_stay")
        return self


class PropertyUpdateRequest(BaseSchema):
    title: Optional[str] = Field(None, min_length=3, max_length=255)
    description: Optional[str] = None
    property_type: Optional[str] = Field(None, max_length=50)
    address: Optional[str] = Field(None, max_length=500)
    city: Optional[str] = Field(None, min_length=2, max_length=100)
    state: Optional[str] = Field(None, max_length=100)
    price: Optional[Decimal] = Field(None, ge=0)
    rent_price: Optional[Decimal] = Field(None, ge=0)
    cleaning_fee: Optional[Decimal] = Field(None, ge=0)
    security_deposit: Optional[Decimal] = Field(None, ge=0)
    min_stay: Optional[int] = Field(None, ge=1)
    max_stay: Optional[int] = Field(None, ge=1)
    max_guests: Optional[int] = Field(None, ge=1, le=100)
    amenities: Optional[List[str]] = None
    images: Optional[List[str]] = None

    @field_validator(
        "title", "property_type", "city", "price", "min_stay", "max_guests", "amenities", "images"
    )
    @classmethod
    def not_null(cls, value, info):
        if value is None:
            raise ValueError(f"{info.field_name} cannot be null")
        return value


class PropertyResponse(BaseSchema):
    id: uuid.UUID
    owner_id: uuid.UUID
    agent_id: Optional[uuid.UUID] = None
    title: str
    description: Optional[str] = None
    property_type: str
    address: Optional[str] = None
    city: str
    state: Optional[str] = None
    price: Decimal
    rent_price: Optional[Decimal] = None
    cleaning_fee: Optional[Decimal] = None
    security_deposit: Optional[Decimal] = None
    min_stay: int
    max_stay: Optional[int] = None
    max_guests: int
    status: str
    amenities: List[str]
    images: List[str]
    published_at: Optional[datetime] = None
    created_at: datetime


class PropertySummary(BaseSchema):
    id: uuid.UUID
    title: str
    city: str
    address: Optional[str] = None
    images: List[str] = Field(default_factory=list)


class FavoriteResponse(BaseSchema):
    property: PropertyResponse
    saved_at: datetime


class AvailabilityResponse(BaseSchema):
    available: bool
    nights: int
    total_amount: Decimal
    reasons: List[str] = Field(default_factory=list)
    conflicts: List[Dict[str, Any]] = Field(default_factory=list)


# ── Booking ───────────────────────────────────────────────────

class BookingCreateRequest(BaseSchema):
    property_id: uuid.UUID
    start_date: datetime
    end_date: datetime
    guest_count: int = Field(1, ge=1, le=100)
    guest_name: Optional[str] = Field(None, max_length=255)
    guest_email: Optional[EmailStr] = None
    guest_phone: Optional[str] = Field(None, max_length=20)
    special_requests: Optional[str] = Field(None, max_length=2000)


class BookingCancelRequest(BaseSchema):
    reason: Optional[str] = Field(None, max_length=500)


class BookingResponse(BaseSchema):
    id: uuid.UUID
    booking_number: str
    property_id: uuid.UUID
    user_id: uuid.UUID
    start_date: datetime
    end_date: datetime
    total_days: int
    guest_count: int
    guest_name: str
    guest_email: str
    guest_phone: Optional[str] = None
    special_requests: Optional[str] = None
    status: str
    payment_status: str
    cleaning_fee: Optional[Decimal] = None
    service_fee: Optional[Decimal] = None
    total_amount: Decimal
    payment_id: Optional[uuid.UUID] = None
    confirmed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None
    created_at: datetime
    property: Optional[PropertySummary] = None
    guest: Optional[UserSummary] = None


# ── Payment ───────────────────────────────────────────────────

class PaymentCreateRequest(BaseSchema):
    booking_id: uuid.UUID
    amount: Decimal = Field(..., gt=0)
    payment_method: str = Field("card", max_length=50)


class PaymentCreateResponse(BaseSchema):
    payment_id: uuid.UUID
    gateway_payment_id: str
    client_secret: Optional[str] = None
    amount: Decimal
    currency: str


class PaymentCancelRequest(BaseSchema):
    payment_id: Optional[uuid.UUID] = None
    booking_id: Optional[uuid.UUID] = None

    @model_validator(mode="after")
    def one_of(self):
        if not self.payment_id and not self.booking_id:
            raise ValueError("payment_id or booking_id is required")
        return self


class PaymentResponse(BaseSchema):
    id: uuid.UUID
    booking_id: uuid.UUID
    gateway_payment_id: Optional[str] = None
    amount: Decimal
    currency: str
    payment_method: str
    status: str
    failure_reason: Optional[str] = None
    completed_at: Optional[datetime] = None
    created_at: datetime


# ── Notification ──────────────────────────────────────────────

class NotificationResponse(BaseSchema):
    id: uuid.UUID
    title: str
    message: str
    type: str
    related_id: Optional[str] = None
    is_read: bool
    important: bool
    created_at: datetime


class NotificationCreateRequest(BaseSchema):
    user_id: uuid.UUID
    title: str = Field(..., min_length=1, max_length=255)
    message: str = Field(..., min_length=1)
    type: str = Field("SYSTEM", pattern=r"^(BOOKING|PAYMENT|PROPERTY|SYSTEM)$")
    related_id: Optional[str] = Field(None, max_length=64)
    important: bool = False


class NotificationUpdateRequest(BaseSchema):
    is_read: Optional[bool] = None
    important: Optional[bool] = None


class NotificationIdsRequest(BaseSchema):
    ids: Optional[List[uuid.UUID]] = None


class NotificationDeleteRequest(BaseSchema):
    ids: List[uuid.UUID] = Field(..., min_length=1)


# ── Admin ─────────────────────────────────────────────────────

class AgentVerifyRequest(BaseSchema):
    verified: bool
    verification_notes: Optional[str] = Field(None, max_length=2000)


class AuditLogResponse(BaseSchema):
    id: uuid.UUID
    actor_id: Optional[uuid.UUID] = None
    action: str
    entity_type: str
    entity_id: str
    old_values: Optional[Any] = None
    new_values: Optional[Any] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    created_at: datetime

    @field_validator("old_values", "new_values", mode="before")
    @classmethod
    def decode_snapshot(cls, value):
        if isinstance(value, str):
            try:
                return json.loads(value)
            except ValueError:
                return value
        return value


TokenResponse.model_rebuild()
