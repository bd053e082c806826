"""
services/payment/router.py
Stripe payment integration: payment intent creation, signed webhook,
cancel/success landing payloads, and payment history.
"""

import json
import logging
from decimal import Decimal
from typing import Optional
from uuid import UUID

import stripe
from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from config.settings import settings
from services.booking.service import get_booking_or_404, get_property_or_404
from services.payment.webhook import dispatch_event
from shared.middleware.auth import get_current_user
from shared.models.models import (
    Booking,
    BookingPaymentStatus,
    BookingStatus,
    Payment,
    PaymentStatus,
    Property,
    User,
    UserRole,
)
from shared.schemas.schemas import (
    MessageResponse,
    PaymentCancelRequest,
    PaymentCreateRequest,
    PaymentCreateResponse,
    PaymentResponse,
)
from shared.utils.exceptions import (
    Forbidden,
    GatewayError,
    InternalError,
    NotFound,
    ValidationError,
)
from shared.utils.permissions import ensure_can
from shared.utils.security import verify_webhook_signature

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/payments", tags=["Payments"])

CANCEL_INSTRUCTIONS = [
    "Your payment process was cancelled",
    "No charges were made to your account",
    "You can restart the payment process from your bookings page",
    "If you need assistance, please contact support",
]


def _to_minor_units(amount: Decimal) -> int:
    return int((Decimal(amount) * 100).to_integral_value())


async def _payment_summary(db: AsyncSession, payment: Payment) -> dict:
    booking = await db.get(Booking, payment.booking_id)
    prop = await db.get(Property, booking.property_id) if booking else None
    return {
        "id": str(payment.id),
        "amount": str(payment.amount),
        "currency": payment.currency,
        "status": PaymentStatus(payment.status).value,
        "booking_id": str(payment.booking_id),
        "booking": {
            "id": str(booking.id),
            "booking_number": booking.booking_number,
            "total_amount": str(booking.total_amount),
            "guest_name": booking.guest_name,
            "property": {"title": prop.title, "images": prop.images} if prop else None,
        } if booking else None,
    }


# ── Create Payment ────────────────────────────────────────────

@router.post("", response_model=PaymentCreateResponse, status_code=status.HTTP_201_CREATED)
async def create_payment(
    data: PaymentCreateRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """
    Start a payment attempt for a booking.
    Creates a Stripe PaymentIntent; the client confirms it with client_secret.
    Final status arrives through the webhook.
    """
    booking = await get_booking_or_404(db, data.booking_id)
    prop = await get_property_or_404(db, booking.property_id)
    ensure_can(current_user, "pay", booking, prop)

    if booking.status not in (BookingStatus.PENDING, BookingStatus.CONFIRMED):
        raise ValidationError(
            f"Cannot pay for booking in '{BookingStatus(booking.status).value}' status"
        )
    if booking.payment_status == BookingPaymentStatus.PAID:
        raise ValidationError("Booking is already paid")
    if Decimal(data.amount) != Decimal(booking.total_amount):
        raise ValidationError(
            "Payment amount does not match booking total",
            extra={"expected": str(booking.total_amount)},
        )
    if not settings.STRIPE_SECRET_KEY:
        raise GatewayError("Payment gateway is not configured")

    stripe.api_key = settings.STRIPE_SECRET_KEY
    try:
        intent = stripe.PaymentIntent.create(
            amount=_to_minor_units(booking.total_amount),
            currency=settings.PAYMENT_CURRENCY,
            metadata={
                "booking_id": str(booking.id),
                "booking_number": booking.booking_number,
                "user_id": str(current_user.id),
            },
        )
    except stripe.StripeError as e:
        logger.error(f"PaymentIntent creation failed for booking {booking.id}: {e}")
        raise GatewayError("Payment gateway error")

    payment = Payment(
        booking_id=booking.id,
        user_id=booking.user_id,
        gateway_payment_id=intent["id"],
        amount=booking.total_amount,
        currency=settings.PAYMENT_CURRENCY,
        payment_method=data.payment_method,
        status=PaymentStatus.PENDING,
    )
    db.add(payment)
    await db.commit()

    logger.info(f"Payment {payment.id} ({intent['id']}) created for booking {booking.id}")
    return PaymentCreateResponse(
        payment_id=payment.id,
        gateway_payment_id=intent["id"],
        client_secret=intent.get("client_secret"),
        amount=payment.amount,
        currency=payment.currency,
    )


# ── Gateway Webhook ───────────────────────────────────────────

@router.post("/webhook", include_in_schema=False)
async def payment_webhook(request: Request, db: AsyncSession = Depends(get_db)):
    """
    Stripe webhook handler. Verifies the Stripe-Signature header, then dispatches:
    payment_intent.succeeded, payment_intent.payment_failed, payment_intent.canceled.
    Verified events are always acknowledged, even if nothing was updated.
    """
    body = await request.body()

    if settings.PAYMENT_WEBHOOK_SECRET:
        signature = request.headers.get("Stripe-Signature", "")
        try:
            verify_webhook_signature(body, signature)
        except (stripe.SignatureVerificationError, UnicodeDecodeError):
            logger.warning("Rejected webhook with invalid signature")
            raise ValidationError("Invalid webhook signature")
    elif settings.is_development:
        logger.warning("PAYMENT_WEBHOOK_SECRET not set; skipping signature verification")
    else:
        logger.error("PAYMENT_WEBHOOK_SECRET not set; refusing webhook")
        raise InternalError("Webhook verification is not configured")

    try:
        event = json.loads(body)
    except ValueError:
        raise ValidationError("Invalid webhook payload")
    event_type = event.get("type") if isinstance(event, dict) else None
    if not isinstance(event_type, str) or not event_type:
        raise ValidationError("Invalid webhook payload")

    await dispatch_event(db, event)
    return {"received": True}


# ── Cancel / Success Landing ──────────────────────────────────

@router.get("/cancel")
async def payment_cancelled_info(
    payment_intent: Optional[str] = Query(None),
    booking_id: Optional[UUID] = Query(None, alias="bookingId"),
    db: AsyncSession = Depends(get_db),
):
    """Informational payload for the gateway's cancel redirect."""
    if not payment_intent and not booking_id:
        raise ValidationError("payment_intent or bookingId parameter is required")

    if payment_intent:
        query = select(Payment).where(Payment.gateway_payment_id == payment_intent)
    else:
        query = (
            select(Payment)
            .where(Payment.booking_id == booking_id)
            .order_by(Payment.created_at.desc())
        )
    payment = (await db.execute(query.limit(1))).scalar_one_or_none()

    data = {"message": "Payment was cancelled", "instructions": CANCEL_INSTRUCTIONS}
    if payment:
        data["payment"] = {
            "id": str(payment.id),
            "amount": str(payment.amount),
            "status": PaymentStatus(payment.status).value,
            "booking_id": str(payment.booking_id),
        }
    return {"success": True, "data": data}


@router.post("/cancel", response_model=MessageResponse)
async def cancel_payment(
    data: PaymentCancelRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Cancel one pending payment, or every pending payment of a booking."""
    if data.payment_id:
        payment = await db.get(Payment, data.payment_id)
        if not payment:
            raise NotFound("Payment not found")
        ensure_can(current_user, "cancel", payment)
        if payment.status != PaymentStatus.PENDING:
            raise ValidationError(
                f"Cannot cancel payment in '{PaymentStatus(payment.status).value}' status"
            )
        payment.status = PaymentStatus.CANCELLED
        count = 1
    else:
        booking = await get_booking_or_404(db, data.booking_id)
        if current_user.role != UserRole.ADMIN and booking.user_id != current_user.id:
            raise Forbidden("Only the guest can cancel payments for this booking")
        result = await db.execute(
            update(Payment)
            .where(Payment.booking_id == booking.id, Payment.status == PaymentStatus.PENDING)
            .values(status=PaymentStatus.CANCELLED)
            .execution_options(synchronize_session="fetch")
        )
        count = result.rowcount or 0

    await db.commit()
    return MessageResponse(message=f"Cancelled {count} payment(s)")


@router.get("/success")
async def payment_success_info(
    payment_intent: str = Query(...),
    db: AsyncSession = Depends(get_db),
):
    """Informational payload for the gateway's success redirect."""
    result = await db.execute(
        select(Payment).where(Payment.gateway_payment_id == payment_intent)
    )
    payment = result.scalar_one_or_none()
    if not payment:
        raise NotFound("Payment not found")
    return {
        "success": True,
        "data": {
            "message": "Payment completed" if payment.status == PaymentStatus.COMPLETED
            else "Payment is being processed",
            "payment": await _payment_summary(db, payment),
        },
    }


# ── Read Endpoints ────────────────────────────────────────────

@router.get("/me/history", response_model=list[PaymentResponse])
async def my_payment_history(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Get authenticated user's payment history."""
    result = await db.execute(
        select(Payment)
        .where(Payment.user_id == current_user.id)
        .order_by(Payment.created_at.desc())
        .limit(50)
    )
    return [PaymentResponse.model_validate(p) for p in result.scalars()]
