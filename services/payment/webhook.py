"""
services/payment/webhook.py
Payment gateway event dispatch.

Events are looked up in EVENT_HANDLERS by their `type`. Each handler runs in its
own SAVEPOINT; a failure is logged and rolled back without reaching the caller,
so the webhook is always acknowledged and the gateway never retries in a loop.
"""

import logging
from datetime import datetime, timezone
from typing import Awaitable, Callable

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from services.audit import service as audit
from services.notification import service as notifications
from shared.models.models import Booking, BookingPaymentStatus, Payment, PaymentStatus

logger = logging.getLogger(__name__)

Handler = Callable[[AsyncSession, dict], Awaitable[None]]
EVENT_HANDLERS: dict[str, Handler] = {}


def handles(event_type: str):
    def register(func: Handler) -> Handler:
        EVENT_HANDLERS[event_type] = func
        return func
    return register


async def _find_payment(db: AsyncSession, gateway_payment_id: str | None) -> Payment | None:
    if not gateway_payment_id:
        logger.warning("Webhook event without a payment intent id")
        return None
    result = await db.execute(
        select(Payment).where(Payment.gateway_payment_id == gateway_payment_id)
    )
    payment = result.scalar_one_or_none()
    if not payment:
        logger.warning(f"Payment not found for gateway payment id {gateway_payment_id}")
    return payment


# ── Handlers ──────────────────────────────────────────────────

@handles("payment_intent.succeeded")
async def handle_payment_succeeded(db: AsyncSession, intent: dict) -> None:
    payment = await _find_payment(db, intent.get("id"))
    if not payment:
        return
    if payment.status == PaymentStatus.COMPLETED:
        logger.info(f"Payment {payment.id} already completed, ignoring duplicate event")
        return

    # At most one COMPLETED payment per booking
    existing = await db.scalar(
        select(Payment.id).where(
            Payment.booking_id == payment.booking_id,
            Payment.status == PaymentStatus.COMPLETED,
            Payment.id != payment.id,
        )
    )
    if existing:
        logger.warning(
            f"Booking {payment.booking_id} already has completed payment {existing}; "
            f"not completing {payment.id}"
        )
        return

    previous = PaymentStatus(payment.status)
    payment.status = PaymentStatus.COMPLETED
    payment.completed_at = datetime.now(timezone.utc)

    booking = await db.get(Booking, payment.booking_id)
    if booking:
        booking.payment_status = BookingPaymentStatus.PAID
        booking.payment_id = payment.id

    await audit.record(
        db, "PAYMENT_COMPLETED", "Payment", payment.id,
        old_values={"status": previous.value},
        new_values={"status": PaymentStatus.COMPLETED.value, "gateway_payment_id": payment.gateway_payment_id},
    )

    if booking:
        await notifications.notify(
            db, booking.user_id,
            notifications.payment_received(payment.amount, payment.currency, booking.booking_number),
            related_id=booking.id,
        )
    logger.info(f"Payment {payment.id} completed for booking {payment.booking_id}")


@handles("payment_intent.payment_failed")
async def handle_payment_failed(db: AsyncSession, intent: dict) -> None:
    payment = await _find_payment(db, intent.get("id"))
    if not payment:
        return
    if payment.status == PaymentStatus.COMPLETED:
        logger.warning(f"Ignoring failure event for completed payment {payment.id}")
        return

    reason = (intent.get("last_payment_error") or {}).get("message")
    previous = PaymentStatus(payment.status)
    payment.status = PaymentStatus.FAILED
    payment.failure_reason = reason

    await audit.record(
        db, "PAYMENT_FAILED", "Payment", payment.id,
        old_values={"status": previous.value},
        new_values={"status": PaymentStatus.FAILED.value, "reason": reason},
    )

    booking = await db.get(Booking, payment.booking_id)
    if booking:
        await notifications.notify(
            db, booking.user_id,
            notifications.payment_failed(booking.booking_number, reason),
            related_id=booking.id,
        )
    logger.info(f"Payment {payment.id} failed: {reason}")


@handles("payment_intent.canceled")
async def handle_payment_canceled(db: AsyncSession, intent: dict) -> None:
    payment = await _find_payment(db, intent.get("id"))
    if not payment:
        return
    if payment.status == PaymentStatus.COMPLETED:
        logger.warning(f"Ignoring cancel event for completed payment {payment.id}")
        return

    previous = PaymentStatus(payment.status)
    payment.status = PaymentStatus.CANCELLED
    await audit.record(
        db, "PAYMENT_CANCELLED", "Payment", payment.id,
        old_values={"status": previous.value},
        new_values={"status": PaymentStatus.CANCELLED.value},
    )
    logger.info(f"Payment {payment.id} cancelled")


# ── Dispatch ──────────────────────────────────────────────────

async def dispatch_event(db: AsyncSession, event: dict) -> bool:
    """
    Route an event to its handler. Returns True if a handler ran to completion.
    Never raises: handler errors are logged and rolled back to the savepoint.
    """
    event_type = event.get("type")
    handler = EVENT_HANDLERS.get(event_type) if isinstance(event_type, str) else None
    if handler is None:
        logger.info(f"Ignoring unhandled webhook event type: {event_type}")
        return False

    data = event.get("data") or {}
    intent = data.get("object") if isinstance(data, dict) else None
    if not isinstance(intent, dict):
        logger.warning(f"Webhook event {event.get('id')} ({event_type}) has no data.object")
        return False

    try:
        async with db.begin_nested():
            await handler(db, intent)
        await db.commit()
    except Exception:
        logger.exception(f"Webhook handler for {event_type} failed (event {event.get('id')})")
        return False
    return True
