"""
tasks/booking_tasks.py
Periodic booking maintenance.

complete_finished_bookings runs hourly from beat. It is idempotent: each
booking moves with a conditional UPDATE, so a second run (or a concurrent
manual completion) finds nothing left to do.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from services.audit.service import build_entry
from shared.models.models import Booking, BookingStatus
from tasks.base import DatabaseTask
from tasks.celery_app import celery_app

logger = logging.getLogger(__name__)


def _complete_finished_bookings(db: Session, now: Optional[datetime] = None) -> int:
    """Move CONFIRMED bookings whose end_date has passed to COMPLETED. Returns how many moved."""
    now = now or datetime.now(timezone.utc)
    candidates = db.execute(
        select(Booking.id).where(
            Booking.status == BookingStatus.CONFIRMED,
            Booking.end_date < now,
        )
    ).scalars().all()

    completed = 0
    for booking_id in candidates:
        result = db.execute(
            update(Booking)
            .where(Booking.id == booking_id, Booking.status == BookingStatus.CONFIRMED)
            .values(status=BookingStatus.COMPLETED, completed_at=now)
        )
        if result.rowcount != 1:
            continue
        db.add(build_entry(
            "AUTO_COMPLETE", "Booking", booking_id,
            old_values={"status": BookingStatus.CONFIRMED.value},
            new_values={"status": BookingStatus.COMPLETED.value, "completed_at": now.isoformat()},
        ))
        completed += 1

    db.commit()
    return completed


@celery_app.task(bind=True, base=DatabaseTask, max_retries=3, default_retry_delay=300)
def complete_finished_bookings(self):
    """Beat task: runs at the top of every hour."""
    db = self.get_session()
    try:
        count = _complete_finished_bookings(db)
        logger.info(f"Auto-completed {count} booking(s)")
        return count
    except Exception as e:
        db.rollback()
        logger.exception(f"complete_finished_bookings failed: {e}")
        raise self.retry(exc=e)
    finally:
        db.close()
