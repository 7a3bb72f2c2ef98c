"""Handlers for events emitted by the external scheduled workers."""

import logging
from datetime import datetime, timezone
from typing import Any, Dict
from uuid import UUID
from sqlalchemy.orm import Session
from app.core.database import SessionLocal
from app.services import lifecycle, waitlist
from app.services.errors import ReservationError

logger = logging.getLogger(__name__)


async def handle_reminder_sent(event_type: str, payload: Dict[str, Any]) -> None:
    """
    Handler for ``reminder.sent``.
    Sets the matching one-way reminder flag on the booking.
    """
    booking_id = payload.get("booking_id")
    tenant_id = payload.get("tenant_id")
    channel = payload.get("channel", "email_24h")

    if not booking_id or not tenant_id:
        logger.warning("reminder.sent event without booking_id/tenant_id")
        return

    db: Session = SessionLocal()
    try:
        changed = lifecycle.mark_reminder_sent(db, UUID(str(tenant_id)), UUID(str(booking_id)), channel)
        logger.info("Reminder %s for booking_id=%s recorded (changed=%s)", channel, booking_id, changed)
    except ReservationError as e:
        # Unknown booking or channel: nothing to retry.
        db.rollback()
        logger.warning("Ignoring reminder.sent for booking_id=%s: %s", booking_id, e.message)
    except Exception as e:
        db.rollback()
        logger.error(f"Error processing reminder.sent for booking_id={booking_id}: {e}")
        raise
    finally:
        db.close()


async def handle_waitlist_expire_requested(event_type: str, payload: Dict[str, Any]) -> None:
    """
    Handler for ``waitlist.expire_requested``.
    Expires notified entries whose hold has passed; optionally scoped to a tenant.
    """
    tenant_id = payload.get("tenant_id")
    raw_now = payload.get("now")
    now = datetime.fromisoformat(raw_now.replace("Z", "+00:00")) if raw_now else datetime.now(timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)

    db: Session = SessionLocal()
    try:
        expired = waitlist.expire_stale_notifications(
            db,
            now=now,
            tenant_id=UUID(str(tenant_id)) if tenant_id else None,
        )
        logger.info(f"Expired {expired} waitlist notifications")
    except Exception as e:
        db.rollback()
        logger.error(f"Error processing waitlist.expire_requested: {e}")
        raise
    finally:
        db.close()
