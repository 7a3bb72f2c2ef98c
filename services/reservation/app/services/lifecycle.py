"""Booking Lifecycle: status transitions after a booking exists.

Transitions are compare-and-set on the current status, so two admins acting
on the same booking cannot both win. Entering ``rejected`` or ``cancelled``
releases the booking's slots and runs the waitlist cascade in the same
transaction; events and notifications go out only after commit.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Callable, List, Optional
from uuid import UUID
from sqlalchemy.orm import Session
from app.models.booking import Booking, BookingEvent, BookingStatus, DepositStatus
from app.models.tenant import Customer, Tenant
from app.models.waitlist import WaitlistEntry
from app.services import slot_store, waitlist
from app.services.errors import BookingNotFound, InvalidTransition, ValidationFailed
from app.services.payment_verifier import PaymentVerifier
from app.services.pricing import ZERO, round2, to_decimal
from shared import EventPublisher, NotificationDispatcher

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS = {
    BookingStatus.PENDING: {BookingStatus.CONFIRMED, BookingStatus.REJECTED},
    BookingStatus.CONFIRMED: {BookingStatus.COMPLETED, BookingStatus.CANCELLED},
}

NO_SHOW_STATES = {BookingStatus.CONFIRMED, BookingStatus.COMPLETED}

REMINDER_CHANNELS = {
    "email_24h": Booking.reminder_24h_sent,
    "sms_24h": Booking.sms_24h_sent,
}


@dataclass
class StatusChange:
    booking: Booking
    previous_status: str
    released_slot_ids: List[UUID]
    notified_entry: Optional[WaitlistEntry] = None


def booking_view(booking: Booking) -> dict:
    return {
        "booking_id": str(booking.id),
        "status": booking.status,
        "customer_name": booking.customer_name,
        "customer_email": booking.customer_email,
        "customer_phone": booking.customer_phone,
        "service_names": booking.service_names,
        "date": booking.date.isoformat(),
        "start_time": booking.start_time.strftime("%H:%M"),
        "end_time": booking.end_time.strftime("%H:%M"),
        "total_price": str(round2(booking.total_price)),
        "deposit_amount": str(round2(booking.deposit_amount)),
    }


def publish_event(
    publisher: Optional[EventPublisher],
    event_type: str,
    payload: dict,
    *,
    tenant_id: UUID,
) -> None:
    if not publisher:
        return
    publisher.publish(event_type, payload, metadata={"tenant_id": str(tenant_id)})


def record_event(db: Session, booking: Booking, event_type: str, payload: dict) -> None:
    db.add(
        BookingEvent(
            booking_id=booking.id,
            tenant_id=booking.tenant_id,
            event_type=event_type,
            payload=payload,
        )
    )


def notify_waitlist_opening(
    notifier: Optional[NotificationDispatcher],
    entry: WaitlistEntry,
    tenant: Tenant,
) -> None:
    if not notifier:
        return
    try:
        notifier.notify_waitlist_opening(waitlist.entry_view(entry), tenant.public_view())
    except Exception:
        logger.exception("Waitlist entry %s notified but the opening notification failed", entry.id)


def get_booking(db: Session, tenant_id: UUID, booking_id: UUID) -> Booking:
    booking = (
        db.query(Booking)
        .filter(Booking.tenant_id == tenant_id)
        .filter(Booking.id == booking_id)
        .first()
    )
    if not booking:
        raise BookingNotFound("Booking not found")
    return booking


def _compare_and_set_status(db: Session, booking: Booking, expected: str, new_status: str, **values) -> None:
    updates = {Booking.status: new_status}
    updates.update({getattr(Booking, name): value for name, value in values.items()})
    updated = (
        db.query(Booking)
        .filter(Booking.tenant_id == booking.tenant_id)
        .filter(Booking.id == booking.id)
        .filter(Booking.status == expected)
        .update(updates, synchronize_session=False)
    )
    if updated != 1:
        raise InvalidTransition(f"Booking status changed concurrently from '{expected}'")


def _slot_ids(booking: Booking) -> List[UUID]:
    return [UUID(str(value)) for value in (booking.slot_ids or [])]


def change_status(
    db: Session,
    tenant: Tenant,
    booking_id: UUID,
    new_status: str,
    *,
    now: datetime,
    reason: Optional[str] = None,
    hold_hours: int = 4,
    publisher: Optional[EventPublisher] = None,
    notifier: Optional[NotificationDispatcher] = None,
) -> StatusChange:
    booking = get_booking(db, tenant.id, booking_id)
    previous = booking.status
    if new_status not in ALLOWED_TRANSITIONS.get(previous, set()):
        raise InvalidTransition(f"Cannot move booking from '{previous}' to '{new_status}'")

    try:
        _compare_and_set_status(db, booking, previous, new_status, status_reason=reason)

        released: List[UUID] = []
        notified = None
        if new_status in BookingStatus.RELEASING:
            released = _slot_ids(booking)
            slot_store.release(db, tenant.id, released)
            notified = waitlist.cascade_for_date(db, tenant.id, booking.date, now=now, hold_hours=hold_hours)

        record_event(db, booking, "booking.status_changed", {"from": previous, "to": new_status, "reason": reason})
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(booking)

    publish_event(
        publisher,
        "booking.status_changed",
        {"booking_id": str(booking.id), "from": previous, "status": new_status, "reason": reason},
        tenant_id=tenant.id,
    )
    if released:
        publish_event(
            publisher,
            "slots.released",
            {"booking_id": str(booking.id), "date": booking.date.isoformat(), "slot_ids": [str(s) for s in released]},
            tenant_id=tenant.id,
        )
    if notified is not None:
        publish_event(publisher, "waitlist.notified", waitlist.entry_view(notified), tenant_id=tenant.id)
        notify_waitlist_opening(notifier, notified, tenant)

    return StatusChange(booking=booking, previous_status=previous, released_slot_ids=released, notified_entry=notified)


def _stripe_customer_id(db: Session, booking: Booking) -> Optional[str]:
    customer = (
        db.query(Customer)
        .filter(Customer.tenant_id == booking.tenant_id)
        .filter(Customer.email == booking.customer_email)
        .first()
    )
    return customer.stripe_customer_id if customer else None


def amount_due_on_completion(booking: Booking, tip_amount) -> Decimal:
    paid = to_decimal(booking.deposit_amount) if booking.deposit_status == DepositStatus.PAID else ZERO
    return round2(max(ZERO, to_decimal(booking.total_price) - paid + to_decimal(tip_amount)))


def _charge_after_commit(
    db: Session,
    tenant: Tenant,
    booking: Booking,
    revert: Callable[[], None],
    *,
    verifier: PaymentVerifier,
    payment_method_id: str,
    amount: Decimal,
    charge_type: str,
) -> str:
    """Charge a saved card for a state change that is already committed.

    When the charge fails, ``revert`` undoes the state change in a new
    transaction and the payment error is re-raised.
    """
    try:
        intent_id = verifier.charge_saved_card(
            tenant,
            booking.customer_email,
            payment_method_id,
            amount,
            booking_id=str(booking.id),
            charge_type=charge_type,
            stripe_customer_id=_stripe_customer_id(db, booking),
        )
    except Exception:
        logger.warning("%s failed for booking %s, reverting", charge_type, booking.id)
        try:
            revert()
            db.commit()
        except InvalidTransition:
            db.rollback()
            logger.error("Booking %s changed during its %s and was not reverted", booking.id, charge_type)
        raise
    record_event(
        db,
        booking,
        "booking.charged",
        {"charge_type": charge_type, "amount": str(amount), "payment_intent_id": intent_id},
    )
    db.commit()
    return intent_id


def complete_booking(
    db: Session,
    tenant: Tenant,
    booking_id: UUID,
    *,
    tip_amount=None,
    payment_method_id: Optional[str] = None,
    verifier: Optional[PaymentVerifier] = None,
    publisher: Optional[EventPublisher] = None,
) -> Booking:
    """Move a confirmed booking to ``completed``, recording the tip and charging a saved card if given.

    The card is charged only after the completion is committed; a failed
    charge puts the booking back to ``confirmed`` with its previous tip.
    """
    booking = get_booking(db, tenant.id, booking_id)
    if booking.status != BookingStatus.CONFIRMED:
        raise InvalidTransition(f"Cannot complete a booking in status '{booking.status}'")
    tip = round2(tip_amount or 0)
    if tip < 0:
        raise ValidationFailed("Tip amount cannot be negative")
    if payment_method_id and verifier is None:
        raise ValidationFailed("Card payments are not available")
    previous_tip = booking.tip_amount

    try:
        _compare_and_set_status(db, booking, BookingStatus.CONFIRMED, BookingStatus.COMPLETED, tip_amount=tip)
        record_event(db, booking, "booking.completed", {"tip_amount": str(tip)})
        db.commit()
    except Exception:
        db.rollback()
        raise

    def revert_completion() -> None:
        _compare_and_set_status(
            db, booking, BookingStatus.COMPLETED, BookingStatus.CONFIRMED, tip_amount=previous_tip
        )
        record_event(db, booking, "booking.completion_reverted", {"reason": "charge_failed"})

    charged_intent = None
    if payment_method_id:
        amount = amount_due_on_completion(booking, tip)
        if amount > 0:
            charged_intent = _charge_after_commit(
                db,
                tenant,
                booking,
                revert_completion,
                verifier=verifier,
                payment_method_id=payment_method_id,
                amount=amount,
                charge_type="completion_charge",
            )
    db.refresh(booking)

    publish_event(
        publisher,
        "booking.completed",
        {"booking_id": str(booking.id), "tip_amount": str(tip), "charged": charged_intent is not None},
        tenant_id=tenant.id,
    )
    return booking


def _set_noshow_flag(db: Session, booking: Booking, value: bool) -> None:
    updated = (
        db.query(Booking)
        .filter(Booking.tenant_id == booking.tenant_id)
        .filter(Booking.id == booking.id)
        .filter(Booking.status.in_(NO_SHOW_STATES))
        .filter(Booking.marked_noshow.is_(not value))
        .update({Booking.marked_noshow: value}, synchronize_session=False)
    )
    if updated != 1:
        if value:
            raise InvalidTransition("Booking is already marked as no-show")
        raise InvalidTransition("Booking no-show flag changed concurrently")


def mark_no_show(
    db: Session,
    tenant: Tenant,
    booking_id: UUID,
    *,
    charge_amount=None,
    payment_method_id: Optional[str] = None,
    verifier: Optional[PaymentVerifier] = None,
    publisher: Optional[EventPublisher] = None,
) -> Booking:
    booking = get_booking(db, tenant.id, booking_id)
    if booking.status not in NO_SHOW_STATES:
        raise InvalidTransition(f"Cannot mark a booking in status '{booking.status}' as no-show")

    charge = round2(charge_amount or 0)
    wants_charge = charge > 0 and bool(payment_method_id)
    if wants_charge and booking.status != BookingStatus.COMPLETED:
        raise InvalidTransition("No-show fees can only be charged on completed bookings")
    if wants_charge and verifier is None:
        raise ValidationFailed("Card payments are not available")

    try:
        _set_noshow_flag(db, booking, True)
        record_event(
            db,
            booking,
            "booking.noshow_marked",
            {"charge_amount": str(charge) if wants_charge else None},
        )
        db.commit()
    except Exception:
        db.rollback()
        raise

    def revert_noshow() -> None:
        _set_noshow_flag(db, booking, False)
        record_event(db, booking, "booking.noshow_reverted", {"reason": "charge_failed"})

    charged_intent = None
    if wants_charge:
        charged_intent = _charge_after_commit(
            db,
            tenant,
            booking,
            revert_noshow,
            verifier=verifier,
            payment_method_id=payment_method_id,
            amount=charge,
            charge_type="noshow_charge",
        )
    db.refresh(booking)

    publish_event(
        publisher,
        "booking.noshow_marked",
        {"booking_id": str(booking.id), "charged": charged_intent is not None},
        tenant_id=tenant.id,
    )
    return booking


def mark_reminder_sent(db: Session, tenant_id: UUID, booking_id: UUID, channel: str) -> bool:
    """Flip a reminder flag false -> true. Returns False when it was already set."""
    column = REMINDER_CHANNELS.get(channel)
    if column is None:
        raise ValidationFailed(f"Unknown reminder channel '{channel}'")
    get_booking(db, tenant_id, booking_id)
    updated = (
        db.query(Booking)
        .filter(Booking.tenant_id == tenant_id)
        .filter(Booking.id == booking_id)
        .filter(column.is_(False))
        .update({column: True}, synchronize_session=False)
    )
    db.commit()
    return updated == 1
