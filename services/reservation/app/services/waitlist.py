"""Waitlist Cascade and waitlist entry management."""

import logging
from datetime import date, datetime, time, timedelta
from typing import List, Optional
from uuid import UUID
from sqlalchemy import func
from sqlalchemy.orm import Session
from app.models.waitlist import WaitlistEntry, WaitlistStatus
from app.services.errors import DuplicateWaitlistEntry, InvalidTransition, WaitlistEntryNotFound

logger = logging.getLogger(__name__)


def entry_view(entry: WaitlistEntry) -> dict:
    return {
        "id": str(entry.id),
        "customer_name": entry.customer_name,
        "customer_email": entry.customer_email,
        "customer_phone": entry.customer_phone,
        "date": entry.date.isoformat(),
        "preferred_start": entry.preferred_start.strftime("%H:%M") if entry.preferred_start else None,
        "preferred_end": entry.preferred_end.strftime("%H:%M") if entry.preferred_end else None,
        "status": entry.status,
        "expires_at": entry.expires_at.isoformat() if entry.expires_at else None,
    }


def _mark_notified(db: Session, tenant_id: UUID, entry_id: UUID, now: datetime, hold_hours: int) -> bool:
    updated = (
        db.query(WaitlistEntry)
        .filter(WaitlistEntry.tenant_id == tenant_id)
        .filter(WaitlistEntry.id == entry_id)
        .filter(WaitlistEntry.status == WaitlistStatus.WAITING)
        .update(
            {
                WaitlistEntry.status: WaitlistStatus.NOTIFIED,
                WaitlistEntry.notified_at: now,
                WaitlistEntry.expires_at: now + timedelta(hours=hold_hours),
            },
            synchronize_session=False,
        )
    )
    return updated == 1


def _get_entry(db: Session, tenant_id: UUID, entry_id: UUID) -> WaitlistEntry:
    entry = (
        db.query(WaitlistEntry)
        .filter(WaitlistEntry.tenant_id == tenant_id)
        .filter(WaitlistEntry.id == entry_id)
        .first()
    )
    if not entry:
        raise WaitlistEntryNotFound("Waitlist entry not found")
    return entry


def cascade_for_date(
    db: Session,
    tenant_id: UUID,
    day: date,
    *,
    now: datetime,
    hold_hours: int = 4,
) -> Optional[WaitlistEntry]:
    """Notify the earliest waiting entry for ``day``. Does not commit.

    Later entries stay ``waiting``. Returns the notified entry, or ``None``
    when nobody is queued.
    """
    candidates = (
        db.query(WaitlistEntry.id)
        .filter(WaitlistEntry.tenant_id == tenant_id)
        .filter(WaitlistEntry.date == day)
        .filter(WaitlistEntry.status == WaitlistStatus.WAITING)
        .order_by(WaitlistEntry.created_at.asc(), WaitlistEntry.id.asc())
        .all()
    )
    for (entry_id,) in candidates:
        if _mark_notified(db, tenant_id, entry_id, now, hold_hours):
            entry = _get_entry(db, tenant_id, entry_id)
            db.refresh(entry)
            logger.info("Waitlist entry %s notified for tenant_id=%s date=%s", entry_id, tenant_id, day)
            return entry
    return None


def join_waitlist(
    db: Session,
    tenant_id: UUID,
    *,
    customer_name: str,
    customer_email: str,
    day: date,
    customer_phone: Optional[str] = None,
    service_id: Optional[UUID] = None,
    preferred_start: Optional[time] = None,
    preferred_end: Optional[time] = None,
    notes: Optional[str] = None,
) -> WaitlistEntry:
    email = customer_email.strip().lower()
    duplicate = (
        db.query(WaitlistEntry.id)
        .filter(WaitlistEntry.tenant_id == tenant_id)
        .filter(WaitlistEntry.date == day)
        .filter(func.lower(WaitlistEntry.customer_email) == email)
        .filter(WaitlistEntry.status.in_(WaitlistStatus.OPEN))
        .first()
    )
    if duplicate:
        raise DuplicateWaitlistEntry("You are already on the waitlist for this date")

    entry = WaitlistEntry(
        tenant_id=tenant_id,
        customer_name=customer_name.strip(),
        customer_email=email,
        customer_phone=customer_phone,
        service_id=service_id,
        date=day,
        preferred_start=preferred_start,
        preferred_end=preferred_end,
        notes=notes,
        status=WaitlistStatus.WAITING,
    )
    db.add(entry)
    db.commit()
    db.refresh(entry)
    return entry


def list_entries(
    db: Session,
    tenant_id: UUID,
    status: Optional[str] = None,
    day: Optional[date] = None,
) -> List[WaitlistEntry]:
    query = db.query(WaitlistEntry).filter(WaitlistEntry.tenant_id == tenant_id)
    if status:
        query = query.filter(WaitlistEntry.status == status)
    if day:
        query = query.filter(WaitlistEntry.date == day)
    return query.order_by(WaitlistEntry.date.asc(), WaitlistEntry.created_at.asc()).all()


def notify_entry(
    db: Session,
    tenant_id: UUID,
    entry_id: UUID,
    *,
    now: datetime,
    hold_hours: int = 4,
) -> WaitlistEntry:
    """Manually notify one entry; only ``waiting`` entries qualify."""
    entry = _get_entry(db, tenant_id, entry_id)
    if not _mark_notified(db, tenant_id, entry_id, now, hold_hours):
        raise InvalidTransition(f"Cannot notify a waitlist entry in status '{entry.status}'")
    db.commit()
    db.refresh(entry)
    return entry


def cancel_entry(db: Session, tenant_id: UUID, entry_id: UUID) -> WaitlistEntry:
    entry = _get_entry(db, tenant_id, entry_id)
    updated = (
        db.query(WaitlistEntry)
        .filter(WaitlistEntry.tenant_id == tenant_id)
        .filter(WaitlistEntry.id == entry_id)
        .filter(WaitlistEntry.status.in_(WaitlistStatus.OPEN))
        .update({WaitlistEntry.status: WaitlistStatus.CANCELLED}, synchronize_session=False)
    )
    if updated != 1:
        raise InvalidTransition(f"Cannot cancel a waitlist entry in status '{entry.status}'")
    db.commit()
    db.refresh(entry)
    return entry


def expire_stale_notifications(db: Session, *, now: datetime, tenant_id: Optional[UUID] = None) -> int:
    """Move ``notified`` entries past their hold to ``expired``; nobody else is promoted."""
    query = (
        db.query(WaitlistEntry)
        .filter(WaitlistEntry.status == WaitlistStatus.NOTIFIED)
        .filter(WaitlistEntry.expires_at <= now)
    )
    if tenant_id:
        query = query.filter(WaitlistEntry.tenant_id == tenant_id)
    expired = query.update({WaitlistEntry.status: WaitlistStatus.EXPIRED}, synchronize_session=False)
    db.commit()
    if expired:
        logger.info("Expired %s stale waitlist notifications", expired)
    return expired
