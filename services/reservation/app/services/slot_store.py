"""Slot Store: availability queries and exclusive claim/release of slot runs.

All writes are conditional UPDATEs scoped by tenant. A claim that matches
fewer rows than requested raises ``SlotConflict``; the caller owns the
transaction and must roll it back, which discards the rows that did match.
"""

import logging
import math
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from typing import List, Optional, Sequence
from uuid import UUID
from sqlalchemy.orm import Session
from app.models.slot import TimeSlot
from app.services.errors import SlotConflict

logger = logging.getLogger(__name__)


@dataclass
class SlotRun:
    date: date
    start_time: time
    end_time: time
    slot_ids: List[UUID] = field(default_factory=list)


def _minutes_between(start: time, end: time) -> int:
    anchor = date(2000, 1, 1)
    delta = datetime.combine(anchor, end) - datetime.combine(anchor, start)
    return int(delta.total_seconds() // 60)


def add_minutes(value: time, minutes: int) -> time:
    anchor = datetime.combine(date(2000, 1, 1), value) + timedelta(minutes=minutes)
    return anchor.time()


def slots_needed(total_duration: int, slot_minutes: int) -> int:
    if total_duration <= 0:
        raise ValueError("total_duration must be positive")
    return max(1, math.ceil(total_duration / slot_minutes))


def slot_minutes_for(db: Session, tenant_id: UUID, day: date, default: int = 30) -> int:
    """Granularity of the tenant's slots on ``day``, inferred from its first slot."""
    sample = (
        db.query(TimeSlot)
        .filter(TimeSlot.tenant_id == tenant_id)
        .filter(TimeSlot.date == day)
        .order_by(TimeSlot.start_time.asc())
        .first()
    )
    if not sample:
        return default
    minutes = _minutes_between(sample.start_time, sample.end_time)
    return minutes if minutes > 0 else default


def list_available(db: Session, tenant_id: UUID, day: date) -> List[TimeSlot]:
    return (
        db.query(TimeSlot)
        .filter(TimeSlot.tenant_id == tenant_id)
        .filter(TimeSlot.date == day)
        .filter(TimeSlot.is_available.is_(True))
        .order_by(TimeSlot.start_time.asc())
        .all()
    )


def _is_contiguous(run: Sequence[TimeSlot]) -> bool:
    return all(run[i].end_time == run[i + 1].start_time for i in range(len(run) - 1))


def find_contiguous(
    db: Session,
    tenant_id: UUID,
    day: date,
    start_time: time,
    needed: int,
) -> Optional[SlotRun]:
    """Return the run of ``needed`` available slots starting exactly at ``start_time``.

    ``None`` when the first slot is missing or taken, when fewer slots remain,
    or when any two consecutive slots leave a gap.
    """
    candidates = (
        db.query(TimeSlot)
        .filter(TimeSlot.tenant_id == tenant_id)
        .filter(TimeSlot.date == day)
        .filter(TimeSlot.start_time >= start_time)
        .filter(TimeSlot.is_available.is_(True))
        .order_by(TimeSlot.start_time.asc())
        .limit(needed)
        .all()
    )
    if len(candidates) < needed or candidates[0].start_time != start_time:
        return None
    if not _is_contiguous(candidates):
        return None
    return SlotRun(
        date=day,
        start_time=candidates[0].start_time,
        end_time=candidates[-1].end_time,
        slot_ids=[slot.id for slot in candidates],
    )


def claim(db: Session, tenant_id: UUID, slot_ids: Sequence[UUID]) -> None:
    """Flip every listed slot from available to unavailable, or raise ``SlotConflict``."""
    if not slot_ids:
        raise SlotConflict("No slots to claim")
    claimed = (
        db.query(TimeSlot)
        .filter(TimeSlot.tenant_id == tenant_id)
        .filter(TimeSlot.id.in_(list(slot_ids)))
        .filter(TimeSlot.is_available.is_(True))
        .update({TimeSlot.is_available: False}, synchronize_session=False)
    )
    if claimed != len(slot_ids):
        logger.warning(
            "Slot claim conflict for tenant_id=%s: claimed %s of %s slots",
            tenant_id,
            claimed,
            len(slot_ids),
        )
        raise SlotConflict("Selected time is no longer available")


def release(db: Session, tenant_id: UUID, slot_ids: Sequence[UUID]) -> int:
    if not slot_ids:
        return 0
    return (
        db.query(TimeSlot)
        .filter(TimeSlot.tenant_id == tenant_id)
        .filter(TimeSlot.id.in_(list(slot_ids)))
        .update({TimeSlot.is_available: True}, synchronize_session=False)
    )


def next_available(
    db: Session,
    tenant_id: UUID,
    duration_minutes: int,
    from_date: date,
    *,
    today: date,
    horizon_days: int = 30,
    default_slot_minutes: int = 30,
) -> Optional[SlotRun]:
    """Scan forward day by day for the earliest contiguous run covering ``duration_minutes``."""
    day = max(from_date, today)
    for offset in range(horizon_days):
        current = day + timedelta(days=offset)
        available = list_available(db, tenant_id, current)
        if not available:
            continue
        minutes = slot_minutes_for(db, tenant_id, current, default_slot_minutes)
        needed = slots_needed(duration_minutes, minutes)
        for index in range(len(available) - needed + 1):
            run = available[index:index + needed]
            if _is_contiguous(run):
                return SlotRun(
                    date=current,
                    start_time=run[0].start_time,
                    end_time=run[-1].end_time,
                    slot_ids=[slot.id for slot in run],
                )
    return None
