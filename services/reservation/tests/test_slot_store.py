from datetime import time, timedelta

import pytest

from app.core.database import SessionLocal
from app.models.slot import TimeSlot
from app.services import slot_store
from app.services.errors import SlotConflict
from conftest import BOOKING_DAY


def _available_ids(db, tenant_id, day=BOOKING_DAY):
    db.expire_all()
    return [slot.id for slot in slot_store.list_available(db, tenant_id, day)]


def test_slots_needed_rounds_up_to_whole_slots():
    assert slot_store.slots_needed(90, 30) == 3
    assert slot_store.slots_needed(45, 30) == 2
    assert slot_store.slots_needed(10, 60) == 1
    with pytest.raises(ValueError):
        slot_store.slots_needed(0, 30)


def test_slot_minutes_inferred_from_first_slot(db, seed, tenant):
    seed.slots(tenant, start="08:00", count=4, minutes=15)

    assert slot_store.slot_minutes_for(db, tenant.id, BOOKING_DAY) == 15
    assert slot_store.slot_minutes_for(db, tenant.id, BOOKING_DAY + timedelta(days=1), default=45) == 45


def test_find_contiguous_covers_ninety_minutes_with_three_slots(db, seed, tenant):
    slots = seed.slots(tenant, start="09:00", count=3)

    run = slot_store.find_contiguous(db, tenant.id, BOOKING_DAY, time(9, 0), 3)

    assert run is not None
    assert run.slot_ids == [slot.id for slot in slots]
    assert run.start_time == time(9, 0)
    assert run.end_time == time(10, 30)


def test_find_contiguous_requires_exact_start(db, seed, tenant):
    seed.slots(tenant, start="09:00", count=4)

    assert slot_store.find_contiguous(db, tenant.id, BOOKING_DAY, time(9, 15), 1) is None


def test_find_contiguous_rejects_taken_slot_inside_run(db, seed, tenant):
    seed.slots(tenant, start="09:00", count=1)
    seed.slots(tenant, start="09:30", count=1, available=False)
    seed.slots(tenant, start="10:00", count=2)

    assert slot_store.find_contiguous(db, tenant.id, BOOKING_DAY, time(9, 0), 3) is None


def test_find_contiguous_rejects_gap_between_slots(db, seed, tenant):
    seed.slots(tenant, start="09:00", count=1)
    seed.slots(tenant, start="10:00", count=1)

    assert slot_store.find_contiguous(db, tenant.id, BOOKING_DAY, time(9, 0), 2) is None


def test_find_contiguous_needs_enough_slots_left(db, seed, tenant):
    seed.slots(tenant, start="17:00", count=2)

    assert slot_store.find_contiguous(db, tenant.id, BOOKING_DAY, time(17, 0), 3) is None


def test_claim_and_release_round_trip(db, seed, tenant):
    slots = seed.slots(tenant, count=3)
    ids = [slot.id for slot in slots]

    slot_store.claim(db, tenant.id, ids)
    db.commit()
    assert _available_ids(db, tenant.id) == []

    assert slot_store.release(db, tenant.id, ids) == 3
    db.commit()
    assert _available_ids(db, tenant.id) == ids


def test_partial_claim_is_a_conflict_and_rolls_back(db, seed, tenant):
    free = seed.slots(tenant, start="09:00", count=2)
    taken = seed.slots(tenant, start="10:00", count=1, available=False)

    with pytest.raises(SlotConflict):
        slot_store.claim(db, tenant.id, [slot.id for slot in free + taken])
    db.rollback()

    assert _available_ids(db, tenant.id) == [slot.id for slot in free]


def test_empty_claim_is_a_conflict(db, tenant):
    with pytest.raises(SlotConflict):
        slot_store.claim(db, tenant.id, [])


def test_claim_is_scoped_to_tenant(db, seed, tenant):
    other = seed.tenant(slug="other-salon")
    foreign = seed.slots(other, count=1)

    with pytest.raises(SlotConflict):
        slot_store.claim(db, tenant.id, [foreign[0].id])
    db.rollback()

    assert _available_ids(db, other.id) == [foreign[0].id]


def test_second_session_loses_the_race_for_the_same_run(seed, tenant):
    seed.slots(tenant, start="14:00", count=1)
    first, second = SessionLocal(), SessionLocal()
    try:
        run_a = slot_store.find_contiguous(first, tenant.id, BOOKING_DAY, time(14, 0), 1)
        run_b = slot_store.find_contiguous(second, tenant.id, BOOKING_DAY, time(14, 0), 1)
        assert run_a.slot_ids == run_b.slot_ids

        slot_store.claim(first, tenant.id, run_a.slot_ids)
        first.commit()

        with pytest.raises(SlotConflict):
            slot_store.claim(second, tenant.id, run_b.slot_ids)
        second.rollback()

        taken = first.query(TimeSlot).filter(TimeSlot.is_available.is_(False)).count()
        assert taken == 1
    finally:
        first.close()
        second.close()


def test_next_available_picks_earliest_contiguous_run(db, seed, tenant):
    # First day is fragmented: 09:00 and 10:00 with 09:30 taken.
    seed.slots(tenant, day=BOOKING_DAY, start="09:00", count=1)
    seed.slots(tenant, day=BOOKING_DAY, start="09:30", count=1, available=False)
    seed.slots(tenant, day=BOOKING_DAY, start="10:00", count=1)
    next_day = BOOKING_DAY + timedelta(days=1)
    expected = seed.slots(tenant, day=next_day, start="11:00", count=2)
    seed.slots(tenant, day=next_day + timedelta(days=1), start="08:00", count=2)

    run = slot_store.next_available(db, tenant.id, 60, BOOKING_DAY, today=BOOKING_DAY)

    assert run.date == next_day
    assert run.start_time == time(11, 0)
    assert run.slot_ids == [slot.id for slot in expected]


def test_next_available_never_returns_past_dates(db, seed, tenant):
    seed.slots(tenant, day=BOOKING_DAY, start="09:00", count=2)
    later = seed.slots(tenant, day=BOOKING_DAY + timedelta(days=3), start="15:00", count=2)

    run = slot_store.next_available(
        db, tenant.id, 30, BOOKING_DAY - timedelta(days=10), today=BOOKING_DAY + timedelta(days=1)
    )

    assert run.date == BOOKING_DAY + timedelta(days=3)
    assert run.slot_ids == [later[0].id]


def test_next_available_respects_horizon(db, seed, tenant):
    seed.slots(tenant, day=BOOKING_DAY + timedelta(days=5), count=2)

    assert slot_store.next_available(db, tenant.id, 30, BOOKING_DAY, today=BOOKING_DAY, horizon_days=5) is None
    assert slot_store.next_available(db, tenant.id, 30, BOOKING_DAY, today=BOOKING_DAY, horizon_days=6) is not None
