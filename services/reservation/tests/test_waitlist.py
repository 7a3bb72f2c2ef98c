from datetime import datetime, time, timedelta, timezone
from uuid import uuid4

import pytest

from app.models.waitlist import WaitlistEntry
from app.services import waitlist
from app.services.errors import DuplicateWaitlistEntry, InvalidTransition, WaitlistEntryNotFound
from conftest import BOOKING_DAY

NOW = datetime(2024, 5, 31, 18, 0, tzinfo=timezone.utc)


def _status(db, entry_id):
    db.expire_all()
    return db.get(WaitlistEntry, entry_id).status


def test_join_normalises_email_and_starts_waiting(db, tenant):
    entry = waitlist.join_waitlist(
        db,
        tenant.id,
        customer_name="  Sam Lee ",
        customer_email="Sam.Lee@Example.com",
        day=BOOKING_DAY,
        preferred_start=time(9, 0),
        preferred_end=time(12, 0),
    )

    assert entry.status == "waiting"
    assert entry.customer_name == "Sam Lee"
    assert entry.customer_email == "sam.lee@example.com"
    assert entry.notified_at is None


def test_one_open_entry_per_email_and_date(db, tenant):
    waitlist.join_waitlist(db, tenant.id, customer_name="Sam", customer_email="sam@example.com", day=BOOKING_DAY)

    with pytest.raises(DuplicateWaitlistEntry):
        waitlist.join_waitlist(db, tenant.id, customer_name="Sam", customer_email="SAM@example.com", day=BOOKING_DAY)

    other_day = waitlist.join_waitlist(
        db, tenant.id, customer_name="Sam", customer_email="sam@example.com", day=BOOKING_DAY + timedelta(days=1)
    )
    assert other_day.status == "waiting"


def test_rejoin_allowed_after_cancellation(db, tenant):
    entry = waitlist.join_waitlist(db, tenant.id, customer_name="Sam", customer_email="sam@example.com", day=BOOKING_DAY)
    waitlist.cancel_entry(db, tenant.id, entry.id)

    again = waitlist.join_waitlist(db, tenant.id, customer_name="Sam", customer_email="sam@example.com", day=BOOKING_DAY)

    assert again.id != entry.id


def test_same_email_may_wait_with_another_business(db, seed, tenant):
    other = seed.tenant(slug="other-salon")
    waitlist.join_waitlist(db, tenant.id, customer_name="Sam", customer_email="sam@example.com", day=BOOKING_DAY)

    entry = waitlist.join_waitlist(db, other.id, customer_name="Sam", customer_email="sam@example.com", day=BOOKING_DAY)

    assert entry.tenant_id == other.id


def test_cascade_with_empty_queue(db, tenant):
    assert waitlist.cascade_for_date(db, tenant.id, BOOKING_DAY, now=NOW) is None


def test_cascade_skips_entries_already_notified(db, seed, tenant):
    seed.waitlist_entry(tenant, email="early@example.com", status="notified", created_at=NOW - timedelta(days=2))
    seed.waitlist_entry(tenant, email="gone@example.com", status="cancelled", created_at=NOW - timedelta(days=1))
    waiting = seed.waitlist_entry(tenant, email="next@example.com", created_at=NOW - timedelta(hours=3))

    entry = waitlist.cascade_for_date(db, tenant.id, BOOKING_DAY, now=NOW, hold_hours=2)
    db.commit()

    assert entry.id == waiting.id
    assert entry.status == "notified"
    assert entry.expires_at.replace(tzinfo=None) == (NOW + timedelta(hours=2)).replace(tzinfo=None)


def test_cascade_is_scoped_to_tenant(db, seed, tenant):
    other = seed.tenant(slug="other-salon")
    foreign = seed.waitlist_entry(other, email="foreign@example.com")

    assert waitlist.cascade_for_date(db, tenant.id, BOOKING_DAY, now=NOW) is None
    db.commit()
    assert _status(db, foreign.id) == "waiting"


def test_manual_notify_only_from_waiting(db, seed, tenant):
    entry = seed.waitlist_entry(tenant)

    notified = waitlist.notify_entry(db, tenant.id, entry.id, now=NOW, hold_hours=4)
    assert notified.status == "notified"
    assert notified.notified_at is not None

    with pytest.raises(InvalidTransition):
        waitlist.notify_entry(db, tenant.id, entry.id, now=NOW)


def test_unknown_entry(db, tenant):
    with pytest.raises(WaitlistEntryNotFound):
        waitlist.notify_entry(db, tenant.id, uuid4(), now=NOW)
    with pytest.raises(WaitlistEntryNotFound):
        waitlist.cancel_entry(db, tenant.id, uuid4())


def test_cancel_only_open_entries(db, seed, tenant):
    notified = seed.waitlist_entry(tenant, email="a@example.com", status="notified")
    booked = seed.waitlist_entry(tenant, email="b@example.com", status="booked")

    assert waitlist.cancel_entry(db, tenant.id, notified.id).status == "cancelled"
    with pytest.raises(InvalidTransition):
        waitlist.cancel_entry(db, tenant.id, booked.id)


def test_list_entries_filters(db, seed, tenant):
    first = seed.waitlist_entry(tenant, email="a@example.com", created_at=NOW - timedelta(hours=2))
    second = seed.waitlist_entry(tenant, email="b@example.com", status="notified", created_at=NOW - timedelta(hours=1))
    later = seed.waitlist_entry(tenant, day=BOOKING_DAY + timedelta(days=2), email="c@example.com")

    assert [e.id for e in waitlist.list_entries(db, tenant.id)] == [first.id, second.id, later.id]
    assert [e.id for e in waitlist.list_entries(db, tenant.id, status="notified")] == [second.id]
    assert [e.id for e in waitlist.list_entries(db, tenant.id, day=BOOKING_DAY + timedelta(days=2))] == [later.id]


def test_expiry_sweep_does_not_promote_next_entry(db, seed, tenant):
    stale = seed.waitlist_entry(
        tenant,
        email="stale@example.com",
        status="notified",
        notified_at=NOW - timedelta(hours=5),
        expires_at=NOW - timedelta(hours=1),
        created_at=NOW - timedelta(days=1),
    )
    fresh = seed.waitlist_entry(
        tenant,
        email="fresh@example.com",
        status="notified",
        notified_at=NOW - timedelta(hours=1),
        expires_at=NOW + timedelta(hours=3),
        created_at=NOW - timedelta(hours=20),
    )
    queued = seed.waitlist_entry(tenant, email="queued@example.com", created_at=NOW - timedelta(hours=10))

    assert waitlist.expire_stale_notifications(db, now=NOW) == 1

    assert _status(db, stale.id) == "expired"
    assert _status(db, fresh.id) == "notified"
    assert _status(db, queued.id) == "waiting"


def test_expiry_sweep_can_be_scoped_to_tenant(db, seed, tenant):
    other = seed.tenant(slug="other-salon")
    values = dict(status="notified", expires_at=NOW - timedelta(minutes=1))
    mine = seed.waitlist_entry(tenant, email="mine@example.com", **values)
    theirs = seed.waitlist_entry(other, email="theirs@example.com", **values)

    assert waitlist.expire_stale_notifications(db, now=NOW, tenant_id=tenant.id) == 1

    assert _status(db, mine.id) == "expired"
    assert _status(db, theirs.id) == "notified"
