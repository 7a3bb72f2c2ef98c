"""Tests for the scheduler event handlers of the reservation service."""

from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest

from app.consumers import handle_reminder_sent, handle_waitlist_expire_requested
from app.models.booking import Booking
from app.models.waitlist import WaitlistEntry
from app.schemas.booking_schema import BookingCreate
from app.services import orchestrator
from conftest import BOOKING_DAY


@pytest.fixture
def booking(db, seed, tenant, settings):
    service = seed.service(tenant, duration=30)
    seed.slots(tenant, count=1)
    payload = BookingCreate.model_validate(
        {
            "customerName": "Jane Doe",
            "customerEmail": "jane@example.com",
            "serviceIds": [str(service.id)],
            "date": BOOKING_DAY.isoformat(),
            "startTime": "09:00",
        }
    )
    return orchestrator.create_booking(
        db, tenant, payload, settings=settings, now=datetime.now(timezone.utc)
    ).booking


def _stored(db, model, ident):
    db.expire_all()
    return db.get(model, ident)


@pytest.mark.asyncio
async def test_reminder_sent_sets_channel_flag(db, tenant, booking):
    payload = {"booking_id": str(booking.id), "tenant_id": str(tenant.id), "channel": "sms_24h"}

    await handle_reminder_sent("reminder.sent", payload)

    stored = _stored(db, Booking, booking.id)
    assert stored.sms_24h_sent is True
    assert stored.reminder_24h_sent is False


@pytest.mark.asyncio
async def test_reminder_sent_defaults_to_email(db, tenant, booking):
    await handle_reminder_sent("reminder.sent", {"booking_id": str(booking.id), "tenant_id": str(tenant.id)})

    assert _stored(db, Booking, booking.id).reminder_24h_sent is True


@pytest.mark.asyncio
async def test_reminder_sent_ignores_incomplete_or_unknown_events(db, tenant, booking):
    await handle_reminder_sent("reminder.sent", {"booking_id": str(booking.id)})
    await handle_reminder_sent("reminder.sent", {"booking_id": str(uuid4()), "tenant_id": str(tenant.id)})
    await handle_reminder_sent(
        "reminder.sent", {"booking_id": str(booking.id), "tenant_id": str(tenant.id), "channel": "pigeon"}
    )

    stored = _stored(db, Booking, booking.id)
    assert stored.reminder_24h_sent is False
    assert stored.sms_24h_sent is False


@pytest.mark.asyncio
async def test_reminder_sent_propagates_malformed_ids(tenant):
    with pytest.raises(ValueError):
        await handle_reminder_sent("reminder.sent", {"booking_id": "not-a-uuid", "tenant_id": str(tenant.id)})


@pytest.mark.asyncio
async def test_waitlist_expiry_uses_event_clock(db, seed, tenant):
    now = datetime(2024, 5, 31, 12, 0, tzinfo=timezone.utc)
    stale = seed.waitlist_entry(tenant, email="stale@example.com", status="notified", expires_at=now - timedelta(hours=1))
    held = seed.waitlist_entry(tenant, email="held@example.com", status="notified", expires_at=now + timedelta(hours=1))

    await handle_waitlist_expire_requested("waitlist.expire_requested", {"now": "2024-05-31T12:00:00Z"})

    assert _stored(db, WaitlistEntry, stale.id).status == "expired"
    assert _stored(db, WaitlistEntry, held.id).status == "notified"


@pytest.mark.asyncio
async def test_waitlist_expiry_scoped_to_tenant(db, seed, tenant):
    other = seed.tenant(slug="other-salon")
    past = datetime(2024, 5, 1, tzinfo=timezone.utc)
    mine = seed.waitlist_entry(tenant, email="mine@example.com", status="notified", expires_at=past)
    theirs = seed.waitlist_entry(other, email="theirs@example.com", status="notified", expires_at=past)

    await handle_waitlist_expire_requested(
        "waitlist.expire_requested", {"tenant_id": str(tenant.id), "now": "2024-05-31T12:00:00"}
    )

    assert _stored(db, WaitlistEntry, mine.id).status == "expired"
    assert _stored(db, WaitlistEntry, theirs.id).status == "notified"
