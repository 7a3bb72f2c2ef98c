import os
import sys
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal
from pathlib import Path
from uuid import uuid4

import pytest
from fastapi.testclient import TestClient
from jose import jwt

SECRET_KEY = os.getenv("SECRET_KEY", "ci-test-secret")
ALGORITHM = os.getenv("JWT_ALGORITHM", "HS512")


def make_auth_headers(tenant_id: str, user_id: str, user_type: str = "admin") -> dict:
    """JWT accepted by require_tenant_admin, ready to pass as request headers."""
    exp = datetime.now(timezone.utc) + timedelta(hours=1)
    payload = {
        "sub": str(user_id),
        "tenant_id": str(tenant_id),
        "user_type": user_type,
        "exp": int(exp.timestamp()),
    }
    token = jwt.encode(payload, SECRET_KEY, algorithm=ALGORITHM)
    return {"Authorization": f"Bearer {token}"}


SERVICE_DIR = Path(__file__).resolve().parents[1]
ROOT_DIR = SERVICE_DIR.parent.parent

service_path = str(SERVICE_DIR)
shared_path = str(ROOT_DIR / "services")
for path in (service_path, shared_path):
    if path in sys.path:
        sys.path.remove(path)
    sys.path.insert(0, path)

for module_name in list(sys.modules):
    if module_name == "app" or module_name.startswith("app."):
        sys.modules.pop(module_name)

os.environ.setdefault("SECRET_KEY", SECRET_KEY)
os.environ.setdefault("JWT_ALGORITHM", ALGORITHM)
os.environ.setdefault("RESERVATION_DATABASE_URL", f"sqlite:///{SERVICE_DIR / 'test_reservation.db'}")
os.environ.setdefault("EVENT_STREAM", "test-stream")
# No Redis in tests: publishers are replaced on app.state and the consumer is not started.
os.environ["REDIS_URL"] = ""

from app.main import app  # noqa: E402
from app.core.database import Base, SessionLocal, engine  # noqa: E402
from app.models.ledger import (  # noqa: E402
    CustomerPackage,
    DiscountCode,
    GiftCard,
    ServicePackage,
    package_services,
)
from app.models.slot import TimeSlot  # noqa: E402
from app.models.tenant import Customer, Service, SubscriptionPlan, Tenant  # noqa: E402
from app.models.waitlist import WaitlistEntry  # noqa: E402
from app.services.errors import PaymentFailed  # noqa: E402
from app.services.payment_verifier import DepositIntent, PaymentIntentCheck  # noqa: E402
from shared import ReservationSettings  # noqa: E402


BOOKING_DAY = date(2024, 6, 1)


def hhmm(value: str) -> time:
    hours, minutes = value.split(":")
    return time(int(hours), int(minutes))


class FakePaymentVerifier:
    """Stands in for Stripe; intent statuses and charge outcomes are scripted per test."""

    def __init__(self):
        self.intents = {}
        self.deposit_intents = []
        self.charges = []
        self.fail_charges = False

    def paid_deposit(self, intent_id, amount, intent_type="deposit"):
        self.intents[intent_id] = PaymentIntentCheck("succeeded", Decimal(amount), {"type": intent_type})

    def verify_payment_intent(self, tenant, intent_id):
        return self.intents.get(intent_id, PaymentIntentCheck(status="requires_payment_method"))

    def create_deposit_intent(self, tenant, amount, customer_email):
        if not tenant.stripe_secret_key:
            return None
        intent_id = f"pi_dep_{len(self.deposit_intents)}"
        self.deposit_intents.append((amount, customer_email))
        return DepositIntent(client_secret=f"{intent_id}_secret", intent_id=intent_id)

    def charge_saved_card(
        self,
        tenant,
        customer_email,
        payment_method_id,
        amount,
        *,
        booking_id,
        charge_type,
        stripe_customer_id=None,
    ):
        if self.fail_charges:
            raise PaymentFailed("Card charge failed")
        self.charges.append(
            {
                "amount": amount,
                "payment_method_id": payment_method_id,
                "booking_id": booking_id,
                "charge_type": charge_type,
                "stripe_customer_id": stripe_customer_id,
            }
        )
        return f"pi_charge_{len(self.charges)}"


class RecordingPublisher:
    def __init__(self):
        self.events = []

    def publish(self, event_type, payload, *, metadata=None):
        self.events.append((event_type, payload, metadata))
        return True

    def types(self):
        return [event_type for event_type, _, _ in self.events]

    def payloads(self, event_type):
        return [payload for name, payload, _ in self.events if name == event_type]


class FakeNotifier:
    def __init__(self):
        self.booking_pending = []
        self.waitlist_openings = []
        self.fail = False

    def notify_booking_pending(self, booking, tenant):
        if self.fail:
            raise RuntimeError("notification worker unreachable")
        self.booking_pending.append((booking, tenant))
        return True

    def notify_waitlist_opening(self, entry, tenant):
        if self.fail:
            raise RuntimeError("notification worker unreachable")
        self.waitlist_openings.append((entry, tenant))
        return True


class Seeder:
    """Creates committed fixtures through its own session so the code under test sees them."""

    def __init__(self, session):
        self.db = session

    def _save(self, obj):
        self.db.add(obj)
        self.db.commit()
        self.db.refresh(obj)
        return obj

    def tenant(self, slug="glow-studio", **values):
        values.setdefault("name", "Glow Studio")
        values.setdefault("stripe_secret_key", "sk_test_glow")
        return self._save(Tenant(slug=slug, **values))

    def plan(self, tier="free", max_bookings_per_month=None, is_active=True):
        return self._save(
            SubscriptionPlan(tier=tier, max_bookings_per_month=max_bookings_per_month, is_active=is_active)
        )

    def service(self, tenant, name="Cut & Finish", duration=60, price="40.00", **values):
        return self._save(
            Service(tenant_id=tenant.id, name=name, duration=duration, price=Decimal(price), **values)
        )

    def slots(self, tenant, day=BOOKING_DAY, start="09:00", count=6, minutes=30, available=True):
        created = []
        current = datetime.combine(day, hhmm(start))
        for _ in range(count):
            end = current + timedelta(minutes=minutes)
            created.append(
                TimeSlot(
                    tenant_id=tenant.id,
                    date=day,
                    start_time=current.time(),
                    end_time=end.time(),
                    is_available=available,
                )
            )
            current = end
        self.db.add_all(created)
        self.db.commit()
        for slot in created:
            self.db.refresh(slot)
        return created

    def discount(self, tenant, code="SUMMER10", discount_type="percentage", value="10", **values):
        values.setdefault("min_spend", Decimal("0"))
        return self._save(
            DiscountCode(
                tenant_id=tenant.id,
                code=code,
                discount_type=discount_type,
                value=Decimal(value),
                **values,
            )
        )

    def gift_card(self, tenant, code="GIFT-30", balance="30.00", **values):
        return self._save(
            GiftCard(
                tenant_id=tenant.id,
                code=code,
                initial_balance=Decimal(balance),
                remaining_balance=Decimal(balance),
                **values,
            )
        )

    def customer(self, tenant, email="jane@example.com", name="Jane Doe", **values):
        return self._save(Customer(tenant_id=tenant.id, email=email, name=name, **values))

    def package(self, tenant, customer, services, sessions=5, **values):
        package = self._save(
            ServicePackage(
                tenant_id=tenant.id,
                name=f"{sessions}-session bundle",
                session_count=sessions,
                price=Decimal("150.00"),
            )
        )
        for service in services:
            self.db.execute(package_services.insert().values(package_id=package.id, service_id=service.id))
        self.db.commit()
        values.setdefault("sessions_remaining", sessions)
        return self._save(
            CustomerPackage(
                tenant_id=tenant.id,
                customer_id=customer.id,
                package_id=package.id,
                **values,
            )
        )

    def waitlist_entry(self, tenant, day=BOOKING_DAY, email="wait@example.com", created_at=None, **values):
        values.setdefault("customer_name", email.split("@")[0].title())
        if created_at is not None:
            values["created_at"] = created_at
        return self._save(WaitlistEntry(tenant_id=tenant.id, date=day, customer_email=email, **values))


@pytest.fixture(autouse=True)
def prepare_database():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture
def seed():
    session = SessionLocal()
    try:
        yield Seeder(session)
    finally:
        session.close()


@pytest.fixture
def tenant(seed):
    return seed.tenant()


@pytest.fixture
def settings():
    return ReservationSettings(
        waitlist_hold_hours=4,
        next_available_horizon_days=30,
        default_slot_minutes=30,
        default_subscription_tier="free",
        strict_instrument_exclusivity=True,
        deposit_currency="gbp",
    )


@pytest.fixture
def verifier():
    return FakePaymentVerifier()


@pytest.fixture
def publisher():
    return RecordingPublisher()


@pytest.fixture
def notifier():
    return FakeNotifier()


@pytest.fixture
def client(settings, verifier, publisher, notifier):
    app.state.reservation_settings = settings
    app.state.payment_verifier = verifier
    app.state.event_publisher = publisher
    app.state.notifier = notifier

    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def admin_headers(tenant):
    return make_auth_headers(tenant.id, uuid4())
