"""Reservation Orchestrator.

One booking attempt runs as a single database transaction:

    validate -> plan limit -> price -> verify deposit -> claim slots
    -> insert booking -> redeem instruments -> upsert customer -> commit

Any failure after the first write rolls the whole transaction back, which
also un-claims the slots and restores every instrument balance. Nothing is
visible to other requests before the commit. Events and notifications are
sent only after the commit succeeds.
"""

import logging
import re
import uuid
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import List, Optional
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from app.models.booking import Booking, BookingStatus, DepositStatus
from app.models.ledger import CustomerPackage, DiscountCode, GiftCard, GiftCardStatus
from app.models.tenant import Customer, Service, Tenant
from app.routers import crud
from app.schemas.booking_schema import BookingCreate
from app.services import pricing, redemption_ledger, slot_store
from app.services.errors import (
    AlreadyMaxed,
    DepositNotPaid,
    DepositRequired,
    Exhausted,
    InsufficientFunds,
    PlanLimitReached,
    ReservationError,
    SlotConflict,
    ValidationFailed,
)
from app.services.lifecycle import booking_view, publish_event, record_event
from app.services.payment_verifier import DEPOSIT_INTENT_TYPE, PaymentVerifier
from shared import EventPublisher, NotificationDispatcher, ReservationSettings

logger = logging.getLogger(__name__)

_PHONE_PATTERN = re.compile(r"^\+?[0-9]{7,15}$")
_PHONE_NOISE = re.compile(r"[\s\-()]")


@dataclass
class Instruments:
    discount_code: Optional[DiscountCode] = None
    gift_card: Optional[GiftCard] = None
    customer_package: Optional[CustomerPackage] = None
    package_service_ids: Optional[set] = None


@dataclass
class BookingOutcome:
    booking: Booking
    breakdown: Optional[pricing.PriceBreakdown]
    created: bool = True


@dataclass
class DepositQuote:
    required: bool
    deposit_amount: Decimal
    client_secret: Optional[str] = None
    intent_id: Optional[str] = None


def is_valid_phone(phone: str) -> bool:
    return bool(_PHONE_PATTERN.match(_PHONE_NOISE.sub("", phone)))


def _validate_request(payload: BookingCreate) -> None:
    if not payload.customer_name.strip():
        raise ValidationFailed("Customer name is required")
    if payload.customer_phone and not is_valid_phone(payload.customer_phone):
        raise ValidationFailed("Invalid phone number format")
    if not payload.service_ids:
        raise ValidationFailed("At least one service is required")


def _unique(values: List) -> List:
    seen = set()
    ordered = []
    for value in values:
        if value not in seen:
            seen.add(value)
            ordered.append(value)
    return ordered


def check_plan_limit(db: Session, tenant: Tenant, settings: ReservationSettings, now: datetime) -> None:
    tier = tenant.subscription_tier or settings.default_subscription_tier
    cap = crud.monthly_booking_cap(db, tier)
    if cap is None:
        return
    # Capped tenants book one at a time until commit or rollback.
    crud.lock_tenant(db, tenant.id)
    month_start = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    if crud.count_bookings_since(db, tenant.id, month_start) >= cap:
        raise PlanLimitReached(
            "This business has reached its monthly booking limit. Please contact them directly."
        )


def _load_instruments(
    db: Session,
    tenant: Tenant,
    payload: BookingCreate,
    settings: ReservationSettings,
) -> Instruments:
    instruments = Instruments()

    if payload.discount_code:
        code = redemption_ledger.find_discount_code(db, tenant.id, payload.discount_code)
        if code is None or not code.active:
            raise ValidationFailed("Invalid discount code")
        instruments.discount_code = code

    if payload.gift_card_code:
        card = redemption_ledger.find_gift_card(db, tenant.id, payload.gift_card_code)
        if card is None or card.status == GiftCardStatus.CANCELLED:
            raise ValidationFailed("Invalid gift card code")
        instruments.gift_card = card

    if payload.customer_package_id:
        package = redemption_ledger.get_customer_package(db, tenant.id, payload.customer_package_id)
        owner = (
            db.query(Customer).filter(Customer.id == package.customer_id).first() if package else None
        )
        if package is None or owner is None or owner.email != payload.customer_email.strip().lower():
            raise ValidationFailed("Package not found for this customer")
        instruments.customer_package = package
        instruments.package_service_ids = redemption_ledger.package_service_ids(db, package.package_id)

    if settings.strict_instrument_exclusivity and instruments.gift_card and instruments.customer_package:
        raise ValidationFailed("A gift card and a session package cannot be used on the same booking")

    return instruments


def _price(services: List[Service], instruments: Instruments, now: datetime) -> pricing.PriceBreakdown:
    return pricing.compute(
        services,
        discount_code=instruments.discount_code,
        gift_card=instruments.gift_card,
        customer_package=instruments.customer_package,
        package_service_ids=instruments.package_service_ids,
        now=now,
    )


def _verify_deposit(
    db: Session,
    tenant: Tenant,
    breakdown: pricing.PriceBreakdown,
    intent_id: Optional[str],
    verifier: Optional[PaymentVerifier],
) -> str:
    """A deposit intent pays for exactly one booking and must cover the full deposit."""
    if breakdown.deposit_amount <= 0:
        return DepositStatus.NONE
    if not intent_id:
        raise DepositRequired(
            "A deposit is required for this booking",
            depositAmount=str(breakdown.deposit_amount),
        )
    check = verifier.verify_payment_intent(tenant, intent_id) if verifier else None
    if check is None or check.status != "succeeded":
        raise DepositNotPaid("Deposit payment has not been completed")
    if check.metadata.get("type") != DEPOSIT_INTENT_TYPE:
        raise DepositNotPaid("Payment is not a deposit payment")
    if check.amount < breakdown.deposit_amount:
        logger.info("Deposit intent %s paid %s, %s required", intent_id, check.amount, breakdown.deposit_amount)
        raise DepositNotPaid(
            "Deposit payment is less than the required deposit",
            depositAmount=str(breakdown.deposit_amount),
        )
    if crud.get_booking_by_deposit_intent(db, intent_id) is not None:
        raise DepositNotPaid("Deposit payment has already been used")
    return DepositStatus.PAID


def _redeem_instruments(
    db: Session,
    tenant: Tenant,
    booking_id: uuid.UUID,
    services: List[Service],
    instruments: Instruments,
    breakdown: pricing.PriceBreakdown,
    now: datetime,
) -> pricing.PriceBreakdown:
    """Debit each applied instrument once; a refused debit drops it and re-prices.

    Discount first, since the gift card amount depends on the discounted price.
    """
    if breakdown.discount_applied:
        try:
            redemption_ledger.redeem_discount_code(db, tenant.id, instruments.discount_code.id)
        except AlreadyMaxed:
            instruments.discount_code = None
            breakdown = _price(services, instruments, now)
    elif instruments.discount_code is not None:
        instruments.discount_code = None

    if breakdown.gift_card_applied:
        try:
            redemption_ledger.redeem_gift_card(
                db, tenant.id, instruments.gift_card.id, breakdown.gift_card_amount, booking_id
            )
        except InsufficientFunds:
            instruments.gift_card = None
            breakdown = _price(services, instruments, now)
    elif instruments.gift_card is not None:
        instruments.gift_card = None

    if breakdown.package_covered:
        try:
            redemption_ledger.redeem_package_session(db, tenant.id, instruments.customer_package.id, booking_id)
        except Exhausted:
            instruments.customer_package = None
            breakdown = _price(services, instruments, now)
    elif instruments.customer_package is not None:
        instruments.customer_package = None

    return breakdown


def _existing_outcome(db: Session, tenant: Tenant, booking_id: uuid.UUID) -> Optional[BookingOutcome]:
    existing = crud.get_booking_by_id(db, booking_id)
    if existing is None:
        return None
    if existing.tenant_id != tenant.id:
        raise ValidationFailed("requestId has already been used")
    return BookingOutcome(booking=existing, breakdown=None, created=False)


def create_booking(
    db: Session,
    tenant: Tenant,
    payload: BookingCreate,
    *,
    settings: ReservationSettings,
    now: datetime,
    verifier: Optional[PaymentVerifier] = None,
    publisher: Optional[EventPublisher] = None,
    notifier: Optional[NotificationDispatcher] = None,
) -> BookingOutcome:
    if payload.request_id:
        replay = _existing_outcome(db, tenant, payload.request_id)
        if replay:
            return replay

    _validate_request(payload)
    service_ids = _unique(payload.service_ids)
    services = crud.get_active_services(db, tenant.id, service_ids)
    total_duration = sum(service.duration for service in services)
    try:
        check_plan_limit(db, tenant, settings, now)

        instruments = _load_instruments(db, tenant, payload, settings)
        breakdown = _price(services, instruments, now)
        deposit_status = _verify_deposit(db, tenant, breakdown, payload.deposit_payment_intent_id, verifier)

        slot_minutes = slot_store.slot_minutes_for(
            db, tenant.id, payload.booking_date, settings.default_slot_minutes
        )
        needed = slot_store.slots_needed(total_duration, slot_minutes)
        run = slot_store.find_contiguous(db, tenant.id, payload.booking_date, payload.start_time, needed)
        if run is None:
            raise SlotConflict("Selected time is no longer available")
    except ReservationError:
        # Ends the transaction holding the tenant lock.
        db.rollback()
        raise

    booking_id = payload.request_id or uuid.uuid4()
    deposit_intent_id = payload.deposit_payment_intent_id if deposit_status == DepositStatus.PAID else None
    email = payload.customer_email.strip().lower()
    try:
        slot_store.claim(db, tenant.id, run.slot_ids)

        booking = Booking(
            id=booking_id,
            tenant_id=tenant.id,
            customer_name=payload.customer_name.strip(),
            customer_email=email,
            customer_phone=payload.customer_phone,
            service_ids=[str(s.id) for s in services],
            service_names=", ".join(s.name for s in services),
            date=payload.booking_date,
            start_time=run.start_time,
            end_time=slot_store.add_minutes(run.start_time, total_duration),
            total_duration=total_duration,
            slot_ids=[str(slot_id) for slot_id in run.slot_ids],
            subtotal=breakdown.subtotal,
            total_price=breakdown.final_price,
            deposit_amount=breakdown.deposit_amount,
            deposit_status=deposit_status,
            deposit_payment_intent_id=deposit_intent_id,
            status=BookingStatus.PENDING,
            notes=payload.notes,
        )
        db.add(booking)
        db.flush()

        breakdown = _redeem_instruments(db, tenant, booking.id, services, instruments, breakdown, now)
        booking.subtotal = breakdown.subtotal
        booking.discount_amount = breakdown.discount_amount
        booking.gift_card_amount = breakdown.gift_card_amount
        booking.package_covered = breakdown.package_covered
        booking.total_price = breakdown.final_price
        booking.discount_code_id = instruments.discount_code.id if instruments.discount_code else None
        booking.gift_card_id = instruments.gift_card.id if instruments.gift_card else None
        booking.customer_package_id = (
            instruments.customer_package.id if instruments.customer_package else None
        )

        customer = crud.upsert_customer(db, tenant.id, booking.customer_name, email, payload.customer_phone)
        booking.customer_id = customer.id

        record_event(db, booking, "booking.created", {"breakdown": breakdown.as_dict(), **booking_view(booking)})
        db.commit()
    except IntegrityError:
        db.rollback()
        if payload.request_id:
            # Same requestId committed by a concurrent retry.
            replay = _existing_outcome(db, tenant, payload.request_id)
            if replay:
                return replay
        if deposit_intent_id and crud.get_booking_by_deposit_intent(db, deposit_intent_id) is not None:
            logger.warning("Deposit intent %s was claimed by a concurrent booking", deposit_intent_id)
            raise DepositNotPaid("Deposit payment has already been used") from None
        logger.warning("Booking attempt for tenant_id=%s rolled back after integrity error", tenant.id)
        raise
    except Exception:
        db.rollback()
        logger.warning("Booking attempt for tenant_id=%s rolled back", tenant.id, exc_info=True)
        raise

    db.refresh(booking)
    for instrument in (instruments.discount_code, instruments.gift_card, instruments.customer_package):
        if instrument is not None:
            db.refresh(instrument)

    publish_event(publisher, "booking.created", booking_view(booking), tenant_id=tenant.id)
    if notifier:
        try:
            notifier.notify_booking_pending(booking_view(booking), tenant.public_view())
        except Exception:
            logger.exception("Booking %s created but the pending notification failed", booking.id)

    return BookingOutcome(booking=booking, breakdown=breakdown, created=True)


def quote_deposit(
    db: Session,
    tenant: Tenant,
    service_ids: List[uuid.UUID],
    customer_email: str,
    *,
    verifier: Optional[PaymentVerifier] = None,
) -> DepositQuote:
    services = crud.get_active_services(db, tenant.id, _unique(service_ids))
    amount = pricing.compute_deposit(services)
    if amount <= 0:
        return DepositQuote(required=False, deposit_amount=amount)
    intent = verifier.create_deposit_intent(tenant, amount, customer_email) if verifier else None
    if intent is None:
        return DepositQuote(required=True, deposit_amount=amount)
    return DepositQuote(
        required=True,
        deposit_amount=amount,
        client_secret=intent.client_secret,
        intent_id=intent.intent_id,
    )
