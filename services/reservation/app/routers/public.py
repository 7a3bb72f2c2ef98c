from datetime import date, datetime, timezone
from typing import List, Optional
from uuid import UUID
from fastapi import APIRouter, Depends, Query, Request, Response, status
from sqlalchemy.orm import Session
from app.core.database import get_db
from app.schemas.booking_schema import (
    BookingCreate,
    BookingCreated,
    BookingOut,
    DepositIntentOut,
    DepositIntentRequest,
    PriceBreakdownOut,
)
from app.schemas.slot_schema import NextAvailableOut, TimeSlotOut
from app.schemas.waitlist_schema import WaitlistCreate, WaitlistOut
from app.services import orchestrator, slot_store, waitlist
from app.services.errors import BookingNotFound, ValidationFailed
from . import crud


router = APIRouter(prefix="/t/{tenant_slug}", tags=["Public booking"])


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _parse_service_ids(raw: str) -> List[UUID]:
    try:
        return [UUID(part.strip()) for part in raw.split(",") if part.strip()]
    except ValueError as exc:
        raise ValidationFailed("serviceIds must be a comma-separated list of ids") from exc


@router.get("/slots", response_model=List[TimeSlotOut])
def list_slots(
    tenant_slug: str,
    slot_date: date = Query(alias="date"),
    db: Session = Depends(get_db),
):
    tenant = crud.get_tenant_by_slug(db, tenant_slug)
    return slot_store.list_available(db, tenant.id, slot_date)


@router.get("/next-available", response_model=NextAvailableOut)
def next_available(
    tenant_slug: str,
    request: Request,
    service_ids: str = Query(alias="serviceIds"),
    from_date: Optional[date] = Query(default=None, alias="from"),
    db: Session = Depends(get_db),
):
    settings = request.app.state.reservation_settings
    tenant = crud.get_tenant_by_slug(db, tenant_slug)
    services = crud.get_active_services(db, tenant.id, _parse_service_ids(service_ids))
    today = _utcnow().date()
    run = slot_store.next_available(
        db,
        tenant.id,
        sum(service.duration for service in services),
        from_date or today,
        today=today,
        horizon_days=settings.next_available_horizon_days,
        default_slot_minutes=settings.default_slot_minutes,
    )
    if run is None:
        return NextAvailableOut(found=False)
    return NextAvailableOut(
        found=True,
        date=run.date.isoformat(),
        time=run.start_time.strftime("%H:%M"),
        slot_ids=run.slot_ids,
    )


@router.post("/bookings", response_model=BookingCreated, status_code=status.HTTP_201_CREATED)
def create_booking(
    tenant_slug: str,
    payload: BookingCreate,
    request: Request,
    response: Response,
    db: Session = Depends(get_db),
):
    state = request.app.state
    tenant = crud.get_tenant_by_slug(db, tenant_slug)
    outcome = orchestrator.create_booking(
        db,
        tenant,
        payload,
        settings=state.reservation_settings,
        now=_utcnow(),
        verifier=state.payment_verifier,
        publisher=state.event_publisher,
        notifier=state.notifier,
    )
    if not outcome.created:
        response.status_code = status.HTTP_200_OK
    result = BookingCreated.model_validate(outcome.booking)
    if outcome.breakdown is not None:
        result.price_breakdown = PriceBreakdownOut.model_validate(outcome.breakdown)
    return result


@router.get("/bookings/{booking_id}", response_model=BookingOut)
def get_booking(
    tenant_slug: str,
    booking_id: UUID,
    db: Session = Depends(get_db),
):
    tenant = crud.get_tenant_by_slug(db, tenant_slug)
    booking = crud.get_booking_by_id(db, booking_id)
    if booking is None or booking.tenant_id != tenant.id:
        raise BookingNotFound("Booking not found")
    return booking


@router.post("/deposit-intent", response_model=DepositIntentOut)
def create_deposit_intent(
    tenant_slug: str,
    payload: DepositIntentRequest,
    request: Request,
    db: Session = Depends(get_db),
):
    tenant = crud.get_tenant_by_slug(db, tenant_slug)
    quote = orchestrator.quote_deposit(
        db,
        tenant,
        payload.service_ids,
        payload.customer_email,
        verifier=request.app.state.payment_verifier,
    )
    return DepositIntentOut(
        required=quote.required,
        deposit_amount=str(quote.deposit_amount),
        client_secret=quote.client_secret,
        payment_intent_id=quote.intent_id,
    )


@router.post("/waitlist", response_model=WaitlistOut, status_code=status.HTTP_201_CREATED)
def join_waitlist(
    tenant_slug: str,
    payload: WaitlistCreate,
    db: Session = Depends(get_db),
):
    tenant = crud.get_tenant_by_slug(db, tenant_slug)
    return waitlist.join_waitlist(
        db,
        tenant.id,
        customer_name=payload.customer_name,
        customer_email=payload.customer_email,
        day=payload.waitlist_date,
        customer_phone=payload.customer_phone,
        service_id=payload.service_id,
        preferred_start=payload.preferred_start,
        preferred_end=payload.preferred_end,
        notes=payload.notes,
    )
