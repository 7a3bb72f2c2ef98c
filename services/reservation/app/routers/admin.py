from datetime import date, datetime, timezone
from typing import List, Optional
from uuid import UUID
from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.orm import Session
from app.core.auth_dependencies import TokenPayload, require_tenant_admin
from app.core.database import get_db
from app.schemas.booking_schema import (
    BookingOut,
    CompleteRequest,
    NoShowRequest,
    StatusChangeOut,
    StatusUpdate,
)
from app.schemas.waitlist_schema import WaitlistOut
from app.services import lifecycle, waitlist
from . import crud


router = APIRouter(prefix="/admin", tags=["Admin"])


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@router.put("/bookings/{booking_id}/status", response_model=StatusChangeOut)
def update_booking_status(
    booking_id: UUID,
    payload: StatusUpdate,
    request: Request,
    db: Session = Depends(get_db),
    current_token: TokenPayload = Depends(require_tenant_admin),
):
    state = request.app.state
    tenant = crud.get_tenant(db, current_token.tenant_id)
    change = lifecycle.change_status(
        db,
        tenant,
        booking_id,
        payload.status,
        now=_utcnow(),
        reason=payload.reason,
        hold_hours=state.reservation_settings.waitlist_hold_hours,
        publisher=state.event_publisher,
        notifier=state.notifier,
    )
    return StatusChangeOut(
        booking=BookingOut.model_validate(change.booking),
        released_slot_ids=change.released_slot_ids,
        notified_waitlist_entry_id=change.notified_entry.id if change.notified_entry else None,
    )


@router.post("/bookings/{booking_id}/complete", response_model=BookingOut)
def complete_booking(
    booking_id: UUID,
    payload: CompleteRequest,
    request: Request,
    db: Session = Depends(get_db),
    current_token: TokenPayload = Depends(require_tenant_admin),
):
    tenant = crud.get_tenant(db, current_token.tenant_id)
    return lifecycle.complete_booking(
        db,
        tenant,
        booking_id,
        tip_amount=payload.tip_amount,
        payment_method_id=payload.payment_method_id,
        verifier=request.app.state.payment_verifier,
        publisher=request.app.state.event_publisher,
    )


@router.post("/bookings/{booking_id}/no-show", response_model=BookingOut)
def mark_no_show(
    booking_id: UUID,
    payload: NoShowRequest,
    request: Request,
    db: Session = Depends(get_db),
    current_token: TokenPayload = Depends(require_tenant_admin),
):
    tenant = crud.get_tenant(db, current_token.tenant_id)
    return lifecycle.mark_no_show(
        db,
        tenant,
        booking_id,
        charge_amount=payload.charge_amount,
        payment_method_id=payload.payment_method_id,
        verifier=request.app.state.payment_verifier,
        publisher=request.app.state.event_publisher,
    )


@router.get("/waitlist", response_model=List[WaitlistOut])
def list_waitlist(
    status_filter: Optional[str] = Query(default=None, alias="status"),
    waitlist_date: Optional[date] = Query(default=None, alias="date"),
    db: Session = Depends(get_db),
    current_token: TokenPayload = Depends(require_tenant_admin),
):
    return waitlist.list_entries(db, current_token.tenant_id, status=status_filter, day=waitlist_date)


@router.post("/waitlist/{entry_id}/notify", response_model=WaitlistOut)
def notify_waitlist_entry(
    entry_id: UUID,
    request: Request,
    db: Session = Depends(get_db),
    current_token: TokenPayload = Depends(require_tenant_admin),
):
    state = request.app.state
    tenant = crud.get_tenant(db, current_token.tenant_id)
    entry = waitlist.notify_entry(
        db,
        tenant.id,
        entry_id,
        now=_utcnow(),
        hold_hours=state.reservation_settings.waitlist_hold_hours,
    )
    lifecycle.publish_event(state.event_publisher, "waitlist.notified", waitlist.entry_view(entry), tenant_id=tenant.id)
    lifecycle.notify_waitlist_opening(state.notifier, entry, tenant)
    return entry


@router.delete("/waitlist/{entry_id}", response_model=WaitlistOut, status_code=status.HTTP_200_OK)
def cancel_waitlist_entry(
    entry_id: UUID,
    db: Session = Depends(get_db),
    current_token: TokenPayload = Depends(require_tenant_admin),
):
    return waitlist.cancel_entry(db, current_token.tenant_id, entry_id)
