from datetime import datetime
from typing import List, Optional, Sequence
from uuid import UUID
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from app.models.booking import Booking
from app.models.tenant import Customer, Service, SubscriptionPlan, Tenant
from app.services.errors import TenantNotFound, ValidationFailed


def get_tenant_by_slug(db: Session, slug: str) -> Tenant:
    tenant = (
        db.query(Tenant)
        .filter(Tenant.slug == slug)
        .filter(Tenant.active.is_(True))
        .first()
    )
    if not tenant:
        raise TenantNotFound("Business not found")
    return tenant


def get_tenant(db: Session, tenant_id: UUID) -> Tenant:
    tenant = db.query(Tenant).filter(Tenant.id == tenant_id).first()
    if not tenant:
        raise TenantNotFound("Business not found")
    return tenant


def get_active_services(db: Session, tenant_id: UUID, service_ids: Sequence[UUID]) -> List[Service]:
    """Load the selected services in request order; every id must be an active service of the tenant."""
    if not service_ids:
        raise ValidationFailed("At least one service is required")
    rows = (
        db.query(Service)
        .filter(Service.tenant_id == tenant_id)
        .filter(Service.id.in_(list(service_ids)))
        .filter(Service.active.is_(True))
        .all()
    )
    by_id = {service.id: service for service in rows}
    missing = [str(sid) for sid in service_ids if sid not in by_id]
    if missing:
        raise ValidationFailed("One or more services are unavailable", service_ids=missing)
    return [by_id[sid] for sid in service_ids]


def monthly_booking_cap(db: Session, tier: str) -> Optional[int]:
    plan = (
        db.query(SubscriptionPlan)
        .filter(SubscriptionPlan.tier == tier)
        .filter(SubscriptionPlan.is_active.is_(True))
        .first()
    )
    return plan.max_bookings_per_month if plan else None


def count_bookings_since(db: Session, tenant_id: UUID, since: datetime) -> int:
    return (
        db.query(func.count(Booking.id))
        .filter(Booking.tenant_id == tenant_id)
        .filter(Booking.created_at >= since)
        .scalar()
    )


def lock_tenant(db: Session, tenant_id: UUID) -> Tenant:
    """Row lock on the tenant, held until the caller's transaction ends."""
    return db.query(Tenant).filter(Tenant.id == tenant_id).with_for_update().one()


def get_booking_by_id(db: Session, booking_id: UUID) -> Optional[Booking]:
    return db.query(Booking).filter(Booking.id == booking_id).first()


def get_booking_by_deposit_intent(db: Session, intent_id: str) -> Optional[Booking]:
    return db.query(Booking).filter(Booking.deposit_payment_intent_id == intent_id).first()


def _customer_query(db: Session, tenant_id: UUID, email: str):
    return db.query(Customer).filter(Customer.tenant_id == tenant_id).filter(Customer.email == email)


def get_customer_by_email(db: Session, tenant_id: UUID, email: str) -> Optional[Customer]:
    return _customer_query(db, tenant_id, email.strip().lower()).first()


def upsert_customer(
    db: Session,
    tenant_id: UUID,
    name: str,
    email: str,
    phone: Optional[str] = None,
) -> Customer:
    """Insert or update the customer keyed by (tenant, email). Does not commit.

    The name always follows the latest booking; a stored phone is kept when
    the new request carries none.
    """
    email = email.strip().lower()
    customer = _customer_query(db, tenant_id, email).first()
    if customer is None:
        try:
            with db.begin_nested():
                customer = Customer(tenant_id=tenant_id, name=name, email=email, phone=phone)
                db.add(customer)
            return customer
        except IntegrityError:
            # Inserted by a concurrent booking after our lookup.
            customer = _customer_query(db, tenant_id, email).one()
    customer.name = name
    if phone:
        customer.phone = phone
    db.flush()
    return customer
