import uuid
from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    Time,
)
from sqlalchemy.dialects.postgresql import UUID, JSONB
from sqlalchemy.sql import func
from app.core.database import Base


class BookingStatus:
    PENDING = "pending"
    CONFIRMED = "confirmed"
    REJECTED = "rejected"
    CANCELLED = "cancelled"
    COMPLETED = "completed"

    ALL = {PENDING, CONFIRMED, REJECTED, CANCELLED, COMPLETED}
    TERMINAL = {REJECTED, CANCELLED, COMPLETED}
    # States whose slots are released when entered.
    RELEASING = {REJECTED, CANCELLED}


class DepositStatus:
    NONE = "none"
    PENDING = "pending"
    PAID = "paid"

    ALL = {NONE, PENDING, PAID}


_JSON = JSONB().with_variant(JSON, "sqlite")


class Booking(Base):
    __tablename__ = "bookings"
    __table_args__ = (
        Index("ix_bookings_tenant_date", "tenant_id", "date", "start_time"),
        Index("ix_bookings_tenant_created", "tenant_id", "created_at"),
        Index("ux_bookings_deposit_payment_intent_id", "deposit_payment_intent_id", unique=True),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(UUID(as_uuid=True), ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    customer_id = Column(UUID(as_uuid=True), ForeignKey("customers.id", ondelete="SET NULL"), nullable=True)

    # Snapshot taken at creation; later customer edits do not rewrite bookings.
    customer_name = Column(String, nullable=False)
    customer_email = Column(String, nullable=False)
    customer_phone = Column(String(50), nullable=True)

    service_ids = Column(_JSON, nullable=False, default=list)
    service_names = Column(Text, nullable=True)
    date = Column(Date, nullable=False)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    total_duration = Column(Integer, nullable=False)
    slot_ids = Column(_JSON, nullable=False, default=list)

    subtotal = Column(Numeric(10, 2), nullable=False)
    discount_amount = Column(Numeric(10, 2), nullable=False, default=0)
    gift_card_amount = Column(Numeric(10, 2), nullable=False, default=0)
    package_covered = Column(Boolean, nullable=False, default=False)
    total_price = Column(Numeric(10, 2), nullable=False)
    deposit_amount = Column(Numeric(10, 2), nullable=False, default=0)
    deposit_status = Column(String(20), nullable=False, default=DepositStatus.NONE)
    deposit_payment_intent_id = Column(Text, nullable=True)
    tip_amount = Column(Numeric(10, 2), nullable=False, default=0)

    status = Column(String(20), nullable=False, default=BookingStatus.PENDING)
    status_reason = Column(Text, nullable=True)
    marked_noshow = Column(Boolean, nullable=False, default=False)
    notes = Column(Text, nullable=True)

    discount_code_id = Column(UUID(as_uuid=True), ForeignKey("discount_codes.id", ondelete="SET NULL"), nullable=True)
    gift_card_id = Column(UUID(as_uuid=True), ForeignKey("gift_cards.id", ondelete="SET NULL"), nullable=True)
    customer_package_id = Column(
        UUID(as_uuid=True), ForeignKey("customer_packages.id", ondelete="SET NULL"), nullable=True
    )

    reminder_24h_sent = Column(Boolean, nullable=False, default=False)
    sms_24h_sent = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class BookingEvent(Base):
    __tablename__ = "booking_events"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    booking_id = Column(UUID(as_uuid=True), ForeignKey("bookings.id", ondelete="CASCADE"), nullable=False, index=True)
    tenant_id = Column(UUID(as_uuid=True), nullable=False, index=True)
    event_type = Column(String, nullable=False)
    payload = Column(_JSON, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
