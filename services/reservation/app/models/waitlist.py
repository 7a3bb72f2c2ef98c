import uuid
from datetime import datetime, timezone
from sqlalchemy import Column, Date, DateTime, ForeignKey, Index, String, Text, Time
from sqlalchemy.dialects.postgresql import UUID
from app.core.database import Base


class WaitlistStatus:
    WAITING = "waiting"
    NOTIFIED = "notified"
    BOOKED = "booked"
    EXPIRED = "expired"
    CANCELLED = "cancelled"

    ALL = {WAITING, NOTIFIED, BOOKED, EXPIRED, CANCELLED}
    # An email may hold at most one open entry per date.
    OPEN = {WAITING, NOTIFIED}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class WaitlistEntry(Base):
    __tablename__ = "waitlist"
    __table_args__ = (Index("ix_waitlist_queue", "tenant_id", "date", "status", "created_at"),)

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(UUID(as_uuid=True), ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    customer_name = Column(String, nullable=False)
    customer_email = Column(String, nullable=False)
    customer_phone = Column(String(50), nullable=True)
    service_id = Column(UUID(as_uuid=True), ForeignKey("services.id", ondelete="SET NULL"), nullable=True)
    date = Column(Date, nullable=False)
    preferred_start = Column(Time, nullable=True)
    preferred_end = Column(Time, nullable=True)
    notes = Column(Text, nullable=True)
    status = Column(String(20), nullable=False, default=WaitlistStatus.WAITING)
    notified_at = Column(DateTime(timezone=True), nullable=True)
    expires_at = Column(DateTime(timezone=True), nullable=True)
    # Queue order; set in Python so rows inserted within one second still sort.
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
