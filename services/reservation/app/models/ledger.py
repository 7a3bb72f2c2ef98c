import uuid
from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Table,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.sql import func
from app.core.database import Base


class DiscountType:
    PERCENTAGE = "percentage"
    FIXED = "fixed"

    ALL = {PERCENTAGE, FIXED}


class GiftCardStatus:
    ACTIVE = "active"
    REDEEMED = "redeemed"
    CANCELLED = "cancelled"
    EXPIRED = "expired"

    ALL = {ACTIVE, REDEEMED, CANCELLED, EXPIRED}


class PackageStatus:
    ACTIVE = "active"
    EXHAUSTED = "exhausted"
    EXPIRED = "expired"

    ALL = {ACTIVE, EXHAUSTED, EXPIRED}


class DiscountCode(Base):
    __tablename__ = "discount_codes"
    __table_args__ = (
        UniqueConstraint("tenant_id", "code", name="uq_discount_codes_tenant_code"),
        CheckConstraint("max_uses IS NULL OR uses_count <= max_uses", name="ck_discount_codes_uses_cap"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(UUID(as_uuid=True), ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    code = Column(String(50), nullable=False)
    discount_type = Column(String(20), nullable=False, default=DiscountType.PERCENTAGE)
    value = Column(Numeric(10, 2), nullable=False)
    min_spend = Column(Numeric(10, 2), nullable=False, default=0)
    max_uses = Column(Integer, nullable=True)
    uses_count = Column(Integer, nullable=False, default=0)
    expires_at = Column(DateTime(timezone=True), nullable=True)
    active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class GiftCard(Base):
    __tablename__ = "gift_cards"
    __table_args__ = (
        UniqueConstraint("tenant_id", "code", name="uq_gift_cards_tenant_code"),
        CheckConstraint("remaining_balance >= 0", name="ck_gift_cards_balance_non_negative"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(UUID(as_uuid=True), ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    code = Column(String(50), nullable=False)
    initial_balance = Column(Numeric(10, 2), nullable=False)
    remaining_balance = Column(Numeric(10, 2), nullable=False)
    status = Column(String(20), nullable=False, default=GiftCardStatus.ACTIVE)
    purchaser_email = Column(String, nullable=True)
    recipient_email = Column(String, nullable=True)
    expires_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class GiftCardTransaction(Base):
    """Append-only movement log for a gift card."""

    __tablename__ = "gift_card_transactions"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(UUID(as_uuid=True), nullable=False, index=True)
    gift_card_id = Column(UUID(as_uuid=True), ForeignKey("gift_cards.id", ondelete="CASCADE"), nullable=False, index=True)
    booking_id = Column(UUID(as_uuid=True), ForeignKey("bookings.id", ondelete="SET NULL"), nullable=True)
    transaction_type = Column(String(20), nullable=False)
    amount = Column(Numeric(10, 2), nullable=False)
    balance_after = Column(Numeric(10, 2), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


package_services = Table(
    "package_services",
    Base.metadata,
    Column("package_id", UUID(as_uuid=True), ForeignKey("service_packages.id", ondelete="CASCADE"), primary_key=True),
    Column("service_id", UUID(as_uuid=True), ForeignKey("services.id", ondelete="CASCADE"), primary_key=True),
)


class ServicePackage(Base):
    __tablename__ = "service_packages"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(UUID(as_uuid=True), ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    session_count = Column(Integer, nullable=False)
    price = Column(Numeric(10, 2), nullable=False)
    valid_days = Column(Integer, nullable=True)
    active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class CustomerPackage(Base):
    __tablename__ = "customer_packages"
    __table_args__ = (
        CheckConstraint("sessions_remaining >= 0", name="ck_customer_packages_remaining_non_negative"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(UUID(as_uuid=True), ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    customer_id = Column(UUID(as_uuid=True), ForeignKey("customers.id", ondelete="CASCADE"), nullable=False, index=True)
    package_id = Column(UUID(as_uuid=True), ForeignKey("service_packages.id", ondelete="CASCADE"), nullable=False)
    sessions_remaining = Column(Integer, nullable=False)
    sessions_used = Column(Integer, nullable=False, default=0)
    status = Column(String(20), nullable=False, default=PackageStatus.ACTIVE)
    expires_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class PackageUsage(Base):
    __tablename__ = "package_usage"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(UUID(as_uuid=True), nullable=False, index=True)
    customer_package_id = Column(
        UUID(as_uuid=True), ForeignKey("customer_packages.id", ondelete="CASCADE"), nullable=False, index=True
    )
    booking_id = Column(UUID(as_uuid=True), ForeignKey("bookings.id", ondelete="SET NULL"), nullable=True)
    used_at = Column(DateTime(timezone=True), server_default=func.now())
