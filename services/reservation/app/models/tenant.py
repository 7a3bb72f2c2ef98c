# app/models/tenant.py
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
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.sql import func
from app.core.database import Base


class Tenant(Base):
    __tablename__ = "tenants"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(String, nullable=False)
    slug = Column(String(100), unique=True, nullable=False, index=True)
    business_phone = Column(String(50), nullable=True)
    subscription_tier = Column(String(20), nullable=False, default="free")
    stripe_secret_key = Column(Text, nullable=True)
    active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    def public_view(self) -> dict:
        """Tenant fields safe to hand to notification workers."""
        return {"id": str(self.id), "name": self.name, "slug": self.slug, "business_phone": self.business_phone}


class SubscriptionPlan(Base):
    __tablename__ = "subscription_plans"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tier = Column(String(20), nullable=False, unique=True)
    max_bookings_per_month = Column(Integer, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)


class DepositType:
    PERCENTAGE = "percentage"
    FIXED = "fixed"

    ALL = {PERCENTAGE, FIXED}


class Service(Base):
    __tablename__ = "services"
    __table_args__ = (
        CheckConstraint("duration > 0", name="ck_services_duration_positive"),
        CheckConstraint("price >= 0", name="ck_services_price_non_negative"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(UUID(as_uuid=True), ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String, nullable=False)
    category = Column(String(100), nullable=True)
    duration = Column(Integer, nullable=False)
    price = Column(Numeric(10, 2), nullable=False)
    active = Column(Boolean, nullable=False, default=True)
    deposit_enabled = Column(Boolean, nullable=False, default=False)
    deposit_type = Column(String(20), nullable=True)
    deposit_value = Column(Numeric(10, 2), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class Customer(Base):
    __tablename__ = "customers"
    __table_args__ = (UniqueConstraint("tenant_id", "email", name="uq_customers_tenant_email"),)

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(UUID(as_uuid=True), ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String, nullable=False)
    email = Column(String, nullable=False)
    phone = Column(String(50), nullable=True)
    stripe_customer_id = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
