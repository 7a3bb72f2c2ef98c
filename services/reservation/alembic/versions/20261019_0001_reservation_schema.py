"""reservation schema

Revision ID: 20261019_0001
Revises: 
Create Date: 2026-10-19 00:00:00
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision = "20261019_0001"
down_revision = None
branch_labels = None
depends_on = None


def _uuid(name, nullable=False, **kwargs):
    return sa.Column(name, postgresql.UUID(as_uuid=True), nullable=nullable, **kwargs)


def _money(name, nullable=False, default=None):
    kwargs = {"server_default": sa.text(default)} if default is not None else {}
    return sa.Column(name, sa.Numeric(10, 2), nullable=nullable, **kwargs)


def _created_at(name="created_at"):
    return sa.Column(name, sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()"))


def _tenant_fk():
    return sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"], ondelete="CASCADE")


def upgrade() -> None:
    op.create_table(
        "tenants",
        _uuid("id"),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("slug", sa.String(100), nullable=False),
        sa.Column("business_phone", sa.String(50), nullable=True),
        sa.Column("subscription_tier", sa.String(20), nullable=False, server_default=sa.text("'free'")),
        sa.Column("stripe_secret_key", sa.Text(), nullable=True),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.true()),
        _created_at(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_tenants_slug", "tenants", ["slug"], unique=True)

    op.create_table(
        "subscription_plans",
        _uuid("id"),
        sa.Column("tier", sa.String(20), nullable=False),
        sa.Column("max_bookings_per_month", sa.Integer(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("tier"),
    )

    op.create_table(
        "services",
        _uuid("id"),
        _uuid("tenant_id"),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("category", sa.String(100), nullable=True),
        sa.Column("duration", sa.Integer(), nullable=False),
        _money("price"),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("deposit_enabled", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("deposit_type", sa.String(20), nullable=True),
        _money("deposit_value", nullable=True),
        _created_at(),
        sa.PrimaryKeyConstraint("id"),
        _tenant_fk(),
        sa.CheckConstraint("duration > 0", name="ck_services_duration_positive"),
        sa.CheckConstraint("price >= 0", name="ck_services_price_non_negative"),
    )
    op.create_index("ix_services_tenant_id", "services", ["tenant_id"], unique=False)

    op.create_table(
        "customers",
        _uuid("id"),
        _uuid("tenant_id"),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("email", sa.String(), nullable=False),
        sa.Column("phone", sa.String(50), nullable=True),
        sa.Column("stripe_customer_id", sa.Text(), nullable=True),
        _created_at(),
        sa.PrimaryKeyConstraint("id"),
        _tenant_fk(),
        sa.UniqueConstraint("tenant_id", "email", name="uq_customers_tenant_email"),
    )
    op.create_index("ix_customers_tenant_id", "customers", ["tenant_id"], unique=False)

    op.create_table(
        "time_slots",
        _uuid("id"),
        _uuid("tenant_id"),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("start_time", sa.Time(), nullable=False),
        sa.Column("end_time", sa.Time(), nullable=False),
        sa.Column("is_available", sa.Boolean(), nullable=False, server_default=sa.true()),
        _created_at(),
        sa.PrimaryKeyConstraint("id"),
        _tenant_fk(),
        sa.UniqueConstraint("tenant_id", "date", "start_time", name="uq_time_slots_tenant_date_start"),
    )
    op.create_index("ix_time_slots_tenant_id", "time_slots", ["tenant_id"], unique=False)
    op.create_index("ix_time_slots_availability", "time_slots", ["tenant_id", "date", "is_available"], unique=False)

    op.create_table(
        "discount_codes",
        _uuid("id"),
        _uuid("tenant_id"),
        sa.Column("code", sa.String(50), nullable=False),
        sa.Column("discount_type", sa.String(20), nullable=False, server_default=sa.text("'percentage'")),
        _money("value"),
        _money("min_spend", default="0"),
        sa.Column("max_uses", sa.Integer(), nullable=True),
        sa.Column("uses_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.true()),
        _created_at(),
        sa.PrimaryKeyConstraint("id"),
        _tenant_fk(),
        sa.UniqueConstraint("tenant_id", "code", name="uq_discount_codes_tenant_code"),
        sa.CheckConstraint("max_uses IS NULL OR uses_count <= max_uses", name="ck_discount_codes_uses_cap"),
    )
    op.create_index("ix_discount_codes_tenant_id", "discount_codes", ["tenant_id"], unique=False)

    op.create_table(
        "gift_cards",
        _uuid("id"),
        _uuid("tenant_id"),
        sa.Column("code", sa.String(50), nullable=False),
        _money("initial_balance"),
        _money("remaining_balance"),
        sa.Column("status", sa.String(20), nullable=False, server_default=sa.text("'active'")),
        sa.Column("purchaser_email", sa.String(), nullable=True),
        sa.Column("recipient_email", sa.String(), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        _created_at(),
        sa.PrimaryKeyConstraint("id"),
        _tenant_fk(),
        sa.UniqueConstraint("tenant_id", "code", name="uq_gift_cards_tenant_code"),
        sa.CheckConstraint("remaining_balance >= 0", name="ck_gift_cards_balance_non_negative"),
    )
    op.create_index("ix_gift_cards_tenant_id", "gift_cards", ["tenant_id"], unique=False)

    op.create_table(
        "service_packages",
        _uuid("id"),
        _uuid("tenant_id"),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("session_count", sa.Integer(), nullable=False),
        _money("price"),
        sa.Column("valid_days", sa.Integer(), nullable=True),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.true()),
        _created_at(),
        sa.PrimaryKeyConstraint("id"),
        _tenant_fk(),
    )
    op.create_index("ix_service_packages_tenant_id", "service_packages", ["tenant_id"], unique=False)

    op.create_table(
        "package_services",
        _uuid("package_id"),
        _uuid("service_id"),
        sa.ForeignKeyConstraint(["package_id"], ["service_packages.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["service_id"], ["services.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("package_id", "service_id"),
    )

    op.create_table(
        "customer_packages",
        _uuid("id"),
        _uuid("tenant_id"),
        _uuid("customer_id"),
        _uuid("package_id"),
        sa.Column("sessions_remaining", sa.Integer(), nullable=False),
        sa.Column("sessions_used", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("status", sa.String(20), nullable=False, server_default=sa.text("'active'")),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        _created_at(),
        sa.PrimaryKeyConstraint("id"),
        _tenant_fk(),
        sa.ForeignKeyConstraint(["customer_id"], ["customers.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["package_id"], ["service_packages.id"], ondelete="CASCADE"),
        sa.CheckConstraint("sessions_remaining >= 0", name="ck_customer_packages_remaining_non_negative"),
    )
    op.create_index("ix_customer_packages_tenant_id", "customer_packages", ["tenant_id"], unique=False)
    op.create_index("ix_customer_packages_customer_id", "customer_packages", ["customer_id"], unique=False)

    op.create_table(
        "bookings",
        _uuid("id"),
        _uuid("tenant_id"),
        _uuid("customer_id", nullable=True),
        sa.Column("customer_name", sa.String(), nullable=False),
        sa.Column("customer_email", sa.String(), nullable=False),
        sa.Column("customer_phone", sa.String(50), nullable=True),
        sa.Column("service_ids", postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column("service_names", sa.Text(), nullable=True),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("start_time", sa.Time(), nullable=False),
        sa.Column("end_time", sa.Time(), nullable=False),
        sa.Column("total_duration", sa.Integer(), nullable=False),
        sa.Column("slot_ids", postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        _money("subtotal"),
        _money("discount_amount", default="0"),
        _money("gift_card_amount", default="0"),
        sa.Column("package_covered", sa.Boolean(), nullable=False, server_default=sa.false()),
        _money("total_price"),
        _money("deposit_amount", default="0"),
        sa.Column("deposit_status", sa.String(20), nullable=False, server_default=sa.text("'none'")),
        sa.Column("deposit_payment_intent_id", sa.Text(), nullable=True),
        _money("tip_amount", default="0"),
        sa.Column("status", sa.String(20), nullable=False, server_default=sa.text("'pending'")),
        sa.Column("status_reason", sa.Text(), nullable=True),
        sa.Column("marked_noshow", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("notes", sa.Text(), nullable=True),
        _uuid("discount_code_id", nullable=True),
        _uuid("gift_card_id", nullable=True),
        _uuid("customer_package_id", nullable=True),
        sa.Column("reminder_24h_sent", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("sms_24h_sent", sa.Boolean(), nullable=False, server_default=sa.false()),
        _created_at(),
        _created_at("updated_at"),
        sa.PrimaryKeyConstraint("id"),
        _tenant_fk(),
        sa.ForeignKeyConstraint(["customer_id"], ["customers.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["discount_code_id"], ["discount_codes.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["gift_card_id"], ["gift_cards.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["customer_package_id"], ["customer_packages.id"], ondelete="SET NULL"),
    )
    op.create_index("ix_bookings_tenant_id", "bookings", ["tenant_id"], unique=False)
    op.create_index("ix_bookings_tenant_date", "bookings", ["tenant_id", "date", "start_time"], unique=False)
    op.create_index("ix_bookings_tenant_created", "bookings", ["tenant_id", "created_at"], unique=False)

    op.create_table(
        "booking_events",
        _uuid("id"),
        _uuid("booking_id"),
        _uuid("tenant_id"),
        sa.Column("event_type", sa.String(), nullable=False),
        sa.Column("payload", postgresql.JSONB(astext_type=sa.Text()), nullable=False, server_default=sa.text("'{}'::jsonb")),
        _created_at(),
        sa.ForeignKeyConstraint(["booking_id"], ["bookings.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_booking_events_booking_id", "booking_events", ["booking_id"], unique=False)
    op.create_index("ix_booking_events_tenant_id", "booking_events", ["tenant_id"], unique=False)

    op.create_table(
        "gift_card_transactions",
        _uuid("id"),
        _uuid("tenant_id"),
        _uuid("gift_card_id"),
        _uuid("booking_id", nullable=True),
        sa.Column("transaction_type", sa.String(20), nullable=False),
        _money("amount"),
        _money("balance_after"),
        _created_at(),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["gift_card_id"], ["gift_cards.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["booking_id"], ["bookings.id"], ondelete="SET NULL"),
    )
    op.create_index("ix_gift_card_transactions_tenant_id", "gift_card_transactions", ["tenant_id"], unique=False)
    op.create_index("ix_gift_card_transactions_gift_card_id", "gift_card_transactions", ["gift_card_id"], unique=False)

    op.create_table(
        "package_usage",
        _uuid("id"),
        _uuid("tenant_id"),
        _uuid("customer_package_id"),
        _uuid("booking_id", nullable=True),
        sa.Column("used_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["customer_package_id"], ["customer_packages.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["booking_id"], ["bookings.id"], ondelete="SET NULL"),
    )
    op.create_index("ix_package_usage_tenant_id", "package_usage", ["tenant_id"], unique=False)
    op.create_index("ix_package_usage_customer_package_id", "package_usage", ["customer_package_id"], unique=False)

    op.create_table(
        "waitlist",
        _uuid("id"),
        _uuid("tenant_id"),
        sa.Column("customer_name", sa.String(), nullable=False),
        sa.Column("customer_email", sa.String(), nullable=False),
        sa.Column("customer_phone", sa.String(50), nullable=True),
        _uuid("service_id", nullable=True),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("preferred_start", sa.Time(), nullable=True),
        sa.Column("preferred_end", sa.Time(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default=sa.text("'waiting'")),
        sa.Column("notified_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        _created_at(),
        sa.PrimaryKeyConstraint("id"),
        _tenant_fk(),
        sa.ForeignKeyConstraint(["service_id"], ["services.id"], ondelete="SET NULL"),
    )
    op.create_index("ix_waitlist_tenant_id", "waitlist", ["tenant_id"], unique=False)
    op.create_index("ix_waitlist_queue", "waitlist", ["tenant_id", "date", "status", "created_at"], unique=False)


def downgrade() -> None:
    for table in (
        "waitlist",
        "package_usage",
        "gift_card_transactions",
        "booking_events",
        "bookings",
        "customer_packages",
        "package_services",
        "service_packages",
        "gift_cards",
        "discount_codes",
        "time_slots",
        "customers",
        "services",
        "subscription_plans",
        "tenants",
    ):
        op.drop_table(table)
