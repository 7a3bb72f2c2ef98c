"""single use deposit intent

Revision ID: 20261019_0002
Revises: 20261019_0001
Create Date: 2026-10-19 12:00:00
"""

from alembic import op


# revision identifiers, used by Alembic.
revision = "20261019_0002"
down_revision = "20261019_0001"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_index(
        "ux_bookings_deposit_payment_intent_id",
        "bookings",
        ["deposit_payment_intent_id"],
        unique=True,
    )


def downgrade() -> None:
    op.drop_index("ux_bookings_deposit_payment_intent_id", table_name="bookings")
