"""Redemption Ledger for discount codes, gift cards and customer packages.

Every debit is a single compare-and-set UPDATE scoped by tenant; a refused
debit raises a ``RedemptionRefused`` subclass and leaves the row untouched.
Each call consumes one unit, so callers must invoke it at most once per
booking attempt.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional, Set
from uuid import UUID
from sqlalchemy import case, or_, select
from sqlalchemy.orm import Session
from app.models.ledger import (
    CustomerPackage,
    DiscountCode,
    GiftCard,
    GiftCardStatus,
    GiftCardTransaction,
    PackageStatus,
    PackageUsage,
    package_services,
)
from app.services.errors import AlreadyMaxed, Exhausted, InsufficientFunds
from app.services.pricing import round2

logger = logging.getLogger(__name__)


class TransactionType:
    PURCHASE = "purchase"
    REDEMPTION = "redemption"


@dataclass
class GiftCardRedemption:
    gift_card_id: UUID
    amount: Decimal
    new_balance: Decimal
    status: str


@dataclass
class PackageRedemption:
    customer_package_id: UUID
    sessions_remaining: int
    sessions_used: int
    status: str


def normalize_code(code: Optional[str]) -> str:
    return (code or "").strip().upper()


def find_discount_code(db: Session, tenant_id: UUID, code: str) -> Optional[DiscountCode]:
    return (
        db.query(DiscountCode)
        .filter(DiscountCode.tenant_id == tenant_id)
        .filter(DiscountCode.code == normalize_code(code))
        .first()
    )


def find_gift_card(db: Session, tenant_id: UUID, code: str) -> Optional[GiftCard]:
    return (
        db.query(GiftCard)
        .filter(GiftCard.tenant_id == tenant_id)
        .filter(GiftCard.code == normalize_code(code))
        .first()
    )


def get_customer_package(db: Session, tenant_id: UUID, customer_package_id: UUID) -> Optional[CustomerPackage]:
    return (
        db.query(CustomerPackage)
        .filter(CustomerPackage.tenant_id == tenant_id)
        .filter(CustomerPackage.id == customer_package_id)
        .first()
    )


def package_service_ids(db: Session, package_id: UUID) -> Set[UUID]:
    rows = db.execute(
        select(package_services.c.service_id).where(package_services.c.package_id == package_id)
    ).scalars()
    return set(rows)


def redeem_discount_code(db: Session, tenant_id: UUID, discount_code_id: UUID) -> int:
    """Consume one use of a discount code and return the new ``uses_count``."""
    updated = (
        db.query(DiscountCode)
        .filter(DiscountCode.tenant_id == tenant_id)
        .filter(DiscountCode.id == discount_code_id)
        .filter(DiscountCode.active.is_(True))
        .filter(or_(DiscountCode.max_uses.is_(None), DiscountCode.uses_count < DiscountCode.max_uses))
        .update({DiscountCode.uses_count: DiscountCode.uses_count + 1}, synchronize_session=False)
    )
    if updated != 1:
        logger.info("Discount code %s refused: usage cap reached", discount_code_id)
        raise AlreadyMaxed("Discount code has reached its usage limit")

    return db.query(DiscountCode.uses_count).filter(DiscountCode.id == discount_code_id).scalar()


def redeem_gift_card(
    db: Session,
    tenant_id: UUID,
    gift_card_id: UUID,
    amount,
    booking_id: Optional[UUID] = None,
) -> GiftCardRedemption:
    """Debit ``amount`` from a gift card and append a redemption transaction."""
    amount = round2(amount)
    if amount <= 0:
        raise ValueError("Gift card redemption amount must be positive")

    updated = (
        db.query(GiftCard)
        .filter(GiftCard.tenant_id == tenant_id)
        .filter(GiftCard.id == gift_card_id)
        .filter(GiftCard.status == GiftCardStatus.ACTIVE)
        .filter(GiftCard.remaining_balance >= amount)
        .update(
            {
                GiftCard.remaining_balance: GiftCard.remaining_balance - amount,
                GiftCard.status: case(
                    (GiftCard.remaining_balance - amount <= 0, GiftCardStatus.REDEEMED),
                    else_=GiftCard.status,
                ),
            },
            synchronize_session=False,
        )
    )
    if updated != 1:
        logger.info("Gift card %s refused: insufficient balance for %s", gift_card_id, amount)
        raise InsufficientFunds("Gift card balance is insufficient")

    new_balance, status = (
        db.query(GiftCard.remaining_balance, GiftCard.status)
        .filter(GiftCard.id == gift_card_id)
        .one()
    )
    new_balance = round2(new_balance)
    db.add(
        GiftCardTransaction(
            tenant_id=tenant_id,
            gift_card_id=gift_card_id,
            booking_id=booking_id,
            transaction_type=TransactionType.REDEMPTION,
            amount=amount,
            balance_after=new_balance,
        )
    )
    return GiftCardRedemption(gift_card_id=gift_card_id, amount=amount, new_balance=new_balance, status=status)


def redeem_package_session(
    db: Session,
    tenant_id: UUID,
    customer_package_id: UUID,
    booking_id: Optional[UUID] = None,
) -> PackageRedemption:
    """Consume one session from a customer package and record its usage."""
    updated = (
        db.query(CustomerPackage)
        .filter(CustomerPackage.tenant_id == tenant_id)
        .filter(CustomerPackage.id == customer_package_id)
        .filter(CustomerPackage.status == PackageStatus.ACTIVE)
        .filter(CustomerPackage.sessions_remaining > 0)
        .update(
            {
                CustomerPackage.sessions_remaining: CustomerPackage.sessions_remaining - 1,
                CustomerPackage.sessions_used: CustomerPackage.sessions_used + 1,
                CustomerPackage.status: case(
                    (CustomerPackage.sessions_remaining <= 1, PackageStatus.EXHAUSTED),
                    else_=CustomerPackage.status,
                ),
            },
            synchronize_session=False,
        )
    )
    if updated != 1:
        logger.info("Customer package %s refused: no sessions remaining", customer_package_id)
        raise Exhausted("Package has no sessions remaining")

    remaining, used, status = (
        db.query(CustomerPackage.sessions_remaining, CustomerPackage.sessions_used, CustomerPackage.status)
        .filter(CustomerPackage.id == customer_package_id)
        .one()
    )
    db.add(PackageUsage(tenant_id=tenant_id, customer_package_id=customer_package_id, booking_id=booking_id))
    return PackageRedemption(
        customer_package_id=customer_package_id,
        sessions_remaining=remaining,
        sessions_used=used,
        status=status,
    )
