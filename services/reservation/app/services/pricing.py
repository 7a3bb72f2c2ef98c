"""Pricing Composer.

``compute`` is a pure function of the selected services and the instruments
the caller already looked up. It never touches the database; the ledger
decides later whether each applied instrument can actually be debited.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, Iterable, Optional, Sequence, Set
from uuid import UUID
from app.models.ledger import CustomerPackage, DiscountCode, DiscountType, GiftCard, GiftCardStatus, PackageStatus
from app.models.tenant import DepositType, Service

CENT = Decimal("0.01")
ZERO = Decimal("0.00")


def to_decimal(value) -> Decimal:
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def round2(value) -> Decimal:
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes; they are stored as UTC.
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def is_expired(expires_at: Optional[datetime], now: datetime) -> bool:
    expires_at = _aware(expires_at)
    return expires_at is not None and expires_at <= now


@dataclass
class PriceBreakdown:
    subtotal: Decimal = ZERO
    discount_amount: Decimal = ZERO
    gift_card_amount: Decimal = ZERO
    package_covered: bool = False
    package_covered_price: Decimal = ZERO
    deposit_amount: Decimal = ZERO
    tip_amount: Decimal = ZERO
    final_price: Decimal = ZERO
    remaining_balance: Decimal = ZERO
    # Instrument name -> reason it was not applied.
    skipped: Dict[str, str] = field(default_factory=dict)

    @property
    def discount_applied(self) -> bool:
        return self.discount_amount > 0

    @property
    def gift_card_applied(self) -> bool:
        return self.gift_card_amount > 0

    def as_dict(self) -> dict:
        return {
            "subtotal": str(self.subtotal),
            "discountAmount": str(self.discount_amount),
            "giftCardAmount": str(self.gift_card_amount),
            "packageCovered": self.package_covered,
            "packageCoveredPrice": str(self.package_covered_price),
            "depositAmount": str(self.deposit_amount),
            "tipAmount": str(self.tip_amount),
            "finalPrice": str(self.final_price),
            "remainingBalance": str(self.remaining_balance),
        }


def discount_skip_reason(code: DiscountCode, subtotal: Decimal, now: datetime) -> Optional[str]:
    if not code.active:
        return "inactive"
    if is_expired(code.expires_at, now):
        return "expired"
    if code.max_uses is not None and code.uses_count >= code.max_uses:
        return "max_uses_reached"
    if subtotal < to_decimal(code.min_spend):
        return "below_min_spend"
    return None


def discount_amount_for(code: DiscountCode, subtotal: Decimal) -> Decimal:
    value = to_decimal(code.value)
    if code.discount_type == DiscountType.PERCENTAGE:
        return round2(subtotal * value / Decimal(100))
    return round2(min(value, subtotal))


def gift_card_skip_reason(card: GiftCard, now: datetime) -> Optional[str]:
    if card.status != GiftCardStatus.ACTIVE:
        return card.status
    if is_expired(card.expires_at, now):
        return "expired"
    if to_decimal(card.remaining_balance) <= 0:
        return "no_balance"
    return None


def package_skip_reason(
    package: CustomerPackage,
    covered_service_ids: Set[UUID],
    selected_service_ids: Iterable[UUID],
    now: datetime,
) -> Optional[str]:
    if package.status != PackageStatus.ACTIVE:
        return package.status
    if is_expired(package.expires_at, now):
        return "expired"
    if package.sessions_remaining <= 0:
        return "exhausted"
    if not covered_service_ids.intersection(selected_service_ids):
        return "service_not_covered"
    return None


def compute_deposit(services: Sequence[Service]) -> Decimal:
    total = Decimal(0)
    for service in services:
        if not service.deposit_enabled:
            continue
        value = to_decimal(service.deposit_value)
        if service.deposit_type == DepositType.FIXED:
            total += value
        else:
            total += to_decimal(service.price) * value / Decimal(100)
    return round2(total)


def compute(
    services: Sequence[Service],
    *,
    discount_code: Optional[DiscountCode] = None,
    gift_card: Optional[GiftCard] = None,
    customer_package: Optional[CustomerPackage] = None,
    package_service_ids: Optional[Set[UUID]] = None,
    tip_amount=None,
    now: Optional[datetime] = None,
) -> PriceBreakdown:
    now = now or datetime.now(timezone.utc)
    breakdown = PriceBreakdown()
    breakdown.subtotal = round2(sum((to_decimal(s.price) for s in services), Decimal(0)))
    breakdown.tip_amount = round2(tip_amount or 0)

    if discount_code is not None:
        reason = discount_skip_reason(discount_code, breakdown.subtotal, now)
        if reason:
            breakdown.skipped["discount_code"] = reason
        else:
            breakdown.discount_amount = discount_amount_for(discount_code, breakdown.subtotal)

    after_discount = breakdown.subtotal - breakdown.discount_amount

    if gift_card is not None:
        reason = gift_card_skip_reason(gift_card, now)
        if reason:
            breakdown.skipped["gift_card"] = reason
        else:
            breakdown.gift_card_amount = round2(min(to_decimal(gift_card.remaining_balance), after_discount))

    if customer_package is not None:
        reason = package_skip_reason(
            customer_package,
            package_service_ids or set(),
            [s.id for s in services],
            now,
        )
        if reason:
            breakdown.skipped["customer_package"] = reason
        else:
            breakdown.package_covered = True
            breakdown.package_covered_price = round2(after_discount)

    breakdown.deposit_amount = compute_deposit(services)

    if breakdown.package_covered:
        breakdown.final_price = ZERO
    else:
        breakdown.final_price = round2(max(ZERO, after_discount - breakdown.gift_card_amount))

    breakdown.remaining_balance = round2(
        max(ZERO, breakdown.final_price + breakdown.tip_amount - breakdown.deposit_amount)
    )
    return breakdown
