"""Payment Verifier backed by each tenant's own Stripe account."""

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, Optional, Protocol
import stripe
from app.models.tenant import Tenant
from app.services.errors import PaymentFailed

logger = logging.getLogger(__name__)

DEPOSIT_INTENT_TYPE = "deposit"


@dataclass
class DepositIntent:
    client_secret: str
    intent_id: str


@dataclass
class PaymentIntentCheck:
    status: str
    amount: Decimal = Decimal("0.00")
    metadata: Dict[str, str] = field(default_factory=dict)


class PaymentVerifier(Protocol):
    def verify_payment_intent(self, tenant: Tenant, intent_id: str) -> PaymentIntentCheck: ...

    def create_deposit_intent(
        self, tenant: Tenant, amount: Decimal, customer_email: str
    ) -> Optional[DepositIntent]: ...

    def charge_saved_card(
        self,
        tenant: Tenant,
        customer_email: str,
        payment_method_id: str,
        amount: Decimal,
        *,
        booking_id: str,
        charge_type: str,
        stripe_customer_id: Optional[str] = None,
    ) -> str: ...


def to_minor_units(amount: Decimal) -> int:
    return int((amount * 100).to_integral_value())


def from_minor_units(amount: int) -> Decimal:
    return (Decimal(amount) / 100).quantize(Decimal("0.01"))


class StripePaymentVerifier:
    """Talks to Stripe with the tenant's secret key; tenants without one cannot take payments."""

    def __init__(self, currency: str = "gbp"):
        self.currency = currency

    def verify_payment_intent(self, tenant: Tenant, intent_id: str) -> PaymentIntentCheck:
        if not tenant.stripe_secret_key:
            return PaymentIntentCheck(status="unavailable")
        try:
            intent = stripe.PaymentIntent.retrieve(intent_id, api_key=tenant.stripe_secret_key)
        except stripe.StripeError as e:
            logger.warning("Could not verify payment intent %s for tenant %s: %s", intent_id, tenant.id, e)
            return PaymentIntentCheck(status="error")
        return PaymentIntentCheck(
            status=intent.status,
            amount=from_minor_units(intent.amount_received or intent.amount or 0),
            metadata={key: str(value) for key, value in (intent.metadata or {}).items()},
        )

    def create_deposit_intent(
        self, tenant: Tenant, amount: Decimal, customer_email: str
    ) -> Optional[DepositIntent]:
        if not tenant.stripe_secret_key:
            return None
        try:
            intent = stripe.PaymentIntent.create(
                api_key=tenant.stripe_secret_key,
                amount=to_minor_units(amount),
                currency=self.currency,
                receipt_email=customer_email,
                metadata={"tenant_id": str(tenant.id), "type": DEPOSIT_INTENT_TYPE},
            )
        except stripe.StripeError as e:
            logger.error("Deposit intent creation failed for tenant %s: %s", tenant.id, e)
            raise PaymentFailed("Could not create deposit payment") from e
        return DepositIntent(client_secret=intent.client_secret, intent_id=intent.id)

    def charge_saved_card(
        self,
        tenant: Tenant,
        customer_email: str,
        payment_method_id: str,
        amount: Decimal,
        *,
        booking_id: str,
        charge_type: str,
        stripe_customer_id: Optional[str] = None,
    ) -> str:
        if not tenant.stripe_secret_key:
            raise PaymentFailed("Stripe not configured for this business")
        if not stripe_customer_id:
            raise PaymentFailed("Customer has no saved payment method")
        try:
            intent = stripe.PaymentIntent.create(
                api_key=tenant.stripe_secret_key,
                amount=to_minor_units(amount),
                currency=self.currency,
                customer=stripe_customer_id,
                payment_method=payment_method_id,
                off_session=True,
                confirm=True,
                receipt_email=customer_email,
                metadata={"booking_id": booking_id, "type": charge_type},
            )
        except stripe.StripeError as e:
            logger.error("Off-session charge failed for booking %s: %s", booking_id, e)
            raise PaymentFailed("Card charge failed") from e
        if intent.status != "succeeded":
            raise PaymentFailed(f"Card charge not completed (status={intent.status})")
        return intent.id
