from datetime import date, datetime, time
from decimal import Decimal
from typing import Dict, List, Optional
from uuid import UUID
from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_serializer, field_validator
from app.models.booking import BookingStatus


class BookingCreate(BaseModel):
    """Public booking request sent by the booking page."""
    model_config = ConfigDict(populate_by_name=True)

    customer_name: str = Field(alias="customerName", min_length=1, max_length=200, examples=["Jane Doe"])
    customer_email: EmailStr = Field(alias="customerEmail", examples=["jane@example.com"])
    customer_phone: Optional[str] = Field(default=None, alias="customerPhone", examples=["+44 7700 900123"])
    service_ids: List[UUID] = Field(alias="serviceIds", min_length=1, description="Selected services, in display order")
    booking_date: date = Field(alias="date", examples=["2024-06-01"])
    start_time: time = Field(alias="startTime", examples=["09:00"])
    discount_code: Optional[str] = Field(default=None, alias="discountCode", max_length=50)
    gift_card_code: Optional[str] = Field(default=None, alias="giftCardCode", max_length=50)
    customer_package_id: Optional[UUID] = Field(default=None, alias="customerPackageId")
    deposit_payment_intent_id: Optional[str] = Field(default=None, alias="depositPaymentIntentId")
    request_id: Optional[UUID] = Field(
        default=None,
        alias="requestId",
        description="Client-generated id; resending the same id returns the original booking",
    )
    notes: Optional[str] = Field(default=None, max_length=1000)

    @field_validator("customer_name")
    @classmethod
    def strip_name(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("customerName is required")
        return value

    @field_validator("discount_code", "gift_card_code", "customer_phone", "deposit_payment_intent_id")
    @classmethod
    def blank_to_none(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        value = value.strip()
        return value or None


class PriceBreakdownOut(BaseModel):
    subtotal: Decimal
    discount_amount: Decimal = Field(alias="discountAmount")
    gift_card_amount: Decimal = Field(alias="giftCardAmount")
    package_covered: bool = Field(alias="packageCovered")
    package_covered_price: Decimal = Field(alias="packageCoveredPrice")
    deposit_amount: Decimal = Field(alias="depositAmount")
    tip_amount: Decimal = Field(alias="tipAmount")
    final_price: Decimal = Field(alias="finalPrice")
    remaining_balance: Decimal = Field(alias="remainingBalance")
    skipped: Dict[str, str] = Field(default_factory=dict)

    model_config = ConfigDict(from_attributes=True, populate_by_name=True)

    @field_serializer(
        "subtotal",
        "discount_amount",
        "gift_card_amount",
        "package_covered_price",
        "deposit_amount",
        "tip_amount",
        "final_price",
        "remaining_balance",
    )
    def money(self, value: Decimal) -> str:
        return str(value)


class BookingOut(BaseModel):
    id: UUID
    tenant_id: UUID
    customer_id: Optional[UUID] = None
    customer_name: str
    customer_email: str
    customer_phone: Optional[str] = None
    service_ids: List[UUID]
    service_names: Optional[str] = None
    date: date
    start_time: time
    end_time: time
    total_duration: int
    slot_ids: List[UUID]
    subtotal: Decimal
    discount_amount: Decimal
    gift_card_amount: Decimal
    package_covered: bool
    total_price: Decimal
    deposit_amount: Decimal
    deposit_status: str
    tip_amount: Decimal
    status: str
    status_reason: Optional[str] = None
    marked_noshow: bool
    discount_code_id: Optional[UUID] = None
    gift_card_id: Optional[UUID] = None
    customer_package_id: Optional[UUID] = None
    reminder_24h_sent: bool
    sms_24h_sent: bool
    notes: Optional[str] = None
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)

    @field_serializer(
        "subtotal",
        "discount_amount",
        "gift_card_amount",
        "total_price",
        "deposit_amount",
        "tip_amount",
    )
    def money(self, value: Decimal) -> str:
        return str(value.quantize(Decimal("0.01")))

    @field_serializer("start_time", "end_time")
    def hhmm(self, value: time) -> str:
        return value.strftime("%H:%M")


class BookingCreated(BookingOut):
    price_breakdown: Optional[PriceBreakdownOut] = None


class StatusUpdate(BaseModel):
    status: str = Field(description="confirmed, rejected or cancelled")
    reason: Optional[str] = Field(default=None, max_length=500)

    @field_validator("status")
    @classmethod
    def validate_status(cls, value: str) -> str:
        allowed = {BookingStatus.CONFIRMED, BookingStatus.REJECTED, BookingStatus.CANCELLED}
        if value not in allowed:
            raise ValueError(f"status must be one of {sorted(allowed)}")
        return value


class CompleteRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    tip_amount: Optional[Decimal] = Field(default=None, alias="tipAmount", ge=0)
    payment_method_id: Optional[str] = Field(default=None, alias="paymentMethodId")


class NoShowRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    charge_amount: Optional[Decimal] = Field(default=None, alias="chargeAmount", ge=0)
    payment_method_id: Optional[str] = Field(default=None, alias="paymentMethodId")


class DepositIntentRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    service_ids: List[UUID] = Field(alias="serviceIds", min_length=1)
    customer_email: EmailStr = Field(alias="customerEmail")


class DepositIntentOut(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    required: bool
    deposit_amount: str = Field(alias="depositAmount")
    client_secret: Optional[str] = Field(default=None, alias="clientSecret")
    payment_intent_id: Optional[str] = Field(default=None, alias="paymentIntentId")


class StatusChangeOut(BaseModel):
    booking: BookingOut
    released_slot_ids: List[UUID] = Field(default_factory=list)
    notified_waitlist_entry_id: Optional[UUID] = None
