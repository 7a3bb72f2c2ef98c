"""Domain errors raised by the reservation engine.

Each error carries the HTTP status and the machine-readable code the API
exposes in its ``{"error", "code"}`` payload.
"""


class ReservationError(Exception):
    status_code = 400
    code = "RESERVATION_ERROR"

    def __init__(self, message: str = "", **details):
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__
        self.details = details

    def to_payload(self) -> dict:
        payload = {"error": self.message, "code": self.code}
        if self.details:
            payload.update(self.details)
        return payload


class ValidationFailed(ReservationError):
    status_code = 400
    code = "VALIDATION_ERROR"


class TenantNotFound(ReservationError):
    status_code = 404
    code = "TENANT_NOT_FOUND"


class BookingNotFound(ReservationError):
    status_code = 404
    code = "BOOKING_NOT_FOUND"


class WaitlistEntryNotFound(ReservationError):
    status_code = 404
    code = "WAITLIST_ENTRY_NOT_FOUND"


class PlanLimitReached(ReservationError):
    status_code = 403
    code = "PLAN_LIMIT_REACHED"


class DepositRequired(ReservationError):
    status_code = 400
    code = "DEPOSIT_REQUIRED"


class DepositNotPaid(ReservationError):
    status_code = 400
    code = "DEPOSIT_NOT_PAID"


class SlotConflict(ReservationError):
    status_code = 409
    code = "SLOT_CONFLICT"


class InvalidTransition(ReservationError):
    status_code = 409
    code = "INVALID_TRANSITION"


class DuplicateWaitlistEntry(ReservationError):
    status_code = 409
    code = "WAITLIST_DUPLICATE"


class PaymentFailed(ReservationError):
    status_code = 402
    code = "PAYMENT_FAILED"


class RedemptionRefused(ReservationError):
    """A conditional ledger debit matched no row; the instrument is not applied."""

    status_code = 409
    code = "REDEMPTION_REFUSED"


class AlreadyMaxed(RedemptionRefused):
    code = "DISCOUNT_MAXED"


class InsufficientFunds(RedemptionRefused):
    code = "GIFT_CARD_INSUFFICIENT_FUNDS"


class Exhausted(RedemptionRefused):
    code = "PACKAGE_EXHAUSTED"
