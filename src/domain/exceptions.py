"""
Error taxonomy surfaced by the booking core.

Every error carries a stable ``code`` and the HTTP ``status_code`` the API
layer answers with, so routes never have to translate exceptions by hand.
"""

from __future__ import annotations


class BookingError(Exception):
    """Base class for all errors raised by the booking core."""

    code = "booking_error"
    status_code = 400

    def __init__(self, message: str = ""):
        super().__init__(message or self.code)
        self.message = message or self.code


# ── Local invariant violations (no side effects performed) ──────────


class ValidationError(BookingError):
    code = "validation_error"
    status_code = 422


class ConflictError(BookingError):
    code = "conflict"
    status_code = 409


class InsufficientSeats(ConflictError):
    code = "insufficient_seats"

    def __init__(self, requested: int, available: int):
        self.requested = requested
        self.available = available
        super().__init__(
            f"Not enough seats available. Requested {requested}, "
            f"only {available} left."
        )


class DuplicateActiveBooking(ConflictError):
    code = "duplicate_active_booking"


class RideNotBookable(ConflictError):
    code = "ride_not_bookable"


class InvalidTransition(ConflictError):
    """Raised when a booking event does not match its current status."""

    code = "invalid_transition"

    def __init__(self, from_status: str, event: str):
        self.from_status = from_status
        self.event = event
        super().__init__(f"Cannot apply {event} to a booking in status {from_status}")


class NotFoundError(BookingError):
    code = "not_found"
    status_code = 404


class AuthorizationError(BookingError):
    code = "forbidden"
    status_code = 403


# ── Gateway failures ─────────────────────────────────────────────────


class PaymentError(BookingError):
    """
    The gateway step of a saga failed.

    ``outcome_unknown`` is set when the gateway may have applied the
    operation even though no response came back.
    """

    code = "payment_error"
    status_code = 402
    outcome_unknown = False


class PaymentMethodMissing(PaymentError):
    code = "payment_method_missing"


class PaymentDeclined(PaymentError):
    code = "payment_declined"


class GatewayUnavailable(PaymentError):
    code = "gateway_unavailable"
    status_code = 503


class GatewayTimeout(PaymentError):
    code = "gateway_timeout"
    status_code = 504
    outcome_unknown = True


class InvalidWebhook(BookingError):
    """A webhook delivery failed signature verification or was malformed."""

    code = "invalid_webhook"
    status_code = 400
