"""Domain enumerations and state-transition rules."""

import enum


class BookingStatus(str, enum.Enum):
    PENDING = "PENDING"
    ACCEPTED = "ACCEPTED"
    REJECTED = "REJECTED"
    CANCELLED = "CANCELLED"
    COMPLETED = "COMPLETED"


class BookingEvent(str, enum.Enum):
    ACCEPT = "ACCEPT"
    REJECT = "REJECT"
    CANCEL = "CANCEL"
    COMPLETE = "COMPLETE"


class PaymentStatus(str, enum.Enum):
    AUTHORIZED = "AUTHORIZED"
    CAPTURED = "CAPTURED"
    CANCELLED = "CANCELLED"
    REFUNDED = "REFUNDED"
    FAILED = "FAILED"


# Statuses that hold seats on the ride
ACTIVE_BOOKING_STATUSES: frozenset[BookingStatus] = frozenset(
    {BookingStatus.PENDING, BookingStatus.ACCEPTED}
)

# State machine: maps current status -> set of valid next statuses
BOOKING_TRANSITIONS: dict[BookingStatus, set[BookingStatus]] = {
    BookingStatus.PENDING: {
        BookingStatus.ACCEPTED,
        BookingStatus.REJECTED,
        BookingStatus.CANCELLED,
    },
    BookingStatus.ACCEPTED: {BookingStatus.CANCELLED, BookingStatus.COMPLETED},
    BookingStatus.REJECTED: set(),
    BookingStatus.CANCELLED: set(),
    BookingStatus.COMPLETED: set(),
}

EVENT_TARGETS: dict[BookingEvent, BookingStatus] = {
    BookingEvent.ACCEPT: BookingStatus.ACCEPTED,
    BookingEvent.REJECT: BookingStatus.REJECTED,
    BookingEvent.CANCEL: BookingStatus.CANCELLED,
    BookingEvent.COMPLETE: BookingStatus.COMPLETED,
}

# CAPTURED -> REFUNDED is the only edge out of a terminal payment state
PAYMENT_TRANSITIONS: dict[PaymentStatus, set[PaymentStatus]] = {
    PaymentStatus.AUTHORIZED: {
        PaymentStatus.CAPTURED,
        PaymentStatus.CANCELLED,
        PaymentStatus.FAILED,
    },
    PaymentStatus.CAPTURED: {PaymentStatus.REFUNDED},
    PaymentStatus.CANCELLED: set(),
    PaymentStatus.REFUNDED: set(),
    PaymentStatus.FAILED: set(),
}


class WebhookKind(str, enum.Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELED = "canceled"
