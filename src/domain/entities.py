"""
Domain entities (value types returned by the repositories).

Invariants are validated at construction time so a malformed row coming
out of storage fails loudly instead of leaking into the booking sagas.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional

from .enums import BookingStatus, PaymentStatus
from .exceptions import ValidationError

MIN_SEATS_PER_BOOKING = 1
MAX_SEATS_PER_BOOKING = 8


@dataclass
class Ride:
    driver_id: int
    capacity: int
    available_seats: int
    price_per_seat: Decimal
    departure_time: datetime
    id: Optional[int] = None
    is_active: bool = True
    is_cancelled: bool = False
    is_completed: bool = False

    def __post_init__(self) -> None:
        if self.capacity < 1:
            raise ValidationError("Ride capacity must be at least 1")
        if not 0 <= self.available_seats <= self.capacity:
            raise ValidationError(
                f"available_seats {self.available_seats} outside 0..{self.capacity}"
            )
        if Decimal(self.price_per_seat) < 0:
            raise ValidationError("price_per_seat must not be negative")
        if self.is_cancelled and self.is_completed:
            raise ValidationError("A ride cannot be both cancelled and completed")
        if self.is_active and (self.is_cancelled or self.is_completed):
            raise ValidationError("A finished ride cannot be active")

    @property
    def is_bookable(self) -> bool:
        return self.is_active and not (self.is_cancelled or self.is_completed)


@dataclass
class Booking:
    ride_id: int
    passenger_id: int
    seats: int
    status: BookingStatus = BookingStatus.PENDING
    id: Optional[int] = None
    created_at: Optional[datetime] = None
    pending_event: Optional[str] = None

    def __post_init__(self) -> None:
        if not MIN_SEATS_PER_BOOKING <= self.seats <= MAX_SEATS_PER_BOOKING:
            raise ValidationError(
                f"Number of seats must be between {MIN_SEATS_PER_BOOKING} "
                f"and {MAX_SEATS_PER_BOOKING}"
            )
        self.status = BookingStatus(self.status)


@dataclass
class Payment:
    booking_id: int
    amount: Decimal
    platform_fee: Decimal
    driver_amount: Decimal
    gateway_reference: str
    status: PaymentStatus = PaymentStatus.AUTHORIZED
    currency: str = "eur"
    id: Optional[int] = None
    refunded_amount: Optional[Decimal] = None
    refund_reference: Optional[str] = None
    authorized_at: Optional[datetime] = None
    captured_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    refunded_at: Optional[datetime] = None

    def __post_init__(self) -> None:
        if self.amount < 0:
            raise ValidationError("Payment amount must not be negative")
        if not 0 <= self.platform_fee <= self.amount:
            raise ValidationError("platform_fee must be within 0..amount")
        if self.driver_amount != self.amount - self.platform_fee:
            raise ValidationError("driver_amount must equal amount - platform_fee")
        self.status = PaymentStatus(self.status)


@dataclass(frozen=True)
class Account:
    """Payer / payee view of a user as far as money movement is concerned."""

    id: int
    payment_method_ref: Optional[str] = None
    customer_ref: Optional[str] = None
    payout_account_ref: Optional[str] = None

    @property
    def has_payment_method(self) -> bool:
        return bool(self.payment_method_ref and self.customer_ref)
