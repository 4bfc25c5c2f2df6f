"""Result objects returned by the booking orchestrator."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

from src.domain.entities import Booking, Payment
from src.domain.penalty import PenaltyBreakdown


@dataclass
class BookingResult:
    booking: Optional[Booking]
    payment: Optional[Payment] = None
    penalty: Optional[PenaltyBreakdown] = None
    refund_reference: Optional[str] = None
    # Refund failures never block a cancellation; they are reported here
    refund_error: Optional[str] = None
    warnings: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class CaptureFailure:
    booking_id: int
    reason: str
    outcome_unknown: bool = False


@dataclass
class RideCompletionResult:
    ride_id: int
    completed_booking_ids: list[int] = field(default_factory=list)
    captured_booking_ids: list[int] = field(default_factory=list)
    # PENDING requests closed because the ride is over
    rejected_booking_ids: list[int] = field(default_factory=list)
    failures: list[CaptureFailure] = field(default_factory=list)


@dataclass
class RideCancellationResult:
    ride_id: int
    outcomes: list[BookingResult] = field(default_factory=list)
    skipped_booking_ids: list[int] = field(default_factory=list)


@dataclass
class RidePassengers:
    ride_id: int
    bookings: list[Booking] = field(default_factory=list)

    @property
    def total_passengers(self) -> int:
        return len(self.bookings)

    @property
    def total_seats_booked(self) -> int:
        return sum(b.seats for b in self.bookings)
