"""
Seat inventory accounting for a single ride.

Pure counter arithmetic on a ``Ride`` entity.  Callers must hold the ride's
row lock (``RideRepository.get_for_update``) while reserving or releasing so
that two concurrent reservations are serialised per ride, and must write
``available_seats`` back in the same transaction.

Conservation invariant (per ride, between operations)::

    available_seats + sum(seats of PENDING/ACCEPTED bookings) == capacity
"""

from __future__ import annotations

from typing import Iterable

from .entities import Booking, Ride
from .enums import ACTIVE_BOOKING_STATUSES
from .exceptions import InsufficientSeats, ValidationError


class SeatInventory:
    @staticmethod
    def reserve(ride: Ride, seat_count: int) -> None:
        """Take *seat_count* seats or raise ``InsufficientSeats``."""
        if seat_count < 1:
            raise ValidationError("seat_count must be positive")
        if seat_count > ride.available_seats:
            raise InsufficientSeats(seat_count, ride.available_seats)
        ride.available_seats -= seat_count

    @staticmethod
    def release(ride: Ride, seat_count: int) -> None:
        """Give seats back, never exceeding capacity (duplicate releases clamp)."""
        if seat_count < 1:
            raise ValidationError("seat_count must be positive")
        ride.available_seats = min(ride.capacity, ride.available_seats + seat_count)

    @staticmethod
    def held_seats(bookings: Iterable[Booking]) -> int:
        return sum(b.seats for b in bookings if b.status in ACTIVE_BOOKING_STATUSES)

    @classmethod
    def is_conserved(cls, ride: Ride, bookings: Iterable[Booking]) -> bool:
        return ride.available_seats + cls.held_seats(bookings) == ride.capacity
