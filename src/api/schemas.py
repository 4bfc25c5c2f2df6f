"""Pydantic request / response schemas for the REST API."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field

from src.domain.entities import MAX_SEATS_PER_BOOKING, MIN_SEATS_PER_BOOKING
from src.domain.enums import BookingStatus, PaymentStatus
from src.services.results import (
    BookingResult,
    RideCancellationResult,
    RideCompletionResult,
    RidePassengers,
)


# ── Requests ──────────────────────────────────────────────────────────


class RideCreateRequest(BaseModel):
    origin: str = Field(..., min_length=1, max_length=255)
    destination: str = Field(..., min_length=1, max_length=255)
    departure_time: datetime
    capacity: int = Field(..., ge=1, le=8)
    price_per_seat: Decimal = Field(..., ge=0, max_digits=10, decimal_places=2)


class BookingCreateRequest(BaseModel):
    ride_id: int
    seats: int = Field(1, ge=MIN_SEATS_PER_BOOKING, le=MAX_SEATS_PER_BOOKING)


# ── Responses ─────────────────────────────────────────────────────────


class RideResponse(BaseModel):
    id: int
    driver_id: int
    origin: str
    destination: str
    departure_time: datetime
    capacity: int
    available_seats: int
    price_per_seat: Decimal
    is_active: bool
    is_cancelled: bool
    is_completed: bool
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class BookingResponse(BaseModel):
    id: int
    ride_id: int
    passenger_id: int
    seats: int
    status: BookingStatus
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class PaymentResponse(BaseModel):
    id: int
    amount: Decimal
    platform_fee: Decimal
    driver_amount: Decimal
    currency: str
    status: PaymentStatus
    gateway_reference: str
    refunded_amount: Optional[Decimal] = None

    model_config = {"from_attributes": True}


class PenaltyResponse(BaseModel):
    penalty_percent: Decimal
    penalty_amount: Decimal
    estimated_fee: Decimal
    refund_amount: Decimal

    model_config = {"from_attributes": True}


class BookingResultResponse(BaseModel):
    booking: BookingResponse
    payment: Optional[PaymentResponse] = None
    penalty: Optional[PenaltyResponse] = None
    refund_reference: Optional[str] = None
    refund_error: Optional[str] = None
    warnings: list[str] = []

    @classmethod
    def from_result(cls, result: BookingResult) -> "BookingResultResponse":
        return cls.model_validate(result, from_attributes=True)


class CaptureFailureResponse(BaseModel):
    booking_id: int
    reason: str
    outcome_unknown: bool

    model_config = {"from_attributes": True}


class RideCompletionResponse(BaseModel):
    ride_id: int
    completed_booking_ids: list[int]
    captured_booking_ids: list[int]
    rejected_booking_ids: list[int]
    failures: list[CaptureFailureResponse]

    @classmethod
    def from_result(cls, result: RideCompletionResult) -> "RideCompletionResponse":
        return cls.model_validate(result, from_attributes=True)


class RideCancellationResponse(BaseModel):
    ride_id: int
    bookings: list[BookingResultResponse]
    skipped_booking_ids: list[int]

    @classmethod
    def from_result(cls, result: RideCancellationResult) -> "RideCancellationResponse":
        return cls(
            ride_id=result.ride_id,
            bookings=[BookingResultResponse.from_result(o) for o in result.outcomes],
            skipped_booking_ids=result.skipped_booking_ids,
        )


class RidePassengersResponse(BaseModel):
    ride_id: int
    total_passengers: int
    total_seats_booked: int
    passengers: list[BookingResponse]

    @classmethod
    def from_result(cls, result: RidePassengers) -> "RidePassengersResponse":
        return cls(
            ride_id=result.ride_id,
            total_passengers=result.total_passengers,
            total_seats_booked=result.total_seats_booked,
            passengers=[BookingResponse.model_validate(b) for b in result.bookings],
        )


class PassengerBookingResponse(BaseModel):
    """A passenger's booking together with the ride it is on."""

    booking: BookingResponse
    ride: RideResponse


class SeatAuditResponse(BaseModel):
    ride_id: int
    capacity: int
    available_seats: int
    held_seats: int
    conserved: bool


class WebhookAck(BaseModel):
    received: bool = True
    queued: bool


class HealthResponse(BaseModel):
    status: str = "ok"


class ErrorResponse(BaseModel):
    detail: str
    code: str
