"""
Booking endpoints
=================

POST  /api/v1/bookings                       -- request seats (authorizes payment)
GET   /api/v1/bookings/pending-for-driver    -- requests waiting on my rides
GET   /api/v1/bookings/ride/{ride_id}/passengers -- accepted passengers of my ride
GET   /api/v1/bookings/{booking_id}          -- booking with its payment
PATCH /api/v1/bookings/{booking_id}/accept   -- driver accepts (captures)
PATCH /api/v1/bookings/{booking_id}/reject   -- driver rejects (releases / refunds)
PATCH /api/v1/bookings/{booking_id}/cancel   -- passenger or driver cancels
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request

from src.api.dependencies import get_actor_id, get_orchestrator
from src.api.middleware import limiter
from src.api.schemas import (
    BookingCreateRequest,
    BookingResponse,
    BookingResultResponse,
    RidePassengersResponse,
)
from src.services.orchestrator import BookingOrchestrator

router = APIRouter(prefix="/bookings", tags=["bookings"])


@router.post(
    "",
    status_code=201,
    response_model=BookingResultResponse,
    summary="Book seats on a ride",
    responses={
        402: {"description": "Payment authorization failed; nothing was booked."},
        409: {"description": "Not enough seats, or an active booking already exists."},
    },
)
@limiter.limit("100/minute")
async def create_booking(
    request: Request,
    body: BookingCreateRequest,
    actor_id: int = Depends(get_actor_id),
    orchestrator: BookingOrchestrator = Depends(get_orchestrator),
):
    result = await orchestrator.create_booking(body.ride_id, actor_id, body.seats)
    return BookingResultResponse.from_result(result)


@router.get(
    "/pending-for-driver",
    response_model=list[BookingResponse],
    summary="Pending requests on my open rides",
)
@limiter.limit("100/minute")
async def list_pending_for_driver(
    request: Request,
    actor_id: int = Depends(get_actor_id),
    orchestrator: BookingOrchestrator = Depends(get_orchestrator),
):
    bookings = await orchestrator.list_pending_for_driver(actor_id)
    return [BookingResponse.model_validate(b) for b in bookings]


@router.get(
    "/ride/{ride_id}/passengers",
    response_model=RidePassengersResponse,
    summary="Accepted passengers of a ride",
    responses={403: {"description": "Caller is not the ride's driver."}},
)
@limiter.limit("100/minute")
async def list_ride_passengers(
    request: Request,
    ride_id: int,
    actor_id: int = Depends(get_actor_id),
    orchestrator: BookingOrchestrator = Depends(get_orchestrator),
):
    return RidePassengersResponse.from_result(
        await orchestrator.list_ride_passengers(ride_id, actor_id)
    )


@router.get(
    "/{booking_id}",
    response_model=BookingResultResponse,
    summary="Get a booking",
)
@limiter.limit("100/minute")
async def get_booking(
    request: Request,
    booking_id: int,
    actor_id: int = Depends(get_actor_id),
    orchestrator: BookingOrchestrator = Depends(get_orchestrator),
):
    return BookingResultResponse.from_result(
        await orchestrator.get_booking(booking_id, actor_id)
    )


@router.patch(
    "/{booking_id}/accept",
    response_model=BookingResultResponse,
    summary="Accept a booking",
)
@limiter.limit("100/minute")
async def accept_booking(
    request: Request,
    booking_id: int,
    actor_id: int = Depends(get_actor_id),
    orchestrator: BookingOrchestrator = Depends(get_orchestrator),
):
    return BookingResultResponse.from_result(
        await orchestrator.accept_booking(booking_id, actor_id)
    )


@router.patch(
    "/{booking_id}/reject",
    response_model=BookingResultResponse,
    summary="Reject a booking",
)
@limiter.limit("100/minute")
async def reject_booking(
    request: Request,
    booking_id: int,
    actor_id: int = Depends(get_actor_id),
    orchestrator: BookingOrchestrator = Depends(get_orchestrator),
):
    return BookingResultResponse.from_result(
        await orchestrator.reject_booking(booking_id, actor_id)
    )


@router.patch(
    "/{booking_id}/cancel",
    response_model=BookingResultResponse,
    summary="Cancel a booking",
    description=(
        "Releases the authorization hold, or refunds a captured payment minus "
        "the late-cancellation penalty and the estimated gateway fee."
    ),
)
@limiter.limit("100/minute")
async def cancel_booking(
    request: Request,
    booking_id: int,
    actor_id: int = Depends(get_actor_id),
    orchestrator: BookingOrchestrator = Depends(get_orchestrator),
):
    return BookingResultResponse.from_result(
        await orchestrator.cancel_booking(booking_id, actor_id)
    )
