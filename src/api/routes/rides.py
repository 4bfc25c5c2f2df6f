"""
Ride endpoints
==============

POST  /api/v1/rides                    -- driver offers a ride
GET   /api/v1/rides/my-bookings        -- my live bookings as a passenger
GET   /api/v1/rides/{ride_id}          -- ride details and seats left
PATCH /api/v1/rides/{ride_id}/complete -- complete the ride, capture payments
PATCH /api/v1/rides/{ride_id}/cancel   -- withdraw the ride, refund passengers
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from src.api.dependencies import get_actor_id, get_db, get_orchestrator
from src.api.middleware import limiter
from src.api.schemas import (
    BookingResponse,
    PassengerBookingResponse,
    RideCancellationResponse,
    RideCompletionResponse,
    RideCreateRequest,
    RideResponse,
)
from src.domain.enums import BookingStatus
from src.infrastructure.repositories import (
    BookingRepository,
    RideRepository,
    UserRepository,
)
from src.services.orchestrator import BookingOrchestrator

router = APIRouter(prefix="/rides", tags=["rides"])


@router.post(
    "",
    status_code=201,
    response_model=RideResponse,
    summary="Offer a ride",
)
@limiter.limit("100/minute")
async def create_ride(
    request: Request,
    body: RideCreateRequest,
    actor_id: int = Depends(get_actor_id),
    db: AsyncSession = Depends(get_db),
):
    if await UserRepository(db).get_account(actor_id) is None:
        raise HTTPException(status_code=404, detail="Driver not found")

    return await RideRepository(db).create_ride(
        driver_id=actor_id,
        origin=body.origin,
        destination=body.destination,
        departure_time=body.departure_time,
        capacity=body.capacity,
        price_per_seat=body.price_per_seat,
    )


@router.get(
    "/my-bookings",
    response_model=list[PassengerBookingResponse],
    summary="My bookings as a passenger",
    description="Newest first; rejected and cancelled bookings are left out.",
)
@limiter.limit("100/minute")
async def list_my_bookings(
    request: Request,
    actor_id: int = Depends(get_actor_id),
    db: AsyncSession = Depends(get_db),
):
    bookings = await BookingRepository(db).list_for_passenger(
        actor_id, exclude=[BookingStatus.REJECTED, BookingStatus.CANCELLED]
    )
    rides = RideRepository(db)
    items = []
    for booking in bookings:
        ride = await rides.get_row(booking.ride_id)
        items.append(
            PassengerBookingResponse(
                booking=BookingResponse.model_validate(booking),
                ride=RideResponse.model_validate(ride),
            )
        )
    return items


@router.get(
    "/{ride_id}",
    response_model=RideResponse,
    summary="Get ride details",
)
@limiter.limit("100/minute")
async def get_ride(
    request: Request,
    ride_id: int,
    db: AsyncSession = Depends(get_db),
):
    ride = await RideRepository(db).get_row(ride_id)
    if not ride:
        raise HTTPException(status_code=404, detail="Ride not found")
    return ride


@router.patch(
    "/{ride_id}/complete",
    response_model=RideCompletionResponse,
    summary="Complete a ride",
    description=(
        "Marks the ride completed and captures the payment of every accepted "
        "booking.  Capture failures are reported per booking."
    ),
)
@limiter.limit("100/minute")
async def complete_ride(
    request: Request,
    ride_id: int,
    actor_id: int = Depends(get_actor_id),
    orchestrator: BookingOrchestrator = Depends(get_orchestrator),
):
    result = await orchestrator.complete_ride(ride_id, actor_id)
    return RideCompletionResponse.from_result(result)


@router.patch(
    "/{ride_id}/cancel",
    response_model=RideCancellationResponse,
    summary="Cancel a ride",
    description=(
        "Withdraws the ride.  Every pending or accepted booking is cancelled "
        "and its payment released or fully refunded."
    ),
)
@limiter.limit("100/minute")
async def cancel_ride(
    request: Request,
    ride_id: int,
    actor_id: int = Depends(get_actor_id),
    orchestrator: BookingOrchestrator = Depends(get_orchestrator),
):
    result = await orchestrator.cancel_ride(ride_id, actor_id)
    return RideCancellationResponse.from_result(result)
