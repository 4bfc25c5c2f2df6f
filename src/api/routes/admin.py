"""
Admin / observability endpoints
===============================

GET /api/v1/admin/rides/{ride_id}/seats -- seat conservation audit for a ride
GET /api/v1/admin/health                -- simple health check
"""

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from src.api.dependencies import get_db
from src.api.middleware import limiter
from src.api.schemas import HealthResponse, SeatAuditResponse
from src.infrastructure.repositories import BookingRepository, RideRepository

router = APIRouter(prefix="/admin", tags=["admin"])


@router.get(
    "/rides/{ride_id}/seats",
    response_model=SeatAuditResponse,
    summary="Audit seat accounting for a ride",
)
@limiter.limit("100/minute")
async def audit_ride_seats(
    request: Request,
    ride_id: int,
    db: AsyncSession = Depends(get_db),
):
    ride = await RideRepository(db).get(ride_id)
    if not ride:
        raise HTTPException(status_code=404, detail="Ride not found")

    held = await BookingRepository(db).held_seats(ride_id)
    return SeatAuditResponse(
        ride_id=ride_id,
        capacity=ride.capacity,
        available_seats=ride.available_seats,
        held_seats=held,
        conserved=ride.available_seats + held == ride.capacity,
    )


@router.get("/health", response_model=HealthResponse, summary="Health check")
async def health():
    return HealthResponse()
