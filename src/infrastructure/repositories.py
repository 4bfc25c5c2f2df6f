"""
Repository Pattern -- abstracts DB access so domain logic stays DB-agnostic.

Each repository receives an ``AsyncSession`` (unit-of-work) and exposes
typed, domain-relevant operations only.  Rows are returned as domain
entities, never as ORM instances.  Status changes that can race are
conditional updates (compare-and-swap on the current value) and report
whether they won.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any, Iterable, Optional

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from .models import BookingModel, PaymentModel, RideModel, UserModel
from src.domain.entities import Account, Booking, Payment, Ride
from src.domain.enums import (
    ACTIVE_BOOKING_STATUSES,
    PAYMENT_TRANSITIONS,
    BookingEvent,
    BookingStatus,
    PaymentStatus,
)
from src.domain.exceptions import DuplicateActiveBooking

_PAYMENT_TIMESTAMPS = {
    PaymentStatus.CAPTURED: "captured_at",
    PaymentStatus.CANCELLED: "cancelled_at",
    PaymentStatus.REFUNDED: "refunded_at",
}


class UserRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(
        self,
        *,
        full_name: str,
        email: str,
        payment_method_ref: str | None = None,
        customer_ref: str | None = None,
        payout_account_ref: str | None = None,
    ) -> Account:
        user = UserModel(
            full_name=full_name,
            email=email,
            payment_method_ref=payment_method_ref,
            customer_ref=customer_ref,
            payout_account_ref=payout_account_ref,
        )
        self.session.add(user)
        await self.session.flush()
        return user.to_account()

    async def get_account(self, user_id: int) -> Optional[Account]:
        user = await self.session.get(UserModel, user_id)
        return user.to_account() if user else None


class RideRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create_ride(
        self,
        *,
        driver_id: int,
        origin: str,
        destination: str,
        departure_time: datetime,
        capacity: int,
        price_per_seat: Decimal,
    ) -> RideModel:
        # Validate through the entity before touching the table
        Ride(
            driver_id=driver_id,
            capacity=capacity,
            available_seats=capacity,
            price_per_seat=price_per_seat,
            departure_time=departure_time,
        )
        ride = RideModel(
            driver_id=driver_id,
            origin=origin,
            destination=destination,
            departure_time=departure_time,
            capacity=capacity,
            available_seats=capacity,
            price_per_seat=price_per_seat,
            is_active=True,
            is_cancelled=False,
            is_completed=False,
        )
        self.session.add(ride)
        await self.session.flush()
        await self.session.refresh(ride)
        return ride

    async def get_row(self, ride_id: int) -> Optional[RideModel]:
        return await self.session.get(RideModel, ride_id)

    async def get(self, ride_id: int) -> Optional[Ride]:
        ride = await self.session.get(RideModel, ride_id)
        return ride.to_entity() if ride else None

    async def get_for_update(self, ride_id: int) -> Optional[Ride]:
        """SELECT ... FOR UPDATE -- serialises seat accounting per ride."""
        result = await self.session.execute(
            select(RideModel).where(RideModel.id == ride_id).with_for_update()
        )
        ride = result.scalar_one_or_none()
        return ride.to_entity() if ride else None

    async def save_seats(self, ride: Ride) -> None:
        await self.session.execute(
            update(RideModel)
            .where(RideModel.id == ride.id)
            .values(available_seats=ride.available_seats)
            .execution_options(synchronize_session=False)
        )

    async def mark_completed(self, ride_id: int) -> None:
        await self._set_flags(ride_id, is_active=False, is_completed=True)

    async def mark_cancelled(self, ride_id: int) -> None:
        await self._set_flags(ride_id, is_active=False, is_cancelled=True)

    async def _set_flags(self, ride_id: int, **flags: bool) -> None:
        await self.session.execute(
            update(RideModel)
            .where(RideModel.id == ride_id)
            .values(**flags)
            .execution_options(synchronize_session=False)
        )


class BookingRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def add(self, booking: Booking) -> Booking:
        row = BookingModel(
            ride_id=booking.ride_id,
            passenger_id=booking.passenger_id,
            seats=booking.seats,
            status=booking.status,
        )
        self.session.add(row)
        try:
            await self.session.flush()
        except IntegrityError as exc:
            raise DuplicateActiveBooking(
                "You already have a booking for this ride"
            ) from exc
        await self.session.refresh(row)
        return row.to_entity()

    async def get(self, booking_id: int) -> Optional[Booking]:
        result = await self.session.execute(
            select(BookingModel).where(BookingModel.id == booking_id)
        )
        row = result.scalar_one_or_none()
        return row.to_entity() if row else None

    async def find_active(self, ride_id: int, passenger_id: int) -> Optional[Booking]:
        result = await self.session.execute(
            select(BookingModel).where(
                BookingModel.ride_id == ride_id,
                BookingModel.passenger_id == passenger_id,
                BookingModel.status.in_(list(ACTIVE_BOOKING_STATUSES)),
            )
        )
        row = result.scalars().first()
        return row.to_entity() if row else None

    async def list_for_ride(
        self, ride_id: int, statuses: Iterable[BookingStatus] | None = None
    ) -> list[Booking]:
        query = select(BookingModel).where(BookingModel.ride_id == ride_id)
        if statuses is not None:
            query = query.where(BookingModel.status.in_(list(statuses)))
        result = await self.session.execute(query.order_by(BookingModel.id))
        return [row.to_entity() for row in result.scalars().all()]

    async def list_pending_for_driver(self, driver_id: int) -> list[Booking]:
        """PENDING requests on the driver's rides that are still open, newest first."""
        result = await self.session.execute(
            select(BookingModel)
            .join(RideModel, RideModel.id == BookingModel.ride_id)
            .where(
                RideModel.driver_id == driver_id,
                RideModel.is_completed.is_(False),
                RideModel.is_cancelled.is_(False),
                BookingModel.status == BookingStatus.PENDING,
            )
            .order_by(BookingModel.created_at.desc(), BookingModel.id.desc())
        )
        return [row.to_entity() for row in result.scalars().all()]

    async def list_for_passenger(
        self, passenger_id: int, exclude: Iterable[BookingStatus] = ()
    ) -> list[Booking]:
        query = select(BookingModel).where(BookingModel.passenger_id == passenger_id)
        excluded = list(exclude)
        if excluded:
            query = query.where(BookingModel.status.not_in(excluded))
        result = await self.session.execute(
            query.order_by(BookingModel.created_at.desc(), BookingModel.id.desc())
        )
        return [row.to_entity() for row in result.scalars().all()]

    async def held_seats(self, ride_id: int) -> int:
        result = await self.session.execute(
            select(func.coalesce(func.sum(BookingModel.seats), 0)).where(
                BookingModel.ride_id == ride_id,
                BookingModel.status.in_(list(ACTIVE_BOOKING_STATUSES)),
            )
        )
        return int(result.scalar() or 0)

    async def delete(self, booking_id: int) -> None:
        await self.session.execute(
            delete(BookingModel)
            .where(BookingModel.id == booking_id)
            .execution_options(synchronize_session=False)
        )

    async def claim(
        self,
        booking_id: int,
        *,
        expected: BookingStatus,
        event: BookingEvent,
        now: datetime,
        stale_before: datetime,
    ) -> Optional[str]:
        """
        Take ownership of the booking for *event*.

        Wins only if the booking is still in *expected* and no other step
        holds a live claim.  Claims older than *stale_before* are treated as
        abandoned.  Returns the claim token on success, ``None`` otherwise;
        ``finish`` and ``release_claim`` only act for the current token.
        """
        token = str(uuid.uuid4())
        result = await self.session.execute(
            update(BookingModel)
            .where(
                BookingModel.id == booking_id,
                BookingModel.status == expected,
                (BookingModel.pending_event.is_(None))
                | (BookingModel.pending_since < stale_before),
            )
            .values(pending_event=event.value, pending_since=now, claim_token=token)
            .execution_options(synchronize_session=False)
        )
        return token if result.rowcount == 1 else None

    async def finish(
        self, booking_id: int, *, token: str, to_status: BookingStatus
    ) -> bool:
        """Apply the claimed transition and drop the claim."""
        result = await self.session.execute(
            update(BookingModel)
            .where(BookingModel.id == booking_id, BookingModel.claim_token == token)
            .values(
                status=to_status,
                pending_event=None,
                pending_since=None,
                claim_token=None,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def release_claim(self, booking_id: int, *, token: str) -> None:
        await self.session.execute(
            update(BookingModel)
            .where(BookingModel.id == booking_id, BookingModel.claim_token == token)
            .values(pending_event=None, pending_since=None, claim_token=None)
            .execution_options(synchronize_session=False)
        )


class PaymentRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def add(self, payment: Payment, *, now: datetime) -> Payment:
        row = PaymentModel(
            booking_id=payment.booking_id,
            amount=payment.amount,
            platform_fee=payment.platform_fee,
            driver_amount=payment.driver_amount,
            currency=payment.currency,
            status=payment.status,
            gateway_reference=payment.gateway_reference,
            authorized_at=now,
        )
        self.session.add(row)
        await self.session.flush()
        return row.to_entity()

    async def get_for_booking(self, booking_id: int) -> Optional[Payment]:
        result = await self.session.execute(
            select(PaymentModel).where(PaymentModel.booking_id == booking_id)
        )
        row = result.scalar_one_or_none()
        return row.to_entity() if row else None

    async def delete(self, payment_id: int) -> None:
        await self.session.execute(
            delete(PaymentModel)
            .where(PaymentModel.id == payment_id)
            .execution_options(synchronize_session=False)
        )

    async def update_status(
        self,
        payment_id: int,
        to_status: PaymentStatus,
        *,
        expected: Optional[Iterable[PaymentStatus]] = None,
        now: datetime,
        **values: Any,
    ) -> bool:
        """
        Conditional status update; False when the row was not in *expected*.

        *expected* defaults to every status with a legal edge into *to_status*.
        """
        return await self._update(
            PaymentModel.id == payment_id, to_status, expected, now, values
        )

    async def update_status_by_reference(
        self,
        gateway_reference: str,
        to_status: PaymentStatus,
        *,
        expected: Optional[Iterable[PaymentStatus]] = None,
        now: datetime,
    ) -> bool:
        return await self._update(
            PaymentModel.gateway_reference == gateway_reference,
            to_status,
            expected,
            now,
            {},
        )

    async def _update(
        self,
        criterion: Any,
        to_status: PaymentStatus,
        expected: Optional[Iterable[PaymentStatus]],
        now: datetime,
        values: dict[str, Any],
    ) -> bool:
        if expected is None:
            expected = [
                status
                for status, targets in PAYMENT_TRANSITIONS.items()
                if to_status in targets
            ]
        stamp = _PAYMENT_TIMESTAMPS.get(to_status)
        if stamp:
            values[stamp] = now
        result = await self.session.execute(
            update(PaymentModel)
            .where(criterion, PaymentModel.status.in_(list(expected)))
            .values(status=to_status, **values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1
