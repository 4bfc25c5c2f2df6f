"""
Booking orchestrator
====================

Runs the booking sagas: every public operation combines seat accounting,
the booking state machine and the payment gateway.

Transactions
------------
Database work happens in short units of work.  Gateway calls are never made
while a transaction (and therefore a ride row lock) is open:

1. *Claim* -- inside a unit of work the booking is loaded, the actor and the
   transition are checked and the booking is claimed for the event with a
   conditional update.  Losing the claim means another request got there
   first (``InvalidTransition``).
2. *Gateway* -- the side effects planned by ``BookingStateMachine.plan`` run
   with per-payment idempotency keys.
3. *Finish* -- a second unit of work applies the new booking status, the
   payment status and the seat release together.

Failure rules
-------------
* ``create_booking``: a failed authorization deletes the booking and returns
  its seats before the error propagates.
* ``accept_booking``: a failed capture leaves the booking PENDING and the
  claim is dropped so the driver can retry.
* ``reject_booking`` / ``cancel_booking``: gateway failures never block the
  booking transition; they are reported on the result.
* ``complete_ride``: capture failures are reported per booking; requests
  still PENDING are rejected.  Only ``cancel_ride`` and ``complete_ride``
  act on a closed ride; accepting on one raises ``RideNotBookable``.
* Gateway timeouts are treated as unknown outcomes and left to webhook
  reconciliation (``reconcile``).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Callable, Optional

from src.domain.entities import (
    MAX_SEATS_PER_BOOKING,
    MIN_SEATS_PER_BOOKING,
    Account,
    Booking,
    Payment,
    Ride,
)
from src.domain.enums import (
    ACTIVE_BOOKING_STATUSES,
    BookingEvent,
    BookingStatus,
    PaymentStatus,
    WebhookKind,
)
from src.domain.exceptions import (
    AuthorizationError,
    ConflictError,
    DuplicateActiveBooking,
    InvalidTransition,
    NotFoundError,
    PaymentDeclined,
    PaymentError,
    RideNotBookable,
    ValidationError,
)
from src.domain.penalty import CancellationPenaltyCalculator, PenaltyBreakdown
from src.domain.pricing import CommissionCalculator, booking_amount
from src.domain.seat_inventory import SeatInventory
from src.domain.state_machine import BookingStateMachine, SideEffect, TransitionPlan
from src.infrastructure.gateway import GatewayEvent, PaymentGatewayAdapter
from src.infrastructure.unit_of_work import UnitOfWorkFactory
from src.services.results import (
    BookingResult,
    CaptureFailure,
    RideCancellationResult,
    RideCompletionResult,
    RidePassengers,
)

logger = logging.getLogger(__name__)

_WEBHOOK_TARGETS = {
    WebhookKind.SUCCEEDED: PaymentStatus.CAPTURED,
    WebhookKind.FAILED: PaymentStatus.FAILED,
    WebhookKind.CANCELED: PaymentStatus.CANCELLED,
}

_DEAD_PAYMENT_STATUSES = {PaymentStatus.FAILED, PaymentStatus.CANCELLED}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class _Claimed:
    """Everything a saga needs once it owns a booking."""

    booking: Booking
    ride: Ride
    payment: Optional[Payment]
    payer: Account
    driver: Account
    plan: TransitionPlan
    token: str


class BookingOrchestrator:
    def __init__(
        self,
        uow_factory: UnitOfWorkFactory,
        gateway: PaymentGatewayAdapter,
        *,
        penalty_calculator: Optional[CancellationPenaltyCalculator] = None,
        commission: Optional[CommissionCalculator] = None,
        currency: str = "eur",
        claim_ttl_seconds: int = 60,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.uow = uow_factory
        self.gateway = gateway
        self.penalty_calculator = penalty_calculator or CancellationPenaltyCalculator()
        self.commission = commission or CommissionCalculator()
        self.currency = currency
        self.claim_ttl = timedelta(seconds=claim_ttl_seconds)
        self.clock = clock

    # ── Create ──────────────────────────────────────────────────────────

    async def create_booking(
        self, ride_id: int, passenger_id: int, seats: int
    ) -> BookingResult:
        """
        Reserve *seats* on a ride and, when the passenger has a payment
        method on file, place an authorization hold for the full amount.
        """
        if not MIN_SEATS_PER_BOOKING <= seats <= MAX_SEATS_PER_BOOKING:
            raise ValidationError(
                f"Number of seats must be between {MIN_SEATS_PER_BOOKING} "
                f"and {MAX_SEATS_PER_BOOKING}"
            )

        async with self.uow() as uow:
            ride = await uow.rides.get_for_update(ride_id)
            if ride is None:
                raise NotFoundError("Ride not found")
            if ride.driver_id == passenger_id:
                raise ValidationError("You cannot book your own ride")
            if not ride.is_bookable:
                raise RideNotBookable("Ride is no longer available for booking")
            payer = await uow.users.get_account(passenger_id)
            if payer is None:
                raise NotFoundError("Passenger not found")
            if await uow.bookings.find_active(ride_id, passenger_id):
                raise DuplicateActiveBooking("You already have a booking for this ride")

            SeatInventory.reserve(ride, seats)
            await uow.rides.save_seats(ride)
            booking = await uow.bookings.add(
                Booking(ride_id=ride_id, passenger_id=passenger_id, seats=seats)
            )
            driver = await uow.users.get_account(ride.driver_id) or Account(
                id=ride.driver_id
            )

        logger.info(
            "Booking %s created: ride=%s passenger=%s seats=%d",
            booking.id,
            ride_id,
            passenger_id,
            seats,
        )

        if not payer.has_payment_method:
            logger.warning(
                "Passenger %s has no payment method; booking %s is unpaid",
                passenger_id,
                booking.id,
            )
            return BookingResult(
                booking=booking,
                warnings=["No payment method on file; the booking was not authorized"],
            )

        amount = booking_amount(ride.price_per_seat, seats)
        try:
            payment = await self._authorize(
                booking,
                payer,
                driver,
                amount,
                idempotency_key=f"booking-{booking.id}-authorize",
            )
        except Exception:
            await self._undo_creation(booking)
            raise

        return BookingResult(booking=booking, payment=payment)

    async def _undo_creation(self, booking: Booking) -> None:
        async with self.uow() as uow:
            await uow.bookings.delete(booking.id)
            ride = await uow.rides.get_for_update(booking.ride_id)
            if ride is not None:
                SeatInventory.release(ride, booking.seats)
                await uow.rides.save_seats(ride)
        logger.info("Booking %s rolled back, %d seat(s) released", booking.id, booking.seats)

    # ── Accept ──────────────────────────────────────────────────────────

    async def accept_booking(self, booking_id: int, actor_id: int) -> BookingResult:
        step = await self._claim(booking_id, BookingEvent.ACCEPT, actor_id)
        result = BookingResult(booking=step.booking, payment=step.payment)

        try:
            if SideEffect.CAPTURE_PAYMENT in step.plan:
                result.payment = await self._capture(step.payment)
            elif SideEffect.AUTHORIZE_AND_CAPTURE in step.plan:
                result.payment = await self._authorize_and_capture(step)
        except Exception:
            await self._release_claim(step)
            raise

        if result.payment is None:
            result.warnings.append("Accepted without payment; no payment method on file")
            logger.warning("Booking %s accepted without payment", booking_id)

        result.booking = await self._finish(step)
        logger.info("Booking %s accepted by driver %s", booking_id, actor_id)
        return result

    async def _authorize_and_capture(self, step: _Claimed) -> Payment:
        amount = booking_amount(step.ride.price_per_seat, step.booking.seats)
        payment = await self._authorize(
            step.booking,
            step.payer,
            step.driver,
            amount,
            idempotency_key=self._reauthorization_key(step),
            supersede=step.payment,
        )
        try:
            return await self._capture(payment)
        except PaymentError as exc:
            if not exc.outcome_unknown:
                try:
                    await self._cancel_authorization(payment)
                except PaymentError as cancel_exc:
                    logger.warning(
                        "Could not release hold %s: %s",
                        payment.gateway_reference,
                        cancel_exc.message,
                    )
            raise

    @staticmethod
    def _reauthorization_key(step: _Claimed) -> str:
        # One key per superseded intent, so a hold cancelled by an earlier
        # attempt is never replayed
        previous = step.payment.gateway_reference if step.payment else "none"
        return (
            f"booking-{step.booking.id}-accept-{previous}-"
            f"{step.payer.payment_method_ref}"
        )

    # ── Reject / cancel ─────────────────────────────────────────────────

    async def reject_booking(self, booking_id: int, actor_id: int) -> BookingResult:
        step = await self._claim(booking_id, BookingEvent.REJECT, actor_id)
        result = await self._terminate(step)
        logger.info("Booking %s rejected by driver %s", booking_id, actor_id)
        return result

    async def cancel_booking(self, booking_id: int, actor_id: int) -> BookingResult:
        step = await self._claim(booking_id, BookingEvent.CANCEL, actor_id)
        result = await self._terminate(step)
        logger.info("Booking %s cancelled by user %s", booking_id, actor_id)
        return result

    async def _terminate(self, step: _Claimed, *, full_refund: bool = False) -> BookingResult:
        """Release money and seats, then close the booking."""
        result = BookingResult(booking=step.booking, payment=step.payment)

        if SideEffect.CANCEL_AUTHORIZATION in step.plan:
            try:
                result.payment = await self._cancel_authorization(step.payment)
            except PaymentError as exc:
                logger.warning(
                    "Could not release hold for booking %s: %s",
                    step.booking.id,
                    exc.message,
                )
                result.warnings.append(f"Authorization hold not released: {exc.message}")

        elif {SideEffect.FULL_REFUND, SideEffect.PENALTY_REFUND} & set(step.plan.steps):
            if full_refund or SideEffect.FULL_REFUND in step.plan:
                breakdown = self.penalty_calculator.full_refund(step.payment.amount)
            else:
                breakdown = self.penalty_calculator.compute(
                    step.payment.amount, step.ride.departure_time, self.clock()
                )
            result.penalty = breakdown
            await self._refund(step.payment, breakdown, result)

        result.booking = await self._finish(step)
        return result

    async def _refund(
        self, payment: Payment, breakdown: PenaltyBreakdown, result: BookingResult
    ) -> None:
        if breakdown.refund_amount <= 0:
            logger.info(
                "No refund due for payment %s (penalty %s)",
                payment.id,
                breakdown.penalty_amount,
            )
            return
        try:
            refund = await self.gateway.refund(
                payment.gateway_reference,
                breakdown.refund_amount,
                idempotency_key=f"payment-{payment.id}-refund",
            )
        except PaymentError as exc:
            # The booking is closed anyway; the refund needs manual follow-up
            logger.error(
                "Refund of %s for payment %s failed: %s",
                breakdown.refund_amount,
                payment.id,
                exc.message,
            )
            result.refund_error = exc.message
            return

        result.refund_reference = refund.id
        async with self.uow() as uow:
            await uow.payments.update_status(
                payment.id,
                PaymentStatus.REFUNDED,
                now=self.clock(),
                refunded_amount=breakdown.refund_amount,
                refund_reference=refund.id,
            )
            result.payment = await uow.payments.get_for_booking(payment.booking_id)

    # ── Ride-level operations ───────────────────────────────────────────

    async def complete_ride(self, ride_id: int, actor_id: int) -> RideCompletionResult:
        """
        Mark the ride completed and capture every accepted booking.

        Capture failures are collected per booking; the booking still moves
        to COMPLETED and its payment stays AUTHORIZED for a later retry or
        reconciliation.  Requests still PENDING are rejected: their hold is
        released and their seats returned.
        """
        async with self.uow() as uow:
            ride = await uow.rides.get_for_update(ride_id)
            if ride is None:
                raise NotFoundError("Ride not found")
            if ride.driver_id != actor_id:
                raise AuthorizationError("Only the driver can complete this ride")
            if ride.is_completed:
                raise ConflictError("Ride is already completed")
            if ride.is_cancelled:
                raise ConflictError("Ride was cancelled")
            await uow.rides.mark_completed(ride_id)
            bookings = await uow.bookings.list_for_ride(
                ride_id, [BookingStatus.ACCEPTED]
            )
            requests = await uow.bookings.list_for_ride(
                ride_id, [BookingStatus.PENDING]
            )

        result = RideCompletionResult(ride_id=ride_id)
        for booking in requests:
            try:
                step = await self._claim(booking.id, BookingEvent.REJECT)
            except ConflictError as exc:
                logger.warning(
                    "Pending booking %s on completed ride %s left open: %s",
                    booking.id,
                    ride_id,
                    exc.message,
                )
                continue
            await self._terminate(step)
            result.rejected_booking_ids.append(booking.id)

        for booking in bookings:
            try:
                step = await self._claim(booking.id, BookingEvent.COMPLETE)
            except ConflictError as exc:
                result.failures.append(CaptureFailure(booking.id, exc.message))
                continue

            if SideEffect.CAPTURE_PAYMENT in step.plan:
                try:
                    await self._capture(step.payment)
                    result.captured_booking_ids.append(booking.id)
                except PaymentError as exc:
                    logger.error(
                        "Capture failed for booking %s on ride %s: %s",
                        booking.id,
                        ride_id,
                        exc.message,
                    )
                    result.failures.append(
                        CaptureFailure(booking.id, exc.message, exc.outcome_unknown)
                    )
            elif step.payment is not None and step.payment.status is not PaymentStatus.CAPTURED:
                result.failures.append(
                    CaptureFailure(
                        booking.id,
                        f"No capturable payment (status {step.payment.status.value})",
                    )
                )

            await self._finish(step)
            result.completed_booking_ids.append(booking.id)

        logger.info(
            "Ride %s completed: %d booking(s), %d captured, %d rejected, %d failure(s)",
            ride_id,
            len(result.completed_booking_ids),
            len(result.captured_booking_ids),
            len(result.rejected_booking_ids),
            len(result.failures),
        )
        return result

    async def cancel_ride(self, ride_id: int, actor_id: int) -> RideCancellationResult:
        """Driver withdraws the ride: every active booking is cancelled with a full refund."""
        async with self.uow() as uow:
            ride = await uow.rides.get_for_update(ride_id)
            if ride is None:
                raise NotFoundError("Ride not found")
            if ride.driver_id != actor_id:
                raise AuthorizationError("Only the driver can cancel this ride")
            if not ride.is_bookable:
                raise ConflictError("Ride is no longer active")
            await uow.rides.mark_cancelled(ride_id)
            bookings = await uow.bookings.list_for_ride(
                ride_id, ACTIVE_BOOKING_STATUSES
            )

        result = RideCancellationResult(ride_id=ride_id)
        for booking in bookings:
            try:
                step = await self._claim(booking.id, BookingEvent.CANCEL)
            except ConflictError:
                result.skipped_booking_ids.append(booking.id)
                continue
            result.outcomes.append(await self._terminate(step, full_refund=True))

        logger.info(
            "Ride %s cancelled: %d booking(s) cancelled, %d skipped",
            ride_id,
            len(result.outcomes),
            len(result.skipped_booking_ids),
        )
        return result

    # ── Reconciliation ──────────────────────────────────────────────────

    async def reconcile(self, event: GatewayEvent) -> bool:
        """
        Apply a gateway notification to the matching payment.

        Only AUTHORIZED payments move, so duplicates, late deliveries and
        events for unknown intents are no-ops.  Returns whether a row changed.
        """
        target = _WEBHOOK_TARGETS[event.kind]
        async with self.uow() as uow:
            applied = await uow.payments.update_status_by_reference(
                event.intent_id,
                target,
                now=self.clock(),
            )
        if applied:
            logger.info("Payment %s reconciled to %s", event.intent_id, target.value)
        else:
            logger.debug(
                "Webhook %s for %s had nothing to apply", event.kind.value, event.intent_id
            )
        return applied

    # ── Queries ─────────────────────────────────────────────────────────

    async def get_booking(self, booking_id: int, actor_id: int) -> BookingResult:
        async with self.uow() as uow:
            booking = await uow.bookings.get(booking_id)
            if booking is None:
                raise NotFoundError("Booking not found")
            ride = await uow.rides.get(booking.ride_id)
            if actor_id not in (booking.passenger_id, ride.driver_id):
                raise AuthorizationError("You cannot view this booking")
            payment = await uow.payments.get_for_booking(booking_id)
        return BookingResult(booking=booking, payment=payment)

    async def list_pending_for_driver(self, driver_id: int) -> list[Booking]:
        """Requests waiting for the driver's decision on their open rides."""
        async with self.uow() as uow:
            return await uow.bookings.list_pending_for_driver(driver_id)

    async def list_ride_passengers(self, ride_id: int, actor_id: int) -> RidePassengers:
        async with self.uow() as uow:
            ride = await uow.rides.get(ride_id)
            if ride is None:
                raise NotFoundError("Ride not found")
            if ride.driver_id != actor_id:
                raise AuthorizationError(
                    "You can only view passengers for your own rides"
                )
            bookings = await uow.bookings.list_for_ride(
                ride_id, [BookingStatus.ACCEPTED]
            )
        return RidePassengers(ride_id=ride_id, bookings=bookings)

    # ── Internals ───────────────────────────────────────────────────────

    async def _claim(
        self, booking_id: int, event: BookingEvent, actor_id: Optional[int] = None
    ) -> _Claimed:
        async with self.uow() as uow:
            booking = await uow.bookings.get(booking_id)
            if booking is None:
                raise NotFoundError("Booking not found")
            ride = await uow.rides.get(booking.ride_id)
            if actor_id is not None:
                self._check_actor(event, booking, ride, actor_id)

            payment = await uow.payments.get_for_booking(booking_id)
            payer = await uow.users.get_account(booking.passenger_id) or Account(
                id=booking.passenger_id
            )
            driver = await uow.users.get_account(ride.driver_id) or Account(
                id=ride.driver_id
            )
            plan = BookingStateMachine.plan(
                booking.status,
                event,
                payment.status if payment else None,
                payer.has_payment_method,
            )
            if event is BookingEvent.ACCEPT and not ride.is_bookable:
                raise RideNotBookable("Ride is closed; the booking can no longer be accepted")

            now = self.clock()
            token = await uow.bookings.claim(
                booking_id,
                expected=booking.status,
                event=event,
                now=now,
                stale_before=now - self.claim_ttl,
            )
            if token is None:
                raise InvalidTransition(booking.status.value, event.value)

        return _Claimed(booking, ride, payment, payer, driver, plan, token)

    @staticmethod
    def _check_actor(event: BookingEvent, booking: Booking, ride: Ride, actor_id: int) -> None:
        if event in (BookingEvent.ACCEPT, BookingEvent.REJECT):
            if actor_id != ride.driver_id:
                raise AuthorizationError(
                    f"Only the driver can {event.value.lower()} this booking"
                )
        elif event is BookingEvent.CANCEL:
            if actor_id not in (booking.passenger_id, ride.driver_id):
                raise AuthorizationError("You cannot cancel this booking")

    async def _release_claim(self, step: _Claimed) -> None:
        async with self.uow() as uow:
            await uow.bookings.release_claim(step.booking.id, token=step.token)

    async def _finish(self, step: _Claimed) -> Booking:
        """Apply the claimed transition, releasing seats when the plan says so."""
        plan = step.plan
        async with self.uow() as uow:
            won = await uow.bookings.finish(
                step.booking.id, token=step.token, to_status=plan.to_status
            )
            if not won:
                logger.error(
                    "Booking %s lost its %s claim before finishing",
                    step.booking.id,
                    plan.event.value,
                )
                raise ConflictError("Booking was modified concurrently")
            if SideEffect.RELEASE_SEATS in plan:
                ride = await uow.rides.get_for_update(step.booking.ride_id)
                SeatInventory.release(ride, step.booking.seats)
                await uow.rides.save_seats(ride)
            return await uow.bookings.get(step.booking.id)

    async def _authorize(
        self,
        booking: Booking,
        payer: Account,
        driver: Account,
        amount: Decimal,
        *,
        idempotency_key: str,
        supersede: Optional[Payment] = None,
    ) -> Payment:
        auth = await self.gateway.authorize(
            amount,
            payer.payment_method_ref,
            payer.customer_ref,
            {
                "booking_id": str(booking.id),
                "ride_id": str(booking.ride_id),
                "seats": str(booking.seats),
            },
            driver.payout_account_ref,
            currency=self.currency,
            idempotency_key=idempotency_key,
        )
        if not auth.succeeded:
            logger.warning(
                "Authorization %s for booking %s ended in status %s",
                auth.id,
                booking.id,
                auth.status,
            )
            await self._cancel_quietly(auth.id)
            raise PaymentDeclined(f"Payment authorization failed (status {auth.status})")

        split = self.commission.split(amount)
        try:
            async with self.uow() as uow:
                if supersede is not None and supersede.status in _DEAD_PAYMENT_STATUSES:
                    await uow.payments.delete(supersede.id)
                payment = await uow.payments.add(
                    Payment(
                        booking_id=booking.id,
                        amount=split.amount,
                        platform_fee=split.platform_fee,
                        driver_amount=split.driver_amount,
                        gateway_reference=auth.id,
                        currency=self.currency,
                    ),
                    now=self.clock(),
                )
        except Exception:
            await self._cancel_quietly(auth.id)
            raise

        logger.info("Payment %s authorized for booking %s", auth.id, booking.id)
        return payment

    async def _capture(self, payment: Payment) -> Payment:
        try:
            await self.gateway.capture(
                payment.gateway_reference,
                idempotency_key=f"payment-{payment.id}-capture",
            )
        except PaymentError as exc:
            if exc.outcome_unknown:
                logger.warning(
                    "Capture of %s has an unknown outcome; awaiting webhook",
                    payment.gateway_reference,
                )
            raise
        async with self.uow() as uow:
            # A webhook may already have recorded the capture
            await uow.payments.update_status(
                payment.id,
                PaymentStatus.CAPTURED,
                now=self.clock(),
            )
            return await uow.payments.get_for_booking(payment.booking_id)

    async def _cancel_authorization(self, payment: Payment) -> Payment:
        await self.gateway.cancel_authorization(payment.gateway_reference)
        async with self.uow() as uow:
            await uow.payments.update_status(
                payment.id,
                PaymentStatus.CANCELLED,
                now=self.clock(),
            )
            return await uow.payments.get_for_booking(payment.booking_id)

    async def _cancel_quietly(self, intent_id: str) -> None:
        try:
            await self.gateway.cancel_authorization(intent_id)
        except PaymentError as exc:
            logger.warning("Could not cancel intent %s: %s", intent_id, exc.message)
