"""
Booking lifecycle controller.

Owns the legal edges of a booking and, for every event, decides which seat
and gateway side effects the orchestrator has to run and in what order.

::

    (create) -> PENDING -> ACCEPTED -> COMPLETED
                   |           |
                   |           +----> CANCELLED
                   +--> REJECTED
                   +--> CANCELLED
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Optional

from .enums import (
    BOOKING_TRANSITIONS,
    EVENT_TARGETS,
    BookingEvent,
    BookingStatus,
    PaymentStatus,
)
from .exceptions import InvalidTransition


class SideEffect(str, enum.Enum):
    CAPTURE_PAYMENT = "CAPTURE_PAYMENT"
    AUTHORIZE_AND_CAPTURE = "AUTHORIZE_AND_CAPTURE"
    CANCEL_AUTHORIZATION = "CANCEL_AUTHORIZATION"
    PENALTY_REFUND = "PENALTY_REFUND"
    FULL_REFUND = "FULL_REFUND"
    RELEASE_SEATS = "RELEASE_SEATS"


# Payment states that leave nothing to capture, cancel or refund
_DEAD_PAYMENT = {None, PaymentStatus.FAILED, PaymentStatus.CANCELLED}


@dataclass(frozen=True)
class TransitionPlan:
    event: BookingEvent
    from_status: BookingStatus
    to_status: BookingStatus
    steps: tuple[SideEffect, ...]

    def __contains__(self, step: SideEffect) -> bool:
        return step in self.steps


class BookingStateMachine:
    @staticmethod
    def target(event: BookingEvent) -> BookingStatus:
        return EVENT_TARGETS[event]

    @classmethod
    def can_apply(cls, status: BookingStatus, event: BookingEvent) -> bool:
        return cls.target(event) in BOOKING_TRANSITIONS.get(status, set())

    @classmethod
    def ensure_can_apply(cls, status: BookingStatus, event: BookingEvent) -> None:
        """Raise ``InvalidTransition`` when *event* is illegal from *status*."""
        if not cls.can_apply(status, event):
            raise InvalidTransition(status.value, event.value)

    @staticmethod
    def is_terminal(status: BookingStatus) -> bool:
        return not BOOKING_TRANSITIONS.get(status)

    @classmethod
    def allowed_events(cls, status: BookingStatus) -> set[BookingEvent]:
        return {e for e in BookingEvent if cls.can_apply(status, e)}

    @classmethod
    def plan(
        cls,
        status: BookingStatus,
        event: BookingEvent,
        payment_status: Optional[PaymentStatus] = None,
        has_payment_method: bool = False,
    ) -> TransitionPlan:
        cls.ensure_can_apply(status, event)
        steps: list[SideEffect] = []

        if event is BookingEvent.ACCEPT:
            if payment_status is PaymentStatus.AUTHORIZED:
                steps.append(SideEffect.CAPTURE_PAYMENT)
            elif payment_status in _DEAD_PAYMENT and has_payment_method:
                steps.append(SideEffect.AUTHORIZE_AND_CAPTURE)
            # no payment method: degraded path, accept without money

        elif event in (BookingEvent.REJECT, BookingEvent.CANCEL):
            if payment_status is PaymentStatus.AUTHORIZED:
                steps.append(SideEffect.CANCEL_AUTHORIZATION)
            elif payment_status is PaymentStatus.CAPTURED:
                steps.append(
                    SideEffect.FULL_REFUND
                    if event is BookingEvent.REJECT
                    else SideEffect.PENALTY_REFUND
                )
            steps.append(SideEffect.RELEASE_SEATS)

        elif event is BookingEvent.COMPLETE:
            if payment_status is PaymentStatus.AUTHORIZED:
                steps.append(SideEffect.CAPTURE_PAYMENT)
            # completed bookings stop holding seats
            steps.append(SideEffect.RELEASE_SEATS)

        return TransitionPlan(
            event=event,
            from_status=status,
            to_status=cls.target(event),
            steps=tuple(steps),
        )
