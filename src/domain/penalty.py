"""
Cancellation penalty calculator
===============================

Formula
-------
* ``departure - now >= 24h``  -> penalty 0 %
* ``departure - now >  0``    -> penalty 30 %
* already departed            -> penalty 100 %

::

    base_refund    = paid x (1 - penalty)
    estimated_fee  = paid x 0.029 + 0.30
    refund_amount  = max(0, base_refund - estimated_fee)   (cents, half-up)
    penalty_amount = paid - base_refund

The gateway keeps its own processing fee on a refund, so the estimated fee
of the original charge is deducted from what is sent back.

Deterministic and side-effect free.  Complexity: O(1).
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal

CENT = Decimal("0.01")
ZERO = Decimal("0")
ONE = Decimal("1")


def to_cents(value: Decimal) -> Decimal:
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class PenaltyPolicy:
    free_cancellation_window: timedelta = timedelta(hours=24)
    late_cancellation_penalty: Decimal = Decimal("0.30")
    gateway_fee_percent: Decimal = Decimal("0.029")
    gateway_fee_fixed: Decimal = Decimal("0.30")


DEFAULT_POLICY = PenaltyPolicy()


@dataclass(frozen=True)
class PenaltyBreakdown:
    paid_amount: Decimal
    penalty_percent: Decimal
    base_refund: Decimal
    estimated_fee: Decimal
    refund_amount: Decimal
    penalty_amount: Decimal


class CancellationPenaltyCalculator:
    def __init__(self, policy: PenaltyPolicy = DEFAULT_POLICY):
        self.policy = policy

    def penalty_percent(self, departure_time: datetime, now: datetime) -> Decimal:
        until_departure = departure_time - now
        if until_departure >= self.policy.free_cancellation_window:
            return ZERO
        if until_departure > timedelta(0):
            return self.policy.late_cancellation_penalty
        return ONE

    def estimated_fee(self, paid_amount: Decimal) -> Decimal:
        return paid_amount * self.policy.gateway_fee_percent + self.policy.gateway_fee_fixed

    def compute(
        self, paid_amount: Decimal, departure_time: datetime, now: datetime
    ) -> PenaltyBreakdown:
        paid = Decimal(paid_amount)
        percent = self.penalty_percent(departure_time, now)
        base_refund = paid * (ONE - percent)
        fee = self.estimated_fee(paid)
        return PenaltyBreakdown(
            paid_amount=paid,
            penalty_percent=percent,
            base_refund=to_cents(base_refund),
            estimated_fee=to_cents(fee),
            refund_amount=to_cents(max(ZERO, base_refund - fee)),
            penalty_amount=to_cents(paid - base_refund),
        )

    @staticmethod
    def full_refund(paid_amount: Decimal) -> PenaltyBreakdown:
        """Breakdown for driver-initiated cancellations: everything goes back."""
        paid = to_cents(paid_amount)
        return PenaltyBreakdown(
            paid_amount=paid,
            penalty_percent=ZERO,
            base_refund=paid,
            estimated_fee=ZERO,
            refund_amount=paid,
            penalty_amount=ZERO.quantize(CENT),
        )


def compute_penalty(
    paid_amount: Decimal, departure_time: datetime, now: datetime
) -> PenaltyBreakdown:
    """Convenience wrapper using the default policy."""
    return CancellationPenaltyCalculator().compute(paid_amount, departure_time, now)
