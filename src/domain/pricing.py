"""
Booking price and platform commission split.

Formula
-------
amount        = price_per_seat x seats
platform_fee  = round(amount x commission_percent / 100, 2)
driver_amount = amount - platform_fee

The driver's share is routed to their payout account by the gateway at
authorization time; the platform keeps ``platform_fee``.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from .penalty import to_cents


def booking_amount(price_per_seat: Decimal, seats: int) -> Decimal:
    return to_cents(Decimal(price_per_seat) * seats)


@dataclass(frozen=True)
class CommissionSplit:
    amount: Decimal
    platform_fee: Decimal
    driver_amount: Decimal


class CommissionCalculator:
    """Splits a charge between the platform and the driver."""

    def __init__(self, percent: Decimal = Decimal("15")):
        self.percent = Decimal(percent)

    def split(self, amount: Decimal) -> CommissionSplit:
        total = to_cents(amount)
        fee = to_cents(total * self.percent / 100)
        return CommissionSplit(amount=total, platform_fee=fee, driver_amount=total - fee)
