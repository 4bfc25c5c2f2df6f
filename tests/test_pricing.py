"""Unit tests for booking amounts and the platform commission split."""

from decimal import Decimal

from src.domain.pricing import CommissionCalculator, booking_amount


class TestBookingAmount:
    def test_price_times_seats(self):
        assert booking_amount(Decimal("10.00"), 2) == Decimal("20.00")

    def test_rounded_to_cents(self):
        assert booking_amount(Decimal("3.333"), 3) == Decimal("10.00")  # 9.999


class TestCommissionSplit:
    def setup_method(self):
        self.commission = CommissionCalculator()

    def test_default_fifteen_percent(self):
        split = self.commission.split(Decimal("20.00"))
        assert split.platform_fee == Decimal("3.00")
        assert split.driver_amount == Decimal("17.00")

    def test_parts_always_add_up(self):
        split = self.commission.split(Decimal("18.55"))
        assert split.platform_fee == Decimal("2.78")  # 2.7825
        assert split.platform_fee + split.driver_amount == split.amount

    def test_custom_percent(self):
        split = CommissionCalculator(Decimal("10")).split(Decimal("9.90"))
        assert split.platform_fee == Decimal("0.99")
        assert split.driver_amount == Decimal("8.91")

    def test_zero_amount(self):
        split = self.commission.split(Decimal("0"))
        assert split.platform_fee == Decimal("0.00")
        assert split.driver_amount == Decimal("0.00")
