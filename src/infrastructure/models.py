"""
SQLAlchemy ORM models  (maps to PostgreSQL).

Tables
------
* ``users``     -- passengers and drivers, with gateway references
* ``rides``     -- driver offers with seat inventory
* ``bookings``  -- passenger seat requests on a ride
* ``payments``  -- one gateway payment per booking

Indexes
-------
* **Partial unique** on ``bookings(ride_id, passenger_id)`` for PENDING /
  ACCEPTED rows: at most one active booking per passenger and ride.
* **Unique** on ``payments.gateway_reference`` (webhook reconciliation key)
  and ``payments.booking_id`` (one-to-one with the booking).
* **B-Tree** on ``bookings.status`` / ``rides.driver_id`` for the ride
  completion and driver look-ups.
"""

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    func,
    text,
)

from .database import Base
from src.domain.entities import Account, Booking, Payment, Ride
from src.domain.enums import BookingStatus, PaymentStatus

_ACTIVE_BOOKING_CLAUSE = text("status IN ('PENDING', 'ACCEPTED')")


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes; everything is stored as UTC
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class UserModel(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    full_name = Column(String(120), nullable=False)
    email = Column(String(255), unique=True, nullable=False)
    payment_method_ref = Column(String(255), nullable=True)
    customer_ref = Column(String(255), nullable=True)
    payout_account_ref = Column(String(255), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    def to_account(self) -> Account:
        return Account(
            id=self.id,
            payment_method_ref=self.payment_method_ref,
            customer_ref=self.customer_ref,
            payout_account_ref=self.payout_account_ref,
        )


class RideModel(Base):
    __tablename__ = "rides"

    id = Column(Integer, primary_key=True, autoincrement=True)
    driver_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    origin = Column(String(255), nullable=False)
    destination = Column(String(255), nullable=False)
    departure_time = Column(DateTime(timezone=True), nullable=False)
    capacity = Column(Integer, nullable=False)
    available_seats = Column(Integer, nullable=False)
    price_per_seat = Column(Numeric(10, 2), nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    is_cancelled = Column(Boolean, default=False, nullable=False)
    is_completed = Column(Boolean, default=False, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (Index("idx_rides_driver", "driver_id"),)

    def to_entity(self) -> Ride:
        return Ride(
            id=self.id,
            driver_id=self.driver_id,
            capacity=self.capacity,
            available_seats=self.available_seats,
            price_per_seat=self.price_per_seat,
            departure_time=_as_utc(self.departure_time),
            is_active=self.is_active,
            is_cancelled=self.is_cancelled,
            is_completed=self.is_completed,
        )


class BookingModel(Base):
    __tablename__ = "bookings"

    id = Column(Integer, primary_key=True, autoincrement=True)
    ride_id = Column(Integer, ForeignKey("rides.id"), nullable=False)
    passenger_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    seats = Column(Integer, nullable=False, default=1)
    status = Column(Enum(BookingStatus), default=BookingStatus.PENDING, nullable=False)

    # Name of the orchestrator step currently working on this booking
    pending_event = Column(String(20), nullable=True)
    pending_since = Column(DateTime(timezone=True), nullable=True)
    # Identifies the claim holder; a stale claim taken over gets a new token
    claim_token = Column(String(36), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        Index("idx_bookings_ride", "ride_id"),
        Index("idx_bookings_passenger", "passenger_id"),
        Index("idx_bookings_status", "status"),
        Index(
            "uq_bookings_active_passenger",
            "ride_id",
            "passenger_id",
            unique=True,
            postgresql_where=_ACTIVE_BOOKING_CLAUSE,
            sqlite_where=_ACTIVE_BOOKING_CLAUSE,
        ),
    )

    def to_entity(self) -> Booking:
        return Booking(
            id=self.id,
            ride_id=self.ride_id,
            passenger_id=self.passenger_id,
            seats=self.seats,
            status=self.status,
            created_at=self.created_at,
            pending_event=self.pending_event,
        )


class PaymentModel(Base):
    __tablename__ = "payments"

    id = Column(Integer, primary_key=True, autoincrement=True)
    booking_id = Column(Integer, ForeignKey("bookings.id"), nullable=False, unique=True)
    amount = Column(Numeric(10, 2), nullable=False)
    platform_fee = Column(Numeric(10, 2), nullable=False)
    driver_amount = Column(Numeric(10, 2), nullable=False)
    currency = Column(String(3), nullable=False, default="eur")
    status = Column(Enum(PaymentStatus), nullable=False)
    gateway_reference = Column(String(255), nullable=False, unique=True)
    refunded_amount = Column(Numeric(10, 2), nullable=True)
    refund_reference = Column(String(255), nullable=True)

    authorized_at = Column(DateTime(timezone=True), nullable=True)
    captured_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    refunded_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        Index("idx_payments_status", "status"),
    )

    def to_entity(self) -> Payment:
        return Payment(
            id=self.id,
            booking_id=self.booking_id,
            amount=self.amount,
            platform_fee=self.platform_fee,
            driver_amount=self.driver_amount,
            currency=self.currency,
            status=self.status,
            gateway_reference=self.gateway_reference,
            refunded_amount=self.refunded_amount,
            refund_reference=self.refund_reference,
            authorized_at=self.authorized_at,
            captured_at=self.captured_at,
            cancelled_at=self.cancelled_at,
            refunded_at=self.refunded_at,
        )
