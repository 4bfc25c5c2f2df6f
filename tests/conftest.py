"""
Shared test fixtures.

Uses a file-backed SQLite database (via aiosqlite) per test so the suite runs
without Docker / PostgreSQL / Redis.  Every transaction starts with
``BEGIN IMMEDIATE``, which makes concurrent units of work queue up on the
database write lock the way ``SELECT ... FOR UPDATE`` serialises them on
PostgreSQL.

The payment gateway is replaced by ``FakeGateway``: an in-memory adapter
that records every call, honours idempotency keys and can be told to fail.
"""

from __future__ import annotations

import asyncio
import itertools
import json
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import AsyncGenerator, Mapping, Optional

import pytest
import pytest_asyncio
from sqlalchemy import event, update
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from src.domain.entities import Account, Booking, Payment, Ride
from src.domain.enums import BookingStatus
from src.domain.exceptions import InvalidWebhook, PaymentError
from src.infrastructure.database import Base
from src.infrastructure.gateway import (
    AuthorizationResult,
    CaptureResult,
    GatewayEvent,
    PaymentGatewayAdapter,
    RefundResult,
)
from src.infrastructure.models import BookingModel
from src.infrastructure.unit_of_work import UnitOfWorkFactory
from src.services.orchestrator import BookingOrchestrator

NOW = datetime(2026, 10, 18, 12, 0, tzinfo=timezone.utc)

VALID_SIGNATURE = "t=1,v1=valid"


# ── Fakes ─────────────────────────────────────────────────────────────


class FakeClock:
    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, delta: timedelta) -> None:
        self.now += delta


class FakeGateway(PaymentGatewayAdapter):
    """
    In-memory gateway.

    ``fail[operation]`` raises on every call of that operation;
    ``fail_intents[intent_id]`` raises for captures of one intent only.
    ``hold[operation]`` parks calls of that operation until the event is set.
    Capturing a cancelled intent fails the way the real gateway does.
    ``captures`` / ``refunds`` / ``cancellations`` record effects that
    actually happened, so replays under the same idempotency key do not
    show up twice.
    """

    def __init__(self):
        self.intents: dict[str, str] = {}
        self.calls: list[tuple[str, Optional[str]]] = []
        self.captures: list[str] = []
        self.refunds: list[tuple[str, Decimal]] = []
        self.cancellations: list[str] = []
        self.authorizations: list[dict] = []
        self.fail: dict[str, Exception] = {}
        self.fail_intents: dict[str, Exception] = {}
        self.hold: dict[str, asyncio.Event] = {}
        self.authorize_status = "requires_capture"
        self.delay = 0.0
        self._replies: dict[str, object] = {}
        self._ids = itertools.count(1)

    async def _enter(self, operation: str, key: Optional[str]) -> Optional[object]:
        self.calls.append((operation, key))
        gate = self.hold.get(operation)
        if gate is not None:
            await gate.wait()
        if self.delay:
            await asyncio.sleep(self.delay)
        if operation in self.fail:
            raise self.fail[operation]
        return self._replies.get(key) if key else None

    def count(self, operation: str) -> int:
        return sum(1 for op, _ in self.calls if op == operation)

    async def authorize(
        self,
        amount: Decimal,
        payment_method_ref: str,
        payer_ref: str,
        metadata: Mapping[str, str],
        payout_account_ref: Optional[str] = None,
        *,
        currency: str,
        idempotency_key: Optional[str] = None,
    ) -> AuthorizationResult:
        replay = await self._enter("authorize", idempotency_key)
        if replay is not None:
            return replay
        intent_id = f"pi_test_{next(self._ids)}"
        self.intents[intent_id] = self.authorize_status
        self.authorizations.append(
            {
                "intent_id": intent_id,
                "amount": amount,
                "payment_method_ref": payment_method_ref,
                "payer_ref": payer_ref,
                "metadata": dict(metadata),
                "payout_account_ref": payout_account_ref,
                "currency": currency,
            }
        )
        result = AuthorizationResult(id=intent_id, status=self.authorize_status)
        if idempotency_key:
            self._replies[idempotency_key] = result
        return result

    async def capture(
        self, intent_id: str, *, idempotency_key: Optional[str] = None
    ) -> CaptureResult:
        replay = await self._enter("capture", idempotency_key)
        if replay is not None:
            return replay
        if intent_id in self.fail_intents:
            raise self.fail_intents[intent_id]
        if self.intents.get(intent_id) == "canceled":
            raise PaymentError(f"PaymentIntent {intent_id} is canceled and cannot be captured")
        self.intents[intent_id] = "succeeded"
        self.captures.append(intent_id)
        result = CaptureResult(status="succeeded")
        if idempotency_key:
            self._replies[idempotency_key] = result
        return result

    async def cancel_authorization(self, intent_id: str) -> None:
        await self._enter("cancel", None)
        self.intents[intent_id] = "canceled"
        self.cancellations.append(intent_id)

    async def refund(
        self,
        intent_id: str,
        amount: Decimal,
        *,
        idempotency_key: Optional[str] = None,
    ) -> RefundResult:
        replay = await self._enter("refund", idempotency_key)
        if replay is not None:
            return replay
        self.refunds.append((intent_id, amount))
        result = RefundResult(id=f"re_test_{next(self._ids)}")
        if idempotency_key:
            self._replies[idempotency_key] = result
        return result

    def construct_event(self, payload: bytes, signature: str) -> Optional[GatewayEvent]:
        if signature != VALID_SIGNATURE:
            raise InvalidWebhook("Invalid webhook: signature mismatch")
        data = json.loads(payload)
        return self.ingest_webhook(data["type"], data["data"]["object"])


# ── Seeding helpers ───────────────────────────────────────────────────


class Seeder:
    """Creates users and rides and reads state back through repositories."""

    def __init__(self, uow_factory: UnitOfWorkFactory):
        self.uow = uow_factory
        self._emails = itertools.count(1)

    async def user(
        self, name: str = "Rider", *, card: bool = True, payout: Optional[str] = None
    ) -> Account:
        n = next(self._emails)
        async with self.uow() as uow:
            return await uow.users.create(
                full_name=f"{name} {n}",
                email=f"user{n}@example.com",
                payment_method_ref="pm_card_visa" if card else None,
                customer_ref=f"cus_test_{n}" if card else None,
                payout_account_ref=payout,
            )

    async def ride(
        self,
        driver_id: int,
        *,
        capacity: int = 3,
        price: str = "10.00",
        departs_in: timedelta = timedelta(days=2),
    ) -> Ride:
        async with self.uow() as uow:
            row = await uow.rides.create_ride(
                driver_id=driver_id,
                origin="Berlin",
                destination="Leipzig",
                departure_time=NOW + departs_in,
                capacity=capacity,
                price_per_seat=Decimal(price),
            )
            return row.to_entity()

    async def get_ride(self, ride_id: int) -> Ride:
        async with self.uow() as uow:
            return await uow.rides.get(ride_id)

    async def get_booking(self, booking_id: int) -> Optional[Booking]:
        async with self.uow() as uow:
            return await uow.bookings.get(booking_id)

    async def get_payment(self, booking_id: int) -> Optional[Payment]:
        async with self.uow() as uow:
            return await uow.payments.get_for_booking(booking_id)

    async def bookings(self, ride_id: int) -> list[Booking]:
        async with self.uow() as uow:
            return await uow.bookings.list_for_ride(ride_id)

    async def seats_conserved(self, ride_id: int) -> bool:
        async with self.uow() as uow:
            ride = await uow.rides.get(ride_id)
            held = await uow.bookings.held_seats(ride_id)
        return ride.available_seats + held == ride.capacity

    async def force_status(self, booking_id: int, status: BookingStatus) -> None:
        async with self.uow() as uow:
            await uow.session.execute(
                update(BookingModel)
                .where(BookingModel.id == booking_id)
                .values(status=status)
            )


# ── Fixtures ──────────────────────────────────────────────────────────


@pytest_asyncio.fixture
async def engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    """Fresh SQLite file per test with all tables created."""
    test_engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")

    @event.listens_for(test_engine.sync_engine, "connect")
    def _disable_pysqlite_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(test_engine.sync_engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield test_engine
    await test_engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
def uow_factory(session_factory) -> UnitOfWorkFactory:
    return UnitOfWorkFactory(session_factory)


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def orchestrator(uow_factory, gateway, clock) -> BookingOrchestrator:
    return BookingOrchestrator(uow_factory, gateway, clock=clock)


@pytest.fixture
def seeder(uow_factory) -> Seeder:
    return Seeder(uow_factory)
