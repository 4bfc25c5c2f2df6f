"""
Integration tests for the REST API endpoints.

Routes run against the per-test SQLite database and the fake gateway; the
webhook queue is backed by a mocked Redis client.  Lifespan events are not
triggered by ``ASGITransport``, so the reconciliation worker never starts.
"""

from __future__ import annotations

import json
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from src.api.app import create_app
from src.api.dependencies import get_db, get_webhook_queue
from src.api.middleware import limiter
from src.domain.exceptions import PaymentDeclined
from src.infrastructure.webhook_queue import WebhookQueue
from tests.conftest import VALID_SIGNATURE


@pytest.fixture
def queue_redis() -> AsyncMock:
    mock_redis = AsyncMock()
    mock_redis.rpush = AsyncMock(return_value=1)
    return mock_redis


@pytest_asyncio.fixture
async def client(orchestrator, session_factory, queue_redis):
    """AsyncClient wired to the test orchestrator and database."""

    async def _test_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def _test_queue():
        return WebhookQueue(queue_redis)

    limiter.reset()
    app = create_app(orchestrator=orchestrator)
    app.dependency_overrides[get_db] = _test_db
    app.dependency_overrides[get_webhook_queue] = _test_queue

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest_asyncio.fixture
async def parties(seeder):
    driver = await seeder.user("Driver")
    passenger = await seeder.user("Passenger")
    return driver, passenger


async def _offer_ride(client: AsyncClient, driver_id: int, capacity: int = 3) -> dict:
    resp = await client.post(
        "/api/v1/rides",
        headers={"X-User-Id": str(driver_id)},
        json={
            "origin": "Berlin",
            "destination": "Leipzig",
            "departure_time": "2026-10-25T08:00:00Z",
            "capacity": capacity,
            "price_per_seat": "10.00",
        },
    )
    assert resp.status_code == 201, resp.text
    return resp.json()


async def _book(client: AsyncClient, passenger_id: int, ride_id: int, seats: int = 2):
    return await client.post(
        "/api/v1/bookings",
        headers={"X-User-Id": str(passenger_id)},
        json={"ride_id": ride_id, "seats": seats},
    )


# ── Tests ─────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_health(client: AsyncClient):
    resp = await client.get("/api/v1/admin/health")
    assert resp.status_code == 200
    assert resp.json()["status"] == "ok"


@pytest.mark.asyncio
async def test_offer_and_get_ride(client: AsyncClient, parties):
    driver, _ = parties
    ride = await _offer_ride(client, driver.id, capacity=4)
    assert ride["available_seats"] == 4
    assert ride["is_active"] is True

    resp = await client.get(f"/api/v1/rides/{ride['id']}")
    assert resp.status_code == 200
    assert resp.json()["driver_id"] == driver.id


@pytest.mark.asyncio
async def test_get_ride_not_found(client: AsyncClient):
    resp = await client.get("/api/v1/rides/99999")
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_book_authorizes_payment(client: AsyncClient, parties):
    driver, passenger = parties
    ride = await _offer_ride(client, driver.id)

    resp = await _book(client, passenger.id, ride["id"])

    assert resp.status_code == 201
    data = resp.json()
    assert data["booking"]["status"] == "PENDING"
    assert data["payment"]["status"] == "AUTHORIZED"
    assert data["payment"]["amount"] == "20.00"


@pytest.mark.asyncio
async def test_book_requires_caller_header(client: AsyncClient, parties):
    driver, _ = parties
    ride = await _offer_ride(client, driver.id)
    resp = await client.post("/api/v1/bookings", json={"ride_id": ride["id"], "seats": 1})
    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_overbooking_is_a_conflict(client: AsyncClient, parties):
    driver, passenger = parties
    ride = await _offer_ride(client, driver.id, capacity=1)

    resp = await _book(client, passenger.id, ride["id"], seats=2)

    assert resp.status_code == 409
    assert resp.json()["code"] == "insufficient_seats"


@pytest.mark.asyncio
async def test_declined_card_leaves_seats_untouched(client: AsyncClient, parties, gateway):
    driver, passenger = parties
    ride = await _offer_ride(client, driver.id)
    gateway.fail["authorize"] = PaymentDeclined("Your card was declined.")

    resp = await _book(client, passenger.id, ride["id"])
    assert resp.status_code == 402
    assert resp.json() == {"detail": "Your card was declined.", "code": "payment_declined"}

    audit = await client.get(f"/api/v1/admin/rides/{ride['id']}/seats")
    assert audit.json() == {
        "ride_id": ride["id"],
        "capacity": 3,
        "available_seats": 3,
        "held_seats": 0,
        "conserved": True,
    }


@pytest.mark.asyncio
async def test_accept_and_cancel_flow(client: AsyncClient, parties):
    driver, passenger = parties
    ride = await _offer_ride(client, driver.id)
    booking_id = (await _book(client, passenger.id, ride["id"])).json()["booking"]["id"]

    forbidden = await client.patch(
        f"/api/v1/bookings/{booking_id}/accept",
        headers={"X-User-Id": str(passenger.id)},
    )
    assert forbidden.status_code == 403

    accepted = await client.patch(
        f"/api/v1/bookings/{booking_id}/accept",
        headers={"X-User-Id": str(driver.id)},
    )
    assert accepted.status_code == 200
    assert accepted.json()["payment"]["status"] == "CAPTURED"

    again = await client.patch(
        f"/api/v1/bookings/{booking_id}/accept",
        headers={"X-User-Id": str(driver.id)},
    )
    assert again.status_code == 409
    assert again.json()["code"] == "invalid_transition"

    cancelled = await client.patch(
        f"/api/v1/bookings/{booking_id}/cancel",
        headers={"X-User-Id": str(passenger.id)},
    )
    assert cancelled.status_code == 200
    body = cancelled.json()
    assert body["booking"]["status"] == "CANCELLED"
    # departure is a week away: only the gateway fee is withheld
    assert body["penalty"]["refund_amount"] == "19.12"
    assert body["payment"]["status"] == "REFUNDED"


@pytest.mark.asyncio
async def test_get_booking_is_private(client: AsyncClient, parties, seeder):
    driver, passenger = parties
    stranger = await seeder.user("Stranger")
    ride = await _offer_ride(client, driver.id)
    booking_id = (await _book(client, passenger.id, ride["id"])).json()["booking"]["id"]

    own = await client.get(
        f"/api/v1/bookings/{booking_id}", headers={"X-User-Id": str(passenger.id)}
    )
    assert own.status_code == 200

    other = await client.get(
        f"/api/v1/bookings/{booking_id}", headers={"X-User-Id": str(stranger.id)}
    )
    assert other.status_code == 403


@pytest.mark.asyncio
async def test_complete_ride(client: AsyncClient, parties):
    driver, passenger = parties
    ride = await _offer_ride(client, driver.id)
    booking_id = (await _book(client, passenger.id, ride["id"])).json()["booking"]["id"]
    await client.patch(
        f"/api/v1/bookings/{booking_id}/accept",
        headers={"X-User-Id": str(driver.id)},
    )

    resp = await client.patch(
        f"/api/v1/rides/{ride['id']}/complete",
        headers={"X-User-Id": str(driver.id)},
    )

    assert resp.status_code == 200
    assert resp.json()["completed_booking_ids"] == [booking_id]
    assert resp.json()["rejected_booking_ids"] == []
    assert (await client.get(f"/api/v1/rides/{ride['id']}")).json()["is_completed"] is True


@pytest.mark.asyncio
async def test_cancel_ride(client: AsyncClient, parties):
    driver, passenger = parties
    ride = await _offer_ride(client, driver.id)
    await _book(client, passenger.id, ride["id"])

    resp = await client.patch(
        f"/api/v1/rides/{ride['id']}/cancel",
        headers={"X-User-Id": str(driver.id)},
    )

    assert resp.status_code == 200
    assert [b["booking"]["status"] for b in resp.json()["bookings"]] == ["CANCELLED"]


@pytest.mark.asyncio
async def test_webhook_is_verified_and_queued(client: AsyncClient, queue_redis):
    payload = json.dumps(
        {"type": "payment_intent.succeeded", "data": {"object": {"id": "pi_test_1"}}}
    )

    bad = await client.post(
        "/api/v1/payments/webhook",
        content=payload,
        headers={"Stripe-Signature": "t=1,v1=forged"},
    )
    assert bad.status_code == 400
    assert bad.json()["code"] == "invalid_webhook"
    queue_redis.rpush.assert_not_called()

    good = await client.post(
        "/api/v1/payments/webhook",
        content=payload,
        headers={"Stripe-Signature": VALID_SIGNATURE},
    )
    assert good.status_code == 200
    assert good.json() == {"received": True, "queued": True}
    queue_redis.rpush.assert_awaited_once()


@pytest.mark.asyncio
async def test_webhook_ignores_unrelated_events(client: AsyncClient, queue_redis):
    payload = json.dumps({"type": "customer.created", "data": {"object": {"id": "cus_1"}}})
    resp = await client.post(
        "/api/v1/payments/webhook",
        content=payload,
        headers={"Stripe-Signature": VALID_SIGNATURE},
    )
    assert resp.json()["queued"] is False
    queue_redis.rpush.assert_not_called()


@pytest.mark.asyncio
async def test_driver_lists_pending_requests(client: AsyncClient, parties, seeder):
    driver, passenger = parties
    other = await seeder.user("Passenger")
    ride = await _offer_ride(client, driver.id)
    first = (await _book(client, passenger.id, ride["id"], seats=1)).json()["booking"]["id"]
    second = (await _book(client, other.id, ride["id"], seats=1)).json()["booking"]["id"]
    await client.patch(
        f"/api/v1/bookings/{first}/accept",
        headers={"X-User-Id": str(driver.id)},
    )

    resp = await client.get(
        "/api/v1/bookings/pending-for-driver",
        headers={"X-User-Id": str(driver.id)},
    )
    assert resp.status_code == 200
    assert [b["id"] for b in resp.json()] == [second]

    as_passenger = await client.get(
        "/api/v1/bookings/pending-for-driver",
        headers={"X-User-Id": str(passenger.id)},
    )
    assert as_passenger.json() == []


@pytest.mark.asyncio
async def test_ride_passengers_are_for_the_driver_only(client: AsyncClient, parties, seeder):
    driver, passenger = parties
    other = await seeder.user("Passenger")
    ride = await _offer_ride(client, driver.id, capacity=4)
    booking_id = (await _book(client, passenger.id, ride["id"], seats=2)).json()["booking"]["id"]
    await _book(client, other.id, ride["id"], seats=1)
    await client.patch(
        f"/api/v1/bookings/{booking_id}/accept",
        headers={"X-User-Id": str(driver.id)},
    )

    resp = await client.get(
        f"/api/v1/bookings/ride/{ride['id']}/passengers",
        headers={"X-User-Id": str(driver.id)},
    )
    assert resp.status_code == 200
    body = resp.json()
    assert body["total_passengers"] == 1
    assert body["total_seats_booked"] == 2
    assert [p["passenger_id"] for p in body["passengers"]] == [passenger.id]

    forbidden = await client.get(
        f"/api/v1/bookings/ride/{ride['id']}/passengers",
        headers={"X-User-Id": str(passenger.id)},
    )
    assert forbidden.status_code == 403

    missing = await client.get(
        "/api/v1/bookings/ride/99999/passengers",
        headers={"X-User-Id": str(driver.id)},
    )
    assert missing.status_code == 404


@pytest.mark.asyncio
async def test_my_bookings_leaves_out_cancelled_ones(client: AsyncClient, parties):
    driver, passenger = parties
    kept_ride = await _offer_ride(client, driver.id)
    dropped_ride = await _offer_ride(client, driver.id)
    kept = (await _book(client, passenger.id, kept_ride["id"], seats=1)).json()["booking"]["id"]
    dropped = (await _book(client, passenger.id, dropped_ride["id"], seats=1)).json()["booking"]["id"]
    await client.patch(
        f"/api/v1/bookings/{dropped}/cancel",
        headers={"X-User-Id": str(passenger.id)},
    )

    resp = await client.get(
        "/api/v1/rides/my-bookings", headers={"X-User-Id": str(passenger.id)}
    )

    assert resp.status_code == 200
    items = resp.json()
    assert [item["booking"]["id"] for item in items] == [kept]
    assert items[0]["ride"]["id"] == kept_ride["id"]
    assert items[0]["ride"]["destination"] == "Leipzig"
