"""
Seed script -- populates the database with sample data for reviewers.

Run after migrations:
    python seed.py

Creates:
  - 8 sample users (3 drivers with payout accounts, 5 passengers)
  - 4 sample rides (3 upcoming, 1 departing within the penalty window)
  - 3 sample PENDING bookings with their seats taken off the rides

Gateway references are Stripe test-mode placeholders, so the bookings carry
no payment rows; accepting them goes through the authorize-and-capture path
once real test references are configured.
"""

import asyncio
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from sqlalchemy import text

from src.domain.enums import BookingStatus
from src.infrastructure.database import async_session_factory, engine
from src.infrastructure.models import BookingModel, RideModel, UserModel


USERS = [
    # Drivers
    {"full_name": "Lena Fischer", "email": "lena@example.com", "payout": "acct_test_lena"},
    {"full_name": "Marco Rossi", "email": "marco@example.com", "payout": "acct_test_marco"},
    {"full_name": "Sofia Almeida", "email": "sofia@example.com", "payout": None},
    # Passengers
    {"full_name": "Jonas Weber", "email": "jonas@example.com", "card": "pm_card_visa", "customer": "cus_test_jonas"},
    {"full_name": "Chloé Martin", "email": "chloe@example.com", "card": "pm_card_mastercard", "customer": "cus_test_chloe"},
    {"full_name": "Pieter de Vries", "email": "pieter@example.com", "card": "pm_card_visa", "customer": "cus_test_pieter"},
    {"full_name": "Ana Kovač", "email": "ana@example.com", "card": None, "customer": None},
    {"full_name": "Tomás García", "email": "tomas@example.com", "card": "pm_card_visa", "customer": "cus_test_tomas"},
]


async def seed():
    async with async_session_factory() as session:
        # Check if already seeded
        result = await session.execute(text("SELECT count(*) FROM users"))
        if result.scalar() > 0:
            print("Database already seeded. Skipping.")
            return

        # ── Users ─────────────────────────────────────────────────────
        user_models = []
        for u in USERS:
            m = UserModel(
                full_name=u["full_name"],
                email=u["email"],
                payment_method_ref=u.get("card"),
                customer_ref=u.get("customer"),
                payout_account_ref=u.get("payout"),
            )
            session.add(m)
            user_models.append(m)
        await session.flush()
        print(f"  Created {len(user_models)} users")
        lena, marco, sofia = user_models[:3]
        passengers = user_models[3:]

        # ── Rides ─────────────────────────────────────────────────────
        now = datetime.now(timezone.utc)
        rides_data = [
            {"driver": lena, "from": "Berlin", "to": "Hamburg", "in": timedelta(days=3), "seats": 3, "price": "18.50"},
            {"driver": marco, "from": "Milano", "to": "Torino", "in": timedelta(days=1, hours=6), "seats": 4, "price": "12.00"},
            {"driver": sofia, "from": "Lisboa", "to": "Porto", "in": timedelta(days=5), "seats": 2, "price": "21.00"},
            # Inside the late-cancellation window
            {"driver": lena, "from": "Hamburg", "to": "Bremen", "in": timedelta(hours=6), "seats": 3, "price": "9.90"},
        ]
        ride_models = []
        for r in rides_data:
            ride = RideModel(
                driver_id=r["driver"].id,
                origin=r["from"],
                destination=r["to"],
                departure_time=now + r["in"],
                capacity=r["seats"],
                available_seats=r["seats"],
                price_per_seat=Decimal(r["price"]),
                is_active=True,
                is_cancelled=False,
                is_completed=False,
            )
            session.add(ride)
            ride_models.append(ride)
        await session.flush()
        print(f"  Created {len(ride_models)} rides")

        # ── Bookings ──────────────────────────────────────────────────
        bookings_data = [
            (ride_models[0], passengers[0], 1),
            (ride_models[0], passengers[1], 2),
            (ride_models[1], passengers[2], 1),
        ]
        for ride, passenger, seats in bookings_data:
            session.add(
                BookingModel(
                    ride_id=ride.id,
                    passenger_id=passenger.id,
                    seats=seats,
                    status=BookingStatus.PENDING,
                )
            )
            ride.available_seats -= seats
        await session.flush()
        print(f"  Created {len(bookings_data)} bookings")

        await session.commit()
        print("\nSeed complete!")


async def main():
    print("Seeding database...")
    await seed()
    await engine.dispose()


if __name__ == "__main__":
    asyncio.run(main())
