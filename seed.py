"""
Seed script -- populates the database with sample data for reviewers.

Run after migrations:
    python seed.py

Creates:
  - 6 sample users (passengers, drivers, a dispatcher)
  - 5 sample bookings walked through the transition table to different
    phases (requested, offer_sent, payment_pending, all_set, completed)
"""

import asyncio
from datetime import timedelta

from sqlalchemy import text

from src.domain.entities import Booking, utcnow
from src.domain.enums import ActorRole
from src.domain import transitions as tx
from src.infrastructure.change_feed import LocalChangeFeed
from src.infrastructure.database import async_session_factory, engine
from src.infrastructure.models import UserModel
from src.runtime import build_runtime

USERS = [
    {"id": "p-ava", "name": "Ava Thompson", "email": "ava@example.com", "role": ActorRole.PASSENGER},
    {"id": "p-liam", "name": "Liam Chen", "email": "liam@example.com", "role": ActorRole.PASSENGER},
    {"id": "p-sofia", "name": "Sofia Garcia", "email": "sofia@example.com", "role": ActorRole.PASSENGER},
    {"id": "d-marcus", "name": "Marcus Reed", "email": "marcus@example.com", "role": ActorRole.DRIVER},
    {"id": "d-nina", "name": "Nina Patel", "email": "nina@example.com", "role": ActorRole.DRIVER},
    {"id": "x-ops", "name": "Dispatch Desk", "email": "ops@example.com", "role": ActorRole.DISPATCHER},
]

# (passenger, driver, price, transitions to walk after the request)
BOOKINGS = [
    ("p-ava", None, None, []),
    ("p-liam", "d-marcus", 95.0, [tx.OFFER_SENT]),
    ("p-sofia", "d-nina", 140.0, [tx.OFFER_SENT, tx.OFFER_ACCEPTED]),
    ("p-ava", "d-marcus", 120.0,
     [tx.OFFER_SENT, tx.OFFER_ACCEPTED, tx.PAYMENT_SENT, tx.PAYMENT_CONFIRMED]),
    ("p-liam", "d-nina", 80.0,
     [tx.OFFER_SENT, tx.OFFER_ACCEPTED, tx.PAYMENT_SENT, tx.PAYMENT_CONFIRMED]
     + [tx.RIDE_STAGE_ADVANCE] * 6),
]

ACTORS = {
    tx.OFFER_SENT: ActorRole.DRIVER,
    tx.OFFER_ACCEPTED: ActorRole.PASSENGER,
    tx.PAYMENT_SENT: ActorRole.PASSENGER,
    tx.PAYMENT_CONFIRMED: ActorRole.SYSTEM,
    tx.RIDE_STAGE_ADVANCE: ActorRole.DRIVER,
}


async def seed():
    async with async_session_factory() as session:
        # Check if already seeded
        result = await session.execute(text("SELECT count(*) FROM users"))
        if result.scalar() > 0:
            print("Database already seeded. Skipping.")
            return

        # ── Users ─────────────────────────────────────────────────────
        for u in USERS:
            session.add(UserModel(**u))
        await session.commit()
        print(f"  Created {len(USERS)} users")

    # ── Bookings ──────────────────────────────────────────────────────
    runtime = await build_runtime(feed=LocalChangeFeed())
    store = runtime.store
    pickup = utcnow() + timedelta(days=2)

    for i, (passenger, driver, price, steps) in enumerate(BOOKINGS):
        booking = await store.create_booking(
            Booking(
                id="",
                passenger_id=passenger,
                pickup_location="Terminal 2, Arrivals",
                dropoff_location=f"{100 + i} Harbour Street",
                pickup_time=pickup + timedelta(hours=i),
                vehicle_type="sedan",
                flight_info=f"BA{200 + i}",
            )
        )
        for name in steps:
            extra = {"driver_id": driver, "price": price} if name == tx.OFFER_SENT else None
            await store.apply_transition(booking.id, name, extra=extra, actor=ACTORS[name])
        print(f"  {store.get(booking.id).short_code}: {store.get(booking.id).phase.value}")

    await runtime.close()
    print(f"  Created {len(BOOKINGS)} bookings")
    print("\nSeed complete!")


async def main():
    print("Seeding database...")
    await seed()
    await engine.dispose()


if __name__ == "__main__":
    asyncio.run(main())
