"""
Seed script -- populates the database with sample data for reviewers.

Run after migrations:
    python seed.py

Creates:
  - 3 drivers, each with one published trip out of Lyon
  - 1 draft trip
  - 6 bookings (mix of pending, accepted, declined, canceled_by_passenger)

Everything goes through the services, so the seat ledgers match the
bookings exactly.
"""

import asyncio
from datetime import timedelta

from sqlalchemy import text

from src.domain.entities import Location, new_object_id, utcnow
from src.domain.enums import TripStatus
from src.infrastructure.database import async_session_factory, dispose_engine
from src.services.booking_lifecycle import BookingLifecycleService
from src.services.trip_offers import TripOfferService

LYON = Location("Lyon Part-Dieu", 45.7606, 4.8593)

TRIPS = [
    {"to": Location("Paris Gare de Lyon", 48.8443, 2.3743), "hours": 26, "price": 32.0, "seats": 3},
    {"to": Location("Marseille Saint-Charles", 43.3026, 5.3806), "hours": 50, "price": 27.5, "seats": 4},
    {"to": Location("Grenoble Gare", 45.1914, 5.7146), "hours": 8, "price": 9.0, "seats": 2},
]

PASSENGERS = [new_object_id() for _ in range(5)]


async def seed():
    async with async_session_factory() as session:
        # Check if already seeded
        result = await session.execute(text("SELECT count(*) FROM trip_offers"))
        if result.scalar() > 0:
            print("Database already seeded. Skipping.")
            return

        trips = TripOfferService(session)
        lifecycle = BookingLifecycleService(session)
        now = utcnow()

        # ── Trips ─────────────────────────────────────────────────────
        views = []
        for t in TRIPS:
            departure = now + timedelta(hours=t["hours"])
            views.append(
                await trips.create_trip(
                    new_object_id(),
                    vehicle_id=new_object_id(),
                    origin=LYON,
                    destination=t["to"],
                    departure_at=departure,
                    estimated_arrival_at=departure + timedelta(hours=2),
                    price_per_seat=t["price"],
                    total_seats=t["seats"],
                )
            )
        departure = now + timedelta(days=7)
        await trips.create_trip(
            new_object_id(),
            vehicle_id=new_object_id(),
            origin=LYON,
            destination=Location("Geneve Cornavin", 46.2102, 6.1425),
            departure_at=departure,
            estimated_arrival_at=departure + timedelta(hours=2),
            price_per_seat=18.0,
            total_seats=3,
            status=TripStatus.DRAFT,
            notes="Draft: departure time not final",
        )
        print(f"  Created {len(views) + 1} trips")

        # ── Bookings ──────────────────────────────────────────────────
        paris, marseille, grenoble = (v.trip for v in views)

        b1 = await lifecycle.create_booking(paris.id, PASSENGERS[0], 1, "Small bag only")
        await lifecycle.accept_booking(b1.booking.id, paris.driver_id)
        await lifecycle.create_booking(paris.id, PASSENGERS[1], 2)

        b3 = await lifecycle.create_booking(marseille.id, PASSENGERS[2], 1)
        await lifecycle.decline_booking(b3.booking.id, marseille.driver_id, "Route changed")
        b4 = await lifecycle.create_booking(marseille.id, PASSENGERS[3], 2)
        await lifecycle.accept_booking(b4.booking.id, marseille.driver_id)
        await lifecycle.cancel_by_passenger(b4.booking.id, PASSENGERS[3], "Plans changed")

        await lifecycle.create_booking(grenoble.id, PASSENGERS[4], 1)
        print("  Created 6 bookings")

        print("\nSeed complete!")


async def main():
    print("Seeding database...")
    await seed()
    await dispose_engine()


if __name__ == "__main__":
    asyncio.run(main())
