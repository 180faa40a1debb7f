"""
Shared test fixtures.

Uses an in-memory SQLite database (via aiosqlite) so tests run without
Docker / PostgreSQL / Redis.  The production models are created as-is;
``StaticPool`` keeps every session on the one in-memory connection.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from src.domain.entities import Location, new_object_id
from src.infrastructure import models  # noqa: F401  (registers tables)
from src.infrastructure.database import Base
from src.services.trip_offers import TripOfferService, TripView


# ── Test DB (SQLite in-memory) ────────────────────────────────────────

TEST_DB_URL = "sqlite+aiosqlite:///:memory:"

test_engine = create_async_engine(
    TEST_DB_URL,
    echo=False,
    poolclass=StaticPool,
    connect_args={"check_same_thread": False},
)
TestSessionFactory = async_sessionmaker(
    test_engine, class_=AsyncSession, expire_on_commit=False
)

T0 = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)

ORIGIN = Location("Campus North Gate", 45.7640, 4.8357)
DESTINATION = Location("Airport Terminal 1", 45.7256, 5.0811)


class FixedClock:
    """Deterministic clock handed to the services."""

    def __init__(self, start: datetime = T0):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta) -> datetime:
        self.now = self.now + timedelta(**delta)
        return self.now


# ── Fixtures ──────────────────────────────────────────────────────────


@pytest_asyncio.fixture
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    """Create tables, yield a session, then drop everything."""
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with TestSessionFactory() as session:
        yield session

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock()


@pytest.fixture
def driver_id() -> str:
    return new_object_id()


@pytest.fixture
def make_trip(db_session: AsyncSession, clock: FixedClock, driver_id: str):
    """
    Factory: a published trip departing one day after the clock.  Each
    further trip leaves two hours later so a driver's trips never overlap.
    """
    made = []

    async def _make(total_seats: int = 3, **overrides) -> TripView:
        default = clock() + timedelta(days=1, hours=2 * len(made))
        departure = overrides.pop("departure_at", default)
        made.append(departure)
        params = dict(
            vehicle_id=new_object_id(),
            origin=ORIGIN,
            destination=DESTINATION,
            departure_at=departure,
            estimated_arrival_at=departure + timedelta(minutes=45),
            price_per_seat=6.5,
            total_seats=total_seats,
        )
        params.update(overrides)
        owner = params.pop("driver_id", driver_id)
        return await TripOfferService(db_session, clock=clock).create_trip(
            owner, **params
        )

    return _make
