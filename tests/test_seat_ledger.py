"""Repository tests for the per-trip seat counter."""

import pytest
from sqlalchemy import select, update

from src.domain.enums import TripStatus
from src.domain.errors import LedgerCorruption
from src.infrastructure.models import SeatLedgerModel, TripOfferModel
from src.infrastructure.repositories import SeatLedgerRepository


@pytest.mark.asyncio
async def test_new_trip_gets_empty_ledger(db_session, make_trip):
    view = await make_trip(total_seats=4)
    ledger = await SeatLedgerRepository(db_session).get(view.trip.id)
    assert ledger.total_seats == 4
    assert ledger.allocated_seats == 0
    assert view.remaining_seats == 4


@pytest.mark.asyncio
async def test_allocate_up_to_capacity(db_session, make_trip, clock):
    trip = (await make_trip(total_seats=3)).trip
    repo = SeatLedgerRepository(db_session)
    assert await repo.allocate_seats(trip.id, 2, clock())
    assert await repo.allocate_seats(trip.id, 1, clock())
    assert not await repo.allocate_seats(trip.id, 1, clock())
    assert (await repo.get(trip.id)).allocated_seats == 3


@pytest.mark.asyncio
async def test_allocation_larger_than_remaining_changes_nothing(db_session, make_trip, clock):
    trip = (await make_trip(total_seats=3)).trip
    repo = SeatLedgerRepository(db_session)
    await repo.allocate_seats(trip.id, 2, clock())
    assert not await repo.allocate_seats(trip.id, 2, clock())
    assert (await repo.get(trip.id)).allocated_seats == 2


@pytest.mark.asyncio
async def test_stale_snapshot_cannot_oversell(db_session, make_trip, clock):
    """A reader that saw a free seat still loses if someone else took it first."""
    trip = (await make_trip(total_seats=1)).trip
    repo = SeatLedgerRepository(db_session)

    snapshot = await repo.get(trip.id)
    assert snapshot.remaining_seats == 1

    assert await repo.allocate_seats(trip.id, 1, clock())  # the other request wins
    assert not await repo.allocate_seats(trip.id, 1, clock())  # stale reader loses

    row = (
        await db_session.execute(
            select(SeatLedgerModel).where(SeatLedgerModel.trip_id == trip.id)
        )
    ).scalar_one()
    assert row.allocated_seats == 1


@pytest.mark.asyncio
async def test_deallocate_below_zero_is_corruption(db_session, make_trip, clock):
    trip = (await make_trip()).trip
    repo = SeatLedgerRepository(db_session)
    await repo.allocate_seats(trip.id, 1, clock())
    with pytest.raises(LedgerCorruption):
        await repo.deallocate_seats(trip.id, 2)
    assert (await repo.get(trip.id)).allocated_seats == 1


@pytest.mark.asyncio
async def test_release_all_requires_matching_count(db_session, make_trip, clock):
    trip = (await make_trip(total_seats=4)).trip
    repo = SeatLedgerRepository(db_session)
    await repo.allocate_seats(trip.id, 3, clock())

    with pytest.raises(LedgerCorruption):
        await repo.release_all(trip.id, 2)
    assert await repo.release_all(trip.id, 3) == 3
    assert (await repo.get(trip.id)).allocated_seats == 0


@pytest.mark.asyncio
async def test_resize_refuses_to_drop_below_allocated(db_session, make_trip, clock):
    trip = (await make_trip(total_seats=4)).trip
    repo = SeatLedgerRepository(db_session)
    await repo.allocate_seats(trip.id, 3, clock())
    assert not await repo.resize(trip.id, 2)
    assert await repo.resize(trip.id, 3)
    ledger = await repo.get(trip.id)
    assert ledger.total_seats == 3
    assert ledger.remaining_seats == 0


@pytest.mark.asyncio
async def test_allocation_refused_once_trip_is_canceled(db_session, make_trip, clock):
    trip = (await make_trip(total_seats=3)).trip
    await db_session.execute(
        update(TripOfferModel)
        .where(TripOfferModel.id == trip.id)
        .values(status=TripStatus.CANCELED)
    )
    repo = SeatLedgerRepository(db_session)
    assert not await repo.allocate_seats(trip.id, 1, clock())
    assert (await repo.get(trip.id)).allocated_seats == 0


@pytest.mark.asyncio
async def test_allocation_refused_after_departure(db_session, make_trip, clock):
    trip = (await make_trip(total_seats=3)).trip
    repo = SeatLedgerRepository(db_session)
    assert not await repo.allocate_seats(trip.id, 1, trip.departure_at)
    assert await repo.allocate_seats(trip.id, 1, clock())
