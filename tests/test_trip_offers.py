"""Service tests for creating, publishing and editing trip offers."""

from __future__ import annotations

from datetime import timedelta

import pytest

from src.domain.entities import new_object_id
from src.domain.enums import TripStatus
from src.domain.errors import (
    ForbiddenOwner,
    InvalidField,
    InvalidStateTransition,
    OverlappingTrip,
)
from src.services.booking_lifecycle import BookingLifecycleService
from src.services.trip_offers import TripOfferService


@pytest.fixture
def trips(db_session, clock):
    return TripOfferService(db_session, clock=clock)


@pytest.mark.asyncio
async def test_published_trip_needs_future_departure(make_trip, clock):
    with pytest.raises(InvalidField) as exc:
        await make_trip(departure_at=clock() - timedelta(minutes=5))
    assert exc.value.context["field"] == "departure_at"


@pytest.mark.asyncio
async def test_trip_cannot_start_completed(make_trip):
    with pytest.raises(InvalidField):
        await make_trip(status=TripStatus.COMPLETED)


@pytest.mark.asyncio
async def test_publish_draft(trips, make_trip, driver_id):
    draft = (await make_trip(status=TripStatus.DRAFT)).trip
    view = await trips.publish_trip(draft.id, driver_id)
    assert view.trip.status == TripStatus.PUBLISHED
    assert view.remaining_seats == draft.total_seats

    with pytest.raises(InvalidStateTransition):
        await trips.publish_trip(draft.id, driver_id)


@pytest.mark.asyncio
async def test_publish_after_departure_rejected(trips, make_trip, driver_id, clock):
    draft = (await make_trip(status=TripStatus.DRAFT)).trip
    clock.advance(days=2)
    with pytest.raises(InvalidField):
        await trips.publish_trip(draft.id, driver_id)
    assert (await trips.get_trip(draft.id)).trip.status == TripStatus.DRAFT


@pytest.mark.asyncio
async def test_update_price_and_notes(trips, make_trip, driver_id):
    trip = (await make_trip()).trip
    view = await trips.update_trip(
        trip.id, driver_id, {"price_per_seat": 7.25, "notes": "Meet at gate B"}
    )
    assert view.trip.price_per_seat == 7.25
    assert view.trip.notes == "Meet at gate B"


@pytest.mark.asyncio
async def test_immutable_field_rejected(trips, make_trip, driver_id):
    trip = (await make_trip()).trip
    with pytest.raises(InvalidField) as exc:
        await trips.update_trip(trip.id, driver_id, {"departure_at": "tomorrow"})
    assert exc.value.context["field"] == "departure_at"


@pytest.mark.asyncio
async def test_only_owner_may_edit(trips, make_trip):
    trip = (await make_trip()).trip
    with pytest.raises(ForbiddenOwner):
        await trips.update_trip(trip.id, new_object_id(), {"notes": "hi"})


@pytest.mark.asyncio
async def test_shrinking_seats_below_bookings_rejected(
    db_session, trips, make_trip, driver_id, clock
):
    trip = (await make_trip(total_seats=4)).trip
    await BookingLifecycleService(db_session, clock=clock).create_booking(
        trip.id, new_object_id(), 3
    )

    with pytest.raises(InvalidField):
        await trips.update_trip(trip.id, driver_id, {"total_seats": 2})

    view = await trips.update_trip(trip.id, driver_id, {"total_seats": 5})
    assert view.trip.total_seats == 5
    assert view.ledger.total_seats == 5
    assert view.remaining_seats == 2


@pytest.mark.asyncio
async def test_terminal_trip_accepts_notes_only(
    db_session, trips, make_trip, driver_id, clock
):
    trip = (await make_trip()).trip
    await BookingLifecycleService(db_session, clock=clock).cancel_trip(trip.id, driver_id)

    view = await trips.update_trip(trip.id, driver_id, {"notes": "Sorry, car broke down"})
    assert view.trip.notes == "Sorry, car broke down"
    assert view.remaining_seats == 0

    with pytest.raises(InvalidField):
        await trips.update_trip(trip.id, driver_id, {"price_per_seat": 1.0})


@pytest.mark.asyncio
async def test_list_driver_trips(trips, make_trip, driver_id):
    await make_trip()
    await make_trip(status=TripStatus.DRAFT)
    assert len(await trips.list_driver_trips(driver_id)) == 2
    drafts = await trips.list_driver_trips(driver_id, TripStatus.DRAFT)
    assert [v.trip.status for v in drafts] == [TripStatus.DRAFT]
    assert drafts[0].remaining_seats == 3


@pytest.mark.asyncio
async def test_wrong_value_type_rejected_on_update(trips, make_trip, driver_id):
    trip = (await make_trip()).trip
    with pytest.raises(InvalidField) as exc:
        await trips.update_trip(trip.id, driver_id, {"total_seats": "four"})
    assert exc.value.context["field"] == "total_seats"
    assert (await trips.get_trip(trip.id)).trip.total_seats == 3


class TestOverlappingTrips:
    @pytest.mark.asyncio
    async def test_overlapping_published_trip_rejected(self, make_trip, clock):
        departure = clock() + timedelta(days=3)
        first = (await make_trip(departure_at=departure)).trip
        with pytest.raises(OverlappingTrip) as exc:
            await make_trip(departure_at=departure + timedelta(minutes=20))
        assert exc.value.context["conflicting_trip_id"] == first.id

    @pytest.mark.asyncio
    async def test_back_to_back_trips_allowed(self, make_trip, clock):
        departure = clock() + timedelta(days=3)
        await make_trip(departure_at=departure)
        # The first trip arrives exactly when the second leaves
        view = await make_trip(departure_at=departure + timedelta(minutes=45))
        assert view.trip.status == TripStatus.PUBLISHED

    @pytest.mark.asyncio
    async def test_draft_may_overlap_until_published(
        self, trips, make_trip, clock, driver_id
    ):
        departure = clock() + timedelta(days=3)
        await make_trip(departure_at=departure)
        draft = (
            await make_trip(
                departure_at=departure + timedelta(minutes=10), status=TripStatus.DRAFT
            )
        ).trip
        with pytest.raises(OverlappingTrip):
            await trips.publish_trip(draft.id, driver_id)
        assert (await trips.get_trip(draft.id)).trip.status == TripStatus.DRAFT

    @pytest.mark.asyncio
    async def test_other_drivers_do_not_conflict(self, make_trip, clock):
        departure = clock() + timedelta(days=3)
        await make_trip(departure_at=departure)
        view = await make_trip(departure_at=departure, driver_id=new_object_id())
        assert view.trip.status == TripStatus.PUBLISHED

    @pytest.mark.asyncio
    async def test_canceled_trip_frees_the_window(
        self, make_trip, clock, db_session, driver_id
    ):
        departure = clock() + timedelta(days=3)
        first = (await make_trip(departure_at=departure)).trip
        await BookingLifecycleService(db_session, clock=clock).cancel_trip(
            first.id, driver_id
        )
        view = await make_trip(departure_at=departure)
        assert view.trip.status == TripStatus.PUBLISHED
