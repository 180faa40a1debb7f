"""Driver-side trip offer management: create, publish, edit, read."""

from __future__ import annotations

import dataclasses
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Mapping, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from src.domain.entities import Location, SeatLedger, TripOffer, utcnow
from src.domain.enums import TripStatus
from src.domain.errors import (
    ForbiddenOwner,
    InvalidField,
    OverlappingTrip,
    TransactionAborted,
    TripNotFound,
)
from src.domain.field_rules import (
    TERMINAL_TRIP_EDITABLE,
    TRIP_UPDATE_FIELDS,
    TRIP_UPDATE_TYPES,
    FieldClass,
    validate_update,
)
from src.infrastructure.repositories import SeatLedgerRepository, TripOfferRepository
from src.services.transactions import atomic

logger = logging.getLogger(__name__)


@dataclass
class TripView:
    trip: TripOffer
    ledger: Optional[SeatLedger]

    @property
    def remaining_seats(self) -> int:
        if self.ledger is None or self.trip.is_terminal:
            return 0
        return self.ledger.remaining_seats


class TripOfferService:
    def __init__(
        self,
        session: AsyncSession,
        clock: Callable[[], datetime] = utcnow,
        update_fields: Mapping[str, FieldClass] = TRIP_UPDATE_FIELDS,
        update_types: Mapping[str, tuple[type, ...]] = TRIP_UPDATE_TYPES,
    ):
        self.session = session
        self.clock = clock
        self.update_fields = update_fields
        self.update_types = update_types
        self.trips = TripOfferRepository(session)
        self.ledger = SeatLedgerRepository(session)

    async def create_trip(
        self,
        driver_id: str,
        *,
        vehicle_id: str,
        origin: Location,
        destination: Location,
        departure_at: datetime,
        estimated_arrival_at: datetime,
        price_per_seat: float,
        total_seats: int,
        status: TripStatus = TripStatus.PUBLISHED,
        notes: str = "",
    ) -> TripView:
        now = self.clock()
        if status not in (TripStatus.DRAFT, TripStatus.PUBLISHED):
            raise InvalidField("status", "New trips must be draft or published")

        trip = TripOffer(
            driver_id=driver_id,
            vehicle_id=vehicle_id,
            origin=origin,
            destination=destination,
            departure_at=departure_at,
            estimated_arrival_at=estimated_arrival_at,
            price_per_seat=price_per_seat,
            total_seats=total_seats,
            status=status,
            notes=notes or "",
            created_at=now,
            updated_at=now,
        )
        trip.validate()
        if status is TripStatus.PUBLISHED and not trip.is_departure_in_future(now):
            raise InvalidField("departure_at", "departure_at must be in the future")

        async with atomic(self.session, "create_trip"):
            if status is TripStatus.PUBLISHED:
                await self._ensure_no_overlap(trip)
            await self.trips.add(trip)
            ledger = await self.ledger.create(trip.id, trip.total_seats)

        logger.info(
            "Trip created | trip=%s driver=%s status=%s seats=%d",
            trip.id,
            driver_id,
            status.value,
            total_seats,
        )
        return TripView(trip, ledger)

    async def publish_trip(self, trip_id: str, driver_id: str) -> TripView:
        now = self.clock()
        async with atomic(self.session, "publish_trip"):
            trip = await self._get_owned(trip_id, driver_id)
            previous = trip.status
            trip.transition_to(TripStatus.PUBLISHED, now)
            if not trip.is_departure_in_future(now):
                raise InvalidField(
                    "departure_at", "Cannot publish a trip whose departure has passed"
                )
            await self._ensure_no_overlap(trip)
            if not await self.trips.set_status(
                trip_id, [previous], TripStatus.PUBLISHED, now
            ):
                raise TransactionAborted("publish_trip")

        logger.info("Trip published | trip=%s", trip_id)
        return await self.get_trip(trip_id)

    async def update_trip(
        self, trip_id: str, driver_id: str, changes: Mapping[str, Any]
    ) -> TripView:
        values = validate_update(changes, self.update_fields, self.update_types)
        now = self.clock()

        async with atomic(self.session, "update_trip"):
            trip = await self._get_owned(trip_id, driver_id)
            if trip.is_terminal:
                blocked = sorted(set(values) - TERMINAL_TRIP_EDITABLE)
                if blocked:
                    raise InvalidField(
                        blocked[0],
                        f"Only notes can be edited on a {trip.status.value} trip",
                    )

            candidate = dataclasses.replace(trip, **values)
            candidate.validate()

            if "total_seats" in values and values["total_seats"] != trip.total_seats:
                if not await self.ledger.resize(trip_id, values["total_seats"]):
                    raise InvalidField(
                        "total_seats",
                        "total_seats cannot drop below seats already booked",
                    )

            values["updated_at"] = now
            if not await self.trips.update_fields(trip_id, trip.status, values):
                raise TransactionAborted("update_trip")

        logger.info(
            "Trip updated | trip=%s fields=%s",
            trip_id,
            ", ".join(sorted(changes)),
        )
        return await self.get_trip(trip_id)

    async def get_trip(self, trip_id: str) -> TripView:
        trip = await self.trips.get_by_id(trip_id)
        if trip is None:
            raise TripNotFound(trip_id)
        return TripView(trip, await self.ledger.get(trip_id))

    async def list_driver_trips(
        self, driver_id: str, status: Optional[TripStatus] = None
    ) -> list[TripView]:
        trips = await self.trips.list_by_driver(driver_id, status)
        ledgers = await self.ledger.get_many(t.id for t in trips)
        return [TripView(t, ledgers.get(t.id)) for t in trips]

    async def _ensure_no_overlap(self, trip: TripOffer) -> None:
        clashes = await self.trips.find_overlapping(
            trip.driver_id,
            trip.departure_at,
            trip.estimated_arrival_at,
            exclude_id=trip.id,
        )
        if clashes:
            logger.info(
                "Overlapping trip rejected | driver=%s trip=%s conflicts_with=%s",
                trip.driver_id,
                trip.id,
                clashes[0].id,
            )
            raise OverlappingTrip(trip.driver_id, clashes[0].id)

    async def _get_owned(self, trip_id: str, driver_id: str) -> TripOffer:
        trip = await self.trips.get_by_id(trip_id)
        if trip is None:
            raise TripNotFound(trip_id)
        if trip.driver_id != driver_id:
            raise ForbiddenOwner("trip", trip_id, driver_id)
        return trip
