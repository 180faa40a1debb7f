"""
Repository Pattern -- abstracts DB access so domain logic stays DB-agnostic.

Each repository receives an ``AsyncSession`` (unit-of-work) and exposes
domain-relevant queries only.  Reads return domain entities; writes that
race with other requests are single conditional ``UPDATE`` statements
whose row count tells the caller whether it won.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Iterable, NamedTuple, Optional

from sqlalchemy import func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from .models import BookingRequestModel, SeatLedgerModel, TripOfferModel
from src.domain.cascade import BulkBookingTransition
from src.domain.entities import (
    BookingRequest,
    Location,
    SeatLedger,
    TripOffer,
    as_utc,
)
from src.domain.enums import ACTIVE_BOOKING_STATUSES, BookingStatus, TripStatus
from src.domain.errors import LedgerCorruption

logger = logging.getLogger(__name__)


class AffectedBooking(NamedTuple):
    id: str
    trip_id: str
    passenger_id: str
    seats: int


def _trip_to_entity(row: TripOfferModel) -> TripOffer:
    return TripOffer(
        id=row.id,
        driver_id=row.driver_id,
        vehicle_id=row.vehicle_id,
        origin=Location(row.origin_text, row.origin_lat, row.origin_lng),
        destination=Location(
            row.destination_text, row.destination_lat, row.destination_lng
        ),
        departure_at=as_utc(row.departure_at),
        estimated_arrival_at=as_utc(row.estimated_arrival_at),
        price_per_seat=row.price_per_seat,
        total_seats=row.total_seats,
        status=TripStatus(row.status),
        notes=row.notes or "",
        created_at=as_utc(row.created_at),
        updated_at=as_utc(row.updated_at),
    )


def _booking_to_entity(row: BookingRequestModel) -> BookingRequest:
    return BookingRequest(
        id=row.id,
        trip_id=row.trip_id,
        passenger_id=row.passenger_id,
        seats=row.seats,
        note=row.note or "",
        status=BookingStatus(row.status),
        accepted_at=as_utc(row.accepted_at),
        accepted_by=row.accepted_by,
        declined_at=as_utc(row.declined_at),
        declined_by=row.declined_by,
        decline_reason=row.decline_reason,
        canceled_at=as_utc(row.canceled_at),
        cancellation_reason=row.cancellation_reason,
        refund_needed=row.refund_needed,
        is_paid=row.is_paid,
        refunded_at=as_utc(row.refunded_at),
        created_at=as_utc(row.created_at),
        updated_at=as_utc(row.updated_at),
    )


# Columns a single-booking transition may change
_BOOKING_MUTABLE = (
    "status",
    "accepted_at",
    "accepted_by",
    "declined_at",
    "declined_by",
    "decline_reason",
    "canceled_at",
    "cancellation_reason",
    "refund_needed",
    "updated_at",
)


class TripOfferRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def add(self, trip: TripOffer) -> TripOffer:
        self.session.add(
            TripOfferModel(
                id=trip.id,
                driver_id=trip.driver_id,
                vehicle_id=trip.vehicle_id,
                origin_text=trip.origin.text,
                origin_lat=trip.origin.latitude,
                origin_lng=trip.origin.longitude,
                destination_text=trip.destination.text,
                destination_lat=trip.destination.latitude,
                destination_lng=trip.destination.longitude,
                departure_at=trip.departure_at,
                estimated_arrival_at=trip.estimated_arrival_at,
                price_per_seat=trip.price_per_seat,
                total_seats=trip.total_seats,
                status=trip.status,
                notes=trip.notes,
                created_at=trip.created_at,
                updated_at=trip.updated_at,
            )
        )
        await self.session.flush()
        return trip

    async def get_by_id(
        self, trip_id: str, for_update: bool = False
    ) -> Optional[TripOffer]:
        """*for_update* holds the row lock until the transaction ends."""
        query = (
            select(TripOfferModel)
            .where(TripOfferModel.id == trip_id)
            .execution_options(populate_existing=True)
        )
        if for_update:
            query = query.with_for_update()
        result = await self.session.execute(query)
        row = result.scalar_one_or_none()
        return _trip_to_entity(row) if row else None

    async def find_overlapping(
        self,
        driver_id: str,
        departure_at: datetime,
        estimated_arrival_at: datetime,
        exclude_id: Optional[str] = None,
    ) -> list[TripOffer]:
        """Published trips of *driver_id* whose time window intersects the given one."""
        query = select(TripOfferModel).where(
            TripOfferModel.driver_id == driver_id,
            TripOfferModel.status == TripStatus.PUBLISHED,
            TripOfferModel.departure_at < estimated_arrival_at,
            TripOfferModel.estimated_arrival_at > departure_at,
        )
        if exclude_id:
            query = query.where(TripOfferModel.id != exclude_id)
        result = await self.session.execute(
            query.execution_options(populate_existing=True)
        )
        return [_trip_to_entity(r) for r in result.scalars().all()]

    async def list_by_driver(
        self, driver_id: str, status: Optional[TripStatus] = None
    ) -> list[TripOffer]:
        query = (
            select(TripOfferModel)
            .where(TripOfferModel.driver_id == driver_id)
            .order_by(TripOfferModel.departure_at)
            .execution_options(populate_existing=True)
        )
        if status:
            query = query.where(TripOfferModel.status == status)
        result = await self.session.execute(query)
        return [_trip_to_entity(r) for r in result.scalars().all()]

    async def set_status(
        self,
        trip_id: str,
        from_statuses: Iterable[TripStatus],
        to_status: TripStatus,
        now: datetime,
    ) -> bool:
        """Compare-and-set on status.  False if another writer got there first."""
        result = await self.session.execute(
            update(TripOfferModel)
            .where(
                TripOfferModel.id == trip_id,
                TripOfferModel.status.in_(list(from_statuses)),
            )
            .values(status=to_status, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def update_fields(
        self, trip_id: str, expected_status: TripStatus, values: dict
    ) -> bool:
        result = await self.session.execute(
            update(TripOfferModel)
            .where(
                TripOfferModel.id == trip_id,
                TripOfferModel.status == expected_status,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def complete_departed(self, now: datetime) -> int:
        result = await self.session.execute(
            update(TripOfferModel)
            .where(
                TripOfferModel.status == TripStatus.PUBLISHED,
                TripOfferModel.departure_at < now,
            )
            .values(status=TripStatus.COMPLETED, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0


class SeatLedgerRepository:
    """
    Per-trip seat counter.

    No method reads the counter and writes it back: each mutation is one
    ``UPDATE ... WHERE <guard>`` so two passengers racing for the last
    seat are serialised by the database row lock.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, trip_id: str, total_seats: int) -> SeatLedger:
        self.session.add(
            SeatLedgerModel(trip_id=trip_id, total_seats=total_seats, allocated_seats=0)
        )
        await self.session.flush()
        return SeatLedger(trip_id=trip_id, total_seats=total_seats)

    async def get(self, trip_id: str) -> Optional[SeatLedger]:
        result = await self.session.execute(
            select(SeatLedgerModel)
            .where(SeatLedgerModel.trip_id == trip_id)
            .execution_options(populate_existing=True)
        )
        row = result.scalar_one_or_none()
        if row is None:
            return None
        return SeatLedger(
            trip_id=row.trip_id,
            total_seats=row.total_seats,
            allocated_seats=row.allocated_seats,
        )

    async def get_many(self, trip_ids: Iterable[str]) -> dict[str, SeatLedger]:
        ids = list(trip_ids)
        if not ids:
            return {}
        result = await self.session.execute(
            select(SeatLedgerModel)
            .where(SeatLedgerModel.trip_id.in_(ids))
            .execution_options(populate_existing=True)
        )
        return {
            row.trip_id: SeatLedger(
                trip_id=row.trip_id,
                total_seats=row.total_seats,
                allocated_seats=row.allocated_seats,
            )
            for row in result.scalars().all()
        }

    async def allocate_seats(self, trip_id: str, seats: int, now: datetime) -> bool:
        """
        Returns False when the trip cannot fit *seats* more, or is no longer
        published with a departure after *now*.  The trip check runs in the
        same statement, so a cancellation that commits after the caller's
        own read still blocks the allocation.
        """
        trip_open = (
            select(TripOfferModel.id)
            .where(
                TripOfferModel.id == trip_id,
                TripOfferModel.status == TripStatus.PUBLISHED,
                TripOfferModel.departure_at > now,
            )
            .exists()
        )
        result = await self.session.execute(
            update(SeatLedgerModel)
            .where(
                SeatLedgerModel.trip_id == trip_id,
                SeatLedgerModel.allocated_seats + seats <= SeatLedgerModel.total_seats,
                trip_open,
            )
            .values(allocated_seats=SeatLedgerModel.allocated_seats + seats)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def deallocate_seats(self, trip_id: str, seats: int) -> None:
        result = await self.session.execute(
            update(SeatLedgerModel)
            .where(
                SeatLedgerModel.trip_id == trip_id,
                SeatLedgerModel.allocated_seats >= seats,
            )
            .values(allocated_seats=SeatLedgerModel.allocated_seats - seats)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            logger.error(
                "Seat ledger corruption: cannot release %d seats on trip %s",
                seats,
                trip_id,
            )
            raise LedgerCorruption(
                trip_id,
                f"Cannot release {seats} seats from trip {trip_id}",
                seats=seats,
            )

    async def release_all(self, trip_id: str, expected: int) -> int:
        """Zero the counter, which must currently equal *expected*."""
        result = await self.session.execute(
            update(SeatLedgerModel)
            .where(
                SeatLedgerModel.trip_id == trip_id,
                SeatLedgerModel.allocated_seats == expected,
            )
            .values(allocated_seats=0)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            logger.error(
                "Seat ledger corruption: trip %s does not hold %d seats",
                trip_id,
                expected,
            )
            raise LedgerCorruption(
                trip_id,
                f"Ledger for trip {trip_id} does not match its active bookings",
                expected=expected,
            )
        return expected

    async def resize(self, trip_id: str, total_seats: int) -> bool:
        """Change capacity; refuses to drop below what is already allocated."""
        result = await self.session.execute(
            update(SeatLedgerModel)
            .where(
                SeatLedgerModel.trip_id == trip_id,
                SeatLedgerModel.allocated_seats <= total_seats,
            )
            .values(total_seats=total_seats)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1


class BookingRequestRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def add(self, booking: BookingRequest) -> BookingRequest:
        """Insert; raises ``IntegrityError`` if an active duplicate exists."""
        self.session.add(
            BookingRequestModel(
                id=booking.id,
                trip_id=booking.trip_id,
                passenger_id=booking.passenger_id,
                seats=booking.seats,
                note=booking.note,
                status=booking.status,
                created_at=booking.created_at,
                updated_at=booking.updated_at,
            )
        )
        await self.session.flush()
        return booking

    async def get_by_id(self, booking_id: str) -> Optional[BookingRequest]:
        result = await self.session.execute(
            select(BookingRequestModel)
            .where(BookingRequestModel.id == booking_id)
            .execution_options(populate_existing=True)
        )
        row = result.scalar_one_or_none()
        return _booking_to_entity(row) if row else None

    async def find_active(
        self, passenger_id: str, trip_id: str
    ) -> Optional[BookingRequest]:
        result = await self.session.execute(
            select(BookingRequestModel)
            .where(
                BookingRequestModel.passenger_id == passenger_id,
                BookingRequestModel.trip_id == trip_id,
                BookingRequestModel.status.in_(list(ACTIVE_BOOKING_STATUSES)),
            )
            .execution_options(populate_existing=True)
        )
        row = result.scalars().first()
        return _booking_to_entity(row) if row else None

    async def save_transition(
        self, booking: BookingRequest, expected_status: BookingStatus
    ) -> bool:
        """Persist *booking*'s lifecycle fields if the row is still in *expected_status*."""
        result = await self.session.execute(
            update(BookingRequestModel)
            .where(
                BookingRequestModel.id == booking.id,
                BookingRequestModel.status == expected_status,
            )
            .values({name: getattr(booking, name) for name in _BOOKING_MUTABLE})
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def bulk_transition(
        self, trip_id: str, step: BulkBookingTransition, now: datetime
    ) -> list[AffectedBooking]:
        values = {
            "status": step.to_status,
            step.timestamp_field: now,
            "updated_at": now,
        }
        if step.refund_needed:
            values["refund_needed"] = True
        if step.actor:
            values["declined_by"] = step.actor
        result = await self.session.execute(
            update(BookingRequestModel)
            .where(
                BookingRequestModel.trip_id == trip_id,
                BookingRequestModel.status == step.from_status,
            )
            .values(values)
            .returning(
                BookingRequestModel.id,
                BookingRequestModel.trip_id,
                BookingRequestModel.passenger_id,
                BookingRequestModel.seats,
            )
            .execution_options(synchronize_session=False)
        )
        return [AffectedBooking(*row) for row in result.all()]

    async def trips_with_pending_before(self, cutoff: datetime) -> list[str]:
        result = await self.session.execute(
            select(BookingRequestModel.trip_id)
            .where(
                BookingRequestModel.status == BookingStatus.PENDING,
                BookingRequestModel.created_at < cutoff,
            )
            .distinct()
            .order_by(BookingRequestModel.trip_id)
        )
        return list(result.scalars().all())

    async def expire_pending_before(
        self, trip_id: str, cutoff: datetime, now: datetime
    ) -> list[AffectedBooking]:
        result = await self.session.execute(
            update(BookingRequestModel)
            .where(
                BookingRequestModel.trip_id == trip_id,
                BookingRequestModel.status == BookingStatus.PENDING,
                BookingRequestModel.created_at < cutoff,
            )
            .values(status=BookingStatus.EXPIRED, updated_at=now)
            .returning(
                BookingRequestModel.id,
                BookingRequestModel.trip_id,
                BookingRequestModel.passenger_id,
                BookingRequestModel.seats,
            )
            .execution_options(synchronize_session=False)
        )
        return [AffectedBooking(*row) for row in result.all()]

    async def mark_as_paid(self, booking_id: str, now: datetime) -> bool:
        result = await self.session.execute(
            update(BookingRequestModel)
            .where(BookingRequestModel.id == booking_id)
            .values(is_paid=True, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def settle_refund(self, booking_id: str, now: datetime) -> bool:
        """Only bookings flagged for refund (or already refunded) match."""
        result = await self.session.execute(
            update(BookingRequestModel)
            .where(
                BookingRequestModel.id == booking_id,
                or_(
                    BookingRequestModel.refund_needed.is_(True),
                    BookingRequestModel.refunded_at.is_not(None),
                ),
            )
            .values(
                refund_needed=False,
                refunded_at=func.coalesce(BookingRequestModel.refunded_at, now),
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def list_pending_refunds(self, limit: int = 100) -> list[BookingRequest]:
        result = await self.session.execute(
            select(BookingRequestModel)
            .where(
                BookingRequestModel.refund_needed.is_(True),
                BookingRequestModel.refunded_at.is_(None),
            )
            .order_by(BookingRequestModel.canceled_at)
            .limit(limit)
            .execution_options(populate_existing=True)
        )
        return [_booking_to_entity(r) for r in result.scalars().all()]

    async def list_by_trip(
        self,
        trip_id: str,
        statuses: Optional[list[BookingStatus]] = None,
        page: int = 1,
        page_size: int = 10,
    ) -> tuple[list[BookingRequest], int]:
        criteria = [BookingRequestModel.trip_id == trip_id]
        if statuses:
            criteria.append(BookingRequestModel.status.in_(statuses))
        return await self._page(criteria, page, page_size)

    async def list_by_passenger(
        self,
        passenger_id: str,
        statuses: Optional[list[BookingStatus]] = None,
        page: int = 1,
        page_size: int = 10,
    ) -> tuple[list[BookingRequest], int]:
        criteria = [BookingRequestModel.passenger_id == passenger_id]
        if statuses:
            criteria.append(BookingRequestModel.status.in_(statuses))
        return await self._page(criteria, page, page_size)

    async def _page(
        self, criteria: list, page: int, page_size: int
    ) -> tuple[list[BookingRequest], int]:
        total = await self.session.execute(
            select(func.count()).select_from(BookingRequestModel).where(*criteria)
        )
        result = await self.session.execute(
            select(BookingRequestModel)
            .where(*criteria)
            .order_by(BookingRequestModel.created_at.desc())
            .offset((page - 1) * page_size)
            .limit(page_size)
            .execution_options(populate_existing=True)
        )
        items = [_booking_to_entity(r) for r in result.scalars().all()]
        return items, total.scalar() or 0
