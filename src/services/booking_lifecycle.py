"""
Booking Lifecycle Service
=========================

Orchestrates every passenger / driver action that moves a booking or a
trip between states.

Ordering rules
--------------
* **create**  -- allocate seats *before* inserting the pending booking, so
  a lost capacity race never leaves a booking without seats behind it.
* **decline / cancel** -- release seats and write the new status in the
  same transaction; either both commit or neither does.
* **trip cancel** -- run ``TRIP_CANCELLATION_PLAN`` step by step inside one
  transaction (see ``src.domain.cascade``).

Concurrency safety
------------------
There are no application locks.  Every action first reads its trip row
``FOR UPDATE``, so a booking change and a cancellation of the same trip
run one after the other (lock order: trip, then ledger, then bookings).
Seat counts change only through the conditional updates in
``SeatLedgerRepository``; allocation also re-checks that the trip is still
published and departing later.  Every status write is conditioned on the
status the caller observed, so the loser of a race gets
``InvalidStateTransition`` and its transaction rolls back.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Optional, Sequence

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from src.domain.cascade import (
    TRIP_CANCELLATION_PLAN,
    BulkBookingTransition,
    CascadeEffects,
    CascadeStep,
    ReleaseLedger,
    SetTripStatus,
)
from src.domain.entities import BookingRequest, TripOffer, utcnow
from src.domain.enums import BookingStatus, PaymentOutcome, TripStatus
from src.domain.errors import (
    BookingNotFound,
    DuplicateActiveBooking,
    ForbiddenOwner,
    InvalidStateTransition,
    SeatUnavailable,
    TripNotBookable,
    TripNotFound,
)
from src.domain.events import TransitionEvent, booking_event, cascade_event, trip_event
from src.infrastructure.repositories import (
    BookingRequestRepository,
    SeatLedgerRepository,
    TripOfferRepository,
)
from src.services.transactions import atomic

logger = logging.getLogger(__name__)


@dataclass
class BookingResult:
    booking: BookingRequest
    events: list[TransitionEvent] = field(default_factory=list)
    ledger_released: int = 0


@dataclass
class TripCancellationResult:
    trip: TripOffer
    effects: CascadeEffects
    events: list[TransitionEvent] = field(default_factory=list)


@dataclass
class BookingPage:
    items: list[BookingRequest]
    total: int
    page: int
    page_size: int


class BookingLifecycleService:
    def __init__(
        self,
        session: AsyncSession,
        clock: Callable[[], datetime] = utcnow,
        cancellation_plan: Sequence[CascadeStep] = TRIP_CANCELLATION_PLAN,
    ):
        self.session = session
        self.clock = clock
        self.cancellation_plan = cancellation_plan
        self.trips = TripOfferRepository(session)
        self.ledger = SeatLedgerRepository(session)
        self.bookings = BookingRequestRepository(session)

    # ── Passenger actions ─────────────────────────────────────────

    async def create_booking(
        self, trip_id: str, passenger_id: str, seats: int, note: Optional[str] = None
    ) -> BookingResult:
        now = self.clock()
        booking = BookingRequest(
            trip_id=trip_id,
            passenger_id=passenger_id,
            seats=seats,
            note=(note or "").strip(),
            created_at=now,
            updated_at=now,
        )
        booking.validate()

        async with atomic(self.session, "create_booking"):
            trip = await self._get_trip(trip_id, for_update=True)
            trip.ensure_bookable(passenger_id, now)

            if await self.bookings.find_active(passenger_id, trip_id):
                raise DuplicateActiveBooking(trip_id, passenger_id)

            if not await self.ledger.allocate_seats(trip_id, seats, now):
                # Canceled or completed since the read above
                (await self._get_trip(trip_id)).ensure_bookable(passenger_id, now)
                logger.info(
                    "Seat allocation failed | trip=%s passenger=%s seats=%d",
                    trip_id,
                    passenger_id,
                    seats,
                )
                raise SeatUnavailable(trip_id, seats)

            try:
                await self.bookings.add(booking)
            except IntegrityError as exc:
                # Lost the race against a concurrent request from the same passenger
                raise DuplicateActiveBooking(trip_id, passenger_id) from exc

        logger.info(
            "Booking created | booking=%s trip=%s passenger=%s seats=%d",
            booking.id,
            trip_id,
            passenger_id,
            seats,
        )
        return BookingResult(
            booking,
            [booking_event("booking.new", trip.driver_id, booking, passenger_id=passenger_id)],
        )

    async def cancel_by_passenger(
        self, booking_id: str, passenger_id: str, reason: Optional[str] = None
    ) -> BookingResult:
        now = self.clock()
        async with atomic(self.session, "cancel_by_passenger"):
            booking = await self._get_booking(booking_id)
            if booking.passenger_id != passenger_id:
                raise ForbiddenOwner("booking", booking_id, passenger_id)
            trip = await self._get_trip(booking.trip_id, for_update=True)

            previous = booking.status
            booking.cancel_by_passenger(reason, now)
            await self.ledger.deallocate_seats(booking.trip_id, booking.seats)
            await self._save(booking, previous)

        logger.info(
            "Booking canceled by passenger | booking=%s previous=%s refund_needed=%s",
            booking_id,
            previous.value,
            booking.refund_needed,
        )
        events = [
            booking_event("booking.canceled", booking.passenger_id, booking),
            booking_event(
                "booking.canceled_by_passenger",
                trip.driver_id,
                booking,
                passenger_id=booking.passenger_id,
            ),
        ]
        return BookingResult(booking, events, ledger_released=booking.seats)

    # ── Driver actions ────────────────────────────────────────────

    async def accept_booking(self, booking_id: str, driver_id: str) -> BookingResult:
        now = self.clock()
        async with atomic(self.session, "accept_booking"):
            booking = await self._get_booking(booking_id)
            trip = await self._get_trip(booking.trip_id, for_update=True)
            self._ensure_driver(trip, driver_id)

            previous = booking.status
            booking.accept(driver_id, now)
            if trip.status is not TripStatus.PUBLISHED:
                raise TripNotBookable(trip.id, f"trip is {trip.status.value}")
            if not trip.is_departure_in_future(now):
                raise TripNotBookable(trip.id, "trip has already departed")
            await self._save(booking, previous)

        logger.info("Booking accepted | booking=%s driver=%s", booking_id, driver_id)
        return BookingResult(
            booking,
            [booking_event("booking.accepted", booking.passenger_id, booking, driver_id=driver_id)],
        )

    async def decline_booking(
        self, booking_id: str, driver_id: str, reason: Optional[str] = None
    ) -> BookingResult:
        now = self.clock()
        async with atomic(self.session, "decline_booking"):
            booking = await self._get_booking(booking_id)
            trip = await self._get_trip(booking.trip_id, for_update=True)
            self._ensure_driver(trip, driver_id)

            previous = booking.status
            booking.decline(driver_id, (reason or "").strip(), now)
            await self.ledger.deallocate_seats(booking.trip_id, booking.seats)
            await self._save(booking, previous)

        logger.info("Booking declined | booking=%s driver=%s", booking_id, driver_id)
        return BookingResult(
            booking,
            [
                booking_event(
                    "booking.declined",
                    booking.passenger_id,
                    booking,
                    reason=booking.decline_reason,
                )
            ],
            ledger_released=booking.seats,
        )

    async def cancel_trip(self, trip_id: str, driver_id: str) -> TripCancellationResult:
        """Cancel a trip and resolve every dependent booking atomically."""
        now = self.clock()
        effects = CascadeEffects()
        events: list[TransitionEvent] = []

        async with atomic(self.session, "cancel_trip"):
            trip = await self._get_trip(trip_id, for_update=True)
            self._ensure_driver(trip, driver_id)
            trip.transition_to(TripStatus.CANCELED, now)

            released_seats = 0
            for step in self.cancellation_plan:
                if isinstance(step, SetTripStatus):
                    if not await self.trips.set_status(
                        trip_id, step.from_statuses, step.to_status, now
                    ):
                        current = await self._get_trip(trip_id)
                        raise InvalidStateTransition(
                            "trip", trip_id, current.status.value, step.to_status.value
                        )
                elif isinstance(step, BulkBookingTransition):
                    rows = await self.bookings.bulk_transition(trip_id, step, now)
                    effects.add(step.effect, len(rows))
                    if step.refund_needed:
                        effects.refunds_created += len(rows)
                    released_seats += sum(row.seats for row in rows)
                    events.extend(
                        cascade_event(
                            step.to_status.value,
                            row.passenger_id,
                            row.id,
                            row.trip_id,
                            row.seats,
                        )
                        for row in rows
                    )
                elif isinstance(step, ReleaseLedger):
                    effects.add(
                        step.effect, await self.ledger.release_all(trip_id, released_seats)
                    )

        logger.info(
            "Trip canceled with cascade | trip=%s declined_auto=%d "
            "canceled_by_platform=%d refunds=%d seats_released=%d",
            trip_id,
            effects.declined_auto,
            effects.canceled_by_platform,
            effects.refunds_created,
            effects.ledger_released,
        )
        events.append(
            trip_event(
                "trip.canceled",
                trip,
                declined_auto=effects.declined_auto,
                canceled_by_platform=effects.canceled_by_platform,
            )
        )
        return TripCancellationResult(trip, effects, events)

    # ── Payment collaborator feedback ─────────────────────────────

    async def mark_as_paid(self, booking_id: str) -> BookingRequest:
        """Idempotent; webhook retries land here repeatedly."""
        async with atomic(self.session, "mark_as_paid"):
            if not await self.bookings.mark_as_paid(booking_id, self.clock()):
                raise BookingNotFound(booking_id)
        booking = await self._get_booking(booking_id)
        logger.info("Booking marked as paid | booking=%s", booking_id)
        return booking

    async def apply_payment_outcome(
        self, booking_id: str, outcome: PaymentOutcome
    ) -> BookingRequest:
        if outcome is PaymentOutcome.SUCCEEDED:
            return await self.mark_as_paid(booking_id)
        if outcome is PaymentOutcome.REFUNDED:
            async with atomic(self.session, "settle_refund"):
                if not await self.bookings.settle_refund(booking_id, self.clock()):
                    booking = await self._get_booking(booking_id)
                    # Nothing was ever owed on this booking
                    raise InvalidStateTransition(
                        "booking", booking_id, booking.status.value, "refunded"
                    )
            logger.info("Refund settled | booking=%s", booking_id)
            return await self._get_booking(booking_id)
        logger.info("Payment failed; booking unchanged | booking=%s", booking_id)
        return await self._get_booking(booking_id)

    async def list_pending_refunds(self, limit: int = 100) -> list[BookingRequest]:
        return await self.bookings.list_pending_refunds(limit)

    # ── Reads ─────────────────────────────────────────────────────

    async def get_booking(
        self, booking_id: str, viewer_id: Optional[str] = None
    ) -> BookingRequest:
        """*viewer_id* None means an unrestricted (admin) read."""
        booking = await self._get_booking(booking_id)
        if viewer_id is not None and viewer_id != booking.passenger_id:
            trip = await self._get_trip(booking.trip_id)
            if trip.driver_id != viewer_id:
                raise ForbiddenOwner("booking", booking_id, viewer_id)
        return booking

    async def list_trip_bookings(
        self,
        trip_id: str,
        driver_id: str,
        statuses: Optional[list[BookingStatus]] = None,
        page: int = 1,
        page_size: int = 10,
    ) -> BookingPage:
        trip = await self._get_trip(trip_id)
        self._ensure_driver(trip, driver_id)
        items, total = await self.bookings.list_by_trip(trip_id, statuses, page, page_size)
        return BookingPage(items, total, page, page_size)

    async def list_passenger_bookings(
        self,
        passenger_id: str,
        statuses: Optional[list[BookingStatus]] = None,
        page: int = 1,
        page_size: int = 10,
    ) -> BookingPage:
        items, total = await self.bookings.list_by_passenger(
            passenger_id, statuses, page, page_size
        )
        return BookingPage(items, total, page, page_size)

    # ── Internals ─────────────────────────────────────────────────

    async def _get_trip(self, trip_id: str, for_update: bool = False) -> TripOffer:
        trip = await self.trips.get_by_id(trip_id, for_update=for_update)
        if trip is None:
            raise TripNotFound(trip_id)
        return trip

    async def _get_booking(self, booking_id: str) -> BookingRequest:
        booking = await self.bookings.get_by_id(booking_id)
        if booking is None:
            raise BookingNotFound(booking_id)
        return booking

    @staticmethod
    def _ensure_driver(trip: TripOffer, driver_id: str) -> None:
        if trip.driver_id != driver_id:
            raise ForbiddenOwner("trip", trip.id, driver_id)

    async def _save(self, booking: BookingRequest, previous: BookingStatus) -> None:
        if not await self.bookings.save_transition(booking, previous):
            current = await self._get_booking(booking.id)
            raise InvalidStateTransition(
                "booking", booking.id, current.status.value, booking.status.value
            )
