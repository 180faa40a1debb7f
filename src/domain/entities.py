"""
Domain entities with business logic.

Patterns used
-------------
- **State Pattern** on ``TripOffer`` and ``BookingRequest``: every status
  change goes through ``transition_to`` which consults the transition
  tables in ``enums``.
- ``SeatLedger`` is a read snapshot; mutations happen only through the
  conditional updates in ``SeatLedgerRepository``.
"""

from __future__ import annotations

import secrets
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from .enums import (
    BOOKING_TRANSITIONS,
    TRIP_TRANSITIONS,
    BookingStatus,
    TripStatus,
)
from .errors import InvalidField, InvalidStateTransition, TripNotBookable

MAX_TEXT_LENGTH = 500


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes (SQLite drops the offset)."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def new_object_id() -> str:
    """Opaque 24-character hex identifier."""
    return secrets.token_hex(12)


# ── Value Object ──────────────────────────────────────────────────────


@dataclass(frozen=True)
class Location:
    text: str
    latitude: float
    longitude: float


# ── Entities ──────────────────────────────────────────────────────────


@dataclass
class TripOffer:
    driver_id: str
    vehicle_id: str
    origin: Location
    destination: Location
    departure_at: datetime
    estimated_arrival_at: datetime
    price_per_seat: float
    total_seats: int
    status: TripStatus = TripStatus.PUBLISHED
    notes: str = ""
    id: str = field(default_factory=new_object_id)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def validate(self) -> None:
        if self.total_seats < 1:
            raise InvalidField("total_seats", "total_seats must be at least 1")
        if self.price_per_seat < 0:
            raise InvalidField("price_per_seat", "price_per_seat cannot be negative")
        if self.estimated_arrival_at <= self.departure_at:
            raise InvalidField(
                "estimated_arrival_at",
                "estimated_arrival_at must be after departure_at",
            )
        if len(self.notes) > MAX_TEXT_LENGTH:
            raise InvalidField("notes", "notes cannot exceed 500 characters")

    @property
    def is_terminal(self) -> bool:
        return not TRIP_TRANSITIONS[self.status]

    def is_departure_in_future(self, now: datetime) -> bool:
        return self.departure_at > now

    def transition_to(self, new_status: TripStatus, now: datetime) -> None:
        """Move to *new_status* if the transition is legal, else raise."""
        if new_status not in TRIP_TRANSITIONS.get(self.status, set()):
            raise InvalidStateTransition(
                "trip", self.id, self.status.value, new_status.value
            )
        self.status = new_status
        self.updated_at = now

    def ensure_bookable(self, passenger_id: str, now: datetime) -> None:
        if self.driver_id == passenger_id:
            raise TripNotBookable(self.id, "drivers cannot book their own trip")
        if self.status is not TripStatus.PUBLISHED:
            raise TripNotBookable(self.id, f"trip is {self.status.value}")
        if not self.is_departure_in_future(now):
            raise TripNotBookable(self.id, "trip has already departed")


@dataclass
class SeatLedger:
    trip_id: str
    total_seats: int
    allocated_seats: int = 0

    @property
    def remaining_seats(self) -> int:
        return max(0, self.total_seats - self.allocated_seats)


@dataclass
class BookingRequest:
    trip_id: str
    passenger_id: str
    seats: int = 1
    note: str = ""
    status: BookingStatus = BookingStatus.PENDING
    id: str = field(default_factory=new_object_id)
    accepted_at: Optional[datetime] = None
    accepted_by: Optional[str] = None
    declined_at: Optional[datetime] = None
    declined_by: Optional[str] = None
    decline_reason: Optional[str] = None
    canceled_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None
    refund_needed: bool = False
    is_paid: bool = False
    refunded_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def validate(self) -> None:
        if self.seats < 1:
            raise InvalidField("seats", "seats must be a positive integer")
        if len(self.note) > MAX_TEXT_LENGTH:
            raise InvalidField("note", "note cannot exceed 500 characters")

    def transition_to(self, new_status: BookingStatus, now: datetime) -> None:
        """Move to *new_status* if the transition is legal, else raise."""
        if new_status not in BOOKING_TRANSITIONS.get(self.status, set()):
            raise InvalidStateTransition(
                "booking", self.id, self.status.value, new_status.value
            )
        self.status = new_status
        self.updated_at = now

    # ── Driver decisions ──────────────────────────────────────────

    def accept(self, driver_id: str, now: datetime) -> None:
        self.transition_to(BookingStatus.ACCEPTED, now)
        self.accepted_at = now
        self.accepted_by = driver_id

    def decline(self, driver_id: str, reason: Optional[str], now: datetime) -> None:
        self.transition_to(BookingStatus.DECLINED, now)
        self.declined_at = now
        self.declined_by = driver_id
        self.decline_reason = reason or None

    # ── Passenger cancellation ────────────────────────────────────────

    def cancel_by_passenger(self, reason: Optional[str], now: datetime) -> None:
        """Accepted bookings were captured, so they need a refund."""
        was_accepted = self.status is BookingStatus.ACCEPTED
        self.transition_to(BookingStatus.CANCELED_BY_PASSENGER, now)
        self.canceled_at = now
        self.cancellation_reason = (reason or "").strip() or None
        if was_accepted:
            self.refund_needed = True

