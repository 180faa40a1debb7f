"""Notification candidates produced by lifecycle transitions."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from .entities import BookingRequest, TripOffer


@dataclass(frozen=True)
class TransitionEvent:
    type: str
    recipient_id: str
    variables: dict[str, Any] = field(default_factory=dict)


def booking_event(
    event_type: str, recipient_id: str, booking: BookingRequest, **extra: Any
) -> TransitionEvent:
    variables = {
        "booking_id": booking.id,
        "trip_id": booking.trip_id,
        "seats": booking.seats,
        "status": booking.status.value,
    }
    variables.update({k: v for k, v in extra.items() if v is not None})
    return TransitionEvent(event_type, recipient_id, variables)


def cascade_event(
    status: str, passenger_id: str, booking_id: str, trip_id: str, seats: int
) -> TransitionEvent:
    """Passenger notice for a booking resolved in bulk."""
    return TransitionEvent(
        f"booking.{status}",
        passenger_id,
        {
            "booking_id": booking_id,
            "trip_id": trip_id,
            "seats": seats,
            "status": status,
        },
    )


def trip_event(event_type: str, trip: TripOffer, **extra: Any) -> TransitionEvent:
    variables = {"trip_id": trip.id, "status": trip.status.value}
    variables.update(extra)
    return TransitionEvent(event_type, trip.driver_id, variables)
