"""
Lifecycle error taxonomy.

Every failure the booking core can report is one member of ``ErrorKind``.
Each kind has a dedicated exception class carrying structured context
(entity, id, field, states) instead of a free-form message only, so the
HTTP layer can map it without string matching.

Retry guidance
--------------
* ``TRANSACTION_ABORTED`` -- safe to retry the whole operation.
* ``LEDGER_CORRUPTION``   -- never retried; needs operator attention.
* everything else        -- user or race error, not retried.
"""

from __future__ import annotations

import enum
from typing import Any, Optional


class ErrorKind(str, enum.Enum):
    SEAT_UNAVAILABLE = "seat_unavailable"
    DUPLICATE_ACTIVE_BOOKING = "duplicate_active_booking"
    BOOKING_NOT_FOUND = "booking_not_found"
    TRIP_NOT_FOUND = "trip_not_found"
    INVALID_STATE_TRANSITION = "invalid_state_transition"
    LEDGER_CORRUPTION = "ledger_corruption"
    TRANSACTION_ABORTED = "transaction_aborted"
    FORBIDDEN_OWNER = "forbidden_owner"
    TRIP_NOT_BOOKABLE = "trip_not_bookable"
    INVALID_FIELD = "invalid_field"
    OVERLAPPING_TRIP = "overlapping_trip"


class LifecycleError(Exception):
    """Base class; ``kind`` is fixed per subclass."""

    kind: ErrorKind

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.message = message
        self.context = {k: v for k, v in context.items() if v is not None}

    @property
    def retryable(self) -> bool:
        return self.kind is ErrorKind.TRANSACTION_ABORTED

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": self.kind.value,
            "detail": self.message,
            "context": self.context,
        }


class SeatUnavailable(LifecycleError):
    kind = ErrorKind.SEAT_UNAVAILABLE

    def __init__(self, trip_id: str, requested: int):
        super().__init__(
            f"Not enough seats left on trip {trip_id}",
            entity="trip",
            entity_id=trip_id,
            requested=requested,
        )


class DuplicateActiveBooking(LifecycleError):
    kind = ErrorKind.DUPLICATE_ACTIVE_BOOKING

    def __init__(self, trip_id: str, passenger_id: str):
        super().__init__(
            "Passenger already has an active booking on this trip",
            entity="trip",
            entity_id=trip_id,
            passenger_id=passenger_id,
        )


class BookingNotFound(LifecycleError):
    kind = ErrorKind.BOOKING_NOT_FOUND

    def __init__(self, booking_id: str):
        super().__init__(
            f"Booking {booking_id} not found",
            entity="booking",
            entity_id=booking_id,
        )


class TripNotFound(LifecycleError):
    kind = ErrorKind.TRIP_NOT_FOUND

    def __init__(self, trip_id: str):
        super().__init__(
            f"Trip {trip_id} not found", entity="trip", entity_id=trip_id
        )


class InvalidStateTransition(LifecycleError):
    """Raised when a status change violates the state machine."""

    kind = ErrorKind.INVALID_STATE_TRANSITION

    def __init__(
        self,
        entity: str,
        entity_id: Optional[str],
        current: str,
        attempted: str,
    ):
        super().__init__(
            f"Cannot transition {entity} from {current} to {attempted}",
            entity=entity,
            entity_id=entity_id,
            current_state=current,
            attempted_state=attempted,
        )
        self.current = current
        self.attempted = attempted


class LedgerCorruption(LifecycleError):
    kind = ErrorKind.LEDGER_CORRUPTION

    def __init__(self, trip_id: str, message: str, **context: Any):
        super().__init__(message, entity="seat_ledger", entity_id=trip_id, **context)


class TransactionAborted(LifecycleError):
    kind = ErrorKind.TRANSACTION_ABORTED

    def __init__(self, operation: str):
        super().__init__(
            f"Transaction aborted during {operation}; retry the operation",
            operation=operation,
        )


class ForbiddenOwner(LifecycleError):
    kind = ErrorKind.FORBIDDEN_OWNER

    def __init__(self, entity: str, entity_id: str, actor_id: str):
        super().__init__(
            f"Actor does not own this {entity}",
            entity=entity,
            entity_id=entity_id,
            actor_id=actor_id,
        )


class TripNotBookable(LifecycleError):
    kind = ErrorKind.TRIP_NOT_BOOKABLE

    def __init__(self, trip_id: str, reason: str):
        super().__init__(
            f"Trip {trip_id} cannot take bookings: {reason}",
            entity="trip",
            entity_id=trip_id,
            reason=reason,
        )


class InvalidField(LifecycleError):
    kind = ErrorKind.INVALID_FIELD

    def __init__(self, field: str, message: str):
        super().__init__(message, field=field)


class OverlappingTrip(LifecycleError):
    kind = ErrorKind.OVERLAPPING_TRIP

    def __init__(self, driver_id: str, conflicting_trip_id: str):
        super().__init__(
            "Driver has another published trip during this time window",
            entity="trip",
            driver_id=driver_id,
            conflicting_trip_id=conflicting_trip_id,
        )
