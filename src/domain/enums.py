"""Domain enumerations and state-transition rules."""

import enum


class TripStatus(str, enum.Enum):
    DRAFT = "draft"
    PUBLISHED = "published"
    CANCELED = "canceled"
    COMPLETED = "completed"


class BookingStatus(str, enum.Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    DECLINED = "declined"
    DECLINED_AUTO = "declined_auto"
    CANCELED_BY_PASSENGER = "canceled_by_passenger"
    CANCELED_BY_PLATFORM = "canceled_by_platform"
    EXPIRED = "expired"


class ActorRole(str, enum.Enum):
    PASSENGER = "passenger"
    DRIVER = "driver"
    ADMIN = "admin"


class PaymentOutcome(str, enum.Enum):
    """Terminal transaction states reported by the payment collaborator."""

    SUCCEEDED = "succeeded"
    FAILED = "failed"
    REFUNDED = "refunded"


# State machine: maps current status -> set of valid next statuses
TRIP_TRANSITIONS: dict[TripStatus, set[TripStatus]] = {
    TripStatus.DRAFT: {TripStatus.PUBLISHED, TripStatus.CANCELED},
    TripStatus.PUBLISHED: {TripStatus.CANCELED, TripStatus.COMPLETED},
    TripStatus.CANCELED: set(),
    TripStatus.COMPLETED: set(),
}

BOOKING_TRANSITIONS: dict[BookingStatus, set[BookingStatus]] = {
    BookingStatus.PENDING: {
        BookingStatus.ACCEPTED,
        BookingStatus.DECLINED,
        BookingStatus.DECLINED_AUTO,
        BookingStatus.EXPIRED,
        BookingStatus.CANCELED_BY_PASSENGER,
    },
    BookingStatus.ACCEPTED: {
        BookingStatus.CANCELED_BY_PASSENGER,
        BookingStatus.CANCELED_BY_PLATFORM,
    },
    BookingStatus.DECLINED: set(),
    BookingStatus.DECLINED_AUTO: set(),
    BookingStatus.CANCELED_BY_PASSENGER: set(),
    BookingStatus.CANCELED_BY_PLATFORM: set(),
    BookingStatus.EXPIRED: set(),
}

# Bookings that hold seats in the ledger
ACTIVE_BOOKING_STATUSES: frozenset[BookingStatus] = frozenset(
    {BookingStatus.PENDING, BookingStatus.ACCEPTED}
)
