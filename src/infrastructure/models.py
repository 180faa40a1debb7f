"""
SQLAlchemy ORM models  (maps to PostgreSQL).

Tables
------
* ``trip_offers``       -- driver trip offers
* ``seat_ledgers``      -- one seat counter per trip (unique ``trip_id``)
* ``booking_requests``  -- passenger requests against a trip

Indexes
-------
* **Partial unique** on ``booking_requests(passenger_id, trip_id)`` where
  status is pending/accepted: at most one active booking per pair, even
  when two requests race past the application check.
* **B-Tree** on ``status`` + time columns used by the lifecycle sweep.

Identifiers are opaque 24-character hex strings.
"""

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
)

from .database import Base
from src.domain.entities import new_object_id, utcnow
from src.domain.enums import BookingStatus, TripStatus


def _values(enum_cls):
    return [member.value for member in enum_cls]


class TripOfferModel(Base):
    __tablename__ = "trip_offers"

    id = Column(String(24), primary_key=True, default=new_object_id)
    driver_id = Column(String(24), nullable=False)
    vehicle_id = Column(String(24), nullable=False)

    origin_text = Column(String(255), nullable=False)
    origin_lat = Column(Float, nullable=False)
    origin_lng = Column(Float, nullable=False)
    destination_text = Column(String(255), nullable=False)
    destination_lat = Column(Float, nullable=False)
    destination_lng = Column(Float, nullable=False)

    departure_at = Column(DateTime(timezone=True), nullable=False)
    estimated_arrival_at = Column(DateTime(timezone=True), nullable=False)
    price_per_seat = Column(Float, nullable=False)
    total_seats = Column(Integer, nullable=False)
    status = Column(
        Enum(TripStatus, name="trip_status", values_callable=_values),
        default=TripStatus.PUBLISHED,
        nullable=False,
    )
    notes = Column(String(500), default="", nullable=False)

    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    __table_args__ = (
        CheckConstraint("total_seats >= 1", name="ck_trip_total_seats"),
        CheckConstraint(
            "estimated_arrival_at > departure_at", name="ck_trip_time_range"
        ),
        Index("idx_trips_driver", "driver_id"),
        Index("idx_trips_status_departure", "status", "departure_at"),
    )


class SeatLedgerModel(Base):
    __tablename__ = "seat_ledgers"

    trip_id = Column(String(24), ForeignKey("trip_offers.id"), primary_key=True)
    total_seats = Column(Integer, nullable=False)
    allocated_seats = Column(Integer, default=0, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    __table_args__ = (
        CheckConstraint(
            "allocated_seats >= 0 AND allocated_seats <= total_seats",
            name="ck_ledger_bounds",
        ),
    )


class BookingRequestModel(Base):
    __tablename__ = "booking_requests"

    id = Column(String(24), primary_key=True, default=new_object_id)
    trip_id = Column(String(24), ForeignKey("trip_offers.id"), nullable=False)
    passenger_id = Column(String(24), nullable=False)
    seats = Column(Integer, default=1, nullable=False)
    note = Column(String(500), default="", nullable=False)
    status = Column(
        Enum(BookingStatus, name="booking_status", values_callable=_values),
        default=BookingStatus.PENDING,
        nullable=False,
    )

    accepted_at = Column(DateTime(timezone=True), nullable=True)
    accepted_by = Column(String(24), nullable=True)
    declined_at = Column(DateTime(timezone=True), nullable=True)
    declined_by = Column(String(24), nullable=True)
    decline_reason = Column(String(500), nullable=True)
    canceled_at = Column(DateTime(timezone=True), nullable=True)
    cancellation_reason = Column(String(500), nullable=True)

    refund_needed = Column(Boolean, default=False, nullable=False)
    is_paid = Column(Boolean, default=False, nullable=False)
    refunded_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    __table_args__ = (
        CheckConstraint("seats >= 1", name="ck_booking_seats"),
        Index(
            "uq_booking_active_passenger_trip",
            "passenger_id",
            "trip_id",
            unique=True,
            postgresql_where=status.in_([BookingStatus.PENDING, BookingStatus.ACCEPTED]),
            sqlite_where=status.in_([BookingStatus.PENDING, BookingStatus.ACCEPTED]),
        ),
        Index("idx_bookings_trip_status", "trip_id", "status"),
        Index("idx_bookings_passenger", "passenger_id"),
        Index("idx_bookings_status_created", "status", "created_at"),
        Index("idx_bookings_refund_needed", "refund_needed"),
    )
