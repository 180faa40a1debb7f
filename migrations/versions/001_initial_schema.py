"""Initial schema: trip offers, seat ledgers and booking requests.

Revision ID: 001
Create Date: 2026-10-17
"""

from alembic import op
import sqlalchemy as sa


revision = "001"
down_revision = None
branch_labels = None
depends_on = None

TRIP_STATUS = ("draft", "published", "canceled", "completed")
BOOKING_STATUS = (
    "pending",
    "accepted",
    "declined",
    "declined_auto",
    "canceled_by_passenger",
    "canceled_by_platform",
    "expired",
)


def upgrade() -> None:
    # ── trip_offers ───────────────────────────────────────────────────
    op.create_table(
        "trip_offers",
        sa.Column("id", sa.String(24), primary_key=True),
        sa.Column("driver_id", sa.String(24), nullable=False),
        sa.Column("vehicle_id", sa.String(24), nullable=False),
        sa.Column("origin_text", sa.String(255), nullable=False),
        sa.Column("origin_lat", sa.Float, nullable=False),
        sa.Column("origin_lng", sa.Float, nullable=False),
        sa.Column("destination_text", sa.String(255), nullable=False),
        sa.Column("destination_lat", sa.Float, nullable=False),
        sa.Column("destination_lng", sa.Float, nullable=False),
        sa.Column("departure_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column(
            "estimated_arrival_at", sa.DateTime(timezone=True), nullable=False
        ),
        sa.Column("price_per_seat", sa.Float, nullable=False),
        sa.Column("total_seats", sa.Integer, nullable=False),
        sa.Column(
            "status",
            sa.Enum(*TRIP_STATUS, name="trip_status"),
            server_default="published",
            nullable=False,
        ),
        sa.Column("notes", sa.String(500), server_default="", nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
        sa.CheckConstraint("total_seats >= 1", name="ck_trip_total_seats"),
        sa.CheckConstraint(
            "estimated_arrival_at > departure_at", name="ck_trip_time_range"
        ),
    )
    op.create_index("idx_trips_driver", "trip_offers", ["driver_id"])
    op.create_index(
        "idx_trips_status_departure", "trip_offers", ["status", "departure_at"]
    )

    # ── seat_ledgers ──────────────────────────────────────────────────
    op.create_table(
        "seat_ledgers",
        sa.Column(
            "trip_id",
            sa.String(24),
            sa.ForeignKey("trip_offers.id"),
            primary_key=True,
        ),
        sa.Column("total_seats", sa.Integer, nullable=False),
        sa.Column("allocated_seats", sa.Integer, server_default="0", nullable=False),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
        sa.CheckConstraint(
            "allocated_seats >= 0 AND allocated_seats <= total_seats",
            name="ck_ledger_bounds",
        ),
    )

    # ── booking_requests ──────────────────────────────────────────────
    op.create_table(
        "booking_requests",
        sa.Column("id", sa.String(24), primary_key=True),
        sa.Column(
            "trip_id", sa.String(24), sa.ForeignKey("trip_offers.id"), nullable=False
        ),
        sa.Column("passenger_id", sa.String(24), nullable=False),
        sa.Column("seats", sa.Integer, server_default="1", nullable=False),
        sa.Column("note", sa.String(500), server_default="", nullable=False),
        sa.Column(
            "status",
            sa.Enum(*BOOKING_STATUS, name="booking_status"),
            server_default="pending",
            nullable=False,
        ),
        sa.Column("accepted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("accepted_by", sa.String(24), nullable=True),
        sa.Column("declined_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("declined_by", sa.String(24), nullable=True),
        sa.Column("decline_reason", sa.String(500), nullable=True),
        sa.Column("canceled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancellation_reason", sa.String(500), nullable=True),
        sa.Column(
            "refund_needed", sa.Boolean, server_default=sa.false(), nullable=False
        ),
        sa.Column("is_paid", sa.Boolean, server_default=sa.false(), nullable=False),
        sa.Column("refunded_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
        sa.CheckConstraint("seats >= 1", name="ck_booking_seats"),
    )
    op.create_index(
        "uq_booking_active_passenger_trip",
        "booking_requests",
        ["passenger_id", "trip_id"],
        unique=True,
        postgresql_where=sa.text("status IN ('pending', 'accepted')"),
    )
    op.create_index(
        "idx_bookings_trip_status", "booking_requests", ["trip_id", "status"]
    )
    op.create_index("idx_bookings_passenger", "booking_requests", ["passenger_id"])
    op.create_index(
        "idx_bookings_status_created", "booking_requests", ["status", "created_at"]
    )
    op.create_index(
        "idx_bookings_refund_needed", "booking_requests", ["refund_needed"]
    )


def downgrade() -> None:
    op.drop_table("booking_requests")
    op.drop_table("seat_ledgers")
    op.drop_table("trip_offers")
    op.execute("DROP TYPE IF EXISTS booking_status")
    op.execute("DROP TYPE IF EXISTS trip_status")
