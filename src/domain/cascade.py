"""
Trip-cancellation cascade plan
==============================

A driver cancelling a trip resolves every dependent booking.  The plan is
data, not code: an ordered tuple of steps, each independently conditioned
on the current status of the rows it touches, executed by
``BookingLifecycleService`` inside a single transaction.

1. ``SetTripStatus``         -- draft|published -> canceled
2. ``BulkBookingTransition`` -- pending  -> declined_auto
3. ``BulkBookingTransition`` -- accepted -> canceled_by_platform (+ refund)
4. ``ReleaseLedger``         -- allocated seats back to zero

Because every step is conditioned on a source status, re-running a plan
against already-resolved rows touches nothing.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Union

from .enums import BOOKING_TRANSITIONS, TRIP_TRANSITIONS, BookingStatus, TripStatus


@dataclass(frozen=True)
class SetTripStatus:
    from_statuses: frozenset[TripStatus]
    to_status: TripStatus

    def __post_init__(self) -> None:
        for status in self.from_statuses:
            if self.to_status not in TRIP_TRANSITIONS[status]:
                raise ValueError(f"illegal trip step {status} -> {self.to_status}")


@dataclass(frozen=True)
class BulkBookingTransition:
    from_status: BookingStatus
    to_status: BookingStatus
    effect: str
    timestamp_field: str
    refund_needed: bool = False
    actor: Optional[str] = None

    def __post_init__(self) -> None:
        if self.to_status not in BOOKING_TRANSITIONS[self.from_status]:
            raise ValueError(
                f"illegal booking step {self.from_status} -> {self.to_status}"
            )


@dataclass(frozen=True)
class ReleaseLedger:
    effect: str = "ledger_released"


CascadeStep = Union[SetTripStatus, BulkBookingTransition, ReleaseLedger]


@dataclass
class CascadeEffects:
    declined_auto: int = 0
    canceled_by_platform: int = 0
    refunds_created: int = 0
    ledger_released: int = 0

    def add(self, effect: str, amount: int) -> None:
        setattr(self, effect, getattr(self, effect) + amount)


TRIP_CANCELLATION_PLAN: tuple[CascadeStep, ...] = (
    SetTripStatus(
        from_statuses=frozenset({TripStatus.DRAFT, TripStatus.PUBLISHED}),
        to_status=TripStatus.CANCELED,
    ),
    BulkBookingTransition(
        from_status=BookingStatus.PENDING,
        to_status=BookingStatus.DECLINED_AUTO,
        effect="declined_auto",
        timestamp_field="declined_at",
        actor="system",
    ),
    BulkBookingTransition(
        from_status=BookingStatus.ACCEPTED,
        to_status=BookingStatus.CANCELED_BY_PLATFORM,
        effect="canceled_by_platform",
        timestamp_field="canceled_at",
        refund_needed=True,
    ),
    ReleaseLedger(),
)
