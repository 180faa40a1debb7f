"""
Lifecycle Sweep
===============

Time-based maintenance, safe to re-run and safe to run from several
schedulers at once: every bulk update is conditioned on the status it
moves away from, so a second pass finds nothing left to do.

* ``expire_pending_bookings`` -- pending bookings older than the cutoff
  become ``expired`` and give their seats back to the ledger.
* ``complete_past_trips``     -- published trips whose departure has
  passed become ``completed``.

Each sweep is its own transaction; an interrupted run leaves the other
sweep untouched and the interrupted one uncommitted.
"""

from __future__ import annotations

import enum
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from src.domain.entities import utcnow
from src.domain.errors import LedgerCorruption
from src.infrastructure.repositories import (
    BookingRequestRepository,
    SeatLedgerRepository,
    TripOfferRepository,
)
from src.services.transactions import atomic

logger = logging.getLogger(__name__)

DEFAULT_PENDING_TTL_HOURS = 48


class LifecycleJob(str, enum.Enum):
    COMPLETE_TRIPS = "complete-trips"  # both sweeps
    AUTO_COMPLETE_TRIPS = "auto-complete-trips"
    EXPIRE_PENDINGS = "expire-pendings"


@dataclass
class LifecycleJobResult:
    job: LifecycleJob
    completed_trips: int = 0
    expired_pendings: int = 0
    duration_ms: int = 0


class LifecycleJobService:
    def __init__(self, session: AsyncSession, clock: Callable[[], datetime] = utcnow):
        self.session = session
        self.clock = clock
        self.trips = TripOfferRepository(session)
        self.ledger = SeatLedgerRepository(session)
        self.bookings = BookingRequestRepository(session)

    async def expire_pending_bookings(self, cutoff: datetime) -> int:
        """
        Each trip is expired under its own savepoint.  A trip whose ledger
        cannot absorb the released seats is rolled back and skipped; the
        rest of the sweep still commits.
        """
        now = self.clock()
        expired = 0
        trips_touched = 0
        skipped: list[str] = []

        async with atomic(self.session, "expire_pending_bookings"):
            for trip_id in await self.bookings.trips_with_pending_before(cutoff):
                try:
                    async with self.session.begin_nested():
                        rows = await self.bookings.expire_pending_before(
                            trip_id, cutoff, now
                        )
                        if rows:
                            await self.ledger.deallocate_seats(
                                trip_id, sum(row.seats for row in rows)
                            )
                except LedgerCorruption:
                    skipped.append(trip_id)
                    continue
                if rows:
                    expired += len(rows)
                    trips_touched += 1

        if skipped:
            logger.error(
                "Expiry skipped %d trips with inconsistent seat ledgers | trips=%s",
                len(skipped),
                ", ".join(skipped),
            )
        if expired:
            logger.info(
                "Expired %d pending bookings across %d trips | cutoff=%s",
                expired,
                trips_touched,
                cutoff.isoformat(),
            )
        return expired

    async def complete_past_trips(self, now: Optional[datetime] = None) -> int:
        now = now or self.clock()
        async with atomic(self.session, "complete_past_trips"):
            completed = await self.trips.complete_departed(now)
        if completed:
            logger.info("Auto-completed %d trips | now=%s", completed, now.isoformat())
        return completed

    async def run(
        self,
        job: LifecycleJob = LifecycleJob.COMPLETE_TRIPS,
        pending_ttl_hours: int = DEFAULT_PENDING_TTL_HOURS,
        now: Optional[datetime] = None,
    ) -> LifecycleJobResult:
        now = now or self.clock()
        started = time.monotonic()
        result = LifecycleJobResult(job=job)

        if job in (LifecycleJob.COMPLETE_TRIPS, LifecycleJob.AUTO_COMPLETE_TRIPS):
            result.completed_trips = await self.complete_past_trips(now)
        if job in (LifecycleJob.COMPLETE_TRIPS, LifecycleJob.EXPIRE_PENDINGS):
            cutoff = now - timedelta(hours=pending_ttl_hours)
            result.expired_pendings = await self.expire_pending_bookings(cutoff)

        result.duration_ms = int((time.monotonic() - started) * 1000)
        logger.info(
            "Lifecycle job %s finished | completed_trips=%d expired_pendings=%d duration=%dms",
            job.value,
            result.completed_trips,
            result.expired_pendings,
            result.duration_ms,
        )
        return result
