"""
Background Lifecycle Worker
===========================

Runs every ``LIFECYCLE_INTERVAL_SECONDS`` (default 300 s).

Concurrency safety
------------------
* **Redis distributed lock** keeps the sweep to one API process per
  interval.
* The sweeps themselves are conditioned on current status, so a run that
  overlaps with a manual trigger (``POST /internal/jobs/run``) is harmless.
"""

from __future__ import annotations

import asyncio
import logging

from src.config import settings
from src.infrastructure.database import async_session_factory
from src.infrastructure.locks import DistributedLock
from src.infrastructure.redis_client import get_redis
from src.services.lifecycle_jobs import (
    LifecycleJob,
    LifecycleJobResult,
    LifecycleJobService,
)

logger = logging.getLogger(__name__)

_task: asyncio.Task | None = None
_stop_event: asyncio.Event | None = None


# ── Public API ────────────────────────────────────────────────────────


async def start_lifecycle_loop() -> None:
    global _task, _stop_event
    _stop_event = asyncio.Event()
    _task = asyncio.create_task(_loop())
    logger.info(
        "Lifecycle worker started (interval=%ds)", settings.lifecycle_interval_seconds
    )


async def stop_lifecycle_loop() -> None:
    if _stop_event:
        _stop_event.set()
    if _task:
        _task.cancel()
        try:
            await _task
        except asyncio.CancelledError:
            pass
    logger.info("Lifecycle worker stopped")


# ── Internals ─────────────────────────────────────────────────────────


async def _loop() -> None:
    """Periodic loop: run a sweep then sleep."""
    assert _stop_event is not None
    while not _stop_event.is_set():
        try:
            await run_lifecycle_cycle()
        except Exception:
            logger.exception("Unhandled error in lifecycle cycle")
        # Wait for the interval or until stop is signalled
        try:
            await asyncio.wait_for(
                _stop_event.wait(), timeout=settings.lifecycle_interval_seconds
            )
            break
        except asyncio.TimeoutError:
            pass  # next cycle


async def run_lifecycle_cycle() -> LifecycleJobResult | None:
    """Execute one sweep.  Returns None when another worker holds the lock."""
    redis = await get_redis()
    lock = DistributedLock(
        redis, "lifecycle_jobs", ttl_seconds=settings.lifecycle_lock_ttl_seconds
    )

    if not await lock.acquire():
        logger.debug("Lock held by another worker – skipping cycle")
        return None

    try:
        async with async_session_factory() as session:
            return await LifecycleJobService(session).run(
                LifecycleJob.COMPLETE_TRIPS,
                pending_ttl_hours=settings.pending_booking_ttl_hours,
            )
    finally:
        await lock.release()
