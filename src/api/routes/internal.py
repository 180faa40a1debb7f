"""
Internal endpoints (admin role)
===============================

POST /api/v1/internal/jobs/run          -- run a lifecycle sweep now
GET  /api/v1/internal/refunds/pending   -- bookings still owed a refund
POST /api/v1/internal/payments/outcome  -- payment collaborator feedback
"""

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from src.api.dependencies import Actor, get_db, require_role
from src.api.middleware import limiter
from src.api.schemas import (
    BookingResponse,
    JobRunRequest,
    LifecycleJobResponse,
    PaymentOutcomeRequest,
)
from src.config import settings
from src.domain.enums import ActorRole
from src.services.booking_lifecycle import BookingLifecycleService
from src.services.lifecycle_jobs import LifecycleJobService

router = APIRouter(prefix="/internal", tags=["internal"])

_admin = require_role(ActorRole.ADMIN)


@router.post(
    "/jobs/run",
    response_model=LifecycleJobResponse,
    summary="Run a lifecycle job",
    description=(
        "complete-trips runs both sweeps; auto-complete-trips and "
        "expire-pendings run one each.  Safe to repeat."
    ),
)
@limiter.limit(settings.rate_limit)
async def run_job(
    request: Request,
    body: JobRunRequest,
    actor: Actor = Depends(_admin),
    db: AsyncSession = Depends(get_db),
):
    result = await LifecycleJobService(db).run(body.name, body.pending_ttl_hours)
    return LifecycleJobResponse.model_validate(result)


@router.get(
    "/refunds/pending",
    response_model=list[BookingResponse],
    summary="Bookings flagged for refund",
)
@limiter.limit(settings.rate_limit)
async def pending_refunds(
    request: Request,
    limit: int = Query(100, ge=1, le=500),
    actor: Actor = Depends(_admin),
    db: AsyncSession = Depends(get_db),
):
    bookings = await BookingLifecycleService(db).list_pending_refunds(limit)
    return [BookingResponse.model_validate(b) for b in bookings]


@router.post(
    "/payments/outcome",
    response_model=BookingResponse,
    summary="Record a payment outcome",
    description="Idempotent; repeated webhook deliveries leave the booking unchanged.",
)
@limiter.limit(settings.rate_limit)
async def payment_outcome(
    request: Request,
    body: PaymentOutcomeRequest,
    actor: Actor = Depends(_admin),
    db: AsyncSession = Depends(get_db),
):
    booking = await BookingLifecycleService(db).apply_payment_outcome(
        body.booking_id, body.outcome
    )
    return BookingResponse.model_validate(booking)
