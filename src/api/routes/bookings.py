"""
Booking endpoints
=================

POST /api/v1/bookings                       -- request seats (passenger)
GET  /api/v1/bookings                       -- my bookings (passenger)
GET  /api/v1/bookings/{booking_id}          -- passenger or trip driver
POST /api/v1/bookings/{booking_id}/accept   -- trip driver
POST /api/v1/bookings/{booking_id}/decline  -- trip driver
POST /api/v1/bookings/{booking_id}/cancel   -- booking passenger
"""

from typing import Optional

from fastapi import APIRouter, Depends, Path, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from src.api.dependencies import Actor, get_actor, get_db, get_dispatcher, require_role
from src.api.middleware import limiter
from src.api.schemas import (
    OBJECT_ID_PATTERN,
    BookingActionResponse,
    BookingCreateRequest,
    BookingPageResponse,
    BookingResponse,
    ReasonRequest,
)
from src.config import settings
from src.domain.enums import ActorRole, BookingStatus
from src.infrastructure.notifications import NotificationDispatcher
from src.services.booking_lifecycle import BookingLifecycleService, BookingResult

router = APIRouter(prefix="/bookings", tags=["bookings"])

_passenger = require_role(ActorRole.PASSENGER)
_driver = require_role(ActorRole.DRIVER)


async def _respond(
    result: BookingResult, dispatcher: NotificationDispatcher
) -> BookingActionResponse:
    await dispatcher.dispatch(result.events)
    return BookingActionResponse(
        booking=BookingResponse.model_validate(result.booking),
        ledger_released=result.ledger_released,
    )


@router.post(
    "",
    status_code=201,
    response_model=BookingActionResponse,
    summary="Request seats on a trip",
    responses={409: {"description": "No seats left or an active booking exists."}},
)
@limiter.limit(settings.rate_limit)
async def create_booking(
    request: Request,
    body: BookingCreateRequest,
    actor: Actor = Depends(_passenger),
    db: AsyncSession = Depends(get_db),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    result = await BookingLifecycleService(db).create_booking(
        body.trip_id, actor.id, body.seats, body.note
    )
    return await _respond(result, dispatcher)


@router.get("", response_model=BookingPageResponse, summary="List my bookings")
@limiter.limit(settings.rate_limit)
async def list_my_bookings(
    request: Request,
    status: Optional[list[BookingStatus]] = Query(None),
    page: int = Query(1, ge=1),
    page_size: int = Query(10, ge=1, le=100),
    actor: Actor = Depends(_passenger),
    db: AsyncSession = Depends(get_db),
):
    result = await BookingLifecycleService(db).list_passenger_bookings(
        actor.id, status, page, page_size
    )
    return BookingPageResponse(
        items=[BookingResponse.model_validate(b) for b in result.items],
        total=result.total,
        page=result.page,
        page_size=result.page_size,
    )


@router.get("/{booking_id}", response_model=BookingResponse, summary="Get a booking")
@limiter.limit(settings.rate_limit)
async def get_booking(
    request: Request,
    booking_id: str = Path(..., pattern=OBJECT_ID_PATTERN),
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
):
    viewer = None if actor.role is ActorRole.ADMIN else actor.id
    booking = await BookingLifecycleService(db).get_booking(booking_id, viewer)
    return BookingResponse.model_validate(booking)


@router.post(
    "/{booking_id}/accept",
    response_model=BookingActionResponse,
    summary="Accept a pending booking",
)
@limiter.limit(settings.rate_limit)
async def accept_booking(
    request: Request,
    booking_id: str = Path(..., pattern=OBJECT_ID_PATTERN),
    actor: Actor = Depends(_driver),
    db: AsyncSession = Depends(get_db),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    result = await BookingLifecycleService(db).accept_booking(booking_id, actor.id)
    return await _respond(result, dispatcher)


@router.post(
    "/{booking_id}/decline",
    response_model=BookingActionResponse,
    summary="Decline a pending booking",
)
@limiter.limit(settings.rate_limit)
async def decline_booking(
    request: Request,
    booking_id: str = Path(..., pattern=OBJECT_ID_PATTERN),
    body: Optional[ReasonRequest] = None,
    actor: Actor = Depends(_driver),
    db: AsyncSession = Depends(get_db),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    result = await BookingLifecycleService(db).decline_booking(
        booking_id, actor.id, body.reason if body else None
    )
    return await _respond(result, dispatcher)


@router.post(
    "/{booking_id}/cancel",
    response_model=BookingActionResponse,
    summary="Cancel my booking",
    description="Cancelling an accepted booking flags it for refund.",
)
@limiter.limit(settings.rate_limit)
async def cancel_booking(
    request: Request,
    booking_id: str = Path(..., pattern=OBJECT_ID_PATTERN),
    body: Optional[ReasonRequest] = None,
    actor: Actor = Depends(_passenger),
    db: AsyncSession = Depends(get_db),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    result = await BookingLifecycleService(db).cancel_by_passenger(
        booking_id, actor.id, body.reason if body else None
    )
    return await _respond(result, dispatcher)
