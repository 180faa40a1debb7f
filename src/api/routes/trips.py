"""
Trip endpoints
==============

POST  /api/v1/trips                     -- offer a trip (driver)
GET   /api/v1/trips                     -- the driver's own trips
GET   /api/v1/trips/{trip_id}           -- trip with remaining seats
PATCH /api/v1/trips/{trip_id}           -- edit price / seats / notes (owner)
POST  /api/v1/trips/{trip_id}/publish   -- draft -> published (owner)
POST  /api/v1/trips/{trip_id}/cancel    -- cancel with booking cascade (owner)
GET   /api/v1/trips/{trip_id}/bookings  -- bookings on the trip (owner)
"""

from typing import Optional

from fastapi import APIRouter, Depends, Path, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from src.api.dependencies import Actor, get_actor, get_db, get_dispatcher, require_role
from src.api.middleware import limiter
from src.api.schemas import (
    OBJECT_ID_PATTERN,
    BookingPageResponse,
    BookingResponse,
    CascadeEffectsResponse,
    LocationIn,
    LocationOut,
    TripCancellationResponse,
    TripCreateRequest,
    TripResponse,
    TripUpdateRequest,
)
from src.config import settings
from src.domain.entities import Location
from src.domain.enums import ActorRole, BookingStatus, TripStatus
from src.infrastructure.notifications import NotificationDispatcher
from src.services.booking_lifecycle import BookingLifecycleService
from src.services.trip_offers import TripOfferService, TripView

router = APIRouter(prefix="/trips", tags=["trips"])

_driver = require_role(ActorRole.DRIVER)


def _location(loc: LocationIn) -> Location:
    return Location(text=loc.text, latitude=loc.lat, longitude=loc.lng)


def trip_response(view: TripView) -> TripResponse:
    trip = view.trip
    return TripResponse(
        id=trip.id,
        driver_id=trip.driver_id,
        vehicle_id=trip.vehicle_id,
        origin=LocationOut(
            text=trip.origin.text, lat=trip.origin.latitude, lng=trip.origin.longitude
        ),
        destination=LocationOut(
            text=trip.destination.text,
            lat=trip.destination.latitude,
            lng=trip.destination.longitude,
        ),
        departure_at=trip.departure_at,
        estimated_arrival_at=trip.estimated_arrival_at,
        price_per_seat=trip.price_per_seat,
        total_seats=trip.total_seats,
        remaining_seats=view.remaining_seats,
        status=trip.status,
        notes=trip.notes,
        created_at=trip.created_at,
        updated_at=trip.updated_at,
    )


@router.post(
    "",
    status_code=201,
    response_model=TripResponse,
    summary="Offer a trip",
)
@limiter.limit(settings.rate_limit)
async def create_trip(
    request: Request,
    body: TripCreateRequest,
    actor: Actor = Depends(_driver),
    db: AsyncSession = Depends(get_db),
):
    view = await TripOfferService(db).create_trip(
        actor.id,
        vehicle_id=body.vehicle_id,
        origin=_location(body.origin),
        destination=_location(body.destination),
        departure_at=body.departure_at,
        estimated_arrival_at=body.estimated_arrival_at,
        price_per_seat=body.price_per_seat,
        total_seats=body.total_seats,
        status=body.status,
        notes=body.notes,
    )
    return trip_response(view)


@router.get("", response_model=list[TripResponse], summary="List my trips")
@limiter.limit(settings.rate_limit)
async def list_my_trips(
    request: Request,
    status: Optional[TripStatus] = Query(None),
    actor: Actor = Depends(_driver),
    db: AsyncSession = Depends(get_db),
):
    views = await TripOfferService(db).list_driver_trips(actor.id, status)
    return [trip_response(v) for v in views]


@router.get("/{trip_id}", response_model=TripResponse, summary="Get a trip")
@limiter.limit(settings.rate_limit)
async def get_trip(
    request: Request,
    trip_id: str = Path(..., pattern=OBJECT_ID_PATTERN),
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
):
    return trip_response(await TripOfferService(db).get_trip(trip_id))


@router.patch(
    "/{trip_id}",
    response_model=TripResponse,
    summary="Edit a trip",
    description=(
        "Only price_per_seat, total_seats and notes are editable; canceled "
        "and completed trips accept notes only."
    ),
)
@limiter.limit(settings.rate_limit)
async def update_trip(
    request: Request,
    body: TripUpdateRequest,
    trip_id: str = Path(..., pattern=OBJECT_ID_PATTERN),
    actor: Actor = Depends(_driver),
    db: AsyncSession = Depends(get_db),
):
    view = await TripOfferService(db).update_trip(trip_id, actor.id, body.changes())
    return trip_response(view)


@router.post(
    "/{trip_id}/publish", response_model=TripResponse, summary="Publish a draft trip"
)
@limiter.limit(settings.rate_limit)
async def publish_trip(
    request: Request,
    trip_id: str = Path(..., pattern=OBJECT_ID_PATTERN),
    actor: Actor = Depends(_driver),
    db: AsyncSession = Depends(get_db),
):
    return trip_response(await TripOfferService(db).publish_trip(trip_id, actor.id))


@router.post(
    "/{trip_id}/cancel",
    response_model=TripCancellationResponse,
    summary="Cancel a trip",
    description=(
        "Pending bookings become declined_auto, accepted bookings become "
        "canceled_by_platform with a refund flag, and every seat is released."
    ),
)
@limiter.limit(settings.rate_limit)
async def cancel_trip(
    request: Request,
    trip_id: str = Path(..., pattern=OBJECT_ID_PATTERN),
    actor: Actor = Depends(_driver),
    db: AsyncSession = Depends(get_db),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    result = await BookingLifecycleService(db).cancel_trip(trip_id, actor.id)
    await dispatcher.dispatch(result.events)
    view = await TripOfferService(db).get_trip(trip_id)
    return TripCancellationResponse(
        trip=trip_response(view),
        effects=CascadeEffectsResponse.model_validate(result.effects),
    )


@router.get(
    "/{trip_id}/bookings",
    response_model=BookingPageResponse,
    summary="List bookings on a trip",
)
@limiter.limit(settings.rate_limit)
async def list_trip_bookings(
    request: Request,
    trip_id: str = Path(..., pattern=OBJECT_ID_PATTERN),
    status: Optional[list[BookingStatus]] = Query(None),
    page: int = Query(1, ge=1),
    page_size: int = Query(10, ge=1, le=100),
    actor: Actor = Depends(_driver),
    db: AsyncSession = Depends(get_db),
):
    result = await BookingLifecycleService(db).list_trip_bookings(
        trip_id, actor.id, status, page, page_size
    )
    return BookingPageResponse(
        items=[BookingResponse.model_validate(b) for b in result.items],
        total=result.total,
        page=result.page,
        page_size=result.page_size,
    )
