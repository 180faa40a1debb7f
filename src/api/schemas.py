"""Pydantic request / response schemas for the REST API."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field

from src.domain.enums import BookingStatus, PaymentOutcome, TripStatus
from src.services.lifecycle_jobs import DEFAULT_PENDING_TTL_HOURS, LifecycleJob

OBJECT_ID_PATTERN = r"^[0-9a-f]{24}$"


# ── Requests ──────────────────────────────────────────────────────────


class LocationIn(BaseModel):
    text: str = Field(..., min_length=1, max_length=200)
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)


class TripCreateRequest(BaseModel):
    vehicle_id: str = Field(..., pattern=OBJECT_ID_PATTERN)
    origin: LocationIn
    destination: LocationIn
    departure_at: datetime
    estimated_arrival_at: datetime
    price_per_seat: float = Field(..., ge=0)
    total_seats: int = Field(..., ge=1, le=8)
    status: TripStatus = TripStatus.PUBLISHED
    notes: str = Field("", max_length=500)


class TripUpdateRequest(BaseModel):
    """Any key is accepted here; the service rejects immutable or unknown ones."""

    model_config = {"extra": "allow"}

    def changes(self) -> dict[str, Any]:
        return dict(self.model_extra or {})


class BookingCreateRequest(BaseModel):
    trip_id: str = Field(..., pattern=OBJECT_ID_PATTERN)
    seats: int = Field(1, ge=1)
    note: str = Field("", max_length=500)


class ReasonRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)


class PaymentOutcomeRequest(BaseModel):
    booking_id: str = Field(..., pattern=OBJECT_ID_PATTERN)
    outcome: PaymentOutcome


class JobRunRequest(BaseModel):
    name: LifecycleJob = LifecycleJob.COMPLETE_TRIPS
    pending_ttl_hours: int = Field(DEFAULT_PENDING_TTL_HOURS, ge=1)


# ── Responses ─────────────────────────────────────────────────────────


class LocationOut(BaseModel):
    text: str
    lat: float
    lng: float


class TripResponse(BaseModel):
    id: str
    driver_id: str
    vehicle_id: str
    origin: LocationOut
    destination: LocationOut
    departure_at: datetime
    estimated_arrival_at: datetime
    price_per_seat: float
    total_seats: int
    remaining_seats: int
    status: TripStatus
    notes: str = ""
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class BookingResponse(BaseModel):
    id: str
    trip_id: str
    passenger_id: str
    seats: int
    note: str = ""
    status: BookingStatus
    accepted_at: Optional[datetime] = None
    accepted_by: Optional[str] = None
    declined_at: Optional[datetime] = None
    declined_by: Optional[str] = None
    decline_reason: Optional[str] = None
    canceled_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None
    refund_needed: bool = False
    is_paid: bool = False
    refunded_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class BookingActionResponse(BaseModel):
    booking: BookingResponse
    ledger_released: int = 0


class BookingPageResponse(BaseModel):
    items: list[BookingResponse]
    total: int
    page: int
    page_size: int


class CascadeEffectsResponse(BaseModel):
    declined_auto: int
    canceled_by_platform: int
    refunds_created: int
    ledger_released: int

    model_config = {"from_attributes": True}


class TripCancellationResponse(BaseModel):
    trip: TripResponse
    effects: CascadeEffectsResponse


class LifecycleJobResponse(BaseModel):
    job: LifecycleJob
    completed_trips: int
    expired_pendings: int
    duration_ms: int

    model_config = {"from_attributes": True}


class HealthResponse(BaseModel):
    status: str = "ok"


class ErrorResponse(BaseModel):
    error: str
    detail: str
    context: dict[str, Any] = {}

