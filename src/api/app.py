"""
FastAPI application factory.

* Registers routes for trips, bookings, internal jobs and admin.
* Starts / stops the background lifecycle worker via lifespan events.
* Maps ``LifecycleError`` kinds to HTTP status codes.
* Applies rate-limiting middleware.
* Swagger / OpenAPI UI available at ``/docs``.
"""

from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from src.api.middleware import limiter
from src.api.routes import admin, bookings, internal, trips
from src.api.schemas import ErrorResponse
from src.config import settings
from src.domain.errors import ErrorKind, LifecycleError
from src.infrastructure.database import dispose_engine
from src.infrastructure.redis_client import close_redis
from src.workers import lifecycle as _lifecycle

logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)

ERROR_STATUS: dict[ErrorKind, int] = {
    ErrorKind.BOOKING_NOT_FOUND: 404,
    ErrorKind.TRIP_NOT_FOUND: 404,
    ErrorKind.FORBIDDEN_OWNER: 403,
    ErrorKind.SEAT_UNAVAILABLE: 409,
    ErrorKind.DUPLICATE_ACTIVE_BOOKING: 409,
    ErrorKind.INVALID_STATE_TRANSITION: 409,
    ErrorKind.TRIP_NOT_BOOKABLE: 409,
    ErrorKind.OVERLAPPING_TRIP: 409,
    ErrorKind.INVALID_FIELD: 422,
    ErrorKind.LEDGER_CORRUPTION: 500,
    ErrorKind.TRANSACTION_ABORTED: 503,
}

ERROR_RESPONSES = {
    403: {"model": ErrorResponse, "description": "Actor does not own the resource"},
    404: {"model": ErrorResponse, "description": "Trip or booking not found"},
    409: {"model": ErrorResponse, "description": "Conflicts with the current state"},
    503: {"model": ErrorResponse, "description": "Write aborted by a concurrent update"},
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start the lifecycle worker on startup; stop on shutdown."""
    if settings.lifecycle_worker_enabled:
        await _lifecycle.start_lifecycle_loop()
    yield
    if settings.lifecycle_worker_enabled:
        await _lifecycle.stop_lifecycle_loop()
        await close_redis()
    await dispose_engine()


async def lifecycle_error_handler(request: Request, exc: LifecycleError) -> JSONResponse:
    status = ERROR_STATUS.get(exc.kind, 400)
    if status >= 500:
        logger.error("%s on %s %s: %s", exc.kind.value, request.method, request.url.path, exc)
    headers = {"Retry-After": "1"} if exc.retryable else None
    return JSONResponse(status_code=status, content=exc.to_dict(), headers=headers)


def create_app() -> FastAPI:
    app = FastAPI(
        title="Carpool Booking API",
        description=(
            "Trip offers, seat reservations and the booking lifecycle for a "
            "carpooling marketplace.  Seat counts never oversell, and "
            "cancelling a trip resolves every booking on it atomically."
        ),
        version="1.0.0",
        lifespan=lifespan,
    )

    # Rate limiter
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    # Domain errors
    app.add_exception_handler(LifecycleError, lifecycle_error_handler)

    # Routers
    app.include_router(trips.router, prefix="/api/v1", responses=ERROR_RESPONSES)
    app.include_router(bookings.router, prefix="/api/v1", responses=ERROR_RESPONSES)
    app.include_router(internal.router, prefix="/api/v1", responses=ERROR_RESPONSES)
    app.include_router(admin.router, prefix="/api/v1", responses=ERROR_RESPONSES)

    return app
