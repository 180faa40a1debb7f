"""
Integration tests for the REST API endpoints.

Uses the in-memory SQLite database from ``conftest``; the session
dependency is overridden and the lifecycle worker is patched out.
"""

from __future__ import annotations

from datetime import timedelta
from unittest.mock import AsyncMock, patch

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from src.domain.entities import new_object_id, utcnow
from src.infrastructure.database import Base
from tests.conftest import TestSessionFactory, test_engine

DRIVER = new_object_id()
PASSENGER = new_object_id()
ADMIN = new_object_id()


def _as(user_id: str, role: str) -> dict[str, str]:
    return {"X-User-Id": user_id, "X-User-Role": role}


DRIVER_H = _as(DRIVER, "driver")
PASSENGER_H = _as(PASSENGER, "passenger")
ADMIN_H = _as(ADMIN, "admin")


def _trip_body(**overrides) -> dict:
    departure = utcnow() + timedelta(days=2)
    body = {
        "vehicle_id": new_object_id(),
        "origin": {"text": "Campus North Gate", "lat": 45.764, "lng": 4.8357},
        "destination": {"text": "Airport Terminal 1", "lat": 45.7256, "lng": 5.0811},
        "departure_at": departure.isoformat(),
        "estimated_arrival_at": (departure + timedelta(minutes=45)).isoformat(),
        "price_per_seat": 6.5,
        "total_seats": 3,
    }
    body.update(overrides)
    return body


# ── Fixture ───────────────────────────────────────────────────────────


@pytest_asyncio.fixture
async def client():
    """AsyncClient backed by SQLite."""
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    with (
        patch(
            "src.workers.lifecycle.start_lifecycle_loop",
            new_callable=AsyncMock,
        ),
        patch(
            "src.workers.lifecycle.stop_lifecycle_loop",
            new_callable=AsyncMock,
        ),
    ):
        # DB session dependency
        async def _test_db():
            async with TestSessionFactory() as session:
                try:
                    yield session
                except Exception:
                    await session.rollback()
                    raise

        from src.api.app import create_app
        from src.api.dependencies import get_db
        from src.api.middleware import limiter

        limiter.reset()
        app = create_app()
        app.dependency_overrides[get_db] = _test_db

        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as ac:
            yield ac

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


async def _create_trip(client: AsyncClient, **overrides) -> dict:
    resp = await client.post("/api/v1/trips", json=_trip_body(**overrides), headers=DRIVER_H)
    assert resp.status_code == 201, resp.text
    return resp.json()


async def _book(client: AsyncClient, trip_id: str, seats: int = 1, headers=PASSENGER_H):
    return await client.post(
        "/api/v1/bookings", json={"trip_id": trip_id, "seats": seats}, headers=headers
    )


# ── Tests ─────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_health(client: AsyncClient):
    resp = await client.get("/api/v1/admin/health")
    assert resp.status_code == 200
    assert resp.json()["status"] == "ok"


@pytest.mark.asyncio
async def test_missing_actor_headers_is_401(client: AsyncClient):
    resp = await client.post("/api/v1/trips", json=_trip_body())
    assert resp.status_code == 401


@pytest.mark.asyncio
async def test_passenger_cannot_offer_trip(client: AsyncClient):
    resp = await client.post("/api/v1/trips", json=_trip_body(), headers=PASSENGER_H)
    assert resp.status_code == 403


@pytest.mark.asyncio
async def test_create_and_get_trip(client: AsyncClient):
    trip = await _create_trip(client)
    assert trip["status"] == "published"
    assert trip["remaining_seats"] == 3
    assert trip["driver_id"] == DRIVER

    resp = await client.get(f"/api/v1/trips/{trip['id']}", headers=PASSENGER_H)
    assert resp.status_code == 200
    assert resp.json()["id"] == trip["id"]


@pytest.mark.asyncio
async def test_get_trip_not_found(client: AsyncClient):
    resp = await client.get(f"/api/v1/trips/{new_object_id()}", headers=PASSENGER_H)
    assert resp.status_code == 404
    assert resp.json()["error"] == "trip_not_found"


@pytest.mark.asyncio
async def test_booking_reduces_remaining_seats(client: AsyncClient):
    trip = await _create_trip(client)
    resp = await _book(client, trip["id"], seats=2)
    assert resp.status_code == 201
    assert resp.json()["booking"]["status"] == "pending"

    trip_resp = await client.get(f"/api/v1/trips/{trip['id']}", headers=PASSENGER_H)
    assert trip_resp.json()["remaining_seats"] == 1


@pytest.mark.asyncio
async def test_overbooking_is_409(client: AsyncClient):
    trip = await _create_trip(client, total_seats=1)
    assert (await _book(client, trip["id"])).status_code == 201

    resp = await _book(client, trip["id"], headers=_as(new_object_id(), "passenger"))
    assert resp.status_code == 409
    body = resp.json()
    assert body["error"] == "seat_unavailable"
    assert body["context"]["entity_id"] == trip["id"]


@pytest.mark.asyncio
async def test_accept_twice_is_409(client: AsyncClient):
    trip = await _create_trip(client)
    booking_id = (await _book(client, trip["id"])).json()["booking"]["id"]

    first = await client.post(f"/api/v1/bookings/{booking_id}/accept", headers=DRIVER_H)
    assert first.status_code == 200
    assert first.json()["booking"]["status"] == "accepted"

    second = await client.post(f"/api/v1/bookings/{booking_id}/accept", headers=DRIVER_H)
    assert second.status_code == 409
    assert second.json()["error"] == "invalid_state_transition"


@pytest.mark.asyncio
async def test_passenger_cancel_without_body(client: AsyncClient):
    trip = await _create_trip(client)
    booking_id = (await _book(client, trip["id"], seats=2)).json()["booking"]["id"]

    resp = await client.post(f"/api/v1/bookings/{booking_id}/cancel", headers=PASSENGER_H)
    assert resp.status_code == 200
    data = resp.json()
    assert data["booking"]["status"] == "canceled_by_passenger"
    assert data["booking"]["refund_needed"] is False
    assert data["ledger_released"] == 2


@pytest.mark.asyncio
async def test_decline_reason_too_long_is_422(client: AsyncClient):
    trip = await _create_trip(client)
    booking_id = (await _book(client, trip["id"])).json()["booking"]["id"]
    resp = await client.post(
        f"/api/v1/bookings/{booking_id}/decline",
        json={"reason": "x" * 501},
        headers=DRIVER_H,
    )
    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_cancel_trip_cascade(client: AsyncClient):
    trip = await _create_trip(client, total_seats=4)
    booking_id = (await _book(client, trip["id"], seats=2)).json()["booking"]["id"]
    await client.post(f"/api/v1/bookings/{booking_id}/accept", headers=DRIVER_H)

    resp = await client.post(f"/api/v1/trips/{trip['id']}/cancel", headers=DRIVER_H)
    assert resp.status_code == 200
    data = resp.json()
    assert data["trip"]["status"] == "canceled"
    assert data["effects"] == {
        "declined_auto": 0,
        "canceled_by_platform": 1,
        "refunds_created": 1,
        "ledger_released": 2,
    }

    again = await client.post(f"/api/v1/trips/{trip['id']}/cancel", headers=DRIVER_H)
    assert again.status_code == 409

    refunds = await client.get("/api/v1/internal/refunds/pending", headers=ADMIN_H)
    assert [b["id"] for b in refunds.json()] == [booking_id]


@pytest.mark.asyncio
async def test_update_immutable_field_is_422(client: AsyncClient):
    trip = await _create_trip(client)
    resp = await client.patch(
        f"/api/v1/trips/{trip['id']}", json={"driver_id": PASSENGER}, headers=DRIVER_H
    )
    assert resp.status_code == 422
    assert resp.json()["context"]["field"] == "driver_id"

    ok = await client.patch(
        f"/api/v1/trips/{trip['id']}", json={"notes": "Two bags max"}, headers=DRIVER_H
    )
    assert ok.status_code == 200
    assert ok.json()["notes"] == "Two bags max"


@pytest.mark.asyncio
async def test_other_driver_cannot_edit(client: AsyncClient):
    trip = await _create_trip(client)
    resp = await client.patch(
        f"/api/v1/trips/{trip['id']}",
        json={"notes": "mine now"},
        headers=_as(new_object_id(), "driver"),
    )
    assert resp.status_code == 403
    assert resp.json()["error"] == "forbidden_owner"


@pytest.mark.asyncio
async def test_my_bookings(client: AsyncClient):
    trip = await _create_trip(client)
    await _book(client, trip["id"])
    resp = await client.get("/api/v1/bookings", headers=PASSENGER_H)
    assert resp.status_code == 200
    assert resp.json()["total"] == 1


@pytest.mark.asyncio
async def test_payment_outcome_idempotent(client: AsyncClient):
    trip = await _create_trip(client)
    booking_id = (await _book(client, trip["id"])).json()["booking"]["id"]
    body = {"booking_id": booking_id, "outcome": "succeeded"}

    for _ in range(2):
        resp = await client.post(
            "/api/v1/internal/payments/outcome", json=body, headers=ADMIN_H
        )
        assert resp.status_code == 200
        assert resp.json()["is_paid"] is True


@pytest.mark.asyncio
async def test_internal_endpoints_need_admin(client: AsyncClient):
    resp = await client.post(
        "/api/v1/internal/jobs/run", json={"name": "expire-pendings"}, headers=DRIVER_H
    )
    assert resp.status_code == 403


@pytest.mark.asyncio
async def test_run_job(client: AsyncClient):
    resp = await client.post(
        "/api/v1/internal/jobs/run", json={"name": "complete-trips"}, headers=ADMIN_H
    )
    assert resp.status_code == 200
    data = resp.json()
    assert data["job"] == "complete-trips"
    assert data["completed_trips"] == 0
    assert data["expired_pendings"] == 0


@pytest.mark.asyncio
async def test_malformed_path_id_is_422(client: AsyncClient):
    resp = await client.get("/api/v1/trips/not-an-id", headers=PASSENGER_H)
    assert resp.status_code == 422

    resp = await client.post("/api/v1/bookings/XYZ/accept", headers=DRIVER_H)
    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_wrong_update_value_type_is_422(client: AsyncClient):
    trip = await _create_trip(client)
    resp = await client.patch(
        f"/api/v1/trips/{trip['id']}", json={"total_seats": "four"}, headers=DRIVER_H
    )
    assert resp.status_code == 422
    assert resp.json()["context"]["field"] == "total_seats"


@pytest.mark.asyncio
async def test_overlapping_trip_is_409(client: AsyncClient):
    first = await _create_trip(client)
    resp = await client.post(
        "/api/v1/trips",
        json=_trip_body(departure_at=first["departure_at"]),
        headers=DRIVER_H,
    )
    assert resp.status_code == 409
    assert resp.json()["error"] == "overlapping_trip"
    assert resp.json()["context"]["conflicting_trip_id"] == first["id"]


@pytest.mark.asyncio
async def test_list_my_trips(client: AsyncClient):
    published = await _create_trip(client)
    draft = await _create_trip(client, status="draft")

    resp = await client.get("/api/v1/trips", headers=DRIVER_H)
    assert resp.status_code == 200
    assert {t["id"] for t in resp.json()} == {published["id"], draft["id"]}

    drafts = await client.get("/api/v1/trips?status=draft", headers=DRIVER_H)
    assert [t["id"] for t in drafts.json()] == [draft["id"]]

    other = await client.get("/api/v1/trips", headers=_as(new_object_id(), "driver"))
    assert other.json() == []

    assert (await client.get("/api/v1/trips", headers=PASSENGER_H)).status_code == 403


@pytest.mark.asyncio
async def test_openapi_documents_error_body(client: AsyncClient):
    schema = (await client.get("/openapi.json")).json()
    assert "ErrorResponse" in schema["components"]["schemas"]
    responses = schema["paths"]["/api/v1/bookings/{booking_id}/accept"]["post"]["responses"]
    assert responses["409"]["content"]["application/json"]["schema"]["$ref"].endswith(
        "/ErrorResponse"
    )
