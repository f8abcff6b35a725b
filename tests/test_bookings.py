"""
tests/test_bookings.py
Tests for booking creation and the status lifecycle:
pending → confirmed → completed, with cancellation from pending or confirmed.
"""

import re
import uuid
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal

import pytest
from httpx import AsyncClient
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from services.booking.lifecycle import TERMINAL_STATUSES, TRANSITIONS, BookingLifecycle, can_transition
from services.fares.calculator import FareCalculator, RateStore
from shared.errors import CustomerNotFound, InvalidTransition, RouteNotFound
from shared.models.models import Booking, BookingAuditLog, BookingStatus, ServiceType
from shared.schemas.schemas import BookingCreateRequest


def tomorrow() -> date:
    return (datetime.now(timezone.utc) + timedelta(days=1)).date()


def booking_payload(customer, **overrides) -> dict:
    payload = {
        "customer_id": str(customer.id),
        "service_type": "outstation",
        "from_location": "Mumbai",
        "to_location": "Pune",
        "car_type": "4-seater",
        "travel_date": tomorrow().isoformat(),
        "travel_time": "09:30:00",
    }
    payload.update(overrides)
    return payload


def lifecycle_for(db: AsyncSession) -> BookingLifecycle:
    return BookingLifecycle(db, FareCalculator(RateStore(db)))


# ── Transition table ───────────────────────────────────────────────────────────

def test_transition_table_covers_every_status():
    assert set(TRANSITIONS) == set(BookingStatus)


def test_completed_and_cancelled_are_terminal():
    assert TERMINAL_STATUSES == {BookingStatus.COMPLETED, BookingStatus.CANCELLED}
    assert not any(BookingStatus.PENDING in targets for targets in TRANSITIONS.values())


@pytest.mark.parametrize(
    "current, target, allowed",
    [
        (BookingStatus.PENDING, BookingStatus.CONFIRMED, True),
        (BookingStatus.CONFIRMED, BookingStatus.COMPLETED, True),
        (BookingStatus.PENDING, BookingStatus.CANCELLED, True),
        (BookingStatus.CONFIRMED, BookingStatus.CANCELLED, True),
        (BookingStatus.COMPLETED, BookingStatus.PENDING, False),
        (BookingStatus.CANCELLED, BookingStatus.CONFIRMED, False),
        (BookingStatus.PENDING, BookingStatus.COMPLETED, False),
        (BookingStatus.CONFIRMED, BookingStatus.PENDING, False),
    ],
)
def test_can_transition(current, target, allowed):
    assert can_transition(current, target) is allowed


# ── Lifecycle service ──────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_create_booking_prices_and_snapshots(db: AsyncSession, routes, customer):
    booking = await lifecycle_for(db).create_booking(BookingCreateRequest(**booking_payload(customer)))
    await db.commit()

    assert booking.estimated_price == Decimal("1500.00")
    assert booking.status == BookingStatus.PENDING
    assert re.fullmatch(r"CAB-\d{4}-[A-Z0-9]{5}", booking.booking_number)
    assert booking.customer_name == "Asha Patil"
    assert booking.customer_phone == "+919876543210"

    # Later edits to the customer do not leak into the booking
    customer.name = "Someone Else"
    await db.commit()
    refreshed = await db.get(Booking, booking.id)
    assert refreshed.customer_name == "Asha Patil"


@pytest.mark.asyncio
async def test_create_booking_unknown_route_writes_nothing(db: AsyncSession, routes, customer):
    payload = booking_payload(customer, from_location="Pune", to_location="Goa")
    with pytest.raises(RouteNotFound):
        await lifecycle_for(db).create_booking(BookingCreateRequest(**payload))
    await db.rollback()

    assert await db.scalar(select(func.count(Booking.id))) == 0


@pytest.mark.asyncio
async def test_create_booking_unknown_customer(db: AsyncSession, routes, customer):
    payload = booking_payload(customer, customer_id=str(uuid.uuid4()))
    with pytest.raises(CustomerNotFound):
        await lifecycle_for(db).create_booking(BookingCreateRequest(**payload))


@pytest.mark.asyncio
async def test_local_booking_uses_zone_rate(db: AsyncSession, zone_pricing, customer):
    payload = booking_payload(
        customer,
        service_type="local",
        from_location="Andheri East",
        to_location="Mumbai Airport T2",
        car_type="6-seater",
        is_airport_trip=True,
    )
    booking = await lifecycle_for(db).create_booking(BookingCreateRequest(**payload))
    assert booking.service_type == ServiceType.LOCAL
    assert booking.estimated_price == Decimal("1500.00")


@pytest.mark.asyncio
async def test_transition_sequence_and_audit(db: AsyncSession, routes, customer, admin_user):
    lifecycle = lifecycle_for(db)
    booking = await lifecycle.create_booking(BookingCreateRequest(**booking_payload(customer)))
    await db.commit()

    booking = await lifecycle.confirm(booking.id, admin_user)
    assert booking.status == BookingStatus.CONFIRMED
    assert booking.confirmed_at is not None

    booking = await lifecycle.complete(booking.id, admin_user)
    assert booking.status == BookingStatus.COMPLETED
    assert booking.completed_at is not None
    await db.commit()

    with pytest.raises(InvalidTransition):
        await lifecycle.transition(booking.id, BookingStatus.PENDING, admin_user)
    assert (await lifecycle.get_booking(booking.id)).status == BookingStatus.COMPLETED

    logs = (await db.execute(
        select(BookingAuditLog.to_status)
        .where(BookingAuditLog.booking_id == booking.id)
        .order_by(BookingAuditLog.created_at)
    )).scalars().all()
    assert logs == ["pending", "confirmed", "completed"]


@pytest.mark.asyncio
async def test_cancelled_booking_cannot_be_confirmed(db: AsyncSession, routes, customer, admin_user):
    lifecycle = lifecycle_for(db)
    booking = await lifecycle.create_booking(BookingCreateRequest(**booking_payload(customer)))

    booking = await lifecycle.cancel(booking.id, admin_user, "Customer changed plans")
    assert booking.status == BookingStatus.CANCELLED
    assert booking.cancellation_reason == "Customer changed plans"

    with pytest.raises(InvalidTransition):
        await lifecycle.confirm(booking.id, admin_user)


@pytest.mark.asyncio
async def test_estimated_price_is_frozen(db: AsyncSession, routes, customer):
    booking = await lifecycle_for(db).create_booking(BookingCreateRequest(**booking_payload(customer)))
    with pytest.raises(ValueError):
        booking.estimated_price = Decimal("999.00")


# ── HTTP ───────────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_create_booking_endpoint(client: AsyncClient, routes, customer):
    response = await client.post("/bookings", json=booking_payload(customer))
    assert response.status_code == 201
    data = response.json()
    assert data["status"] == "pending"
    assert Decimal(data["estimated_price"]) == Decimal("1500")


@pytest.mark.asyncio
async def test_create_booking_past_date_rejected(client: AsyncClient, routes, customer):
    yesterday = (datetime.now(timezone.utc) - timedelta(days=2)).date().isoformat()
    response = await client.post("/bookings", json=booking_payload(customer, travel_date=yesterday))
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_create_booking_unpriced_route_returns_404(client: AsyncClient, db: AsyncSession, routes, customer):
    response = await client.post(
        "/bookings", json=booking_payload(customer, from_location="Nashik", to_location="Pune")
    )
    assert response.status_code == 404
    assert response.json()["code"] == "route_not_found"
    assert await db.scalar(select(func.count(Booking.id))) == 0


@pytest.mark.asyncio
async def test_transitions_require_admin(client: AsyncClient, routes, customer):
    created = (await client.post("/bookings", json=booking_payload(customer))).json()
    response = await client.post(f"/bookings/{created['id']}/confirm")
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_recovery_token_cannot_confirm(client: AsyncClient, routes, customer, recovery_headers):
    created = (await client.post("/bookings", json=booking_payload(customer))).json()
    response = await client.post(f"/bookings/{created['id']}/confirm", headers=recovery_headers)
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_admin_lifecycle_over_http(client: AsyncClient, routes, customer, admin_headers, email_tasks):
    created = (await client.post("/bookings", json=booking_payload(customer))).json()
    booking_id = created["id"]

    confirmed = await client.post(f"/bookings/{booking_id}/confirm", headers=admin_headers)
    assert confirmed.status_code == 200
    assert confirmed.json()["status"] == "confirmed"
    email_tasks["booking_status"].delay.assert_called_with(
        "asha@example.com", created["booking_number"], "confirmed"
    )

    completed = await client.post(f"/bookings/{booking_id}/complete", headers=admin_headers)
    assert completed.json()["status"] == "completed"

    cancelled = await client.post(f"/bookings/{booking_id}/cancel", headers=admin_headers, json={})
    assert cancelled.status_code == 409
    assert cancelled.json()["code"] == "invalid_transition"

    fetched = await client.get(f"/bookings/{booking_id}", headers=admin_headers)
    assert fetched.json()["status"] == "completed"


@pytest.mark.asyncio
async def test_list_bookings_filters_by_status(client: AsyncClient, routes, customer, admin_headers):
    first = (await client.post("/bookings", json=booking_payload(customer))).json()
    await client.post("/bookings", json=booking_payload(customer, travel_time="18:00:00"))
    await client.post(f"/bookings/{first['id']}/cancel", headers=admin_headers, json={"reason": "Duplicate"})

    response = await client.get("/bookings", params={"status": "cancelled"}, headers=admin_headers)
    assert response.status_code == 200
    data = response.json()
    assert data["total"] == 1
    assert data["items"][0]["id"] == first["id"]
    assert data["items"][0]["cancellation_reason"] == "Duplicate"


@pytest.mark.asyncio
async def test_unknown_booking_returns_404(client: AsyncClient, admin_headers):
    response = await client.post(f"/bookings/{uuid.uuid4()}/confirm", headers=admin_headers)
    assert response.status_code == 404
