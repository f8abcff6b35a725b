"""
services/booking/router.py
Booking endpoints. Customers create bookings; administrators list them
and move them through the lifecycle.
States: PENDING → CONFIRMED → COMPLETED | CANCELLED
"""

import logging
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from services.booking.lifecycle import BookingLifecycle
from services.fares.calculator import FareCalculator, RateStore
from shared.middleware.auth import require_admin
from shared.models.models import AdminUser, Booking, BookingStatus, ServiceType
from shared.schemas.schemas import (
    BookingCancelRequest,
    BookingCreateRequest,
    BookingResponse,
    PaginatedResponse,
)
from tasks.notification_tasks import send_booking_status_email

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/bookings", tags=["Bookings"])


# ── Helpers ───────────────────────────────────────────────────

def get_lifecycle(db: AsyncSession = Depends(get_db)) -> BookingLifecycle:
    return BookingLifecycle(db, FareCalculator(RateStore(db)))


def _enrich_booking(booking: Booking) -> BookingResponse:
    return BookingResponse(
        **{
            col.name: getattr(booking, col.name)
            for col in Booking.__table__.columns
        }
    )


def _notify_customer(booking: Booking) -> None:
    """Queue a status email. Delivery problems never fail the transition."""
    if not booking.customer_email:
        return
    try:
        send_booking_status_email.delay(
            booking.customer_email, booking.booking_number, BookingStatus(booking.status).value
        )
    except Exception:
        logger.exception("Failed to enqueue status email for booking %s", booking.booking_number)


# ── Creation ──────────────────────────────────────────────────

@router.post("", response_model=BookingResponse, status_code=status.HTTP_201_CREATED)
async def create_booking(
    data: BookingCreateRequest,
    lifecycle: BookingLifecycle = Depends(get_lifecycle),
    db: AsyncSession = Depends(get_db),
):
    """
    Price the trip and record a PENDING booking.
    404 when no fare exists for the trip; no booking is written in that case.
    """
    booking = await lifecycle.create_booking(data)
    await db.commit()
    return _enrich_booking(booking)


# ── Transitions (admin) ───────────────────────────────────────

@router.post("/{booking_id}/confirm", response_model=BookingResponse)
async def confirm_booking(
    booking_id: UUID,
    current_admin: AdminUser = Depends(require_admin),
    lifecycle: BookingLifecycle = Depends(get_lifecycle),
    db: AsyncSession = Depends(get_db),
):
    """PENDING → CONFIRMED."""
    booking = await lifecycle.confirm(booking_id, current_admin)
    await db.commit()
    _notify_customer(booking)
    return _enrich_booking(booking)


@router.post("/{booking_id}/complete", response_model=BookingResponse)
async def complete_booking(
    booking_id: UUID,
    current_admin: AdminUser = Depends(require_admin),
    lifecycle: BookingLifecycle = Depends(get_lifecycle),
    db: AsyncSession = Depends(get_db),
):
    """CONFIRMED → COMPLETED."""
    booking = await lifecycle.complete(booking_id, current_admin)
    await db.commit()
    _notify_customer(booking)
    return _enrich_booking(booking)


@router.post("/{booking_id}/cancel", response_model=BookingResponse)
async def cancel_booking(
    booking_id: UUID,
    data: BookingCancelRequest,
    current_admin: AdminUser = Depends(require_admin),
    lifecycle: BookingLifecycle = Depends(get_lifecycle),
    db: AsyncSession = Depends(get_db),
):
    """PENDING or CONFIRMED → CANCELLED. Completed trips cannot be cancelled."""
    booking = await lifecycle.cancel(booking_id, current_admin, data.reason)
    await db.commit()
    _notify_customer(booking)
    return _enrich_booking(booking)


# ── Read Endpoints (admin) ────────────────────────────────────

@router.get("/{booking_id}", response_model=BookingResponse)
async def get_booking(
    booking_id: UUID,
    current_admin: AdminUser = Depends(require_admin),
    lifecycle: BookingLifecycle = Depends(get_lifecycle),
):
    return _enrich_booking(await lifecycle.get_booking(booking_id))


@router.get("", response_model=PaginatedResponse)
async def list_bookings(
    status_filter: BookingStatus = Query(None, alias="status"),
    service_type: ServiceType = Query(None),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    current_admin: AdminUser = Depends(require_admin),
    lifecycle: BookingLifecycle = Depends(get_lifecycle),
):
    """All bookings, newest first, optionally filtered by status and service type."""
    bookings, total = await lifecycle.list_bookings(
        status=status_filter,
        service_type=service_type,
        page=page,
        page_size=page_size,
    )
    return PaginatedResponse(
        items=[_enrich_booking(b).model_dump(mode="json") for b in bookings],
        total=total,
        page=page,
        page_size=page_size,
        pages=(total + page_size - 1) // page_size,
    )
