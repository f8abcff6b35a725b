"""
services/booking/lifecycle.py
Booking creation and status transitions.

States: PENDING → CONFIRMED → COMPLETED
        PENDING | CONFIRMED → CANCELLED
COMPLETED and CANCELLED are terminal. Nothing ever re-enters PENDING.
"""

import logging
import random
import string
from datetime import datetime, timezone
from typing import Optional
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from services.fares.calculator import FareCalculator
from shared.errors import BookingNotFound, CustomerNotFound, InvalidTransition
from shared.models.models import (
    AdminUser,
    Booking,
    BookingAuditLog,
    BookingStatus,
    Customer,
    ServiceType,
)
from shared.schemas.schemas import BookingCreateRequest

logger = logging.getLogger(__name__)

TRANSITIONS: dict[BookingStatus, frozenset[BookingStatus]] = {
    BookingStatus.PENDING: frozenset({BookingStatus.CONFIRMED, BookingStatus.CANCELLED}),
    BookingStatus.CONFIRMED: frozenset({BookingStatus.COMPLETED, BookingStatus.CANCELLED}),
    BookingStatus.COMPLETED: frozenset(),
    BookingStatus.CANCELLED: frozenset(),
}

TERMINAL_STATUSES = frozenset(s for s, targets in TRANSITIONS.items() if not targets)


def can_transition(current: BookingStatus, target: BookingStatus) -> bool:
    return BookingStatus(target) in TRANSITIONS[BookingStatus(current)]


BOOKING_NUMBER_PREFIX = "CAB"


def _generate_booking_number() -> str:
    """Human-readable booking number, e.g. CAB-2026-X7K9M."""
    year = datetime.now(timezone.utc).year
    suffix = "".join(random.choices(string.ascii_uppercase + string.digits, k=5))
    return f"{BOOKING_NUMBER_PREFIX}-{year}-{suffix}"


class BookingLifecycle:
    """Creates priced bookings and moves them through the status table."""

    def __init__(self, db: AsyncSession, fares: FareCalculator):
        self.db = db
        self.fares = fares

    # ── Creation ──────────────────────────────────────────────

    async def create_booking(self, data: BookingCreateRequest) -> Booking:
        """
        Price first, then write. If pricing fails nothing is added to the
        session, so the request leaves no booking behind.
        """
        customer = await self.db.get(Customer, data.customer_id)
        if customer is None:
            raise CustomerNotFound()

        service_type = ServiceType(data.service_type)
        if service_type == ServiceType.OUTSTATION:
            price = await self.fares.compute_outstation_fare(
                data.from_location, data.to_location, data.car_type
            )
        else:
            price = await self.fares.compute_local_fare(data.car_type, data.is_airport_trip)

        booking = Booking(
            booking_number=await self._unique_booking_number(),
            customer_id=customer.id,
            customer_name=customer.name or customer.phone,
            customer_phone=customer.phone,
            customer_email=customer.email,
            service_type=service_type,
            from_location=data.from_location.strip(),
            to_location=data.to_location.strip(),
            is_airport_trip=service_type == ServiceType.LOCAL and data.is_airport_trip,
            car_type=data.car_type,
            travel_date=data.travel_date,
            travel_time=data.travel_time,
            estimated_price=price,
            status=BookingStatus.PENDING,
        )
        self.db.add(booking)
        await self.db.flush()

        self._log_status_change(booking, None, BookingStatus.PENDING, actor=None)
        logger.info("Booking %s created at %s", booking.booking_number, price)
        return booking

    async def _unique_booking_number(self) -> str:
        for _ in range(10):
            number = _generate_booking_number()
            exists = await self.db.scalar(
                select(func.count(Booking.id)).where(Booking.booking_number == number)
            )
            if not exists:
                return number
        raise RuntimeError("Could not allocate a booking number")

    # ── Transitions ───────────────────────────────────────────

    async def transition(
        self,
        booking_id: UUID,
        target: BookingStatus,
        actor: AdminUser,
        reason: Optional[str] = None,
    ) -> Booking:
        """
        Move a booking to `target`. The row is locked for the read-check-write
        so no reader sees a half-applied status. Raises InvalidTransition and
        leaves the record untouched for any move outside TRANSITIONS.
        """
        target = BookingStatus(target)
        result = await self.db.execute(
            select(Booking).where(Booking.id == booking_id).with_for_update()
        )
        booking = result.scalar_one_or_none()
        if booking is None:
            raise BookingNotFound()

        current = BookingStatus(booking.status)
        if not can_transition(current, target):
            raise InvalidTransition(
                f"Cannot change a {current.value} booking to {target.value}"
            )

        now = datetime.now(timezone.utc)
        booking.status = target
        booking.updated_at = now
        if target == BookingStatus.CONFIRMED:
            booking.confirmed_at = now
        elif target == BookingStatus.COMPLETED:
            booking.completed_at = now
        elif target == BookingStatus.CANCELLED:
            booking.cancelled_at = now
            booking.cancellation_reason = reason

        self._log_status_change(booking, current, target, actor=actor, reason=reason)
        await self.db.flush()
        logger.info(
            "Booking %s moved %s → %s by %s",
            booking.booking_number, current.value, target.value, actor.email,
        )
        return booking

    async def confirm(self, booking_id: UUID, actor: AdminUser) -> Booking:
        return await self.transition(booking_id, BookingStatus.CONFIRMED, actor)

    async def complete(self, booking_id: UUID, actor: AdminUser) -> Booking:
        return await self.transition(booking_id, BookingStatus.COMPLETED, actor)

    async def cancel(self, booking_id: UUID, actor: AdminUser, reason: Optional[str] = None) -> Booking:
        return await self.transition(booking_id, BookingStatus.CANCELLED, actor, reason)

    def _log_status_change(
        self,
        booking: Booking,
        from_status: Optional[BookingStatus],
        to_status: BookingStatus,
        actor: Optional[AdminUser],
        reason: Optional[str] = None,
    ) -> None:
        """Append an immutable audit log entry for every status change."""
        self.db.add(BookingAuditLog(
            booking_id=booking.id,
            from_status=from_status.value if from_status else None,
            to_status=to_status.value,
            changed_by_id=actor.id if actor else None,
            reason=reason,
        ))

    # ── Reads ─────────────────────────────────────────────────

    async def get_booking(self, booking_id: UUID) -> Booking:
        booking = await self.db.get(Booking, booking_id)
        if booking is None:
            raise BookingNotFound()
        return booking

    async def list_bookings(
        self,
        status: Optional[BookingStatus] = None,
        service_type: Optional[ServiceType] = None,
        page: int = 1,
        page_size: int = 20,
    ) -> tuple[list[Booking], int]:
        query = select(Booking)
        if status is not None:
            query = query.where(Booking.status == BookingStatus(status))
        if service_type is not None:
            query = query.where(Booking.service_type == ServiceType(service_type))

        total = await self.db.scalar(select(func.count()).select_from(query.subquery()))
        result = await self.db.execute(
            query.order_by(Booking.created_at.desc())
            .offset((page - 1) * page_size)
            .limit(page_size)
        )
        return list(result.scalars().all()), total or 0
