"""
services/admin/router.py
Admin-only endpoints: fare management (cities, routes, local zone pricing),
customer listing, booking analytics and the immutable audit log.

ALL mutations are logged to AdminAuditLog before returning.
"""

from datetime import datetime, timezone
from decimal import Decimal
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from services.fares.calculator import RateStore
from services.fares.router import route_response
from shared.errors import CityNotFound, DuplicateRecord, NotFoundError, PricingUnavailable
from shared.middleware.auth import require_admin
from shared.models.models import (
    AdminAuditLog,
    AdminUser,
    Booking,
    BookingStatus,
    City,
    Customer,
    Route,
    ZonePricing,
)
from shared.schemas.schemas import (
    AdminAnalyticsResponse,
    AuditLogResponse,
    CityCreate,
    CityResponse,
    CustomerResponse,
    PaginatedResponse,
    RouteCreate,
    RouteResponse,
    RouteUpdate,
    ZonePricingResponse,
    ZonePricingUpdate,
)

router = APIRouter(prefix="/admin", tags=["Admin"])


# ── Helpers ───────────────────────────────────────────────────

async def _log(
    db: AsyncSession,
    admin: AdminUser,
    action: str,
    entity_type: str,
    entity_id: str,
    payload: dict | None = None,
    request: Request | None = None,
):
    """Append an immutable record to AdminAuditLog."""
    log = AdminAuditLog(
        admin_id=admin.id,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        payload=payload or {},
        ip_address=request.client.host if request and request.client else None,
    )
    db.add(log)


def _money(value: Decimal | None) -> str | None:
    return str(value) if value is not None else None


# ── Cities ────────────────────────────────────────────────────

@router.get("/cities", response_model=list[CityResponse])
async def list_cities(
    current_admin: AdminUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return [CityResponse.model_validate(c) for c in await RateStore(db).list_cities()]


@router.post("/cities", response_model=CityResponse, status_code=status.HTTP_201_CREATED)
async def create_city(
    data: CityCreate,
    request: Request,
    current_admin: AdminUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    if await RateStore(db).get_city(data.name):
        raise DuplicateRecord(f"City '{data.name}' already exists")

    city = City(name=data.name)
    db.add(city)
    await db.flush()

    await _log(db, current_admin, "CREATE_CITY", "City", str(city.id), {"name": city.name}, request)
    await db.commit()
    return CityResponse.model_validate(city)


# ── Routes ────────────────────────────────────────────────────

@router.get("/routes", response_model=list[RouteResponse])
async def list_routes(
    current_admin: AdminUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    rows = await RateStore(db).list_routes()
    return [route_response(route, from_name, to_name) for route, from_name, to_name in rows]


@router.post("/routes", response_model=RouteResponse, status_code=status.HTTP_201_CREATED)
async def create_route(
    data: RouteCreate,
    request: Request,
    current_admin: AdminUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """
    Add the fare for one direction. The reverse direction is a separate
    route and must be created on its own.
    """
    rates = RateStore(db)
    from_city = await rates.get_city(data.from_city)
    to_city = await rates.get_city(data.to_city)
    if from_city is None or to_city is None:
        missing = data.from_city if from_city is None else data.to_city
        raise CityNotFound(f"City '{missing}' not found")

    if await rates.get_route(from_city.name, to_city.name):
        raise DuplicateRecord(f"A route from {from_city.name} to {to_city.name} already exists")

    route = Route(
        from_city_id=from_city.id,
        to_city_id=to_city.id,
        price_4_seater=data.price_4_seater,
        price_6_seater=data.price_6_seater,
    )
    db.add(route)
    await db.flush()

    await _log(db, current_admin, "CREATE_ROUTE", "Route", str(route.id), {
        "from_city": from_city.name,
        "to_city": to_city.name,
        "price_4_seater": _money(route.price_4_seater),
        "price_6_seater": _money(route.price_6_seater),
    }, request)
    await db.commit()
    return route_response(route, from_city.name, to_city.name)


@router.patch("/routes/{route_id}", response_model=RouteResponse)
async def update_route(
    route_id: UUID,
    data: RouteUpdate,
    request: Request,
    current_admin: AdminUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Change route prices. Existing bookings keep the price they were created with."""
    route = await db.get(Route, route_id)
    if route is None:
        raise NotFoundError("Route not found")

    before = {
        "price_4_seater": _money(route.price_4_seater),
        "price_6_seater": _money(route.price_6_seater),
    }
    for field, value in data.model_dump(exclude_unset=True, exclude_none=True).items():
        setattr(route, field, value)
    route.updated_at = datetime.now(timezone.utc)

    from_city = await db.get(City, route.from_city_id)
    to_city = await db.get(City, route.to_city_id)

    await _log(db, current_admin, "UPDATE_ROUTE", "Route", str(route.id), {
        "before": before,
        "after": {
            "price_4_seater": _money(route.price_4_seater),
            "price_6_seater": _money(route.price_6_seater),
        },
    }, request)
    await db.commit()
    return route_response(route, from_city.name, to_city.name)


# ── Local Zone Pricing ────────────────────────────────────────

@router.get("/zone-pricing", response_model=ZonePricingResponse)
async def get_zone_pricing(
    current_admin: AdminUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    pricing = await RateStore(db).get_zone_pricing()
    if pricing is None:
        raise PricingUnavailable()
    return ZonePricingResponse.model_validate(pricing)


@router.put("/zone-pricing", response_model=ZonePricingResponse)
async def replace_zone_pricing(
    data: ZonePricingUpdate,
    request: Request,
    current_admin: AdminUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Replace all four local rates. The single pricing row is updated in place."""
    pricing = await db.get(ZonePricing, ZonePricing.SINGLETON_ID, with_for_update=True)
    if pricing is None:
        pricing = ZonePricing(id=ZonePricing.SINGLETON_ID, **data.model_dump())
        db.add(pricing)
    else:
        for field, value in data.model_dump().items():
            setattr(pricing, field, value)
        pricing.updated_at = datetime.now(timezone.utc)
    await db.flush()

    await _log(db, current_admin, "REPLACE_ZONE_PRICING", "ZonePricing", str(ZonePricing.SINGLETON_ID),
               {field: _money(value) for field, value in data.model_dump().items()}, request)
    await db.commit()
    return ZonePricingResponse.model_validate(pricing)


# ── Customers ─────────────────────────────────────────────────

@router.get("/customers", response_model=PaginatedResponse)
async def list_customers(
    search: str = Query(None, description="Match on phone, name or email"),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    current_admin: AdminUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    query = select(Customer)
    if search:
        pattern = f"%{search.strip().lower()}%"
        query = query.where(
            func.lower(Customer.phone).like(pattern)
            | func.lower(Customer.name).like(pattern)
            | func.lower(Customer.email).like(pattern)
        )

    total = await db.scalar(select(func.count()).select_from(query.subquery())) or 0
    result = await db.execute(
        query.order_by(Customer.created_at.desc()).offset((page - 1) * page_size).limit(page_size)
    )
    return PaginatedResponse(
        items=[CustomerResponse.model_validate(c).model_dump(mode="json") for c in result.scalars().all()],
        total=total,
        page=page,
        page_size=page_size,
        pages=-(-total // page_size),  # ceiling division
    )


# ── Analytics ─────────────────────────────────────────────────

@router.get("/analytics", response_model=AdminAnalyticsResponse)
async def get_analytics(
    current_admin: AdminUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Booking counts by status and revenue from completed trips."""
    today_start = datetime.now(timezone.utc).replace(hour=0, minute=0, second=0, microsecond=0)

    total_bookings = await db.scalar(select(func.count(Booking.id)))
    bookings_today = await db.scalar(
        select(func.count(Booking.id)).where(Booking.created_at >= today_start)
    )
    status_rows = await db.execute(
        select(Booking.status, func.count(Booking.id)).group_by(Booking.status)
    )
    by_status = {s.value: 0 for s in BookingStatus}
    for booking_status, count in status_rows.all():
        by_status[BookingStatus(booking_status).value] = count

    completed_revenue = await db.scalar(
        select(func.sum(Booking.estimated_price)).where(Booking.status == BookingStatus.COMPLETED)
    )
    total_customers = await db.scalar(select(func.count(Customer.id)))
    total_routes = await db.scalar(select(func.count(Route.id)))

    return AdminAnalyticsResponse(
        total_bookings=total_bookings or 0,
        bookings_today=bookings_today or 0,
        bookings_by_status=by_status,
        completed_revenue=Decimal(str(completed_revenue or 0)),
        total_customers=total_customers or 0,
        total_routes=total_routes or 0,
    )


# ── Audit Log ─────────────────────────────────────────────────

@router.get("/audit-logs", response_model=PaginatedResponse)
async def get_audit_logs(
    action: str = Query(None, description="Filter by action type e.g. UPDATE_ROUTE"),
    entity_type: str = Query(None),
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=100),
    current_admin: AdminUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Append-only admin audit log, newest first."""
    query = select(AdminAuditLog)
    if action:
        query = query.where(AdminAuditLog.action == action.upper())
    if entity_type:
        query = query.where(AdminAuditLog.entity_type == entity_type)

    total = await db.scalar(select(func.count()).select_from(query.subquery())) or 0
    result = await db.execute(
        query.order_by(AdminAuditLog.created_at.desc()).offset((page - 1) * page_size).limit(page_size)
    )
    return PaginatedResponse(
        items=[AuditLogResponse.model_validate(log).model_dump(mode="json") for log in result.scalars().all()],
        total=total,
        page=page,
        page_size=page_size,
        pages=-(-total // page_size),
    )
