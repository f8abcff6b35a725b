"""
services/fares/router.py
Public fare endpoints: city list, route table and price quotes.
"""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from config.settings import settings
from services.fares.calculator import FareCalculator, RateStore
from shared.schemas.schemas import (
    CityResponse,
    FareQuoteRequest,
    FareQuoteResponse,
    RouteResponse,
)

router = APIRouter(prefix="/fares", tags=["Fares"])


def route_response(route, from_city: str, to_city: str) -> RouteResponse:
    return RouteResponse(
        id=route.id,
        from_city=from_city,
        to_city=to_city,
        price_4_seater=route.price_4_seater,
        price_6_seater=route.price_6_seater,
        updated_at=route.updated_at,
    )


@router.get("/cities", response_model=list[CityResponse])
async def list_cities(db: AsyncSession = Depends(get_db)):
    """Cities available as outstation pickup or destination."""
    cities = await RateStore(db).list_cities()
    return [CityResponse.model_validate(c) for c in cities]


@router.get("/routes", response_model=list[RouteResponse])
async def list_routes(db: AsyncSession = Depends(get_db)):
    rows = await RateStore(db).list_routes()
    return [route_response(route, from_name, to_name) for route, from_name, to_name in rows]


@router.post("/quote", response_model=FareQuoteResponse)
async def quote_fare(data: FareQuoteRequest, db: AsyncSession = Depends(get_db)):
    """
    Price a trip without creating a booking.
    404 when the route or local pricing is missing; never a default price.
    """
    price = await FareCalculator(RateStore(db)).quote(
        service_type=data.service_type,
        car_type=data.car_type,
        from_city=data.from_city,
        to_city=data.to_city,
        is_airport_trip=data.is_airport_trip,
    )
    return FareQuoteResponse(
        service_type=data.service_type,
        car_type=data.car_type,
        estimated_price=price,
        currency=settings.CURRENCY,
    )
