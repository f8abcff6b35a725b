"""
services/fares/calculator.py
Fare computation from the route table (outstation) and the zone pricing
singleton (local). Read-only: no call here writes to the database.
"""

from decimal import Decimal
from typing import Optional, Union

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from shared.errors import PricingUnavailable, RouteNotFound, UnsupportedCarType, ValidationError
from shared.models.models import CarType, City, Route, ServiceType, ZonePricing

FromCity = aliased(City)
ToCity = aliased(City)

# Column selected for each vehicle class
OUTSTATION_RATE_COLUMN: dict[CarType, str] = {
    CarType.FOUR_SEATER: "price_4_seater",
    CarType.SIX_SEATER: "price_6_seater",
}

# (car_type, is_airport_trip) → column on the zone pricing row
LOCAL_RATE_COLUMN: dict[tuple[CarType, bool], str] = {
    (CarType.FOUR_SEATER, False): "four_seater_rate",
    (CarType.SIX_SEATER, False): "six_seater_rate",
    (CarType.FOUR_SEATER, True): "airport_four_seater_rate",
    (CarType.SIX_SEATER, True): "airport_six_seater_rate",
}


def parse_car_type(value: Union[CarType, str]) -> CarType:
    try:
        return CarType(value)
    except ValueError:
        raise UnsupportedCarType(f"Unsupported car type '{value}'. Choose 4-seater or 6-seater.")


class RateStore:
    """Read access to cities, routes and zone pricing."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_route(self, from_city: str, to_city: str) -> Optional[Route]:
        """The route for the ordered pair, matched on city name (case-insensitive)."""
        result = await self.db.execute(
            select(Route)
            .join(FromCity, FromCity.id == Route.from_city_id)
            .join(ToCity, ToCity.id == Route.to_city_id)
            .where(
                func.lower(FromCity.name) == from_city.strip().lower(),
                func.lower(ToCity.name) == to_city.strip().lower(),
            )
        )
        return result.scalar_one_or_none()

    async def get_zone_pricing(self) -> Optional[ZonePricing]:
        return await self.db.get(ZonePricing, ZonePricing.SINGLETON_ID)

    async def get_city(self, name: str) -> Optional[City]:
        result = await self.db.execute(
            select(City).where(func.lower(City.name) == name.strip().lower())
        )
        return result.scalar_one_or_none()

    async def list_cities(self) -> list[City]:
        result = await self.db.execute(select(City).order_by(City.name))
        return list(result.scalars().all())

    async def list_routes(self) -> list[tuple[Route, str, str]]:
        """Routes with their city names, ordered by origin then destination."""
        result = await self.db.execute(
            select(Route, FromCity.name, ToCity.name)
            .join(FromCity, FromCity.id == Route.from_city_id)
            .join(ToCity, ToCity.id == Route.to_city_id)
            .order_by(FromCity.name, ToCity.name)
        )
        return [(row[0], row[1], row[2]) for row in result.all()]


class FareCalculator:
    """
    Turns a trip request into a price.

    Outstation fares use the exact ordered city pair; there is no fallback
    to the reverse direction. Local fares pick one of the four flat rates.
    """

    def __init__(self, rates: RateStore):
        self.rates = rates

    async def compute_outstation_fare(
        self,
        from_city: str,
        to_city: str,
        car_type: Union[CarType, str],
    ) -> Decimal:
        car = parse_car_type(car_type)
        route = await self.rates.get_route(from_city, to_city)
        if route is None:
            raise RouteNotFound(f"No fare is configured from {from_city} to {to_city}")
        return Decimal(getattr(route, OUTSTATION_RATE_COLUMN[car]))

    async def compute_local_fare(
        self,
        car_type: Union[CarType, str],
        is_airport_trip: bool,
    ) -> Decimal:
        car = parse_car_type(car_type)
        pricing = await self.rates.get_zone_pricing()
        if pricing is None:
            raise PricingUnavailable()
        return Decimal(getattr(pricing, LOCAL_RATE_COLUMN[(car, bool(is_airport_trip))]))

    async def quote(
        self,
        service_type: Union[ServiceType, str],
        car_type: Union[CarType, str],
        from_city: Optional[str] = None,
        to_city: Optional[str] = None,
        is_airport_trip: bool = False,
    ) -> Decimal:
        """Price any supported trip by dispatching on the service type."""
        service = ServiceType(service_type)
        if service == ServiceType.OUTSTATION:
            if not from_city or not to_city:
                raise ValidationError("Outstation fares need both a pickup and a destination city")
            return await self.compute_outstation_fare(from_city, to_city, car_type)
        return await self.compute_local_fare(car_type, is_airport_trip)
