"""
shared/schemas/schemas.py
All Pydantic v2 request/response schemas for the platform.
The auth schemas are shared by the API and the admin client.
"""

import uuid
from datetime import date, datetime, time, timezone
from decimal import Decimal
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator, model_validator

from shared.errors import WeakPassword
from shared.models.models import AdminRole, BookingStatus, CarType, ServiceType, SessionPurpose
from shared.utils.security import check_password_policy


# ── Base ──────────────────────────────────────────────────────

class BaseSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True, use_enum_values=True)


class PaginatedResponse(BaseSchema):
    items: List[Any]
    total: int
    page: int
    page_size: int
    pages: int


# ── Auth ──────────────────────────────────────────────────────

class AdminIdentity(BaseSchema):
    """Projection of the identity provider's user. Role is always admin."""
    id: uuid.UUID
    email: EmailStr
    role: AdminRole = AdminRole.ADMIN
    created_at: datetime


class AuthSession(BaseModel):
    """Token pair handed out by the identity provider."""
    model_config = ConfigDict(from_attributes=True)

    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int  # seconds
    expires_at: datetime
    purpose: SessionPurpose = SessionPurpose.SESSION
    user: AdminIdentity

    @property
    def is_recovery(self) -> bool:
        return self.purpose == SessionPurpose.RECOVERY

    def is_expired(self, leeway_seconds: int = 10) -> bool:
        expires_at = self.expires_at
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=timezone.utc)
        return (expires_at - datetime.now(timezone.utc)).total_seconds() <= leeway_seconds


class LoginRequest(BaseSchema):
    email: EmailStr
    password: str = Field(..., min_length=1, max_length=128)


class RefreshRequest(BaseSchema):
    refresh_token: str = Field(..., min_length=1)


class TokenPairRequest(BaseSchema):
    access_token: str = Field(..., min_length=1)
    refresh_token: str = Field(..., min_length=1)


class LogoutRequest(BaseSchema):
    refresh_token: Optional[str] = None


class PasswordResetRequest(BaseSchema):
    email: EmailStr


class PasswordUpdateRequest(BaseSchema):
    password: str = Field(..., max_length=128)

    @field_validator("password")
    @classmethod
    def validate_password(cls, v: str) -> str:
        try:
            check_password_policy(v)
        except WeakPassword as exc:
            raise ValueError(exc.message)
        return v


class AuthResult(BaseModel):
    """
    Outcome of an admin session operation. Failures carry a human-readable
    error and, where the UI must move on, a redirect target.
    """
    success: bool
    error: Optional[str] = None
    code: Optional[str] = None
    user: Optional[AdminIdentity] = None
    redirect_to: Optional[str] = None
    redirect_after: Optional[int] = None  # seconds


# ── Session events (identity provider push notifications) ────

class SignedIn(BaseModel):
    kind: Literal["signed_in"] = "signed_in"
    session: AuthSession


class TokenRefreshed(BaseModel):
    kind: Literal["token_refreshed"] = "token_refreshed"
    session: AuthSession


class SignedOut(BaseModel):
    kind: Literal["signed_out"] = "signed_out"


SessionEvent = Union[SignedIn, TokenRefreshed, SignedOut]


# ── Rates ─────────────────────────────────────────────────────

class CityCreate(BaseSchema):
    name: str = Field(..., min_length=2, max_length=120)

    @field_validator("name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        return v.strip()


class CityResponse(BaseSchema):
    id: uuid.UUID
    name: str


class RouteCreate(BaseSchema):
    from_city: str = Field(..., min_length=2, max_length=120)
    to_city: str = Field(..., min_length=2, max_length=120)
    price_4_seater: Decimal = Field(..., gt=0, max_digits=10, decimal_places=2)
    price_6_seater: Decimal = Field(..., gt=0, max_digits=10, decimal_places=2)

    @model_validator(mode="after")
    def validate_distinct_cities(self) -> "RouteCreate":
        if self.from_city.strip().lower() == self.to_city.strip().lower():
            raise ValueError("A route must connect two different cities")
        return self


class RouteUpdate(BaseSchema):
    price_4_seater: Optional[Decimal] = Field(None, gt=0, max_digits=10, decimal_places=2)
    price_6_seater: Optional[Decimal] = Field(None, gt=0, max_digits=10, decimal_places=2)


class RouteResponse(BaseSchema):
    id: uuid.UUID
    from_city: str
    to_city: str
    price_4_seater: Decimal
    price_6_seater: Decimal
    updated_at: datetime


class ZonePricingUpdate(BaseSchema):
    four_seater_rate: Decimal = Field(..., gt=0, max_digits=10, decimal_places=2)
    six_seater_rate: Decimal = Field(..., gt=0, max_digits=10, decimal_places=2)
    airport_four_seater_rate: Decimal = Field(..., gt=0, max_digits=10, decimal_places=2)
    airport_six_seater_rate: Decimal = Field(..., gt=0, max_digits=10, decimal_places=2)


class ZonePricingResponse(ZonePricingUpdate):
    updated_at: datetime


# ── Fares ─────────────────────────────────────────────────────

class FareQuoteRequest(BaseSchema):
    service_type: ServiceType
    car_type: CarType
    from_city: Optional[str] = Field(None, max_length=120)
    to_city: Optional[str] = Field(None, max_length=120)
    is_airport_trip: bool = False

    @model_validator(mode="after")
    def validate_route_fields(self) -> "FareQuoteRequest":
        if self.service_type == ServiceType.OUTSTATION and not (self.from_city and self.to_city):
            raise ValueError("Outstation fares need both from_city and to_city")
        return self


class FareQuoteResponse(BaseSchema):
    service_type: ServiceType
    car_type: CarType
    estimated_price: Decimal
    currency: str


# ── Customers ─────────────────────────────────────────────────

class CustomerCreate(BaseSchema):
    phone: str = Field(..., pattern=r"^\+?[1-9]\d{9,14}$")
    password: str = Field(..., min_length=6, max_length=128)
    name: Optional[str] = Field(None, min_length=2, max_length=255)
    email: Optional[EmailStr] = None


class CustomerResponse(BaseSchema):
    id: uuid.UUID
    phone: str
    name: Optional[str]
    email: Optional[str]
    created_at: datetime


# ── Bookings ──────────────────────────────────────────────────

class BookingCreateRequest(BaseSchema):
    """
    For outstation trips from/to are city names and select the route.
    For local trips they are free-text pickup and drop points.
    """
    customer_id: uuid.UUID
    service_type: ServiceType
    from_location: str = Field(..., min_length=2, max_length=255)
    to_location: str = Field(..., min_length=2, max_length=255)
    car_type: CarType
    is_airport_trip: bool = False
    travel_date: date
    travel_time: time

    @field_validator("travel_date")
    @classmethod
    def validate_travel_date(cls, v: date) -> date:
        if v < datetime.now(timezone.utc).date():
            raise ValueError("Travel date cannot be in the past")
        return v


class BookingResponse(BaseSchema):
    id: uuid.UUID
    booking_number: str
    customer_id: uuid.UUID
    customer_name: str
    customer_phone: str
    customer_email: Optional[str]
    service_type: ServiceType
    from_location: str
    to_location: str
    is_airport_trip: bool
    car_type: CarType
    travel_date: date
    travel_time: time
    estimated_price: Decimal
    status: BookingStatus
    cancellation_reason: Optional[str]
    confirmed_at: Optional[datetime]
    completed_at: Optional[datetime]
    cancelled_at: Optional[datetime]
    created_at: datetime
    updated_at: datetime


class BookingCancelRequest(BaseSchema):
    reason: Optional[str] = Field(None, max_length=500)


# ── Admin ─────────────────────────────────────────────────────

class AdminAnalyticsResponse(BaseSchema):
    total_bookings: int
    bookings_today: int
    bookings_by_status: Dict[str, int]
    completed_revenue: Decimal
    total_customers: int
    total_routes: int


class AuditLogResponse(BaseSchema):
    id: uuid.UUID
    admin_id: uuid.UUID
    action: str
    entity_type: str
    entity_id: Optional[str]
    payload: Optional[Dict[str, Any]]
    created_at: datetime


# ── Generic ───────────────────────────────────────────────────

class MessageResponse(BaseSchema):
    message: str
    success: bool = True


class ErrorResponse(BaseSchema):
    detail: str
    code: Optional[str] = None
