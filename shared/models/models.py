"""
shared/models/models.py
All SQLAlchemy ORM models for the Ride Booking Platform.
UUID primary keys throughout; the local zone pricing table is a singleton.
"""

import uuid
from datetime import date, datetime, time, timezone
from decimal import Decimal
from enum import Enum as PyEnum
from typing import Optional

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    Time,
    UniqueConstraint,
    Uuid,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, validates

from config.database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _enum_column(enum_cls: type[PyEnum]) -> Enum:
    """Persist enum values ("4-seater"), not member names."""
    return Enum(
        enum_cls,
        values_callable=lambda members: [m.value for m in members],
        native_enum=False,
        length=20,
    )


# ── Enumerations ──────────────────────────────────────────────

class CarType(str, PyEnum):
    FOUR_SEATER = "4-seater"
    SIX_SEATER = "6-seater"


class ServiceType(str, PyEnum):
    OUTSTATION = "outstation"
    LOCAL = "local"


class BookingStatus(str, PyEnum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class AdminRole(str, PyEnum):
    ADMIN = "admin"


class SessionPurpose(str, PyEnum):
    SESSION = "session"      # Regular sign-in
    RECOVERY = "recovery"    # Issued through a password reset link


# ── Mixins ────────────────────────────────────────────────────

class TimestampMixin:
    """Adds created_at and updated_at to any model."""
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        onupdate=utcnow,
        nullable=False,
    )


# ── Rate Tables ───────────────────────────────────────────────

class City(Base):
    """Reference list of cities served by outstation routes."""
    __tablename__ = "cities"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(120), unique=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )

    def __repr__(self) -> str:
        return f"<City {self.name}>"


class Route(TimestampMixin, Base):
    """
    Outstation fare for one ordered city pair.
    Direction matters: A→B and B→A are separate rows.
    """
    __tablename__ = "routes"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    from_city_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("cities.id", ondelete="RESTRICT"), nullable=False
    )
    to_city_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("cities.id", ondelete="RESTRICT"), nullable=False
    )
    price_4_seater: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    price_6_seater: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)

    __table_args__ = (
        UniqueConstraint("from_city_id", "to_city_id", name="uq_routes_city_pair"),
        CheckConstraint("from_city_id <> to_city_id", name="ck_routes_distinct_cities"),
        CheckConstraint(
            "price_4_seater > 0 AND price_6_seater > 0", name="ck_routes_positive_prices"
        ),
    )


class ZonePricing(TimestampMixin, Base):
    """
    Flat local (metro-area) rates. Exactly one row exists: the primary key
    is pinned to 1, so an update replaces the row instead of appending one.
    """
    __tablename__ = "zone_pricing"

    SINGLETON_ID = 1

    id: Mapped[int] = mapped_column(Integer, primary_key=True, default=SINGLETON_ID)
    four_seater_rate: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    six_seater_rate: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    airport_four_seater_rate: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    airport_six_seater_rate: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)

    __table_args__ = (
        CheckConstraint("id = 1", name="ck_zone_pricing_singleton"),
        CheckConstraint(
            "four_seater_rate > 0 AND six_seater_rate > 0 "
            "AND airport_four_seater_rate > 0 AND airport_six_seater_rate > 0",
            name="ck_zone_pricing_positive_rates",
        ),
    )


# ── Customers & Bookings ──────────────────────────────────────

class Customer(TimestampMixin, Base):
    """Customer account, identified by phone number."""
    __tablename__ = "customers"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    phone: Mapped[str] = mapped_column(String(20), unique=True, nullable=False)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    def __repr__(self) -> str:
        return f"<Customer {self.phone}>"


class Booking(TimestampMixin, Base):
    """
    A priced trip request. Never deleted, only transitioned:
    pending → confirmed → completed, with cancellation from pending or confirmed.
    Customer fields are a snapshot taken at creation time.
    """
    __tablename__ = "bookings"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    booking_number: Mapped[str] = mapped_column(String(20), unique=True, nullable=False)
    customer_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("customers.id"), nullable=False
    )

    # Snapshot
    customer_name: Mapped[str] = mapped_column(String(255), nullable=False)
    customer_phone: Mapped[str] = mapped_column(String(20), nullable=False)
    customer_email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    # Trip
    service_type: Mapped[ServiceType] = mapped_column(_enum_column(ServiceType), nullable=False)
    from_location: Mapped[str] = mapped_column(String(255), nullable=False)
    to_location: Mapped[str] = mapped_column(String(255), nullable=False)
    is_airport_trip: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    car_type: Mapped[CarType] = mapped_column(_enum_column(CarType), nullable=False)
    travel_date: Mapped[date] = mapped_column(Date, nullable=False)
    travel_time: Mapped[time] = mapped_column(Time, nullable=False)

    # Pricing
    estimated_price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)

    # Status
    status: Mapped[BookingStatus] = mapped_column(
        _enum_column(BookingStatus), nullable=False, default=BookingStatus.PENDING
    )
    cancellation_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    confirmed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    __table_args__ = (
        CheckConstraint("estimated_price > 0", name="ck_bookings_positive_price"),
        Index("ix_bookings_customer_id", "customer_id"),
        Index("ix_bookings_status", "status"),
        Index("ix_bookings_travel_date", "travel_date"),
    )

    @validates("estimated_price")
    def _freeze_estimated_price(self, key: str, value: Decimal) -> Decimal:
        current = self.__dict__.get(key)
        if current is not None and Decimal(current) != Decimal(value):
            raise ValueError("estimated_price cannot change once a booking is created")
        return value

    def __repr__(self) -> str:
        return f"<Booking {self.booking_number} ({self.status})>"


class BookingAuditLog(Base):
    """Immutable log of all booking status transitions."""
    __tablename__ = "booking_audit_logs"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    booking_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("bookings.id"), nullable=False
    )
    from_status: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    to_status: Mapped[str] = mapped_column(String(20), nullable=False)
    changed_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("admin_users.id"), nullable=True
    )
    reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )

    __table_args__ = (Index("ix_booking_audit_booking_id", "booking_id"),)


# ── Identity ──────────────────────────────────────────────────

class AdminUser(TimestampMixin, Base):
    """Administrator credentials. The role is always admin."""
    __tablename__ = "admin_users"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    role: Mapped[AdminRole] = mapped_column(
        _enum_column(AdminRole), nullable=False, default=AdminRole.ADMIN
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    password_changed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    last_sign_in_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    def __repr__(self) -> str:
        return f"<AdminUser {self.email}>"


class RefreshToken(Base):
    """
    One row per session. The row id doubles as the session id ("sid")
    embedded in the paired access token.
    """
    __tablename__ = "refresh_tokens"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    admin_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("admin_users.id", ondelete="CASCADE"), nullable=False
    )
    token_hash: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    purpose: Mapped[SessionPurpose] = mapped_column(
        _enum_column(SessionPurpose), nullable=False, default=SessionPurpose.SESSION
    )
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    is_revoked: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )
    user_agent: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    ip_address: Mapped[Optional[str]] = mapped_column(String(45), nullable=True)

    __table_args__ = (Index("ix_refresh_tokens_admin_id", "admin_id"),)


class AdminAuditLog(Base):
    """Immutable log of all admin actions."""
    __tablename__ = "admin_audit_logs"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    admin_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("admin_users.id"), nullable=False
    )
    action: Mapped[str] = mapped_column(String(100), nullable=False)
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    payload: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    ip_address: Mapped[Optional[str]] = mapped_column(String(45), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )

    __table_args__ = (
        Index("ix_admin_audit_admin_id", "admin_id"),
        Index("ix_admin_audit_created_at", "created_at"),
    )
