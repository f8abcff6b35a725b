"""
tests/conftest.py
Shared fixtures: in-memory SQLite database, in-memory Redis double,
an HTTP client bound to the app, and seed records.
"""

import os

# Settings are read once at import time; set them before any app module loads
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("JWT_SECRET_KEY", "test-jwt-secret-key")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("FRONTEND_URL", "https://rides.example.com")

import uuid
from decimal import Decimal
from unittest import mock

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from config.database import Base, get_db
from config.redis_client import get_redis
from main import app
from shared.models.models import AdminUser, City, Customer, Route, SessionPurpose, ZonePricing
from shared.utils.security import create_access_token, hash_password

ADMIN_EMAIL = "admin@ridebooking.in"
ADMIN_PASSWORD = "Admin1234"


class FakeRedis:
    """The subset of redis.asyncio.Redis the app uses, kept in a dict."""

    def __init__(self):
        self.data: dict = {}

    async def get(self, key):
        return self.data.get(key)

    async def setex(self, key, ttl, value):
        self.data[key] = value
        return True

    async def exists(self, *keys):
        return sum(1 for key in keys if key in self.data)

    async def incr(self, key):
        self.data[key] = int(self.data.get(key, 0)) + 1
        return self.data[key]

    async def expire(self, key, seconds):
        return key in self.data

    async def delete(self, *keys):
        return sum(1 for key in keys if self.data.pop(key, None) is not None)

    async def ping(self):
        return True

    async def aclose(self):
        return None


# ── Database ──────────────────────────────────────────────────

@pytest_asyncio.fixture
async def session_factory():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture(autouse=True)
def email_tasks():
    """Celery is never reached in tests; the enqueue calls are recorded instead."""
    with mock.patch("services.auth.router.send_password_reset_email") as reset_email, \
            mock.patch("services.booking.router.send_booking_status_email") as status_email:
        yield {"password_reset": reset_email, "booking_status": status_email}


@pytest_asyncio.fixture
async def client(session_factory, fake_redis):
    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_redis] = lambda: fake_redis

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


# ── Records ───────────────────────────────────────────────────

@pytest_asyncio.fixture
async def admin_user(db: AsyncSession) -> AdminUser:
    admin = AdminUser(email=ADMIN_EMAIL, password_hash=hash_password(ADMIN_PASSWORD))
    db.add(admin)
    await db.commit()
    return admin


def auth_headers_for(admin: AdminUser, purpose: SessionPurpose = SessionPurpose.SESSION) -> dict:
    token, _ = create_access_token(
        user_id=str(admin.id),
        role="admin",
        email=admin.email,
        session_id=str(uuid.uuid4()),
        purpose=purpose.value,
    )
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def admin_headers(admin_user: AdminUser) -> dict:
    return auth_headers_for(admin_user)


@pytest.fixture
def recovery_headers(admin_user: AdminUser) -> dict:
    return auth_headers_for(admin_user, SessionPurpose.RECOVERY)


@pytest_asyncio.fixture
async def cities(db: AsyncSession) -> dict[str, City]:
    records = {name: City(name=name) for name in ("Mumbai", "Pune", "Nashik")}
    db.add_all(records.values())
    await db.commit()
    return records


@pytest_asyncio.fixture
async def routes(db: AsyncSession, cities: dict[str, City]) -> list[Route]:
    records = [
        Route(
            from_city_id=cities["Mumbai"].id,
            to_city_id=cities["Pune"].id,
            price_4_seater=Decimal("1500.00"),
            price_6_seater=Decimal("2200.00"),
        ),
        Route(
            from_city_id=cities["Mumbai"].id,
            to_city_id=cities["Nashik"].id,
            price_4_seater=Decimal("2800.00"),
            price_6_seater=Decimal("3800.00"),
        ),
    ]
    db.add_all(records)
    await db.commit()
    return records


@pytest_asyncio.fixture
async def zone_pricing(db: AsyncSession) -> ZonePricing:
    pricing = ZonePricing(
        id=ZonePricing.SINGLETON_ID,
        four_seater_rate=Decimal("800.00"),
        six_seater_rate=Decimal("1200.00"),
        airport_four_seater_rate=Decimal("1000.00"),
        airport_six_seater_rate=Decimal("1500.00"),
    )
    db.add(pricing)
    await db.commit()
    return pricing


@pytest_asyncio.fixture
async def customer(db: AsyncSession) -> Customer:
    record = Customer(
        phone="+919876543210",
        password_hash=hash_password("secret123"),
        name="Asha Patil",
        email="asha@example.com",
    )
    db.add(record)
    await db.commit()
    return record
