"""
main.py
FastAPI application entry point.
Registers all routers, middleware, startup/shutdown events.

Features:
- Structured JSON logging
- Request ID and timing headers
- Redis-backed rate limiting for anonymous traffic
- Domain errors rendered as {"detail", "code"}
- Prometheus metrics
"""

import json
import logging
import os
import time
import uuid
from contextlib import asynccontextmanager
from decimal import Decimal
from logging import LogRecord

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from prometheus_fastapi_instrumentator import Instrumentator

from config.database import close_db, init_db
from config.redis_client import close_redis, init_redis
from config.settings import settings
from shared.errors import DomainError

# Service routers
from services.admin.router import router as admin_router
from services.auth.router import router as auth_router
from services.booking.router import router as booking_router
from services.customer.router import router as customer_router
from services.fares.router import router as fares_router


# ── Logging ──────────────────────────────────────────────────

class JSONFormatter(logging.Formatter):
    """JSON log formatter for structured logging."""

    def format(self, record: LogRecord) -> str:
        log_data = {
            "timestamp": self.formatTime(record),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "instance": os.getenv("INSTANCE_NAME", "unknown"),
        }
        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_data)


# Configure structured logging on the root logger so module loggers inherit it
_handler = logging.StreamHandler()
_handler.setFormatter(JSONFormatter())
logging.basicConfig(
    level=logging.DEBUG if settings.DEBUG else logging.INFO,
    handlers=[_handler],
)
logger = logging.getLogger(__name__)


# ── Lifespan (startup/shutdown) ───────────────────────────────

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown lifecycle handler."""
    logger.info(f"Starting {settings.APP_NAME} API...")

    await init_db()
    logger.info("Database connected")

    await init_redis()
    logger.info("Redis connected")

    # Seed reference data (development only)
    if settings.APP_ENV == "development":
        await seed_initial_data()

    logger.info(f"{settings.APP_NAME} v{settings.APP_VERSION} is ready")
    yield

    await close_redis()
    await close_db()
    logger.info("Server shutdown complete")


# ── App Factory ───────────────────────────────────────────────

def create_app() -> FastAPI:
    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        description="""
## Ride Booking Platform API

- **Fares**: outstation fares per city pair, flat local (zone) rates with airport pricing
- **Bookings**: priced at creation; pending → confirmed → completed, or cancelled
- **Auth**: administrator sign-in, token refresh and password reset links
- **Admin**: fare management, customers, analytics and audit log

### Authentication
Admin endpoints require `Authorization: Bearer <access_token>`.
Get a token from `POST /auth/token`.
        """,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    # ── Middleware (outermost first) ───────────────────────────────────────────
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID", "X-Process-Time"],
    )
    app.add_middleware(GZipMiddleware, minimum_size=500)

    # ── Custom Middleware ──────────────────────────────────────────

    @app.middleware("http")
    async def request_id_middleware(request: Request, call_next):
        """Add unique X-Request-ID to every request for tracing."""
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = request_id
        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response

    @app.middleware("http")
    async def process_time_middleware(request: Request, call_next):
        """Track and expose request processing time."""
        start = time.perf_counter()
        response = await call_next(request)
        process_time = round((time.perf_counter() - start) * 1000, 2)
        response.headers["X-Process-Time"] = f"{process_time}ms"
        return response

    @app.middleware("http")
    async def rate_limit_middleware(request: Request, call_next):
        """
        Fixed-window limit per IP for unauthenticated traffic.
        Health checks and metrics are never limited. Fails open if Redis is down.
        """
        skip_paths = {"/health", "/docs", "/redoc", "/openapi.json", "/metrics"}
        if request.url.path in skip_paths:
            return await call_next(request)
        if request.headers.get("Authorization", "").startswith("Bearer "):
            return await call_next(request)

        from config.redis_client import RedisCache, redis_client
        if redis_client is None:
            return await call_next(request)

        client_ip = request.client.host if request.client else "unknown"
        try:
            allowed = await RedisCache(redis_client).check_rate_limit(
                f"rate:unauth:{client_ip}", settings.RATE_LIMIT_UNAUTH_PER_MINUTE
            )
        except Exception as e:
            logger.error(f"Rate limit check failed: {str(e)}")
            allowed = True

        if not allowed:
            logger.warning(f"Rate limit exceeded for IP {client_ip}")
            return JSONResponse(
                status_code=429,
                content={"detail": "Rate limit exceeded. Please slow down.", "code": "rate_limited"},
                headers={"Retry-After": "60"},
            )
        return await call_next(request)

    # ── Exception Handlers ─────────────────────────────────────────

    @app.exception_handler(DomainError)
    async def domain_error_handler(request: Request, exc: DomainError):
        return JSONResponse(
            status_code=exc.status_code,
            content={"detail": exc.message, "code": exc.code},
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """Catch-all exception handler. Never expose stack traces in production."""
        request_id = getattr(request.state, "request_id", None)
        logger.error(f"[{request_id}] Exception: {str(exc)}", exc_info=True)

        detail = str(exc) if settings.DEBUG else "An internal server error occurred"
        return JSONResponse(
            status_code=500,
            content={"detail": detail, "request_id": request_id},
        )

    # ── Routes ────────────────────────────────────────────────────

    @app.get("/health", tags=["Health"], include_in_schema=False)
    async def health_check():
        from sqlalchemy import text
        from config.database import AsyncSessionLocal
        from config.redis_client import redis_client

        checks = {"status": "ok", "version": settings.APP_VERSION}

        try:
            async with AsyncSessionLocal() as session:
                await session.execute(text("SELECT 1"))
            checks["database"] = "ok"
        except Exception:
            checks["database"] = "error"
            checks["status"] = "degraded"

        try:
            if redis_client:
                await redis_client.ping()
            checks["redis"] = "ok"
        except Exception:
            checks["redis"] = "error"
            checks["status"] = "degraded"

        status_code = 200 if checks["status"] == "ok" else 503
        return JSONResponse(content=checks, status_code=status_code)

    @app.get("/", include_in_schema=False)
    async def root():
        return {
            "name": settings.APP_NAME,
            "version": settings.APP_VERSION,
            "docs": "/docs",
            "health": "/health",
        }

    app.include_router(auth_router)
    app.include_router(fares_router)
    app.include_router(customer_router)
    app.include_router(booking_router)
    app.include_router(admin_router)

    # ── Prometheus Metrics ─────────────────────────────────────────
    Instrumentator().instrument(app).expose(app, endpoint="/metrics", tags=["Monitoring"])

    return app


# ── Dev Data Seeder ───────────────────────────────────────────

SEED_CITIES = ["Mumbai", "Pune", "Nashik", "Lonavala", "Shirdi"]

# (from, to, 4-seater, 6-seater); each direction is its own route
SEED_ROUTES = [
    ("Mumbai", "Pune", "1500", "2200"),
    ("Pune", "Mumbai", "1500", "2200"),
    ("Mumbai", "Nashik", "2800", "3800"),
    ("Nashik", "Mumbai", "2800", "3800"),
    ("Mumbai", "Lonavala", "1800", "2500"),
    ("Pune", "Shirdi", "3200", "4300"),
]

SEED_ZONE_PRICING = {
    "four_seater_rate": "800",
    "six_seater_rate": "1200",
    "airport_four_seater_rate": "1000",
    "airport_six_seater_rate": "1500",
}


async def seed_initial_data():
    """Seed cities, routes, local pricing and the bootstrap admin on first run (development only)."""
    from sqlalchemy import func, select

    from config.database import AsyncSessionLocal
    from shared.models.models import AdminUser, City, Route, ZonePricing
    from shared.utils.security import hash_password

    async with AsyncSessionLocal() as db:
        if not await db.scalar(select(func.count(City.id))):
            cities = {name: City(name=name) for name in SEED_CITIES}
            db.add_all(cities.values())
            await db.flush()
            for from_city, to_city, four, six in SEED_ROUTES:
                db.add(Route(
                    from_city_id=cities[from_city].id,
                    to_city_id=cities[to_city].id,
                    price_4_seater=Decimal(four),
                    price_6_seater=Decimal(six),
                ))
            logger.info(f"Seeded {len(SEED_CITIES)} cities and {len(SEED_ROUTES)} routes")

        if await db.get(ZonePricing, ZonePricing.SINGLETON_ID) is None:
            db.add(ZonePricing(
                id=ZonePricing.SINGLETON_ID,
                **{field: Decimal(value) for field, value in SEED_ZONE_PRICING.items()},
            ))
            logger.info("Seeded local zone pricing")

        if settings.BOOTSTRAP_ADMIN_EMAIL and settings.BOOTSTRAP_ADMIN_PASSWORD:
            email = settings.BOOTSTRAP_ADMIN_EMAIL.lower()
            existing = await db.scalar(select(AdminUser).where(AdminUser.email == email))
            if existing is None:
                db.add(AdminUser(email=email, password_hash=hash_password(settings.BOOTSTRAP_ADMIN_PASSWORD)))
                logger.info("Created bootstrap admin account")

        await db.commit()


# ── Entry Point ───────────────────────────────────────────────

app = create_app()

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
        workers=1 if settings.DEBUG else settings.WORKERS,
        log_level="debug" if settings.DEBUG else "info",
        access_log=True,
    )
