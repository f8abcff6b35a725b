"""
config/settings.py
Application settings loaded from environment variables.
Uses Pydantic BaseSettings for validation and type safety.
"""

from functools import lru_cache
from typing import List, Optional
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ── Application ──────────────────────────────────────────
    APP_NAME: str = "Ride Booking Platform"
    APP_ENV: str = "development"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    SECRET_KEY: str

    # ── Server ───────────────────────────────────────────────
    HOST: str = "0.0.0.0"
    PORT: int = 8000
    WORKERS: int = 4

    # ── Database ─────────────────────────────────────────────
    DATABASE_URL: str
    DATABASE_POOL_SIZE: int = 20
    DATABASE_MAX_OVERFLOW: int = 40
    DATABASE_POOL_TIMEOUT: int = 30
    DATABASE_CONNECT_ATTEMPTS: int = 5

    # ── Redis ────────────────────────────────────────────────
    REDIS_URL: str = "redis://localhost:6379/0"

    # ── JWT ──────────────────────────────────────────────────
    JWT_SECRET_KEY: str
    JWT_ALGORITHM: str = "HS256"
    JWT_ACCESS_TOKEN_EXPIRE_MINUTES: int = 60
    JWT_REFRESH_TOKEN_EXPIRE_DAYS: int = 30
    RESET_TOKEN_EXPIRE_MINUTES: int = 15     # recovery sessions from a reset link

    # ── Email ────────────────────────────────────────────────
    RESEND_API_KEY: str = ""
    EMAIL_FROM: str = "noreply@ridebooking.in"
    EMAIL_FROM_NAME: str = "Ride Booking"

    # ── Frontend ─────────────────────────────────────────────
    FRONTEND_URL: str = "http://localhost:5173"
    ADMIN_LOGIN_PATH: str = "/admin"
    ADMIN_FORGOT_PATH: str = "/admin/forgot-password"
    ADMIN_RESET_PATH: str = "/admin/reset-password"
    ALLOWED_ORIGINS: str = "http://localhost:5173"

    # ── Celery ───────────────────────────────────────────────
    CELERY_BROKER_URL: str = "redis://localhost:6379/1"
    CELERY_RESULT_BACKEND: str = "redis://localhost:6379/2"

    # ── Rate Limiting ────────────────────────────────────────
    RATE_LIMIT_UNAUTH_PER_MINUTE: int = 60
    LOGIN_ATTEMPTS_PER_MINUTE: int = 10
    RESET_REQUESTS_PER_MINUTE: int = 5

    # ── Admin Client ─────────────────────────────────────────
    API_BASE_URL: str = "http://localhost:8000"
    PROVIDER_TIMEOUT_SECONDS: float = 10.0
    KEEPALIVE_INTERVAL_SECONDS: float = 300.0   # 5 minutes
    PASSWORD_UPDATE_REDIRECT_DELAY_SECONDS: int = 3

    # ── Business Config ──────────────────────────────────────
    CURRENCY: str = "INR"

    # ── Development bootstrap ────────────────────────────────
    BOOTSTRAP_ADMIN_EMAIL: Optional[str] = None
    BOOTSTRAP_ADMIN_PASSWORD: Optional[str] = None

    @property
    def allowed_origins_list(self) -> List[str]:
        return [o.strip() for o in self.ALLOWED_ORIGINS.split(",")]

    @property
    def uses_sqlite(self) -> bool:
        return self.DATABASE_URL.startswith("sqlite")


@lru_cache()
def get_settings() -> Settings:
    """Cached settings instance."""
    return Settings()


settings = get_settings()
