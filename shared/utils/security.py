"""
shared/utils/security.py
JWT creation/verification, password hashing, password policy and security helpers.
"""

import hashlib
import re
import secrets
import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional

from jose import JWTError, jwt
from passlib.context import CryptContext

from config.settings import settings
from shared.errors import WeakPassword

# pbkdf2_sha256 only; no bcrypt backend required
pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")

PASSWORD_MIN_LENGTH = 8


# ── JWT ───────────────────────────────────────────────────────

def create_access_token(
    user_id: str,
    role: str,
    email: str,
    session_id: str,
    purpose: str,
    expires_minutes: Optional[int] = None,
) -> tuple[str, str]:
    """
    Create a signed JWT access token bound to a session (refresh token row).
    Returns (token, jti). The jti is what logout deny-lists.
    """
    if expires_minutes is None:
        expires_minutes = settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES
    jti = str(uuid.uuid4())
    now = datetime.now(timezone.utc)
    expire = now + timedelta(minutes=expires_minutes)

    payload = {
        "sub": str(user_id),
        "role": role,
        "email": email,
        "jti": jti,
        "sid": str(session_id),
        "purpose": purpose,
        "iat": now,
        "exp": expire,
        "type": "access",
    }

    token = jwt.encode(payload, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)
    return token, jti


def create_refresh_token() -> tuple[str, str]:
    """
    Create a cryptographically random refresh token.
    Returns (raw_token, hashed_token). Only the hash is stored.
    """
    raw_token = secrets.token_urlsafe(64)
    hashed = hash_token(raw_token)
    return raw_token, hashed


def hash_token(token: str) -> str:
    """SHA-256 hash for securely storing refresh tokens."""
    return hashlib.sha256(token.encode()).hexdigest()


def verify_access_token(token: str) -> dict:
    """
    Decode and verify a JWT access token.
    Raises JWTError on invalid/expired token.
    """
    payload = jwt.decode(
        token,
        settings.JWT_SECRET_KEY,
        algorithms=[settings.JWT_ALGORITHM],
    )
    if payload.get("type") != "access":
        raise JWTError("Invalid token type")
    return payload


def get_token_remaining_ttl(payload: dict) -> int:
    """Returns seconds until token expiry. Used for JWT deny-list TTL."""
    exp = payload.get("exp", 0)
    remaining = exp - datetime.now(timezone.utc).timestamp()
    return max(0, int(remaining))


def looks_like_jwt(token: Optional[str]) -> bool:
    """Cheap shape check (three base64url segments) before any network call."""
    if not token:
        return False
    return re.fullmatch(r"[A-Za-z0-9_-]+\.[A-Za-z0-9_-]+\.[A-Za-z0-9_-]*", token) is not None


def ensure_utc(value: datetime) -> datetime:
    """SQLite hands back naive datetimes; treat them as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


# ── Password ──────────────────────────────────────────────────

def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


def check_password_policy(password: str) -> None:
    """
    Minimum 8 characters with at least one lowercase letter,
    one uppercase letter and one digit. Raises WeakPassword.
    """
    if len(password) < PASSWORD_MIN_LENGTH:
        raise WeakPassword(f"Password must be at least {PASSWORD_MIN_LENGTH} characters long")
    if not re.search(r"[a-z]", password):
        raise WeakPassword("Password must contain at least one lowercase letter")
    if not re.search(r"[A-Z]", password):
        raise WeakPassword("Password must contain at least one uppercase letter")
    if not re.search(r"\d", password):
        raise WeakPassword("Password must contain at least one number")
