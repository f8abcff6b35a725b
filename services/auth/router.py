"""
services/auth/router.py
Identity provider for administrators.
Implements: Sign in → Refresh → Verify (token pair exchange) → Recover → Update password → Logout
"""

import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, HTTPException, Request, status
from jose import JWTError
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from config.redis_client import RedisCache, get_redis
from config.settings import settings
from shared.errors import AuthError, InvalidCredentials
from shared.middleware.auth import TokenData, get_current_admin, get_token_data
from shared.models.models import AdminUser, RefreshToken, SessionPurpose
from shared.schemas.schemas import (
    AdminIdentity,
    AuthSession,
    LoginRequest,
    LogoutRequest,
    MessageResponse,
    PasswordResetRequest,
    PasswordUpdateRequest,
    RefreshRequest,
    TokenPairRequest,
)
from shared.utils.security import (
    create_access_token,
    create_refresh_token,
    ensure_utc,
    get_token_remaining_ttl,
    hash_password,
    hash_token,
    verify_access_token,
    verify_password,
)
from tasks.notification_tasks import send_password_reset_email

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["Authentication"])

# Compared against when the email is unknown so both paths cost one hash check
_DUMMY_PASSWORD_HASH = hash_password("not-a-real-password")

RESET_REQUESTED_MESSAGE = "If an account exists for this email, a password reset link has been sent."


# ── Helpers ───────────────────────────────────────────────────

def _client_ip(request: Request) -> Optional[str]:
    return request.client.host if request.client else None


async def _enforce_rate_limit(redis, key: str, limit: int) -> None:
    if not await RedisCache(redis).check_rate_limit(key, limit):
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Too many requests. Please wait a minute and try again.",
        )


async def _issue_session(
    db: AsyncSession,
    admin: AdminUser,
    purpose: SessionPurpose,
    request: Request,
) -> AuthSession:
    """
    Issue an access + refresh token pair. The refresh token row id is the
    session id carried in the access token. Recovery sessions are short-lived.
    """
    now = datetime.now(timezone.utc)
    if purpose == SessionPurpose.RECOVERY:
        access_minutes = settings.RESET_TOKEN_EXPIRE_MINUTES
        refresh_expires_at = now + timedelta(minutes=settings.RESET_TOKEN_EXPIRE_MINUTES)
    else:
        access_minutes = settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES
        refresh_expires_at = now + timedelta(days=settings.JWT_REFRESH_TOKEN_EXPIRE_DAYS)

    session_id = uuid.uuid4()
    raw_refresh, hashed_refresh = create_refresh_token()
    db.add(RefreshToken(
        id=session_id,
        admin_id=admin.id,
        token_hash=hashed_refresh,
        purpose=purpose,
        expires_at=refresh_expires_at,
        user_agent=request.headers.get("user-agent"),
        ip_address=_client_ip(request),
    ))

    access_token, _ = create_access_token(
        user_id=str(admin.id),
        role=admin.role.value,
        email=admin.email,
        session_id=str(session_id),
        purpose=purpose.value,
        expires_minutes=access_minutes,
    )

    return AuthSession(
        access_token=access_token,
        refresh_token=raw_refresh,
        expires_in=access_minutes * 60,
        expires_at=now + timedelta(minutes=access_minutes),
        purpose=purpose,
        user=AdminIdentity.model_validate(admin),
    )


async def _load_active_admin(db: AsyncSession, admin_id) -> Optional[AdminUser]:
    admin = await db.get(AdminUser, admin_id)
    if admin is None or not admin.is_active:
        return None
    return admin


async def _find_admin_by_email(db: AsyncSession, email: str) -> Optional[AdminUser]:
    result = await db.execute(
        select(AdminUser).where(func.lower(AdminUser.email) == email.strip().lower())
    )
    return result.scalar_one_or_none()


# ── Endpoints ─────────────────────────────────────────────────

@router.post("/token", response_model=AuthSession, summary="Sign in with email and password")
async def sign_in(
    data: LoginRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis),
):
    """
    Unknown email, wrong password and inactive account all get the same 401
    so the response never reveals which accounts exist.
    """
    await _enforce_rate_limit(
        redis, f"rate_limit:login:{_client_ip(request)}", settings.LOGIN_ATTEMPTS_PER_MINUTE
    )

    admin = await _find_admin_by_email(db, data.email)
    password_ok = verify_password(
        data.password, admin.password_hash if admin else _DUMMY_PASSWORD_HASH
    )
    if admin is None or not password_ok or not admin.is_active:
        logger.info("Rejected sign-in attempt from %s", _client_ip(request))
        raise InvalidCredentials()

    admin.last_sign_in_at = datetime.now(timezone.utc)
    session = await _issue_session(db, admin, SessionPurpose.SESSION, request)
    await db.commit()

    logger.info("Admin %s signed in", admin.id)
    return session


@router.post("/refresh", response_model=AuthSession, summary="Refresh a session")
async def refresh_session(
    data: RefreshRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
):
    """
    Issue a new token pair for a valid refresh token.
    Implements refresh token rotation: the old token is revoked, the purpose is kept.
    """
    result = await db.execute(
        select(RefreshToken).where(
            RefreshToken.token_hash == hash_token(data.refresh_token),
            RefreshToken.is_revoked == False,  # noqa: E712
        )
    )
    db_token = result.scalar_one_or_none()
    if not db_token:
        raise AuthError("Invalid or revoked refresh token")
    if ensure_utc(db_token.expires_at) < datetime.now(timezone.utc):
        raise AuthError("Refresh token expired")

    admin = await _load_active_admin(db, db_token.admin_id)
    if admin is None:
        raise AuthError("User not found")

    db_token.is_revoked = True
    session = await _issue_session(db, admin, SessionPurpose(db_token.purpose), request)
    await db.commit()
    return session


@router.post("/verify", response_model=AuthSession, summary="Exchange a token pair for a session")
async def verify_token_pair(
    data: TokenPairRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis),
):
    """
    Trade an access/refresh pair (for example from a reset link) for a fresh
    session of the same purpose. The pair works once: its refresh token is
    revoked and its access token deny-listed.
    """
    invalid = AuthError("Invalid or expired session")
    try:
        payload = verify_access_token(data.access_token)
        token_data = TokenData(payload)
        session_id = uuid.UUID(token_data.session_id)
    except (JWTError, KeyError, ValueError):
        raise invalid

    cache = RedisCache(redis)
    if await cache.is_token_revoked(token_data.jti):
        raise invalid

    db_token = await db.get(RefreshToken, session_id)
    if (
        db_token is None
        or db_token.is_revoked
        or db_token.token_hash != hash_token(data.refresh_token)
        or str(db_token.admin_id) != token_data.user_id
        or ensure_utc(db_token.expires_at) < datetime.now(timezone.utc)
    ):
        raise invalid

    admin = await _load_active_admin(db, db_token.admin_id)
    if admin is None:
        raise invalid
    if admin.password_changed_at is not None:
        if token_data.issued_at < int(ensure_utc(admin.password_changed_at).timestamp()):
            raise invalid

    db_token.is_revoked = True
    await cache.revoke_token(token_data.jti, get_token_remaining_ttl(payload))
    session = await _issue_session(db, admin, SessionPurpose(db_token.purpose), request)
    await db.commit()
    return session


@router.get("/user", response_model=AdminIdentity, summary="Get the signed-in admin")
async def get_user(current_admin: AdminUser = Depends(get_current_admin)):
    return AdminIdentity.model_validate(current_admin)


@router.put("/user", response_model=AuthSession, summary="Update the admin password")
async def update_password(
    data: PasswordUpdateRequest,
    request: Request,
    token_data: TokenData = Depends(get_token_data),
    current_admin: AdminUser = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis),
):
    """
    Accepts regular and recovery sessions. Every existing session is revoked;
    the caller gets back a new regular session.
    """
    current_admin.password_hash = hash_password(data.password)
    current_admin.password_changed_at = datetime.now(timezone.utc)
    current_admin.updated_at = current_admin.password_changed_at

    await db.execute(
        update(RefreshToken)
        .where(RefreshToken.admin_id == current_admin.id, RefreshToken.is_revoked == False)  # noqa: E712
        .values(is_revoked=True)
    )
    await RedisCache(redis).revoke_token(token_data.jti, get_token_remaining_ttl(token_data.payload))

    session = await _issue_session(db, current_admin, SessionPurpose.SESSION, request)
    await db.commit()

    logger.info("Password updated for admin %s (via %s)", current_admin.id, token_data.purpose.value)
    return session


@router.post("/logout", response_model=MessageResponse, summary="Sign out")
async def logout(
    data: Optional[LogoutRequest] = None,
    token_data: TokenData = Depends(get_token_data),
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis),
):
    """Revoke the session's refresh token and add the access token to the Redis deny-list."""
    await RedisCache(redis).revoke_token(token_data.jti, get_token_remaining_ttl(token_data.payload))

    conditions = [RefreshToken.id == uuid.UUID(token_data.session_id)]
    if data and data.refresh_token:
        conditions.append(RefreshToken.token_hash == hash_token(data.refresh_token))

    for condition in conditions:
        await db.execute(
            update(RefreshToken)
            .where(condition, RefreshToken.admin_id == uuid.UUID(token_data.user_id))
            .values(is_revoked=True)
        )
    await db.commit()

    return MessageResponse(message="Logged out successfully")


@router.post("/recover", response_model=MessageResponse, summary="Request a password reset link")
async def request_password_reset(
    data: PasswordResetRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis),
):
    """
    Always answers the same way. For an active admin a short-lived recovery
    session is issued and its token pair is mailed as a reset link.
    """
    await _enforce_rate_limit(
        redis, f"rate_limit:recover:{_client_ip(request)}", settings.RESET_REQUESTS_PER_MINUTE
    )

    admin = await _find_admin_by_email(db, data.email)
    if admin is None or not admin.is_active:
        logger.info("Password reset requested for an unknown or inactive account")
        return MessageResponse(message=RESET_REQUESTED_MESSAGE)

    session = await _issue_session(db, admin, SessionPurpose.RECOVERY, request)
    await db.commit()

    query = urlencode({
        "access_token": session.access_token,
        "refresh_token": session.refresh_token,
    })
    reset_link = f"{settings.FRONTEND_URL.rstrip('/')}{settings.ADMIN_RESET_PATH}?{query}"
    try:
        send_password_reset_email.delay(admin.email, reset_link)
    except Exception:
        # The broker being down must not reveal that the account exists
        logger.exception("Failed to enqueue password reset email for admin %s", admin.id)

    logger.info("Password reset link issued for admin %s", admin.id)
    return MessageResponse(message=RESET_REQUESTED_MESSAGE)
