"""
shared/middleware/auth.py
FastAPI dependency functions for authentication and authorization.
The access JWT is validated here; recovery tokens are limited to the
credential endpoints and never pass require_admin.
"""

import uuid
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from config.redis_client import RedisCache, get_redis
from shared.models.models import AdminRole, AdminUser, SessionPurpose
from shared.utils.security import ensure_utc, verify_access_token

security = HTTPBearer(auto_error=False)


class TokenData:
    def __init__(self, payload: dict):
        self.user_id: str = payload["sub"]
        self.role: AdminRole = AdminRole(payload["role"])
        self.email: str = payload["email"]
        self.jti: str = payload["jti"]
        self.session_id: str = payload["sid"]
        self.purpose: SessionPurpose = SessionPurpose(payload.get("purpose", SessionPurpose.SESSION))
        self.issued_at: int = int(payload.get("iat", 0))
        self.payload = payload

    @property
    def is_recovery(self) -> bool:
        return self.purpose == SessionPurpose.RECOVERY


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_token_data(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    redis=Depends(get_redis),
) -> TokenData:
    """
    Extract and validate JWT from Authorization header.
    Checks deny-list in Redis to handle revoked tokens (logout).
    """
    if not credentials:
        raise _unauthorized("Authentication required")

    try:
        payload = verify_access_token(credentials.credentials)
        token_data = TokenData(payload)
    except (JWTError, KeyError, ValueError):
        raise _unauthorized("Invalid or expired token")

    if await RedisCache(redis).is_token_revoked(token_data.jti):
        raise _unauthorized("Token has been revoked")

    return token_data


async def get_current_admin(
    token_data: TokenData = Depends(get_token_data),
    db: AsyncSession = Depends(get_db),
) -> AdminUser:
    """Load the AdminUser behind the token. Either purpose is accepted."""
    try:
        admin = await db.get(AdminUser, uuid.UUID(token_data.user_id))
    except ValueError:
        admin = None

    if not admin:
        raise _unauthorized("User not found")
    if not admin.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Account is inactive",
        )

    # A password change invalidates every token issued before it
    if admin.password_changed_at is not None:
        changed_at = int(ensure_utc(admin.password_changed_at).timestamp())
        if token_data.issued_at < changed_at:
            raise _unauthorized("Invalid or expired token")

    return admin


class RoleRequired:
    """
    Dependency factory for role-based access control.
    Only full sessions qualify; a recovery token gets 403.
    """

    def __init__(self, *roles: AdminRole):
        self.roles = roles

    async def __call__(
        self,
        token_data: TokenData = Depends(get_token_data),
        current_admin: AdminUser = Depends(get_current_admin),
    ) -> AdminUser:
        if token_data.is_recovery:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Finish resetting your password before continuing",
            )
        if current_admin.role not in self.roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Required role: {[r.value for r in self.roles]}",
            )
        return current_admin


require_admin = RoleRequired(AdminRole.ADMIN)
