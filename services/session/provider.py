"""
services/session/provider.py
Identity provider interface and its HTTP implementation over httpx.

Calls return their session to the caller; they are not re-broadcast.
Subscribers only hear about changes the caller did not ask for: an
out-of-band token refresh, or the local session being cleared. Network
failures and 5xx responses surface as TransientError; rejections as
AuthError with generic messages.
"""

import logging
from typing import Any, Callable, Optional, Protocol

import httpx

from config.settings import settings
from shared.errors import (
    AuthError,
    DomainError,
    InvalidCredentials,
    NotAuthenticated,
    TransientError,
    ValidationError,
)
from shared.schemas.schemas import (
    AuthSession,
    SessionEvent,
    SignedOut,
    TokenRefreshed,
)

logger = logging.getLogger(__name__)

SessionListener = Callable[[SessionEvent], None]


class Subscription:
    """Handle returned by on_session_change()."""

    def __init__(self, listeners: list, listener: SessionListener):
        self._listeners = listeners
        self._listener = listener

    def unsubscribe(self) -> None:
        if self._listener in self._listeners:
            self._listeners.remove(self._listener)


class IdentityProvider(Protocol):
    async def get_session(self) -> Optional[AuthSession]: ...

    async def set_session(self, access_token: str, refresh_token: str) -> AuthSession: ...

    def on_session_change(self, listener: SessionListener) -> Subscription: ...

    async def sign_in_with_password(self, email: str, password: str) -> AuthSession: ...

    async def sign_out(self) -> None: ...

    async def request_password_reset(self, email: str) -> None: ...

    async def update_credential(self, password: str) -> AuthSession: ...

    def forget_session(self) -> None: ...


class HttpIdentityProvider:
    """Talks to the /auth endpoints of the platform API."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
        timeout: Optional[float] = None,
    ):
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            base_url=base_url or settings.API_BASE_URL,
            timeout=timeout or settings.PROVIDER_TIMEOUT_SECONDS,
        )
        self._session: Optional[AuthSession] = None
        self._listeners: list[SessionListener] = []
        # Bumped whenever the local session is dropped; a call that started
        # before the bump does not adopt its response.
        self._epoch = 0

    @property
    def http(self) -> httpx.AsyncClient:
        return self._client

    # ── Events ────────────────────────────────────────────────

    def on_session_change(self, listener: SessionListener) -> Subscription:
        self._listeners.append(listener)
        return Subscription(self._listeners, listener)

    def _emit(self, event: SessionEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("Session listener failed on %s", event.kind)

    def _adopt(self, session: AuthSession, epoch: int) -> AuthSession:
        """Keep a call's session unless the local session was dropped meanwhile."""
        if epoch == self._epoch:
            self._session = session
        else:
            logger.debug("Not adopting a session from a call that outlived a sign-out")
        return session

    def _clear(self) -> None:
        self.forget_session()
        self._emit(SignedOut())

    def forget_session(self) -> None:
        """Drop the local session without a network call or an event."""
        self._session = None
        self._epoch += 1

    # ── Transport ─────────────────────────────────────────────

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: Optional[dict] = None,
        token: Optional[str] = None,
        rejected: Optional[DomainError] = None,
    ) -> Any:
        headers = {"Authorization": f"Bearer {token}"} if token else None
        try:
            response = await self._client.request(method, path, json=json, headers=headers)
        except httpx.HTTPError as exc:
            logger.warning("Identity provider unreachable: %s %s (%s)", method, path, type(exc).__name__)
            raise TransientError() from exc

        if response.status_code >= 500:
            logger.warning("Identity provider error %s on %s %s", response.status_code, method, path)
            raise TransientError()
        if response.status_code == 429:
            raise TransientError("Too many attempts. Please wait a minute and try again.")
        if response.status_code == 422:
            raise ValidationError()
        if response.status_code >= 400:
            raise rejected or AuthError()
        return response.json()

    async def _refresh(self) -> AuthSession:
        if self._session is None:
            raise NotAuthenticated()
        epoch = self._epoch
        data = await self._request(
            "POST", "/auth/refresh",
            json={"refresh_token": self._session.refresh_token},
            rejected=NotAuthenticated(),
        )
        return self._adopt(AuthSession.model_validate(data), epoch)

    # ── Operations ────────────────────────────────────────────

    async def get_session(self) -> Optional[AuthSession]:
        """Current session, refreshed first if the access token has expired."""
        if self._session is None:
            return None
        if self._session.is_expired():
            try:
                await self._refresh()
            except AuthError:
                self._clear()
                return None
        return self._session

    async def refresh_session(self) -> AuthSession:
        """Refresh outside any caller's flow; subscribers get TokenRefreshed."""
        session = await self._refresh()
        if self._session is session:
            self._emit(TokenRefreshed(session=session))
        return session

    async def set_session(self, access_token: str, refresh_token: str) -> AuthSession:
        """Exchange a token pair (e.g. from a reset link) for a session."""
        epoch = self._epoch
        data = await self._request(
            "POST", "/auth/verify",
            json={"access_token": access_token, "refresh_token": refresh_token},
            rejected=AuthError("Invalid or expired session"),
        )
        return self._adopt(AuthSession.model_validate(data), epoch)

    async def sign_in_with_password(self, email: str, password: str) -> AuthSession:
        epoch = self._epoch
        data = await self._request(
            "POST", "/auth/token",
            json={"email": email, "password": password},
            rejected=InvalidCredentials(),
        )
        return self._adopt(AuthSession.model_validate(data), epoch)

    async def sign_out(self) -> None:
        """Revoke the session remotely. Local state is cleared even if that fails."""
        session = self._session
        try:
            if session is not None:
                await self._request(
                    "POST", "/auth/logout",
                    json={"refresh_token": session.refresh_token},
                    token=session.access_token,
                )
        finally:
            self._clear()

    async def request_password_reset(self, email: str) -> None:
        await self._request("POST", "/auth/recover", json={"email": email})

    async def update_credential(self, password: str) -> AuthSession:
        if self._session is None:
            raise NotAuthenticated()
        epoch = self._epoch
        data = await self._request(
            "PUT", "/auth/user",
            json={"password": password},
            token=self._session.access_token,
            rejected=NotAuthenticated(),
        )
        return self._adopt(AuthSession.model_validate(data), epoch)

    async def ping(self) -> None:
        """Cheap round trip used by the keep-alive probe."""
        await self._request("GET", "/health")

    async def aclose(self) -> None:
        self._listeners.clear()
        if self._owns_client:
            await self._client.aclose()
