"""
services/session/manager.py
Admin authentication flows on top of an identity provider.

AdminSessionManager is the only writer of the SessionStore. Every public
operation resolves to an AuthResult; domain errors are converted here and
never escape to the caller.
"""

import logging
from typing import Optional
from urllib.parse import parse_qs, urlsplit

from config.settings import settings
from services.session.provider import IdentityProvider, Subscription
from services.session.store import SessionState, SessionStore
from shared.errors import (
    DomainError,
    InvalidCredentials,
    InvalidResetLink,
    NotAuthenticated,
    PasswordMismatch,
    TransientError,
    ValidationError,
)
from shared.schemas.schemas import AuthResult, AuthSession, SessionEvent
from shared.utils.security import check_password_policy, looks_like_jwt

logger = logging.getLogger(__name__)


def _failure(error: DomainError, **extra) -> AuthResult:
    return AuthResult(success=False, error=error.message, code=error.code, **extra)


class AdminSessionManager:
    def __init__(self, provider: IdentityProvider, store: SessionStore):
        self.provider = provider
        self.store = store
        self._subscription: Optional[Subscription] = None

    # ── Lifecycle ─────────────────────────────────────────────

    async def start(self) -> AuthResult:
        """Subscribe to provider events and load any existing session."""
        if self._subscription is None:
            self._subscription = self.provider.on_session_change(self._on_session_change)

        ticket = self.store.begin(SessionState.AUTHENTICATING)
        try:
            session = await self.provider.get_session()
        except DomainError as exc:
            logger.warning("Could not load the existing session: %s", exc.code)
            self.store.settle(ticket, None)
            return _failure(exc)

        self.store.settle(ticket, session)
        return AuthResult(success=True, user=self.store.user)

    def stop(self) -> None:
        """Unsubscribe. Events arriving after this are ignored."""
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None

    def _on_session_change(self, event: SessionEvent) -> None:
        if self._subscription is None:
            return
        self.store.apply(event)

    def is_admin(self) -> bool:
        return self.store.is_admin()

    # ── Sign in / out ─────────────────────────────────────────

    async def sign_in(self, email: str, password: str) -> AuthResult:
        if not email or not email.strip() or not password:
            return _failure(InvalidCredentials())

        ticket = self.store.begin(SessionState.AUTHENTICATING)
        try:
            session = await self.provider.sign_in_with_password(email.strip(), password)
        except TransientError as exc:
            self._drop_session(ticket)
            return _failure(exc)
        except DomainError:
            self._drop_session(ticket)
            logger.info("Admin sign-in rejected")
            return _failure(InvalidCredentials())

        if not self.store.settle(ticket, session):
            return _failure(NotAuthenticated("Your session changed while signing in. Please try again."))
        return AuthResult(success=True, user=session.user)

    async def sign_out(self) -> AuthResult:
        """The store ends up anonymous whatever the provider answers."""
        try:
            await self.provider.sign_out()
        except DomainError as exc:
            logger.warning("Remote sign-out failed: %s", exc.code)
            return _failure(exc)
        finally:
            self.store.reset()
        return AuthResult(success=True)

    # ── Password reset ────────────────────────────────────────

    async def request_password_reset(self, email: str) -> AuthResult:
        """Looks successful for unknown emails. Unreachable provider is reported."""
        if not email or not email.strip():
            return _failure(ValidationError("Please enter your email address"))
        try:
            await self.provider.request_password_reset(email.strip())
        except TransientError as exc:
            return _failure(exc)
        except DomainError as exc:
            logger.info("Password reset request rejected: %s", exc.code)
        return AuthResult(success=True)

    async def exchange_reset_token(
        self,
        access_token: Optional[str],
        refresh_token: Optional[str],
    ) -> AuthResult:
        """
        Turn a reset link's token pair into a recovery session. Any failure
        leaves the store anonymous and points back to the forgot-password page.
        """
        if not looks_like_jwt(access_token) or not refresh_token:
            self._sign_out_locally()
            return self._invalid_reset_link()

        ticket = self.store.begin(SessionState.RESET_PENDING)
        try:
            session = await self.provider.set_session(access_token, refresh_token)
        except DomainError as exc:
            logger.info("Reset link rejected: %s", exc.code)
            self._sign_out_locally()
            return self._invalid_reset_link()

        if not self.store.settle(ticket, session):
            return _failure(NotAuthenticated("Your session changed while the link was being checked"))
        return AuthResult(success=True, user=session.user)

    async def handle_reset_link(self, url: str) -> AuthResult:
        """
        Entry point for the reset-password page. With no tokens in the link an
        existing session is accepted; a link carrying only one token is malformed.
        """
        params = parse_qs(urlsplit(url).query)
        if not params and "#" in url:
            params = parse_qs(urlsplit(url).fragment)
        access_token = (params.get("access_token") or [None])[0]
        refresh_token = (params.get("refresh_token") or [None])[0]

        if access_token is None and refresh_token is None:
            if self.store.can_update_password():
                return AuthResult(success=True, user=self.store.user)
            session = await self._current_session()
            if session is not None and self.store.can_update_password():
                return AuthResult(success=True, user=self.store.user)
            self._sign_out_locally()
            return self._invalid_reset_link()

        return await self.exchange_reset_token(access_token, refresh_token)

    async def _current_session(self) -> Optional[AuthSession]:
        ticket = self.store.begin(SessionState.AUTHENTICATING)
        try:
            session = await self.provider.get_session()
        except DomainError:
            session = None
        if not self.store.settle(ticket, session):
            return None
        return session

    def _invalid_reset_link(self) -> AuthResult:
        return _failure(InvalidResetLink(), redirect_to=settings.ADMIN_FORGOT_PATH)

    def _drop_session(self, ticket: int) -> None:
        """A failed call clears the session, unless something newer arrived meanwhile."""
        if self.store.settle(ticket, None):
            self.provider.forget_session()

    def _sign_out_locally(self) -> None:
        self.store.reset()
        self.provider.forget_session()

    # ── Password update ───────────────────────────────────────

    async def update_password(self, new_password: str, confirm_password: Optional[str] = None) -> AuthResult:
        if not self.store.can_update_password():
            return _failure(NotAuthenticated())
        if confirm_password is not None and confirm_password != new_password:
            return _failure(PasswordMismatch())
        try:
            check_password_policy(new_password)
        except ValidationError as exc:
            return _failure(exc)

        was_recovery = self.store.state == SessionState.RESET_VALIDATED
        ticket = self.store.begin()
        try:
            session = await self.provider.update_credential(new_password)
        except DomainError as exc:
            logger.warning("Password update failed: %s", exc.code)
            return _failure(exc)

        # A session event that arrived meanwhile wins over this response
        if not self.store.settle(ticket, session):
            logger.info("Session changed during the password update; keeping the newer state")
        logger.info("Admin password updated%s", " from a reset link" if was_recovery else "")
        return AuthResult(
            success=True,
            user=session.user,
            redirect_to=settings.ADMIN_LOGIN_PATH,
            redirect_after=settings.PASSWORD_UPDATE_REDIRECT_DELAY_SECONDS,
        )
