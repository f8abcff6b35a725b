"""
services/session/store.py
Client-side record of the current admin session.

One SessionStore is created per client and passed by reference. Only
AdminSessionManager calls the mutating methods (apply, begin, settle, reset);
every other component reads.
"""

import logging
from enum import Enum
from typing import Optional

from shared.models.models import AdminRole
from shared.schemas.schemas import (
    AdminIdentity,
    AuthSession,
    SessionEvent,
    SignedIn,
    SignedOut,
    TokenRefreshed,
)

logger = logging.getLogger(__name__)


class SessionState(str, Enum):
    ANONYMOUS = "anonymous"
    AUTHENTICATING = "authenticating"
    AUTHENTICATED = "authenticated"
    RESET_PENDING = "reset_pending"          # Exchanging a reset link's tokens
    RESET_VALIDATED = "reset_validated"      # Holding a recovery session


class SessionStore:
    """
    Every update bumps `version`. A caller that starts a request takes a
    ticket from begin(); settle() drops the response if anything else
    updated the store in the meantime, so the last update always wins.
    """

    def __init__(self):
        self.session: Optional[AuthSession] = None
        self.user: Optional[AdminIdentity] = None
        self.state: SessionState = SessionState.ANONYMOUS
        self.is_loading: bool = True
        self.version: int = 0

    # ── Reads ─────────────────────────────────────────────────

    @property
    def access_token(self) -> Optional[str]:
        return self.session.access_token if self.session else None

    def is_authenticated(self) -> bool:
        return self.state == SessionState.AUTHENTICATED and self.session is not None

    def is_admin(self) -> bool:
        return self.is_authenticated() and self.user is not None and self.user.role == AdminRole.ADMIN

    def can_update_password(self) -> bool:
        return self.session is not None and self.state in (
            SessionState.AUTHENTICATED,
            SessionState.RESET_VALIDATED,
        )

    # ── Writes (AdminSessionManager only) ─────────────────────

    def apply(self, event: SessionEvent) -> None:
        """
        Apply a provider push event. Always ends loading, and any call still
        in flight is stale from here on.
        """
        if isinstance(event, (SignedIn, TokenRefreshed)):
            self._set_session(event.session)
        elif isinstance(event, SignedOut):
            self._clear()
        else:
            raise TypeError(f"Unknown session event: {event!r}")
        self.is_loading = False
        self.version += 1
        logger.debug("Session store applied %s (v%d, %s)", event.kind, self.version, self.state.value)

    def begin(self, state: Optional[SessionState] = None) -> int:
        """
        Mark an operation in flight. Returns the ticket to pass to settle().
        Without a state the current one is kept on display.
        """
        if state is not None:
            self.state = state
            self.is_loading = True
        self.version += 1
        return self.version

    def settle(self, ticket: int, session: Optional[AuthSession]) -> bool:
        """
        Apply an operation's result unless the store moved on since begin().
        Returns False when the result was stale and discarded.
        """
        if ticket != self.version:
            logger.debug("Discarding stale session result (ticket %d, v%d)", ticket, self.version)
            return False
        if session is None:
            self._clear()
        else:
            self._set_session(session)
        self.is_loading = False
        self.version += 1
        return True

    def reset(self) -> None:
        """Force the anonymous state regardless of what is in flight."""
        self._clear()
        self.is_loading = False
        self.version += 1

    def _set_session(self, session: AuthSession) -> None:
        self.session = session
        self.user = session.user
        self.state = SessionState.RESET_VALIDATED if session.is_recovery else SessionState.AUTHENTICATED

    def _clear(self) -> None:
        self.session = None
        self.user = None
        self.state = SessionState.ANONYMOUS
