"""
services/session/client.py
Wires the admin-side components together.

Usage:
    async with AdminClient() as admin:
        result = await admin.sessions.sign_in(email, password)
        if result.success:
            await admin.bookings.confirm(booking_id)
"""

from typing import Optional

import httpx

from config.settings import settings
from services.session.admin_client import AdminBookingClient
from services.session.keepalive import KeepAliveProbe
from services.session.manager import AdminSessionManager
from services.session.provider import HttpIdentityProvider
from services.session.store import SessionStore


class AdminClient:
    """
    Owns one httpx client shared by the provider and the booking client.
    Started in dependency order and torn down in reverse.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        http: Optional[httpx.AsyncClient] = None,
        keepalive_interval: Optional[float] = None,
    ):
        self._owns_http = http is None
        self.http = http or httpx.AsyncClient(
            base_url=base_url or settings.API_BASE_URL,
            timeout=settings.PROVIDER_TIMEOUT_SECONDS,
        )
        self.store = SessionStore()
        self.provider = HttpIdentityProvider(client=self.http)
        self.sessions = AdminSessionManager(self.provider, self.store)
        self.bookings = AdminBookingClient(self.store, self.http)
        self.keepalive = KeepAliveProbe(self.provider.ping, keepalive_interval)

    async def __aenter__(self) -> "AdminClient":
        await self.sessions.start()
        self.keepalive.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.keepalive.stop()
        self.sessions.stop()
        await self.provider.aclose()
        if self._owns_http:
            await self.http.aclose()
