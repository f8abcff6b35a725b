"""
services/session/admin_client.py
Booking administration over HTTP for a signed-in admin.
"""

import logging
from typing import Any, Optional
from uuid import UUID

import httpx

from services.session.store import SessionStore
from shared.errors import (
    BookingNotFound,
    DomainError,
    Forbidden,
    InvalidTransition,
    NotAuthenticated,
    TransientError,
)
from shared.models.models import BookingStatus
from shared.schemas.schemas import BookingResponse

logger = logging.getLogger(__name__)

# Target status → action path segment
TRANSITION_ACTIONS = {
    BookingStatus.CONFIRMED: "confirm",
    BookingStatus.COMPLETED: "complete",
    BookingStatus.CANCELLED: "cancel",
}


class AdminBookingClient:
    """
    Reads the SessionStore before every call: without an authenticated
    admin session nothing is sent over the network.
    """

    def __init__(self, store: SessionStore, http: httpx.AsyncClient):
        self.store = store
        self.http = http

    def _auth_headers(self) -> dict:
        if not self.store.is_admin():
            raise NotAuthenticated()
        return {"Authorization": f"Bearer {self.store.access_token}"}

    async def _request(self, method: str, path: str, **kwargs) -> Any:
        headers = self._auth_headers()
        try:
            response = await self.http.request(method, path, headers=headers, **kwargs)
        except httpx.HTTPError as exc:
            raise TransientError() from exc

        if response.status_code >= 500:
            raise TransientError()
        if response.status_code >= 400:
            detail = _detail(response)
            if response.status_code == 409:
                raise InvalidTransition(detail)
            if response.status_code == 404:
                raise BookingNotFound()
            if response.status_code == 401:
                raise NotAuthenticated()
            if response.status_code == 403:
                raise Forbidden()
            raise DomainError(detail)
        return response.json()

    async def transition(
        self,
        booking_id: UUID,
        target: BookingStatus,
        reason: Optional[str] = None,
    ) -> BookingResponse:
        target = BookingStatus(target)
        self._auth_headers()
        action = TRANSITION_ACTIONS.get(target)
        if action is None:
            raise InvalidTransition(f"A booking cannot be moved back to {target.value}")

        body = {"reason": reason} if target == BookingStatus.CANCELLED else None
        data = await self._request("POST", f"/bookings/{booking_id}/{action}", json=body)
        logger.info("Booking %s moved to %s", booking_id, target.value)
        return BookingResponse.model_validate(data)

    async def confirm(self, booking_id: UUID) -> BookingResponse:
        return await self.transition(booking_id, BookingStatus.CONFIRMED)

    async def complete(self, booking_id: UUID) -> BookingResponse:
        return await self.transition(booking_id, BookingStatus.COMPLETED)

    async def cancel(self, booking_id: UUID, reason: Optional[str] = None) -> BookingResponse:
        return await self.transition(booking_id, BookingStatus.CANCELLED, reason)

    async def get_booking(self, booking_id: UUID) -> BookingResponse:
        return BookingResponse.model_validate(await self._request("GET", f"/bookings/{booking_id}"))

    async def list_bookings(
        self,
        status: Optional[BookingStatus] = None,
        page: int = 1,
        page_size: int = 20,
    ) -> list[BookingResponse]:
        params: dict = {"page": page, "page_size": page_size}
        if status is not None:
            params["status"] = BookingStatus(status).value
        data = await self._request("GET", "/bookings", params=params)
        return [BookingResponse.model_validate(item) for item in data["items"]]


def _detail(response: httpx.Response) -> Optional[str]:
    try:
        detail = response.json().get("detail")
    except ValueError:
        return None
    return detail if isinstance(detail, str) else None
