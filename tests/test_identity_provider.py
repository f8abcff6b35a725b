"""
tests/test_identity_provider.py
HttpIdentityProvider over a mocked transport, driven through AdminSessionManager.
"""

import asyncio
import json
import uuid
from datetime import datetime, timedelta, timezone

import httpx
import pytest
import pytest_asyncio

from services.session.manager import AdminSessionManager
from services.session.provider import HttpIdentityProvider
from services.session.store import SessionState, SessionStore

ADMIN_EMAIL = "admin@ridebooking.in"
ADMIN_PASSWORD = "Admin1234"


def session_payload(purpose: str = "session") -> dict:
    now = datetime.now(timezone.utc)
    return {
        "access_token": f"header.{uuid.uuid4().hex}.signature",
        "refresh_token": uuid.uuid4().hex,
        "token_type": "bearer",
        "expires_in": 3600,
        "expires_at": (now + timedelta(hours=1)).isoformat(),
        "purpose": purpose,
        "user": {
            "id": str(uuid.uuid4()),
            "email": ADMIN_EMAIL,
            "role": "admin",
            "created_at": now.isoformat(),
        },
    }


def password_handler(request: httpx.Request) -> httpx.Response:
    if request.url.path == "/auth/token":
        body = json.loads(request.content)
        if body["password"] == ADMIN_PASSWORD:
            return httpx.Response(200, json=session_payload())
        return httpx.Response(401, json={"detail": "Invalid email or password", "code": "invalid_credentials"})
    if request.url.path == "/auth/refresh":
        return httpx.Response(200, json=session_payload())
    return httpx.Response(404, json={"detail": "Not found"})


@pytest_asyncio.fixture
async def http():
    clients = []

    def build(handler) -> httpx.AsyncClient:
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url="http://test")
        clients.append(client)
        return client

    yield build
    for client in clients:
        await client.aclose()


def wire(client: httpx.AsyncClient):
    provider = HttpIdentityProvider(client=client)
    store = SessionStore()
    events = []
    provider.on_session_change(lambda event: events.append(event.kind))
    return provider, store, AdminSessionManager(provider, store), events


# ── Call responses vs. pushed events ───────────────────────────────────────────

@pytest.mark.asyncio
async def test_sign_in_reply_after_sign_out_is_not_adopted(http):
    reached = asyncio.Event()
    release = asyncio.Event()

    async def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/auth/token":
            reached.set()
            await release.wait()
            return httpx.Response(200, json=session_payload())
        return httpx.Response(404, json={"detail": "Not found"})

    provider, store, manager, events = wire(http(handler))
    await manager.start()

    task = asyncio.create_task(manager.sign_in(ADMIN_EMAIL, ADMIN_PASSWORD))
    await reached.wait()
    await provider.sign_out()
    release.set()
    result = await task

    assert not result.success
    assert store.state == SessionState.ANONYMOUS
    assert not store.is_admin()
    assert await provider.get_session() is None
    assert events == ["signed_out"]


@pytest.mark.asyncio
async def test_sign_in_reply_is_returned_not_broadcast(http):
    provider, store, manager, events = wire(http(password_handler))
    await manager.start()

    result = await manager.sign_in(ADMIN_EMAIL, ADMIN_PASSWORD)
    assert result.success
    assert store.is_admin()
    assert store.session is await provider.get_session()
    assert events == []


@pytest.mark.asyncio
async def test_background_refresh_is_broadcast(http):
    provider, store, manager, events = wire(http(password_handler))
    await manager.start()
    await manager.sign_in(ADMIN_EMAIL, ADMIN_PASSWORD)
    before = store.access_token

    refreshed = await provider.refresh_session()
    assert events == ["token_refreshed"]
    assert store.access_token == refreshed.access_token != before


# ── Failed calls drop the local session ────────────────────────────────────────

@pytest.mark.asyncio
async def test_wrong_password_drops_previous_session(http):
    provider, store, manager, events = wire(http(password_handler))
    await manager.start()
    assert (await manager.sign_in(ADMIN_EMAIL, ADMIN_PASSWORD)).success

    rejected = await manager.sign_in(ADMIN_EMAIL, "Wrong1234")
    assert not rejected.success
    assert rejected.code == "invalid_credentials"
    assert await provider.get_session() is None

    link = await manager.handle_reset_link("https://rides.example.com/admin/reset-password")
    assert link.code == "invalid_reset_link"
    assert store.state == SessionState.ANONYMOUS
