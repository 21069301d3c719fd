"""Shared fixtures: settings, a fake Spotify backend and ASGI clients."""

from __future__ import annotations

import httpx
import pytest
from httpx import ASGITransport

from listenstats.config import build_settings
from listenstats.main import create_app
from listenstats.models.session import Session, now_ms
from listenstats.sessions import sign_session_id

from .factories import FakeSpotify


@pytest.fixture
def settings():
    return build_settings(
        SPOTIFY_CLIENT_ID="test_client_id",
        SPOTIFY_CLIENT_SECRET="test_client_secret",
        SESSION_SECRET="test_session_secret_at_least_32_characters_long",
        BASE_URL="http://testserver",
        RATE_LIMIT_DELAY_MS=0,
        LOG_FORMAT="text",
        LOG_LEVEL="WARNING",
        ENV="test",
    )


@pytest.fixture
def fake_spotify() -> FakeSpotify:
    return FakeSpotify()


@pytest.fixture
async def spotify_http(fake_spotify):
    async with httpx.AsyncClient(transport=httpx.MockTransport(fake_spotify)) as client:
        yield client


@pytest.fixture
def app(settings, spotify_http):
    return create_app(settings, http_client=spotify_http)


@pytest.fixture
async def client(app):
    async with httpx.AsyncClient(
        transport=ASGITransport(app=app), base_url="http://testserver"
    ) as c:
        yield c


@pytest.fixture
def session(app) -> Session:
    s = Session(
        user_id="user-1",
        access_token="access-1",
        refresh_token="refresh-1",
        access_token_expiry=now_ms() + 3600 * 1000,
        display_name="Test User",
    )
    return app.state.session_store.add(s)


@pytest.fixture
async def authed_client(app, settings, session):
    cookie = sign_session_id(session.session_id, settings)
    async with httpx.AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://testserver",
        headers={"Cookie": f"{settings.SESSION_COOKIE_NAME}={cookie}"},
    ) as c:
        yield c
