"""Token refresher: expiry margin, single-flight refresh, terminal failures."""

import asyncio

import httpx
import pytest

from listenstats.errors import AuthError, NetworkError
from listenstats.integrations.spotify.oauth import SpotifyOAuth
from listenstats.integrations.spotify.tokens import REFRESH_ERROR_CODE, TokenRefresher
from listenstats.models.session import REFRESH_ACCESS_TOKEN_ERROR, Session, now_ms


def _oauth(http_client: httpx.AsyncClient) -> SpotifyOAuth:
    return SpotifyOAuth(
        "test_client_id",
        "test_client_secret",
        "http://testserver/callback",
        scopes="user-top-read",
        http_client=http_client,
    )


def _session(expires_in_ms: int, refresh_token: str | None = "refresh-1") -> Session:
    return Session(
        user_id="user-1",
        access_token="access-1",
        refresh_token=refresh_token,
        access_token_expiry=now_ms() + expires_in_ms,
    )


async def test_fresh_token_is_returned_without_refresh(spotify_http, fake_spotify):
    refresher = TokenRefresher(_oauth(spotify_http), margin_seconds=60)
    session = _session(3600 * 1000)

    assert await refresher.get_valid_access_token(session) == "access-1"
    assert fake_spotify.token_requests == []


async def test_token_inside_margin_is_refreshed(spotify_http, fake_spotify):
    refresher = TokenRefresher(_oauth(spotify_http), margin_seconds=60)
    session = _session(30 * 1000)

    token = await refresher.get_valid_access_token(session)

    assert token == "access-2"
    assert session.access_token == "access-2"
    assert session.access_token_expiry > now_ms() + 3500 * 1000
    # provider did not rotate the refresh token
    assert session.refresh_token == "refresh-1"
    assert len(fake_spotify.token_requests) == 1

    request = fake_spotify.token_requests[0]
    assert request.headers["Authorization"].startswith("Basic ")
    body = request.content.decode()
    assert "grant_type=refresh_token" in body
    assert "refresh_token=refresh-1" in body


async def test_rotated_refresh_token_is_stored(spotify_http, fake_spotify):
    fake_spotify.token_body["refresh_token"] = "refresh-2"
    refresher = TokenRefresher(_oauth(spotify_http))
    session = _session(0)

    await refresher.get_valid_access_token(session)

    assert session.refresh_token == "refresh-2"


async def test_concurrent_callers_share_one_refresh(spotify_http, fake_spotify):
    refresher = TokenRefresher(_oauth(spotify_http))
    session = _session(0)

    tokens = await asyncio.gather(
        *(refresher.get_valid_access_token(session) for _ in range(10))
    )

    assert tokens == ["access-2"] * 10
    assert len(fake_spotify.token_requests) == 1
    assert not refresher.is_refreshing(session)


async def test_rejected_refresh_marks_session_terminal(spotify_http, fake_spotify):
    fake_spotify.token_status = 400
    fake_spotify.token_body = {"error": "invalid_grant", "error_description": "Refresh token revoked"}
    refresher = TokenRefresher(_oauth(spotify_http))
    session = _session(0)

    with pytest.raises(AuthError) as excinfo:
        await refresher.get_valid_access_token(session)

    assert excinfo.value.code == REFRESH_ERROR_CODE
    assert session.error == REFRESH_ACCESS_TOKEN_ERROR

    # later calls fail fast without touching the token endpoint
    with pytest.raises(AuthError):
        await refresher.get_valid_access_token(session)
    assert len(fake_spotify.token_requests) == 1


async def test_concurrent_callers_share_the_same_failure(spotify_http, fake_spotify):
    fake_spotify.token_status = 401
    fake_spotify.token_body = {"error": "invalid_client"}
    refresher = TokenRefresher(_oauth(spotify_http))
    session = _session(0)

    results = await asyncio.gather(
        *(refresher.get_valid_access_token(session) for _ in range(5)),
        return_exceptions=True,
    )

    assert all(isinstance(r, AuthError) for r in results)
    assert len(fake_spotify.token_requests) == 1


async def test_missing_access_token_in_response_is_a_rejection(spotify_http, fake_spotify):
    fake_spotify.token_body = {"token_type": "Bearer"}
    refresher = TokenRefresher(_oauth(spotify_http))
    session = _session(0)

    with pytest.raises(AuthError):
        await refresher.get_valid_access_token(session)
    assert session.is_terminal


async def test_session_without_refresh_token_is_terminal(spotify_http, fake_spotify):
    refresher = TokenRefresher(_oauth(spotify_http))
    session = _session(0, refresh_token=None)

    with pytest.raises(AuthError):
        await refresher.get_valid_access_token(session)

    assert session.error == REFRESH_ACCESS_TOKEN_ERROR
    assert fake_spotify.token_requests == []


async def test_transport_failure_does_not_poison_session():
    def unreachable(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    async with httpx.AsyncClient(transport=httpx.MockTransport(unreachable)) as http:
        refresher = TokenRefresher(_oauth(http))
        session = _session(0)

        with pytest.raises(NetworkError):
            await refresher.get_valid_access_token(session)

    assert session.error is None
    assert not session.is_terminal


async def test_injected_clock_drives_expiry_check(spotify_http, fake_spotify):
    session = _session(3600 * 1000)
    later = session.access_token_expiry - 10 * 1000
    refresher = TokenRefresher(_oauth(spotify_http), margin_seconds=60, clock=lambda: later)

    assert await refresher.get_valid_access_token(session) == "access-2"
    assert len(fake_spotify.token_requests) == 1
