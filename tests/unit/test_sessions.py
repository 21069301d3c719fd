import time

import jwt

from listenstats.models.session import REFRESH_ACCESS_TOKEN_ERROR, Session, now_ms
from listenstats.sessions import (
    SessionStore,
    expired_session_id,
    read_session_id,
    sign_session_id,
    sign_state,
    verify_state,
)


def test_session_cookie_round_trip(settings):
    token = sign_session_id("sid-1", settings)
    assert read_session_id(token, settings) == "sid-1"


def test_tampered_or_foreign_cookie_is_rejected(settings):
    forged = jwt.encode({"sid": "sid-1", "aud": "listenstats:session"}, "other-secret", algorithm="HS256")
    assert read_session_id(forged, settings) is None
    assert read_session_id("not-a-jwt", settings) is None
    assert read_session_id(None, settings) is None


def test_expired_cookie_is_rejected(settings):
    issued = int(time.time()) - settings.SESSION_MAX_AGE_SECONDS - 10
    token = sign_session_id("sid-1", settings, now=issued)
    assert read_session_id(token, settings) is None


def test_state_cookie_cannot_stand_in_for_session_cookie(settings):
    assert read_session_id(sign_state("abc", settings), settings) is None


def test_state_verification(settings):
    cookie = sign_state("state-123", settings)
    assert verify_state(cookie, "state-123", settings)
    assert not verify_state(cookie, "state-456", settings)
    assert not verify_state(None, "state-123", settings)
    assert not verify_state(cookie, None, settings)


def test_store_add_get_delete():
    store = SessionStore()
    session = store.add(
        Session(user_id="u", access_token="a", refresh_token="r", access_token_expiry=now_ms())
    )
    assert store.get(session.session_id) is session
    assert len(store) == 1
    assert store.delete(session.session_id)
    assert store.get(session.session_id) is None
    assert not store.delete(session.session_id)
    assert store.get(None) is None


def test_session_from_token_response_uses_ms_expiry():
    session = Session.from_token_response(
        {"access_token": "a", "refresh_token": "r", "expires_in": 3600, "scope": "s"},
        user_id="u",
        issued_at_ms=1_000,
    )
    assert session.access_token_expiry == 1_000 + 3_600_000
    assert session.expires_within(60, at_ms=3_600_000 - 59_000)
    assert not session.expires_within(60, at_ms=1_000)


def test_apply_refresh_clears_error_and_keeps_refresh_token():
    session = Session(user_id="u", access_token="a", refresh_token="r", access_token_expiry=0)
    session.mark_refresh_failed()
    assert session.error == REFRESH_ACCESS_TOKEN_ERROR
    assert session.is_terminal

    session.apply_refresh({"access_token": "b", "expires_in": 10}, issued_at_ms=5)
    assert session.access_token == "b"
    assert session.refresh_token == "r"
    assert session.access_token_expiry == 10_005
    assert not session.is_terminal


def _session(created_at: int) -> Session:
    return Session(
        user_id="u", access_token="a", refresh_token="r", access_token_expiry=0, created_at=created_at
    )


def test_store_drops_sessions_past_max_age():
    clock = [0]
    store = SessionStore(60, clock=lambda: clock[0])
    old = store.add(_session(created_at=0))

    clock[0] = 59_999
    assert store.get(old.session_id) is old

    clock[0] = 60_000
    assert store.get(old.session_id) is None
    assert len(store) == 0


def test_store_prunes_expired_sessions_on_add():
    clock = [0]
    store = SessionStore(60, clock=lambda: clock[0])
    store.add(_session(created_at=0))
    store.add(_session(created_at=0))

    clock[0] = 120_000
    fresh = store.add(_session(created_at=120_000))

    assert len(store) == 1
    assert store.get(fresh.session_id) is fresh


def test_expired_session_id_only_for_expired_signed_cookies(settings):
    issued = int(time.time()) - settings.SESSION_MAX_AGE_SECONDS - 10
    assert expired_session_id(sign_session_id("sid-1", settings, now=issued), settings) == "sid-1"
    assert expired_session_id(sign_session_id("sid-1", settings), settings) is None
    forged = jwt.encode(
        {"sid": "sid-1", "aud": "listenstats:session", "exp": issued}, "other-secret", algorithm="HS256"
    )
    assert expired_session_id(forged, settings) is None


async def test_expired_cookie_destroys_its_session(app, settings, session, client):
    issued = int(time.time()) - settings.SESSION_MAX_AGE_SECONDS - 10
    cookie = sign_session_id(session.session_id, settings, now=issued)

    r = await client.get(
        "/api/spotify/top-tracks",
        headers={"Cookie": f"{settings.SESSION_COOKIE_NAME}={cookie}"},
    )

    assert r.status_code == 401
    assert app.state.session_store.get(session.session_id) is None
    assert len(app.state.session_store) == 0
