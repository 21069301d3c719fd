"""Sign-in with Spotify (authorization-code flow) and session status."""

from __future__ import annotations

import logging
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, Request
from fastapi.responses import RedirectResponse

from ..config import Settings
from ..errors import DashboardError, NetworkError
from ..integrations.spotify.oauth import SpotifyOAuthError, generate_state
from ..metrics import OAUTH_CALLBACK
from ..models.session import Session
from ..sessions import (
    STATE_COOKIE_NAME,
    SessionStore,
    clear_session_cookie,
    clear_state_cookie,
    get_app_settings,
    get_session,
    get_session_store,
    read_session_id,
    set_session_cookie,
    set_state_cookie,
    verify_state,
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=["auth"])

AUTH_ERROR_MESSAGES = {
    "Configuration": "There is a configuration error. Please check your environment variables.",
    "AccessDenied": "Access was denied. You need to grant permission to use Spotify features.",
    "Verification": "The verification token has expired or is invalid.",
    "OAuthSignin": "Error during OAuth sign-in process.",
    "OAuthCallback": "Error during OAuth callback.",
    "Callback": "Error in callback handler.",
    "SessionRequired": "You must be signed in to access this page.",
}


def _error_redirect(error: str, settings: Settings, *, reason: str) -> RedirectResponse:
    OAUTH_CALLBACK.labels("error", reason).inc()
    logger.warning("oauth.callback.failed", extra={"meta": {"error": error, "reason": reason}})
    response = RedirectResponse(f"/auth/error?{urlencode({'error': error})}", status_code=302)
    clear_state_cookie(response, settings)
    return response


@router.get("/login")
async def login(request: Request, settings: Settings = Depends(get_app_settings)):
    state = generate_state()
    url = request.app.state.spotify_oauth.get_authorization_url(state)
    response = RedirectResponse(url, status_code=302)
    set_state_cookie(response, state, settings)
    logger.info("oauth.login.redirect")
    return response


@router.get("/callback")
async def callback(
    request: Request,
    code: str | None = None,
    state: str | None = None,
    error: str | None = None,
    settings: Settings = Depends(get_app_settings),
    store: SessionStore = Depends(get_session_store),
):
    if error:
        mapped = "AccessDenied" if error == "access_denied" else "OAuthCallback"
        return _error_redirect(mapped, settings, reason=f"provider_{error}")

    if not verify_state(request.cookies.get(STATE_COOKIE_NAME), state, settings):
        return _error_redirect("Verification", settings, reason="state_mismatch")

    if not code:
        return _error_redirect("OAuthCallback", settings, reason="missing_code")

    oauth = request.app.state.spotify_oauth
    try:
        token_data = await oauth.exchange_code(code)
    except SpotifyOAuthError as exc:
        logger.error(
            "oauth.callback.exchange_rejected",
            extra={"meta": {"status": exc.status, "error": exc.error}},
        )
        return _error_redirect("OAuthCallback", settings, reason="exchange_rejected")
    except NetworkError:
        return _error_redirect("OAuthCallback", settings, reason="exchange_network")

    try:
        profile = await request.app.state.spotify_client.get_current_user(token_data["access_token"])
    except DashboardError as exc:
        logger.error(
            "oauth.callback.profile_failed",
            extra={"meta": {"code": exc.code, "upstream_status": exc.upstream_status}},
        )
        return _error_redirect("Callback", settings, reason="profile_failed")

    session = store.add(
        Session.from_token_response(
            token_data,
            user_id=str(profile.get("id") or ""),
            display_name=profile.get("display_name"),
        )
    )
    OAUTH_CALLBACK.labels("success", "ok").inc()
    logger.info(
        "oauth.callback.success",
        extra={
            "meta": {
                "user_id": session.user_id,
                "has_refresh_token": bool(session.refresh_token),
                "expires_at": session.access_token_expiry,
            }
        },
    )
    response = RedirectResponse("/", status_code=302)
    set_session_cookie(response, session, settings)
    clear_state_cookie(response, settings)
    return response


@router.get("/logout")
async def logout(
    request: Request,
    settings: Settings = Depends(get_app_settings),
    store: SessionStore = Depends(get_session_store),
):
    sid = read_session_id(request.cookies.get(settings.SESSION_COOKIE_NAME), settings)
    removed = store.delete(sid)
    logger.info("auth.logout", extra={"meta": {"had_session": removed}})
    response = RedirectResponse("/", status_code=302)
    clear_session_cookie(response, settings)
    return response


@router.get("/auth/error")
async def auth_error(error: str | None = None):
    return {
        "error": error or "Unknown",
        "message": AUTH_ERROR_MESSAGES.get(error or "", "An unknown authentication error occurred."),
    }


@router.get("/api/auth/session")
async def session_status(session: Session | None = Depends(get_session)):
    if session is None:
        return {"authenticated": False, "user": None, "error": None}
    return {
        "authenticated": not session.is_terminal,
        "user": session.public_view(),
        "error": session.error,
    }
