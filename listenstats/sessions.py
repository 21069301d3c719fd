"""Server-side sessions and the signed cookies that point at them.

The browser only ever holds a PyJWT-signed cookie carrying the session id;
tokens stay in the in-memory :class:`SessionStore`. The OAuth ``state`` value
round-trips through a second short-lived signed cookie.
"""

from __future__ import annotations

import logging
import secrets
import time
from collections.abc import Callable

import jwt
from fastapi import Depends, Request, Response

from .config import Settings
from .errors import AuthError
from .models.session import Session, now_ms

logger = logging.getLogger(__name__)

STATE_COOKIE_NAME = "listenstats_oauth_state"
STATE_MAX_AGE_SECONDS = 600
_ALGORITHM = "HS256"
_SESSION_AUDIENCE = "listenstats:session"
_STATE_AUDIENCE = "listenstats:oauth_state"


class SessionStore:
    """In-memory session registry, keyed by session id.

    With ``max_age_seconds`` set, a session older than that is dropped the
    next time it is looked up or whenever a new session is added.
    """

    def __init__(
        self,
        max_age_seconds: float | None = None,
        *,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self._sessions: dict[str, Session] = {}
        self.max_age_seconds = max_age_seconds
        self._clock = clock

    def _expired(self, session: Session, now: int) -> bool:
        if self.max_age_seconds is None:
            return False
        return now - session.created_at >= self.max_age_seconds * 1000

    def prune(self) -> int:
        """Drop expired sessions; returns how many were removed."""
        now = self._clock()
        stale = [sid for sid, s in self._sessions.items() if self._expired(s, now)]
        for sid in stale:
            del self._sessions[sid]
        if stale:
            logger.info("session.pruned", extra={"meta": {"count": len(stale)}})
        return len(stale)

    def add(self, session: Session) -> Session:
        self.prune()
        self._sessions[session.session_id] = session
        return session

    def get(self, session_id: str | None) -> Session | None:
        if not session_id:
            return None
        session = self._sessions.get(session_id)
        if session is not None and self._expired(session, self._clock()):
            del self._sessions[session_id]
            return None
        return session

    def delete(self, session_id: str | None) -> bool:
        if not session_id:
            return False
        return self._sessions.pop(session_id, None) is not None

    def __len__(self) -> int:
        return len(self._sessions)


# ----------------------------------------------------------------------
# Signed cookie values
# ----------------------------------------------------------------------


def sign_session_id(session_id: str, settings: Settings, *, now: int | None = None) -> str:
    issued = int(now if now is not None else time.time())
    payload = {
        "sid": session_id,
        "iat": issued,
        "exp": issued + settings.SESSION_MAX_AGE_SECONDS,
        "aud": _SESSION_AUDIENCE,
    }
    return jwt.encode(payload, settings.SESSION_SECRET, algorithm=_ALGORITHM)


def read_session_id(token: str | None, settings: Settings) -> str | None:
    """Return the session id from a cookie value, or None when invalid/expired."""
    if not token:
        return None
    try:
        payload = jwt.decode(
            token,
            settings.SESSION_SECRET,
            algorithms=[_ALGORITHM],
            audience=_SESSION_AUDIENCE,
        )
    except jwt.ExpiredSignatureError:
        logger.info("session.cookie_expired")
        return None
    except jwt.InvalidTokenError as exc:
        logger.warning(
            "session.cookie_invalid", extra={"meta": {"error_type": type(exc).__name__}}
        )
        return None
    sid = payload.get("sid")
    return str(sid) if sid else None


def expired_session_id(token: str | None, settings: Settings) -> str | None:
    """Session id from a genuinely signed cookie whose lifetime has run out."""
    if not token:
        return None
    try:
        payload = jwt.decode(
            token,
            settings.SESSION_SECRET,
            algorithms=[_ALGORITHM],
            audience=_SESSION_AUDIENCE,
            options={"verify_exp": False},
        )
    except jwt.InvalidTokenError:
        return None
    exp = payload.get("exp")
    if not isinstance(exp, (int, float)) or exp > time.time():
        return None
    sid = payload.get("sid")
    return str(sid) if sid else None


def sign_state(state: str, settings: Settings, *, now: int | None = None) -> str:
    issued = int(now if now is not None else time.time())
    payload = {
        "state": state,
        "iat": issued,
        "exp": issued + STATE_MAX_AGE_SECONDS,
        "aud": _STATE_AUDIENCE,
    }
    return jwt.encode(payload, settings.SESSION_SECRET, algorithm=_ALGORITHM)


def verify_state(cookie_value: str | None, state: str | None, settings: Settings) -> bool:
    """True when the callback ``state`` matches the signed cookie."""
    if not cookie_value or not state:
        return False
    try:
        payload = jwt.decode(
            cookie_value,
            settings.SESSION_SECRET,
            algorithms=[_ALGORITHM],
            audience=_STATE_AUDIENCE,
        )
    except jwt.InvalidTokenError as exc:
        logger.warning(
            "oauth.state_invalid", extra={"meta": {"error_type": type(exc).__name__}}
        )
        return False
    expected = payload.get("state")
    return isinstance(expected, str) and secrets.compare_digest(expected, state)


# ----------------------------------------------------------------------
# Response helpers
# ----------------------------------------------------------------------


def set_session_cookie(response: Response, session: Session, settings: Settings) -> None:
    response.set_cookie(
        settings.SESSION_COOKIE_NAME,
        sign_session_id(session.session_id, settings),
        max_age=settings.SESSION_MAX_AGE_SECONDS,
        httponly=True,
        secure=settings.COOKIE_SECURE,
        samesite="lax",
        path="/",
    )


def clear_session_cookie(response: Response, settings: Settings) -> None:
    response.delete_cookie(
        settings.SESSION_COOKIE_NAME,
        path="/",
        httponly=True,
        secure=settings.COOKIE_SECURE,
        samesite="lax",
    )


def set_state_cookie(response: Response, state: str, settings: Settings) -> None:
    response.set_cookie(
        STATE_COOKIE_NAME,
        sign_state(state, settings),
        max_age=STATE_MAX_AGE_SECONDS,
        httponly=True,
        secure=settings.COOKIE_SECURE,
        samesite="lax",
        path="/",
    )


def clear_state_cookie(response: Response, settings: Settings) -> None:
    response.delete_cookie(
        STATE_COOKIE_NAME, path="/", httponly=True, secure=settings.COOKIE_SECURE, samesite="lax"
    )


# ----------------------------------------------------------------------
# FastAPI dependencies
# ----------------------------------------------------------------------


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_session_store(request: Request) -> SessionStore:
    return request.app.state.session_store


def get_session(
    request: Request,
    settings: Settings = Depends(get_app_settings),
    store: SessionStore = Depends(get_session_store),
) -> Session | None:
    """Resolve the caller's session from the signed cookie, if any.

    An expired cookie also destroys the session it pointed at.
    """
    token = request.cookies.get(settings.SESSION_COOKIE_NAME)
    sid = read_session_id(token, settings)
    if sid is None:
        stale = expired_session_id(token, settings)
        if stale and store.delete(stale):
            logger.info("session.expired_dropped")
        return None
    return store.get(sid)


def require_session(session: Session | None = Depends(get_session)) -> Session:
    if session is None:
        raise AuthError("Authentication required", code="UNAUTHENTICATED")
    return session
