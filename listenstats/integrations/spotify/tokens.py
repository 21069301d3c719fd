from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable

from ...errors import AuthError
from ...metrics import SPOTIFY_REFRESH
from ...models.session import Session, now_ms
from .oauth import SpotifyOAuth, SpotifyOAuthError

logger = logging.getLogger(__name__)

REFRESH_ERROR_CODE = "REFRESH_ACCESS_TOKEN_ERROR"


class TokenRefresher:
    """Hands out valid access tokens, refreshing shortly before expiry.

    Refreshes are single-flight per session: callers arriving while a refresh
    is pending await the same task and receive the same token or the same
    exception. A rejected refresh marks the session terminal, after which
    every call fails fast with :class:`AuthError` and no further network
    traffic.
    """

    def __init__(
        self,
        oauth: SpotifyOAuth,
        *,
        margin_seconds: float = 60.0,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self.oauth = oauth
        self.margin_seconds = margin_seconds
        self._clock = clock
        self._inflight: dict[str, asyncio.Task[str]] = {}

    async def get_valid_access_token(self, session: Session) -> str:
        if session.is_terminal:
            raise AuthError(
                "Session expired. Please sign in again.", code=REFRESH_ERROR_CODE
            )
        if not session.expires_within(self.margin_seconds, at_ms=self._clock()):
            return session.access_token

        task = self._inflight.get(session.session_id)
        if task is None:
            task = asyncio.ensure_future(self._refresh(session))
            self._inflight[session.session_id] = task
            task.add_done_callback(
                lambda _t, sid=session.session_id: self._inflight.pop(sid, None)
            )
        else:
            logger.debug(
                "spotify.token.refresh_joined",
                extra={"meta": {"user_id": session.user_id}},
            )
        # shield: one cancelled caller must not cancel the refresh for the others
        return await asyncio.shield(task)

    def is_refreshing(self, session: Session) -> bool:
        return session.session_id in self._inflight

    async def _refresh(self, session: Session) -> str:
        if not session.refresh_token:
            session.mark_refresh_failed()
            SPOTIFY_REFRESH.labels("no_refresh_token").inc()
            logger.warning(
                "spotify.token.refresh_unavailable",
                extra={"meta": {"user_id": session.user_id}},
            )
            raise AuthError("No refresh token available", code=REFRESH_ERROR_CODE)

        logger.info(
            "spotify.token.refresh_start",
            extra={
                "meta": {
                    "user_id": session.user_id,
                    "expires_in_ms": session.access_token_expiry - self._clock(),
                }
            },
        )
        try:
            token_data = await self.oauth.refresh_access_token(session.refresh_token)
        except SpotifyOAuthError as exc:
            session.mark_refresh_failed()
            SPOTIFY_REFRESH.labels("rejected").inc()
            logger.error(
                "spotify.token.refresh_rejected",
                extra={
                    "meta": {
                        "user_id": session.user_id,
                        "status": exc.status,
                        "error": exc.error,
                    }
                },
            )
            raise AuthError(
                "Session expired. Please sign in again.", code=REFRESH_ERROR_CODE
            ) from exc
        except Exception:
            SPOTIFY_REFRESH.labels("failed").inc()
            raise

        session.apply_refresh(token_data, issued_at_ms=self._clock())
        SPOTIFY_REFRESH.labels("success").inc()
        logger.info(
            "spotify.token.refresh_ok",
            extra={
                "meta": {
                    "user_id": session.user_id,
                    "rotated_refresh_token": bool(token_data.get("refresh_token")),
                    "expires_at": session.access_token_expiry,
                }
            },
        )
        return session.access_token
