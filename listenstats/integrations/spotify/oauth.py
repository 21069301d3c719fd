from __future__ import annotations

import base64
import logging
import secrets
import time
from typing import Any
from urllib.parse import urlencode

import httpx

from ...errors import NetworkError
from .config import AUTHORIZE_PATH, TOKEN_PATH

logger = logging.getLogger(__name__)


class SpotifyOAuthError(Exception):
    """The accounts server rejected a code exchange or refresh."""

    def __init__(self, message: str, *, status: int | None = None, error: str | None = None):
        super().__init__(message)
        self.status = status
        self.error = error


def generate_state() -> str:
    """Random value for the ``state`` parameter (CSRF protection)."""
    return secrets.token_urlsafe(32)


class SpotifyOAuth:
    """Authorization-code flow against the Spotify accounts server.

    ``http_client`` is optional; when omitted, a short-lived
    ``httpx.AsyncClient`` is opened per call.
    """

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        redirect_uri: str,
        *,
        scopes: str,
        accounts_base: str = "https://accounts.spotify.com",
        http_client: httpx.AsyncClient | None = None,
        timeout: float = 10.0,
    ) -> None:
        if not client_id or not client_secret:
            raise ValueError("SPOTIFY_CLIENT_ID and SPOTIFY_CLIENT_SECRET are required")
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_uri = redirect_uri
        self.scopes = scopes
        self.accounts_base = accounts_base.rstrip("/")
        self._http = http_client
        self._timeout = timeout

    @classmethod
    def from_settings(cls, settings, *, http_client: httpx.AsyncClient | None = None) -> SpotifyOAuth:
        return cls(
            settings.SPOTIFY_CLIENT_ID,
            settings.SPOTIFY_CLIENT_SECRET,
            settings.redirect_uri,
            scopes=settings.SPOTIFY_SCOPES,
            accounts_base=settings.SPOTIFY_ACCOUNTS_BASE,
            http_client=http_client,
            timeout=settings.HTTP_TIMEOUT_SECONDS,
        )

    @property
    def token_url(self) -> str:
        return f"{self.accounts_base}{TOKEN_PATH}"

    def get_authorization_url(self, state: str, *, show_dialog: bool = False) -> str:
        params = {
            "client_id": self.client_id,
            "response_type": "code",
            "redirect_uri": self.redirect_uri,
            "scope": self.scopes,
            "state": state,
        }
        if show_dialog:
            params["show_dialog"] = "true"
        return f"{self.accounts_base}{AUTHORIZE_PATH}?{urlencode(params)}"

    def _basic_auth_header(self) -> str:
        raw = f"{self.client_id}:{self.client_secret}".encode()
        return "Basic " + base64.b64encode(raw).decode("ascii")

    async def _post_token(self, data: dict[str, str]) -> dict[str, Any]:
        headers = {
            "Authorization": self._basic_auth_header(),
            "Content-Type": "application/x-www-form-urlencoded",
        }
        try:
            if self._http is not None:
                response = await self._http.post(self.token_url, data=data, headers=headers)
            else:
                async with httpx.AsyncClient(timeout=self._timeout) as client:
                    response = await client.post(self.token_url, data=data, headers=headers)
        except httpx.TransportError as exc:
            raise NetworkError(f"Token endpoint unreachable: {exc}") from exc

        try:
            body = response.json()
        except ValueError:
            body = {}

        if response.status_code != 200:
            error = body.get("error") if isinstance(body, dict) else None
            description = body.get("error_description") if isinstance(body, dict) else None
            raise SpotifyOAuthError(
                f"Token request failed: {response.status_code} {description or error or response.text}",
                status=response.status_code,
                error=error,
            )
        if not isinstance(body, dict) or not body.get("access_token"):
            raise SpotifyOAuthError(
                "Token response missing access_token", status=response.status_code
            )
        body.setdefault("expires_in", 3600)
        body["expires_at"] = int(time.time()) + int(body["expires_in"])
        return body

    async def exchange_code(self, code: str) -> dict[str, Any]:
        """Exchange an authorization code for tokens."""
        logger.info(
            "spotify.oauth.exchange_code",
            extra={"meta": {"code_length": len(code) if code else 0}},
        )
        return await self._post_token(
            {
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": self.redirect_uri,
            }
        )

    async def refresh_access_token(self, refresh_token: str) -> dict[str, Any]:
        """Mint a new access token. The refresh token is only sometimes rotated."""
        return await self._post_token(
            {"grant_type": "refresh_token", "refresh_token": refresh_token}
        )
