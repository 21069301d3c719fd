from __future__ import annotations

import secrets
import time
from dataclasses import dataclass, field
from typing import Any

REFRESH_ACCESS_TOKEN_ERROR = "RefreshAccessTokenError"


def now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class Session:
    """Server-side state for one signed-in user.

    ``access_token_expiry`` is epoch milliseconds. Token fields are only
    written by the refresher (and at sign-in). ``error`` is terminal: once
    set, the session can no longer mint tokens and the user must sign in
    again.
    """

    user_id: str
    access_token: str
    refresh_token: str | None
    access_token_expiry: int
    session_id: str = field(default_factory=lambda: secrets.token_urlsafe(24))
    scope: str | None = None
    display_name: str | None = None
    error: str | None = None
    created_at: int = field(default_factory=now_ms)

    @classmethod
    def from_token_response(
        cls,
        token_data: dict[str, Any],
        *,
        user_id: str,
        display_name: str | None = None,
        issued_at_ms: int | None = None,
    ) -> Session:
        """Build a session from the provider's token response."""
        issued = issued_at_ms if issued_at_ms is not None else now_ms()
        expires_in = int(token_data.get("expires_in", 3600))
        return cls(
            user_id=user_id,
            access_token=token_data["access_token"],
            refresh_token=token_data.get("refresh_token"),
            access_token_expiry=issued + expires_in * 1000,
            scope=token_data.get("scope"),
            display_name=display_name,
        )

    def expires_within(self, margin_seconds: float, *, at_ms: int | None = None) -> bool:
        current = at_ms if at_ms is not None else now_ms()
        return current + int(margin_seconds * 1000) >= self.access_token_expiry

    def apply_refresh(self, token_data: dict[str, Any], *, issued_at_ms: int | None = None) -> None:
        issued = issued_at_ms if issued_at_ms is not None else now_ms()
        self.access_token = token_data["access_token"]
        self.access_token_expiry = issued + int(token_data.get("expires_in", 3600)) * 1000
        # Spotify only sometimes rotates the refresh token
        if token_data.get("refresh_token"):
            self.refresh_token = token_data["refresh_token"]
        if token_data.get("scope"):
            self.scope = token_data["scope"]
        self.error = None

    def mark_refresh_failed(self) -> None:
        self.error = REFRESH_ACCESS_TOKEN_ERROR

    @property
    def is_terminal(self) -> bool:
        return self.error is not None

    def public_view(self) -> dict[str, Any]:
        return {
            "id": self.user_id,
            "display_name": self.display_name,
            "expires_at": self.access_token_expiry,
        }
