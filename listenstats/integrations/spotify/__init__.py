"""Spotify Web API integration: OAuth, token refresh, client and service."""

from .client import SpotifyClient
from .oauth import SpotifyOAuth, SpotifyOAuthError
from .service import SpotifyService
from .throttle import RequestThrottle
from .tokens import TokenRefresher

__all__ = [
    "RequestThrottle",
    "SpotifyClient",
    "SpotifyOAuth",
    "SpotifyOAuthError",
    "SpotifyService",
    "TokenRefresher",
]
