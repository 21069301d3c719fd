from __future__ import annotations

import logging
from time import perf_counter
from typing import Any

import httpx

from ...errors import (
    DashboardError,
    NetworkError,
    RateLimitedError,
    error_for_status,
    parse_retry_after,
)
from ...metrics import SPOTIFY_429, SPOTIFY_LATENCY, SPOTIFY_REQUESTS
from .config import (
    API_BASE,
    RECENTLY_PLAYED_MAX,
    validate_limit,
    validate_time_range,
)
from .throttle import RequestThrottle

logger = logging.getLogger(__name__)

_STATUS_MESSAGES = {
    401: "Access token expired or invalid",
    403: "Insufficient permissions or forbidden",
    404: "Resource not found",
    429: "Rate limited by Spotify",
}


def _upstream_message(response: httpx.Response) -> str | None:
    try:
        body = response.json()
    except ValueError:
        return None
    if isinstance(body, dict):
        err = body.get("error")
        if isinstance(err, dict):
            return err.get("message")
        if isinstance(err, str):
            return body.get("error_description") or err
    return None


class SpotifyClient:
    """Thin Spotify Web API wrapper.

    Applies request spacing, maps non-2xx responses onto the error taxonomy
    and never retries on its own; retry decisions belong to the caller.
    """

    def __init__(
        self,
        *,
        api_base: str = API_BASE,
        http_client: httpx.AsyncClient | None = None,
        throttle: RequestThrottle | None = None,
        timeout: float = 10.0,
    ) -> None:
        self.api_base = api_base.rstrip("/")
        self._http = http_client or httpx.AsyncClient(timeout=timeout)
        self._owns_http = http_client is None
        self.throttle = throttle or RequestThrottle()

    async def aclose(self) -> None:
        if self._owns_http:
            await self._http.aclose()

    async def request(
        self,
        endpoint: str,
        token: str,
        *,
        params: dict[str, Any] | None = None,
        method: str = "GET",
        json_body: Any | None = None,
    ) -> Any:
        """Perform one authenticated call and return the decoded JSON body."""
        await self.throttle.wait()

        url = f"{self.api_base}{endpoint}"
        headers = {"Authorization": f"Bearer {token}", "Content-Type": "application/json"}
        t0 = perf_counter()
        try:
            response = await self._http.request(
                method, url, params=params, json=json_body, headers=headers
            )
        except httpx.TransportError as exc:
            logger.warning(
                "spotify.request.transport_error",
                extra={"meta": {"path": endpoint, "error": str(exc), "error_type": type(exc).__name__}},
            )
            raise NetworkError(
                f"Network error or unexpected issue: {exc}"
            ) from exc
        elapsed = perf_counter() - t0

        SPOTIFY_LATENCY.labels(method, endpoint).observe(elapsed)
        SPOTIFY_REQUESTS.labels(method, endpoint, str(response.status_code)).inc()
        logger.debug(
            "spotify.request",
            extra={
                "meta": {
                    "method": method,
                    "path": endpoint,
                    "status_code": response.status_code,
                    "response_time_ms": round(elapsed * 1000, 2),
                }
            },
        )

        if response.status_code == 429:
            retry_after = parse_retry_after(response.headers.get("Retry-After"))
            SPOTIFY_429.labels(endpoint).inc()
            self.throttle.apply_backoff(retry_after)
            logger.warning(
                "spotify.request.rate_limited",
                extra={"meta": {"path": endpoint, "retry_after": retry_after}},
            )
            raise RateLimitedError(
                f"Rate limited. Retry after {retry_after:g} seconds",
                retry_after=retry_after,
            )

        if not 200 <= response.status_code < 300:
            message = _upstream_message(response) or _STATUS_MESSAGES.get(
                response.status_code,
                f"HTTP {response.status_code}: {response.reason_phrase}",
            )
            error: DashboardError = error_for_status(response.status_code, message)
            logger.warning(
                "spotify.request.failed",
                extra={
                    "meta": {
                        "path": endpoint,
                        "status_code": response.status_code,
                        "error_type": type(error).__name__,
                    }
                },
            )
            raise error

        if response.status_code == 204 or not response.content:
            return None
        try:
            return response.json()
        except ValueError as exc:
            raise error_for_status(
                502, "Spotify returned an invalid JSON body"
            ) from exc

    # ------------------------------------------------------------------
    # Resources
    # ------------------------------------------------------------------

    async def get_current_user(self, token: str) -> dict[str, Any]:
        return await self.request("/me", token)

    async def get_top_tracks(
        self, token: str, time_range: str = "medium_term", limit: int = 25, offset: int = 0
    ) -> dict[str, Any]:
        params = {
            "time_range": validate_time_range(time_range),
            "limit": validate_limit(limit),
            "offset": offset,
        }
        return await self.request("/me/top/tracks", token, params=params)

    async def get_top_artists(
        self, token: str, time_range: str = "medium_term", limit: int = 25, offset: int = 0
    ) -> dict[str, Any]:
        params = {
            "time_range": validate_time_range(time_range),
            "limit": validate_limit(limit),
            "offset": offset,
        }
        return await self.request("/me/top/artists", token, params=params)

    async def get_recently_played(
        self,
        token: str,
        limit: int = 25,
        *,
        after: int | None = None,
        before: int | None = None,
    ) -> dict[str, Any]:
        params: dict[str, Any] = {"limit": min(max(1, int(limit)), RECENTLY_PLAYED_MAX)}
        if after is not None:
            params["after"] = after
        if before is not None:
            params["before"] = before
        return await self.request("/me/player/recently-played", token, params=params)

    async def get_audio_features(self, token: str, track_ids: list[str]) -> dict[str, Any]:
        return await self.request(
            "/audio-features", token, params={"ids": ",".join(track_ids)}
        )

    async def get_track(self, token: str, track_id: str) -> dict[str, Any]:
        return await self.request(f"/tracks/{track_id}", token)

    async def get_artist(self, token: str, artist_id: str) -> dict[str, Any]:
        return await self.request(f"/artists/{artist_id}", token)

    async def get_several_tracks(self, token: str, ids: list[str]) -> dict[str, Any]:
        return await self.request("/tracks", token, params={"ids": ",".join(ids)})

    async def get_several_artists(self, token: str, ids: list[str]) -> dict[str, Any]:
        return await self.request("/artists", token, params={"ids": ",".join(ids)})
