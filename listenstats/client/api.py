"""HTTP client for the dashboard's own ``/api/spotify`` surface.

Responses are unwrapped from the ``{success, data, timestamp}`` envelope and
error bodies are turned back into the shared error taxonomy so callers can
tell retryable failures from terminal ones.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from ..errors import (
    AuthError,
    DashboardError,
    NetworkError,
    UnknownUpstreamError,
    UpstreamClientError,
    ValidationError,
    error_for_status,
    parse_retry_after,
)

logger = logging.getLogger(__name__)


# 5xx bodies whose code the status alone would misclassify as retryable
_CODE_ERRORS: dict[str, type[DashboardError]] = {
    "NETWORK_ERROR": NetworkError,
    "UPSTREAM_ERROR": UpstreamClientError,
    "INTERNAL_ERROR": UnknownUpstreamError,
}


def _error_from_response(response: httpx.Response) -> DashboardError:
    try:
        body = response.json()
    except ValueError:
        body = None
    if not isinstance(body, dict):
        body = {}
    message = body.get("error") or response.reason_phrase or f"HTTP {response.status_code}"
    code = body.get("code")
    status = response.status_code

    if status == 400:
        return ValidationError(message, parameter=body.get("parameter"))
    if status == 401:
        return AuthError(message, code=code, upstream_status=status)
    by_code = _CODE_ERRORS.get(code)
    if by_code is not None:
        return by_code(message, upstream_status=status)
    retry_after = None
    if status == 429:
        retry_after = parse_retry_after(response.headers.get("Retry-After"))
    return error_for_status(status, message, retry_after=retry_after, own_api=True)


class DashboardClient:
    """Async client for the dashboard API.

    Pass ``cookies`` carrying the signed session cookie, or an
    ``http_client`` that already holds them.
    """

    def __init__(
        self,
        base_url: str = "",
        *,
        http_client: httpx.AsyncClient | None = None,
        cookies: dict[str, str] | None = None,
        timeout: float = 10.0,
    ) -> None:
        self._http = http_client or httpx.AsyncClient(
            base_url=base_url, cookies=cookies, timeout=timeout
        )
        self._owns_http = http_client is None

    async def aclose(self) -> None:
        if self._owns_http:
            await self._http.aclose()

    async def __aenter__(self) -> DashboardClient:
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def get(self, path: str, params: dict[str, Any] | None = None) -> Any:
        clean = {k: v for k, v in (params or {}).items() if v is not None}
        try:
            response = await self._http.get(path, params=clean)
        except httpx.TransportError as exc:
            raise NetworkError(f"Network error: {exc}") from exc

        if response.is_success:
            body = response.json()
            return body.get("data") if isinstance(body, dict) and "data" in body else body

        error = _error_from_response(response)
        logger.debug(
            "dashboard.request.failed",
            extra={"meta": {"path": path, "status_code": response.status_code, "code": error.code}},
        )
        raise error

    async def get_top_tracks(
        self,
        time_range: str = "medium_term",
        limit: int = 25,
        start_date: str | None = None,
        end_date: str | None = None,
    ) -> list[dict[str, Any]]:
        data = await self.get(
            "/api/spotify/top-tracks",
            {"time_range": time_range, "limit": limit, "start_date": start_date, "end_date": end_date},
        )
        return data["tracks"]

    async def get_top_artists(
        self,
        time_range: str = "medium_term",
        limit: int = 25,
        start_date: str | None = None,
        end_date: str | None = None,
    ) -> list[dict[str, Any]]:
        data = await self.get(
            "/api/spotify/top-artists",
            {"time_range": time_range, "limit": limit, "start_date": start_date, "end_date": end_date},
        )
        return data["artists"]

    async def get_recently_played(self, limit: int = 25) -> list[dict[str, Any]]:
        data = await self.get("/api/spotify/recently-played", {"limit": limit})
        return data["tracks"]

    async def get_listening_stats(self) -> dict[str, Any]:
        return await self.get("/api/spotify/listening-stats")
