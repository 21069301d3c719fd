from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import UTC, date, datetime, timedelta
from typing import Any

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from ..errors import DashboardError, UnknownUpstreamError, ValidationError, json_error
from ..integrations.spotify.config import TIME_RANGE_ALIASES, TIME_RANGES
from ..integrations.spotify.service import SpotifyService
from ..metrics import API_ERRORS
from ..models.session import Session
from ..sessions import require_session

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/spotify", tags=["spotify"])

ROUTE_LIMITS = (10, 25, 50)
ROUTE_TIME_RANGES = TIME_RANGES + ("custom",)
CUSTOM_RANGE_MAX_DAYS = 50


@dataclass(frozen=True, slots=True)
class TopItemsQuery:
    time_range: str
    limit: int
    start_date: date | None = None
    end_date: date | None = None

    @property
    def is_custom(self) -> bool:
        return self.time_range == "custom"


def today_utc() -> date:
    return datetime.now(UTC).date()


def parse_limit(raw: str | None) -> int:
    value = raw if raw not in (None, "") else "25"
    try:
        limit = int(value)
    except ValueError:
        limit = None
    if limit not in ROUTE_LIMITS:
        raise ValidationError(
            "Invalid limit. Must be one of: " + ", ".join(str(v) for v in ROUTE_LIMITS),
            parameter="limit",
        )
    return limit


def parse_time_range(raw: str | None) -> str:
    value = (raw or "medium_term").strip()
    value = TIME_RANGE_ALIASES.get(value, value)
    if value not in ROUTE_TIME_RANGES:
        raise ValidationError(
            "Invalid time_range. Must be one of: " + ", ".join(ROUTE_TIME_RANGES),
            parameter="time_range",
        )
    return value


def _parse_date(raw: str | None, parameter: str) -> date:
    if not raw:
        raise ValidationError(
            f"{parameter} is required when time_range is custom", parameter=parameter
        )
    try:
        return date.fromisoformat(raw)
    except ValueError:
        raise ValidationError(
            f"Invalid {parameter}. Expected YYYY-MM-DD", parameter=parameter
        ) from None


def parse_top_items_query(
    time_range: str | None,
    limit: str | None,
    start_date: str | None = None,
    end_date: str | None = None,
    *,
    today: date | None = None,
) -> TopItemsQuery:
    """Validate query values for the top-tracks/top-artists routes."""
    tr = parse_time_range(time_range)
    lim = parse_limit(limit)
    if tr != "custom":
        return TopItemsQuery(time_range=tr, limit=lim)

    start = _parse_date(start_date, "start_date")
    end = _parse_date(end_date, "end_date")
    current = today or today_utc()
    if start > end:
        raise ValidationError("start_date must be on or before end_date", parameter="start_date")
    if end > current:
        raise ValidationError("end_date cannot be in the future", parameter="end_date")
    if start < current - timedelta(days=CUSTOM_RANGE_MAX_DAYS):
        raise ValidationError(
            f"start_date cannot be more than {CUSTOM_RANGE_MAX_DAYS} days ago",
            parameter="start_date",
        )
    return TopItemsQuery(time_range=tr, limit=lim, start_date=start, end_date=end)


def envelope(data: Any) -> dict[str, Any]:
    return {
        "success": True,
        "data": data,
        "timestamp": datetime.now(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z"),
    }


@contextmanager
def _classified(route: str, failure_message: str) -> Iterator[None]:
    """Count taxonomy errors and turn anything unexpected into a 500."""
    try:
        yield
    except DashboardError as exc:
        API_ERRORS.labels(route, exc.code).inc()
        raise
    except Exception as exc:
        API_ERRORS.labels(route, "INTERNAL_ERROR").inc()
        logger.exception(
            "spotify.route.unexpected", extra={"meta": {"route": route}}
        )
        raise UnknownUpstreamError(failure_message) from exc


def get_spotify_service(
    request: Request, session: Session = Depends(require_session)
) -> SpotifyService:
    state = request.app.state
    return SpotifyService(session, state.token_refresher, state.spotify_client)


@router.get("/top-tracks")
async def top_tracks(
    time_range: str | None = None,
    limit: str | None = None,
    start_date: str | None = None,
    end_date: str | None = None,
    service: SpotifyService = Depends(get_spotify_service),
):
    with _classified("top-tracks", "Failed to fetch top tracks. Please try again."):
        query = parse_top_items_query(time_range, limit, start_date, end_date)
        if query.is_custom:
            tracks = await service.custom_top_tracks(query.start_date, query.end_date, query.limit)
        else:
            tracks, _ = await service.top_tracks(query.time_range, query.limit)

    data: dict[str, Any] = {
        "tracks": [t.model_dump() for t in tracks],
        "total": len(tracks),
        "limit": query.limit,
        "offset": 0,
        "time_range": query.time_range,
    }
    if query.is_custom:
        data["start_date"] = query.start_date.isoformat()
        data["end_date"] = query.end_date.isoformat()
    return envelope(data)


@router.get("/top-artists")
async def top_artists(
    time_range: str | None = None,
    limit: str | None = None,
    start_date: str | None = None,
    end_date: str | None = None,
    service: SpotifyService = Depends(get_spotify_service),
):
    with _classified("top-artists", "Failed to fetch top artists. Please try again."):
        query = parse_top_items_query(time_range, limit, start_date, end_date)
        if query.is_custom:
            artists = await service.custom_top_artists(query.start_date, query.end_date, query.limit)
        else:
            artists, _ = await service.top_artists(query.time_range, query.limit)

    data: dict[str, Any] = {
        "artists": [a.model_dump() for a in artists],
        "total": len(artists),
        "limit": query.limit,
        "offset": 0,
        "time_range": query.time_range,
    }
    if query.is_custom:
        data["start_date"] = query.start_date.isoformat()
        data["end_date"] = query.end_date.isoformat()
    return envelope(data)


@router.get("/recently-played")
async def recently_played(
    limit: str | None = None,
    service: SpotifyService = Depends(get_spotify_service),
):
    with _classified("recently-played", "Failed to fetch recently played tracks. Please try again."):
        lim = parse_limit(limit)
        items = await service.recently_played(lim)
    return envelope(
        {
            "tracks": [i.model_dump() for i in items],
            "total": len(items),
            "limit": lim,
        }
    )


@router.get("/listening-stats")
async def listening_stats(service: SpotifyService = Depends(get_spotify_service)):
    with _classified("listening-stats", "Failed to fetch listening statistics. Please try again."):
        stats = await service.listening_stats()
    return envelope(stats)


# Read-only resources: every other method is rejected with Allow: GET
_RESOURCE_PATHS = ("/top-tracks", "/top-artists", "/recently-played", "/listening-stats")


async def _method_not_allowed() -> JSONResponse:
    return json_error(
        "Method not allowed", 405, code="METHOD_NOT_ALLOWED", headers={"Allow": "GET"}
    )


for _path in _RESOURCE_PATHS:
    router.add_api_route(
        _path,
        _method_not_allowed,
        methods=["POST", "PUT", "PATCH", "DELETE"],
        include_in_schema=False,
    )
