from __future__ import annotations

import asyncio
import logging
from datetime import date, datetime, time, timedelta, timezone
from typing import Any

from ... import stats
from ...models.formatted import FormattedArtist, FormattedRecentlyPlayed, FormattedTrack
from ...models.session import Session
from .client import SpotifyClient
from .config import RECENTLY_PLAYED_MAX
from .formatters import format_artists, format_recently_played, format_tracks
from .tokens import TokenRefresher

logger = logging.getLogger(__name__)

_STATS_PAGE = 50


def window_bounds(start_date: date, end_date: date) -> tuple[datetime, datetime]:
    """UTC ``[start 00:00, end + 1 day 00:00)``."""
    start = datetime.combine(start_date, time.min, tzinfo=timezone.utc)
    end = datetime.combine(end_date + timedelta(days=1), time.min, tzinfo=timezone.utc)
    return start, end


class SpotifyService:
    """Per-request facade over one user's session.

    Each call fetches a valid access token first, refreshing transparently,
    then hits the API and returns formatted records.
    """

    def __init__(self, session: Session, refresher: TokenRefresher, client: SpotifyClient):
        self.session = session
        self.refresher = refresher
        self.client = client

    async def _token(self) -> str:
        return await self.refresher.get_valid_access_token(self.session)

    async def current_user(self) -> dict[str, Any]:
        return await self.client.get_current_user(await self._token())

    async def top_tracks(self, time_range: str, limit: int) -> tuple[list[FormattedTrack], dict[str, Any]]:
        payload = await self.client.get_top_tracks(await self._token(), time_range, limit)
        return format_tracks((payload or {}).get("items") or []), payload or {}

    async def top_artists(self, time_range: str, limit: int) -> tuple[list[FormattedArtist], dict[str, Any]]:
        payload = await self.client.get_top_artists(await self._token(), time_range, limit)
        return format_artists((payload or {}).get("items") or []), payload or {}

    async def recently_played(self, limit: int) -> list[FormattedRecentlyPlayed]:
        payload = await self.client.get_recently_played(await self._token(), limit)
        return [
            format_recently_played(item)
            for item in (payload or {}).get("items") or []
            if item and (item.get("track") or {}).get("id")
        ]

    async def _plays_between(self, start_date: date, end_date: date):
        payload = await self.client.get_recently_played(await self._token(), RECENTLY_PLAYED_MAX)
        start, end = window_bounds(start_date, end_date)
        plays = stats.plays_in_window((payload or {}).get("items") or [], start, end)
        logger.debug(
            "spotify.custom_range",
            extra={
                "meta": {
                    "start_date": start_date.isoformat(),
                    "end_date": end_date.isoformat(),
                    "plays": len(plays),
                }
            },
        )
        return plays

    async def custom_top_tracks(self, start_date: date, end_date: date, limit: int) -> list[FormattedTrack]:
        plays = await self._plays_between(start_date, end_date)
        return stats.rank_tracks_in_window(plays, limit)

    async def custom_top_artists(self, start_date: date, end_date: date, limit: int) -> list[FormattedArtist]:
        plays = await self._plays_between(start_date, end_date)
        ranked = stats.rank_artist_ids_in_window(plays, limit)
        if not ranked:
            return []
        full: dict[str, dict[str, Any]] = {}
        # /artists accepts at most 50 ids per call
        ids = [aid for aid, _ in ranked][:50]
        payload = await self.client.get_several_artists(await self._token(), ids)
        for artist in (payload or {}).get("artists") or []:
            if artist and artist.get("id"):
                full[artist["id"]] = artist
        return stats.format_ranked_artists(ranked, full)

    async def listening_stats(self) -> dict[str, Any]:
        token = await self._token()
        c = self.client
        (
            tracks_short,
            tracks_medium,
            tracks_long,
            artists_short,
            artists_medium,
            artists_long,
            recent,
            profile,
        ) = await asyncio.gather(
            c.get_top_tracks(token, "short_term", _STATS_PAGE),
            c.get_top_tracks(token, "medium_term", _STATS_PAGE),
            c.get_top_tracks(token, "long_term", _STATS_PAGE),
            c.get_top_artists(token, "short_term", _STATS_PAGE),
            c.get_top_artists(token, "medium_term", _STATS_PAGE),
            c.get_top_artists(token, "long_term", _STATS_PAGE),
            c.get_recently_played(token, RECENTLY_PLAYED_MAX),
            c.get_current_user(token),
        )
        return stats.compute_listening_stats(
            tracks_short=tracks_short,
            tracks_medium=tracks_medium,
            tracks_long=tracks_long,
            artists_short=artists_short,
            artists_medium=artists_medium,
            artists_long=artists_long,
            recently_played=recent,
            profile=profile,
        )
