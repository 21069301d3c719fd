"""Aggregate listening statistics and custom date-window rankings.

Everything here is a pure function over raw Spotify items, so the route layer
only has to fetch and hand over.
"""

from __future__ import annotations

import math
from collections import Counter
from collections.abc import Iterable
from datetime import datetime
from typing import Any

from .integrations.spotify.formatters import (
    format_artist,
    format_track,
    parse_played_at,
)
from .models.formatted import FormattedArtist, FormattedTrack, GenreCount

TOP_GENRES = 10
_WEEKDAYS = ("Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday")


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _items(payload: dict[str, Any] | None) -> list[dict[str, Any]]:
    if not payload:
        return []
    return [item for item in payload.get("items") or [] if item]


def extract_top_genres(artists: Iterable[dict[str, Any]], limit: int = TOP_GENRES) -> list[GenreCount]:
    counts: Counter[str] = Counter()
    for artist in artists:
        counts.update(artist.get("genres") or [])
    total = sum(counts.values())
    if not total:
        return []
    # most_common keeps first-seen order among equal counts
    return [
        GenreCount(genre=genre, count=count, percentage=round_half_up(count / total * 100))
        for genre, count in counts.most_common(limit)
    ]


def average_popularity(items: list[dict[str, Any]]) -> int:
    if not items:
        return 0
    return round_half_up(sum(int(i.get("popularity") or 0) for i in items) / len(items))


def count_unique_artists(tracks: Iterable[dict[str, Any]]) -> int:
    return len(
        {
            artist["id"]
            for track in tracks
            for artist in track.get("artists") or []
            if artist.get("id")
        }
    )


def analyze_listening_activity(recent_items: Iterable[dict[str, Any]]) -> dict[str, dict[str, int]]:
    """Plays per hour of day and per weekday (UTC)."""
    hourly: Counter[str] = Counter()
    weekday: Counter[str] = Counter()
    for item in recent_items:
        played_at = item.get("played_at")
        if not played_at:
            continue
        ts = parse_played_at(played_at)
        hourly[f"{ts.hour:02d}"] += 1
        weekday[_WEEKDAYS[ts.weekday()]] += 1
    return {
        "hourly_distribution": dict(sorted(hourly.items())),
        "day_of_week_distribution": {d: weekday[d] for d in _WEEKDAYS if weekday[d]},
    }


def _first_formatted(items: list[dict[str, Any]], formatter) -> dict[str, Any] | None:
    if not items:
        return None
    return formatter(items[0], 0).model_dump()


def compute_listening_stats(
    *,
    tracks_short: dict[str, Any] | None,
    tracks_medium: dict[str, Any] | None,
    tracks_long: dict[str, Any] | None,
    artists_short: dict[str, Any] | None,
    artists_medium: dict[str, Any] | None,
    artists_long: dict[str, Any] | None,
    recently_played: dict[str, Any] | None,
    profile: dict[str, Any] | None,
) -> dict[str, Any]:
    ts, tm, tl = _items(tracks_short), _items(tracks_medium), _items(tracks_long)
    as_, am, al = _items(artists_short), _items(artists_medium), _items(artists_long)
    recent = _items(recently_played)
    profile = profile or {}

    all_tracks = ts + tm + tl
    all_artists = as_ + am + al
    total_tracks = len({t["id"] for t in all_tracks if t.get("id")})
    total_artists = len({a["id"] for a in all_artists if a.get("id")})
    listening_ms = sum(int(t.get("duration_ms") or 0) for t in all_tracks)

    genre_counts: Counter[str] = Counter()
    for artist in all_artists:
        genre_counts.update(artist.get("genres") or [])

    return {
        "total_tracks": total_tracks,
        "total_artists": total_artists,
        "total_recent_tracks": len(recent),
        "total_listening_time": listening_ms,
        "average_track_length": round_half_up(listening_ms / total_tracks) if total_tracks else 0,
        "top_genres": [g.model_dump() for g in extract_top_genres(all_artists)],
        "average_track_popularity": average_popularity(tl),
        "average_artist_popularity": average_popularity(al),
        "monthly_top_track": _first_formatted(ts, format_track),
        "all_time_top_track": _first_formatted(tl, format_track),
        "monthly_top_artist": _first_formatted(as_, format_artist),
        "all_time_top_artist": _first_formatted(al, format_artist),
        "listening_activity": analyze_listening_activity(recent),
        "unique_artists_last_month": count_unique_artists(ts),
        "unique_artists_all_time": count_unique_artists(tl),
        "discovery_score": round_half_up(total_artists / total_tracks * 100) if total_tracks else 0,
        "year_in_review": {
            "total_minutes": round_half_up(listening_ms / 60000),
            "total_genres": len(genre_counts),
            "minutes_per_day": round_half_up(listening_ms / 60000 / 365),
        },
        "follower_count": int((profile.get("followers") or {}).get("total") or 0),
        "user_country": profile.get("country") or "Unknown",
    }


# ----------------------------------------------------------------------
# Custom date windows (built from recently played history)
# ----------------------------------------------------------------------


def plays_in_window(
    recent_items: Iterable[dict[str, Any]], start: datetime, end: datetime
) -> list[tuple[datetime, dict[str, Any]]]:
    """Plays with ``start <= played_at < end``."""
    plays = []
    for item in recent_items:
        if not item.get("played_at") or not item.get("track"):
            continue
        ts = parse_played_at(item["played_at"])
        if start <= ts < end:
            plays.append((ts, item["track"]))
    return plays


def rank_tracks_in_window(
    plays: list[tuple[datetime, dict[str, Any]]], limit: int
) -> list[FormattedTrack]:
    counts: Counter[str] = Counter()
    latest: dict[str, datetime] = {}
    tracks: dict[str, dict[str, Any]] = {}
    for ts, track in plays:
        tid = track.get("id")
        if not tid:
            continue
        counts[tid] += 1
        tracks.setdefault(tid, track)
        if tid not in latest or ts > latest[tid]:
            latest[tid] = ts
    ordered = sorted(counts, key=lambda tid: (-counts[tid], -latest[tid].timestamp()))
    return [format_track(tracks[tid], i) for i, tid in enumerate(ordered[:limit])]


def rank_artist_ids_in_window(
    plays: list[tuple[datetime, dict[str, Any]]], limit: int
) -> list[tuple[str, dict[str, Any]]]:
    """Artist ids ordered by plays in the window, with their simplified objects."""
    counts: Counter[str] = Counter()
    latest: dict[str, datetime] = {}
    artists: dict[str, dict[str, Any]] = {}
    for ts, track in plays:
        for artist in track.get("artists") or []:
            aid = artist.get("id")
            if not aid:
                continue
            counts[aid] += 1
            artists.setdefault(aid, artist)
            if aid not in latest or ts > latest[aid]:
                latest[aid] = ts
    ordered = sorted(counts, key=lambda aid: (-counts[aid], -latest[aid].timestamp()))
    return [(aid, artists[aid]) for aid in ordered[:limit]]


def format_ranked_artists(
    ranked: list[tuple[str, dict[str, Any]]], full: dict[str, dict[str, Any]]
) -> list[FormattedArtist]:
    """Prefer full artist objects (genres, images) when available."""
    return [format_artist(full.get(aid) or simple, i) for i, (aid, simple) in enumerate(ranked)]
