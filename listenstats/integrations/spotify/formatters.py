"""Reshape raw Spotify JSON into the dashboard's flat records."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from ...models.formatted import (
    PLACEHOLDER_ALBUM_ART,
    PLACEHOLDER_ARTIST_IMAGE,
    FormattedArtist,
    FormattedRecentlyPlayed,
    FormattedTrack,
)


def _first_image(images: list[dict[str, Any]] | None, fallback: str) -> str:
    if images:
        url = images[0].get("url")
        if url:
            return url
    return fallback


def format_track(track: dict[str, Any], index: int) -> FormattedTrack:
    album = track.get("album") or {}
    return FormattedTrack(
        id=track["id"],
        rank=index + 1,
        name=track.get("name", ""),
        artists=", ".join(a.get("name", "") for a in track.get("artists") or []),
        album=album.get("name", ""),
        album_art=_first_image(album.get("images"), PLACEHOLDER_ALBUM_ART),
        duration=int(track.get("duration_ms") or 0),
        popularity=int(track.get("popularity") or 0),
        preview_url=track.get("preview_url"),
        external_url=(track.get("external_urls") or {}).get("spotify"),
        uri=track.get("uri"),
    )


def format_artist(artist: dict[str, Any], index: int) -> FormattedArtist:
    return FormattedArtist(
        id=artist["id"],
        rank=index + 1,
        name=artist.get("name", ""),
        genres=list(artist.get("genres") or []),
        followers=int((artist.get("followers") or {}).get("total") or 0),
        popularity=int(artist.get("popularity") or 0),
        image=_first_image(artist.get("images"), PLACEHOLDER_ARTIST_IMAGE),
        external_url=(artist.get("external_urls") or {}).get("spotify"),
        uri=artist.get("uri"),
    )


def format_recently_played(item: dict[str, Any]) -> FormattedRecentlyPlayed:
    return FormattedRecentlyPlayed(
        played_at=item["played_at"],
        track=format_track(item["track"], 0),
    )


def format_tracks(items: list[dict[str, Any]]) -> list[FormattedTrack]:
    return [format_track(t, i) for i, t in enumerate(items) if t and t.get("id")]


def format_artists(items: list[dict[str, Any]]) -> list[FormattedArtist]:
    return [format_artist(a, i) for i, a in enumerate(items) if a and a.get("id")]


def parse_played_at(value: str) -> datetime:
    # Spotify uses a trailing Z; fromisoformat handles it from 3.11 on
    return datetime.fromisoformat(value.replace("Z", "+00:00"))
