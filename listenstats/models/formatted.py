"""Flattened read-only projections of Spotify track/artist objects."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

PLACEHOLDER_ALBUM_ART = "/placeholder-album.png"
PLACEHOLDER_ARTIST_IMAGE = "/placeholder-artist.png"


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True)


class FormattedTrack(_Frozen):
    id: str
    rank: int = Field(ge=1)
    name: str
    artists: str
    album: str
    album_art: str = PLACEHOLDER_ALBUM_ART
    duration: int = Field(ge=0, description="Duration in milliseconds")
    popularity: int = 0
    preview_url: str | None = None
    external_url: str | None = None
    uri: str | None = None


class FormattedArtist(_Frozen):
    id: str
    rank: int = Field(ge=1)
    name: str
    genres: list[str] = Field(default_factory=list)
    followers: int = 0
    popularity: int = 0
    image: str = PLACEHOLDER_ARTIST_IMAGE
    external_url: str | None = None
    uri: str | None = None


class FormattedRecentlyPlayed(_Frozen):
    played_at: str
    track: FormattedTrack


class GenreCount(_Frozen):
    genre: str
    count: int
    percentage: int
