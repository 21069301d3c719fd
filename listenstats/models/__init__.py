from .formatted import (
    FormattedArtist,
    FormattedRecentlyPlayed,
    FormattedTrack,
    GenreCount,
)
from .session import Session

__all__ = [
    "FormattedArtist",
    "FormattedRecentlyPlayed",
    "FormattedTrack",
    "GenreCount",
    "Session",
]
