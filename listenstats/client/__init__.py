"""Consumers of the dashboard API: transport plus per-resource fetchers."""

from .api import DashboardClient
from .fetcher import (
    FetchState,
    ListeningStatsFetcher,
    RecentlyPlayedFetcher,
    ResourceFetcher,
    RetryPolicy,
    TopArtistsFetcher,
    TopTracksFetcher,
)

__all__ = [
    "DashboardClient",
    "FetchState",
    "ListeningStatsFetcher",
    "RecentlyPlayedFetcher",
    "ResourceFetcher",
    "RetryPolicy",
    "TopArtistsFetcher",
    "TopTracksFetcher",
]
