"""listenstats: a personal Spotify listening dashboard."""

__version__ = "0.1.0"
