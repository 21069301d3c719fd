from prometheus_client import Counter, Histogram

SPOTIFY_REQUESTS = Counter(
    "listenstats_spotify_requests_total",
    "Spotify Web API requests",
    ["method", "path", "status"],
)

SPOTIFY_429 = Counter(
    "listenstats_spotify_rate_limited_total",
    "Spotify 429s",
    ["path"],
)

SPOTIFY_LATENCY = Histogram(
    "listenstats_spotify_latency_seconds",
    "Spotify Web API latency",
    ["method", "path"],
)

SPOTIFY_REFRESH = Counter(
    "listenstats_spotify_token_refresh_total",
    "Spotify access token refreshes",
    ["result"],
)

OAUTH_CALLBACK = Counter(
    "listenstats_oauth_callback_total",
    "OAuth callback results",
    ["result", "reason"],
)

API_ERRORS = Counter(
    "listenstats_api_errors_total",
    "Dashboard API error responses",
    ["route", "code"],
)
