from __future__ import annotations

from ...errors import ValidationError

API_BASE = "https://api.spotify.com/v1"
TOKEN_PATH = "/api/token"
AUTHORIZE_PATH = "/authorize"

TIME_RANGES = ("short_term", "medium_term", "long_term")
TIME_RANGE_ALIASES = {"short": "short_term", "medium": "medium_term", "long": "long_term"}
LIBRARY_LIMITS = (10, 25, 50, 100)

RECENTLY_PLAYED_MAX = 50


def validate_time_range(time_range: str) -> str:
    """Return the canonical ``*_term`` name or raise ValidationError."""
    value = TIME_RANGE_ALIASES.get(time_range, time_range)
    if value not in TIME_RANGES:
        raise ValidationError(
            f"Invalid time range: {time_range}. Must be one of: {', '.join(TIME_RANGES)}",
            parameter="time_range",
        )
    return value


def validate_limit(limit: int, allowed: tuple[int, ...] = LIBRARY_LIMITS) -> int:
    if limit not in allowed:
        raise ValidationError(
            f"Invalid limit: {limit}. Must be one of: {', '.join(str(v) for v in allowed)}",
            parameter="limit",
        )
    return limit
