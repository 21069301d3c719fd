"""Process-wide configuration.

Loaded once at startup. ``.env`` is read with python-dotenv (existing process
environment wins) and the values are validated by a pydantic-settings model.
Missing required values are a fatal :class:`ConfigError` raised before the
app serves a single request.
"""

from __future__ import annotations

import logging
from functools import lru_cache
from pathlib import Path

from dotenv import load_dotenv
from pydantic import Field
from pydantic import ValidationError as PydanticValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from .errors import ConfigError

logger = logging.getLogger(__name__)

_ENV_PATH = Path(".env").resolve()

DEFAULT_SCOPES = (
    "user-read-private user-read-email user-top-read user-read-recently-played"
)

_MIN_SECRET_LENGTH = 32


class Settings(BaseSettings):
    model_config = SettingsConfigDict(case_sensitive=False, extra="ignore")

    SPOTIFY_CLIENT_ID: str = Field(min_length=1)
    SPOTIFY_CLIENT_SECRET: str = Field(min_length=1)
    SESSION_SECRET: str = Field(min_length=1)
    BASE_URL: str = Field(min_length=1)

    SPOTIFY_SCOPES: str = DEFAULT_SCOPES
    SPOTIFY_API_BASE: str = "https://api.spotify.com/v1"
    SPOTIFY_ACCOUNTS_BASE: str = "https://accounts.spotify.com"

    SESSION_COOKIE_NAME: str = "listenstats_session"
    SESSION_MAX_AGE_SECONDS: int = 30 * 24 * 60 * 60
    COOKIE_SECURE: bool = False

    TOKEN_REFRESH_MARGIN_SECONDS: int = 60
    RATE_LIMIT_DELAY_MS: int = 100
    HTTP_TIMEOUT_SECONDS: float = 10.0

    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "json"
    ENV: str = "dev"

    @property
    def redirect_uri(self) -> str:
        return self.BASE_URL.rstrip("/") + "/callback"

    @property
    def is_prod(self) -> bool:
        return self.ENV.strip().lower() in {"prod", "production"}


def load_env(path: Path | None = None) -> None:
    """Load ``.env`` without overriding values already in the environment."""
    env_path = path or _ENV_PATH
    if env_path.exists():
        load_dotenv(env_path, override=False)
        logger.debug("env_loader: loaded %s", env_path)


def _validate(settings: Settings) -> None:
    problems: list[dict[str, str]] = []
    if len(settings.SESSION_SECRET) < _MIN_SECRET_LENGTH:
        problems.append(
            {
                "code": "weak_session_secret",
                "message": f"SESSION_SECRET should be at least {_MIN_SECRET_LENGTH} characters",
            }
        )
    if not settings.BASE_URL.startswith(("http://", "https://")):
        problems.append(
            {
                "code": "invalid_base_url",
                "message": "BASE_URL must include an http(s) scheme",
            }
        )
    if settings.is_prod and not settings.COOKIE_SECURE:
        problems.append(
            {
                "code": "insecure_cookie",
                "message": "COOKIE_SECURE must be enabled in production",
            }
        )
    if not problems:
        return
    if settings.is_prod:
        raise ConfigError(
            "; ".join(p["message"] for p in problems)
        )
    logger.warning("config.validation", extra={"meta": {"problems": problems}})


def build_settings(**overrides) -> Settings:
    """Construct settings from the environment (plus explicit overrides)."""
    try:
        settings = Settings(**overrides)
    except PydanticValidationError as exc:
        missing = sorted(
            {str(err["loc"][0]) for err in exc.errors() if err.get("loc")}
        )
        raise ConfigError(
            "Missing or invalid configuration: " + ", ".join(missing),
            missing=missing,
        ) from exc
    _validate(settings)
    return settings


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    load_env()
    return build_settings()


def reset_settings_cache() -> None:
    get_settings.cache_clear()
