"""Composition root for the FastAPI application."""

from __future__ import annotations

import logging
import os
import sys
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI

from . import __version__
from .api import auth_router, health_router, spotify_router
from .config import Settings, get_settings
from .errors import ConfigError, register_error_handlers
from .integrations.spotify import RequestThrottle, SpotifyClient, SpotifyOAuth, TokenRefresher
from .logging_config import configure_logging
from .middleware import RequestIdMiddleware
from .sessions import SessionStore

logger = logging.getLogger(__name__)


def create_app(
    settings: Settings | None = None, *, http_client: httpx.AsyncClient | None = None
) -> FastAPI:
    """Build the app. Raises ConfigError when required settings are missing.

    ``http_client`` replaces the outbound transport (tests pass one backed by
    ``httpx.MockTransport``).
    """
    settings = settings or get_settings()
    configure_logging(settings.LOG_LEVEL, settings.LOG_FORMAT)

    spotify_client = SpotifyClient(
        api_base=settings.SPOTIFY_API_BASE,
        http_client=http_client,
        throttle=RequestThrottle(settings.RATE_LIMIT_DELAY_MS / 1000.0),
        timeout=settings.HTTP_TIMEOUT_SECONDS,
    )
    oauth = SpotifyOAuth.from_settings(settings, http_client=http_client)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(
            "startup",
            extra={"meta": {"env": settings.ENV, "version": __version__, "base_url": settings.BASE_URL}},
        )
        try:
            yield
        finally:
            await spotify_client.aclose()

    app = FastAPI(title="listenstats", version=__version__, lifespan=lifespan)

    app.state.settings = settings
    app.state.session_store = SessionStore(settings.SESSION_MAX_AGE_SECONDS)
    app.state.spotify_oauth = oauth
    app.state.spotify_client = spotify_client
    app.state.token_refresher = TokenRefresher(
        oauth, margin_seconds=settings.TOKEN_REFRESH_MARGIN_SECONDS
    )

    app.add_middleware(RequestIdMiddleware)
    register_error_handlers(app)

    app.include_router(health_router)
    app.include_router(auth_router)
    app.include_router(spotify_router)
    return app


def run() -> None:
    import uvicorn

    try:
        app = create_app()
    except ConfigError as exc:
        configure_logging()
        logger.critical(
            "config.invalid", extra={"meta": {"error": str(exc), "missing": exc.missing}}
        )
        sys.exit(2)

    host = os.getenv("HOST", "0.0.0.0")
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host=host, port=port, log_config=None)


if __name__ == "__main__":
    run()
