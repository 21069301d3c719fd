from .auth import router as auth_router
from .health import router as health_router
from .spotify import router as spotify_router

__all__ = ["auth_router", "health_router", "spotify_router"]
