import logging
import time
import uuid

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from .logging_config import req_id_var

logger = logging.getLogger(__name__)


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Bind a request id to the logging context and echo it back."""

    async def dispatch(self, request: Request, call_next):
        # Prefer client-provided ID to enable end-to-end correlation
        req_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        token = req_id_var.set(req_id)
        t0 = time.perf_counter()
        try:
            response = await call_next(request)
            response.headers.setdefault("X-Request-ID", req_id)
            logger.info(
                "request",
                extra={
                    "meta": {
                        "method": request.method,
                        "path": request.url.path,
                        "status_code": response.status_code,
                        "duration_ms": round((time.perf_counter() - t0) * 1000, 2),
                    }
                },
            )
            return response
        finally:
            req_id_var.reset(token)
