from fastapi import APIRouter, Request, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from ..errors import json_error
from ..logging_config import get_last_errors

router = APIRouter(tags=["Admin"])


@router.get("/healthz")
async def healthz() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/metrics", include_in_schema=False)
async def metrics() -> Response:
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


@router.get("/api/debug/errors", include_in_schema=False)
async def debug_errors(request: Request, limit: int = 50):
    # dev only; production responds as if the route did not exist
    if request.app.state.settings.is_prod:
        return json_error("Not found", 404, code="NOT_FOUND")
    return {"errors": get_last_errors(limit)}
