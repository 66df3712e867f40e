from __future__ import annotations

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import Response
from prometheus_client import CONTENT_TYPE_LATEST, REGISTRY, generate_latest

router = APIRouter(tags=["metrics"])


@router.get("/metrics", include_in_schema=False)
async def prometheus_metrics(request: Request) -> Response:
    if not request.app.state.settings.METRICS_ENABLED:
        raise HTTPException(status_code=404, detail="Not Found")
    return Response(content=generate_latest(REGISTRY), media_type=CONTENT_TYPE_LATEST)
