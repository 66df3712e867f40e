from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

log = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


@router.get("/health")
async def health(request: Request) -> JSONResponse:
    """Liveness plus dependency checks; 503 when the DB or default provider is unusable."""
    state = request.app.state
    settings = state.settings
    checks: Dict[str, Any] = {
        "status": "ok",
        "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
        "version": settings.VERSION,
        "database": "unchecked",
        "rateLimitStore": "unchecked",
    }

    try:
        await state.db.ping()
        checks["database"] = "connected"
    except Exception as exc:
        log.warning("health: database check failed", extra={"error": str(exc)})
        checks["database"] = "disconnected"

    limiter = getattr(state, "rate_limiter", None)
    if limiter is None:
        checks["rateLimitStore"] = "disabled"
    else:
        try:
            await limiter.client.ping()
            checks["rateLimitStore"] = "connected"
        except Exception as exc:
            log.warning("health: rate limit store check failed", extra={"error": str(exc)})
            checks["rateLimitStore"] = "disconnected"

    for name in ("openai", "gemini", "anthropic"):
        checks[name] = "configured" if settings.provider_configured(name) else "missing"

    healthy = (
        checks["database"] != "disconnected"
        and checks[settings.DEFAULT_VISION_PROVIDER] == "configured"
    )
    if not healthy:
        checks["status"] = "degraded"
    return JSONResponse(checks, status_code=200 if healthy else 503)
