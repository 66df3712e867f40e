from __future__ import annotations

from typing import Optional

from fastapi import Depends, Request, Response

from photoverify.config import Settings
from photoverify.dependencies.auth import get_auth_context
from photoverify.errors import RateLimited
from photoverify.schemas.auth import AuthContext
from photoverify.services.orchestrator import VerificationOrchestrator
from photoverify.services.ratelimit import FixedWindowRateLimiter
from photoverify.services.store import VerificationStore
from photoverify.services.usage import UsageAggregator
from photoverify.telemetry.errors import rate_limit_headers


def get_settings_dep(request: Request) -> Settings:
    return request.app.state.settings


def get_store(request: Request) -> VerificationStore:
    return request.app.state.store


def get_orchestrator(request: Request) -> VerificationOrchestrator:
    return request.app.state.orchestrator


def get_usage(request: Request) -> UsageAggregator:
    return request.app.state.usage


def get_limiter(request: Request) -> Optional[FixedWindowRateLimiter]:
    return getattr(request.app.state, "rate_limiter", None)


def rate_limit(endpoint: str):
    """Per-tenant fixed-window limit for non-verify endpoints."""

    async def _dependency(
        response: Response,
        auth: AuthContext = Depends(get_auth_context),
        settings: Settings = Depends(get_settings_dep),
        store: VerificationStore = Depends(get_store),
        limiter: Optional[FixedWindowRateLimiter] = Depends(get_limiter),
    ) -> None:
        if limiter is None or not settings.RATE_LIMIT_ENABLED:
            return
        tenant = await store.get_tenant(auth.tenant_id)
        raw = (tenant.config or {}) if tenant is not None else {}
        limit = int(raw.get("maxRequestsPerMinute") or settings.RATE_LIMIT_PER_MINUTE)
        window = settings.RATE_LIMIT_WINDOW_S
        rl = await limiter.check(auth.tenant_id, endpoint, limit, window)
        if not rl.allowed:
            raise RateLimited(
                limit=limit, remaining=rl.remaining, reset_at=rl.reset_at, window_seconds=window
            )
        if rl.failed_open:
            response.headers.update(rate_limit_headers(limit))
        else:
            response.headers.update(rate_limit_headers(limit, rl.remaining, rl.reset_at))

    return _dependency
