from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Mapping, Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from photoverify.config import Settings, get_settings
from photoverify.db.session import Database
from photoverify.middleware.request_id import RequestIDMiddleware
from photoverify.observability import metrics as verification_metrics
from photoverify.routes import audit, billing, health, metrics, models, tasks, tenants, verifications, verify
from photoverify.services.orchestrator import VerificationOrchestrator
from photoverify.services.ratelimit import CounterStore, build_rate_limiter
from photoverify.services.store import VerificationStore
from photoverify.services.usage import UsageAggregator
from photoverify.services.vision import ProviderRegistry, VisionAnalyzer, VisionProvider, build_http_client
from photoverify.telemetry.errors import register_error_handlers
from photoverify.telemetry.logging import configure_logging

_log = logging.getLogger(__name__)

OPENAPI_TAGS = [
    {"name": "verify", "description": "Photo verification (internal and external mode)"},
    {"name": "tasks", "description": "Photo verification tasks"},
    {"name": "billing", "description": "Token usage and estimated cost"},
    {"name": "health", "description": "Liveness and dependency checks"},
]


def create_app(
    settings: Optional[Settings] = None,
    *,
    providers: Optional[Mapping[str, VisionProvider]] = None,
    counter_store: Optional[CounterStore] = None,
) -> FastAPI:
    settings = settings or get_settings()
    configure_logging(settings.LOG_LEVEL, json_logs=settings.LOG_JSON)
    verification_metrics.configure(model_label_max=settings.METRICS_MODEL_LABEL_MAX)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        db = Database(settings.DATABASE_URL, echo=settings.DB_ECHO)
        if settings.DB_AUTO_CREATE:
            await db.create_all()
        http_client = build_http_client(settings)
        registry = ProviderRegistry(settings, http_client, providers=providers)
        limiter = build_rate_limiter(settings, counter_store) if settings.RATE_LIMIT_ENABLED else None
        store = VerificationStore(db)

        app.state.db = db
        app.state.registry = registry
        app.state.rate_limiter = limiter
        app.state.store = store
        app.state.usage = UsageAggregator(db)
        app.state.orchestrator = VerificationOrchestrator(
            store, VisionAnalyzer(registry), settings, limiter=limiter
        )
        _log.info(
            "photoverify started",
            extra={
                "env": settings.ENV,
                "rate_limit_backend": settings.RATE_LIMIT_BACKEND if limiter else "disabled",
                "providers": registry.configured(),
            },
        )
        try:
            yield
        finally:
            await registry.aclose()
            if limiter is not None and counter_store is None:
                close = getattr(limiter.client, "aclose", None)
                if close is not None:
                    await close()
            await db.dispose()

    app = FastAPI(
        title=settings.APP_NAME,
        description="Multi-tenant photo verification against declarative visual criteria.",
        version=settings.VERSION,
        lifespan=lifespan,
        openapi_tags=OPENAPI_TAGS,
    )
    app.state.settings = settings

    register_error_handlers(app)

    app.include_router(health.router)
    app.include_router(metrics.router)
    app.include_router(verify.router)
    app.include_router(tasks.router)
    app.include_router(tenants.router)
    app.include_router(verifications.router)
    app.include_router(billing.router)
    app.include_router(audit.router)
    app.include_router(models.router)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins(),
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["*"],
        expose_headers=[
            "X-Request-ID",
            "X-RateLimit-Limit",
            "X-RateLimit-Remaining",
            "X-RateLimit-Reset",
            "Retry-After",
        ],
    )
    app.add_middleware(RequestIDMiddleware)
    return app
