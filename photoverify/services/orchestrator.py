"""Verification orchestration: tenant checks, provider retries, evaluation, persistence."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional, Tuple

from pydantic import ValidationError as PydanticValidationError

from photoverify.config import Settings
from photoverify.errors import (
    Forbidden,
    InvalidConfig,
    InvalidTaskType,
    NotFound,
    ProviderError,
    ProviderNotConfigured,
    RateLimited,
    ValidationError,
    VerificationExhausted,
    VerificationTimeout,
)
from photoverify.models import Tenant
from photoverify.observability import metrics
from photoverify.schemas.auth import AuthContext
from photoverify.schemas.tasks import PHOTO_VERIFY
from photoverify.schemas.tenants import TenantConfig
from photoverify.schemas.verification import (
    ImageInput,
    PhotoVerificationConfig,
    VerificationMode,
    VerificationResult,
    VerifyRequest,
)
from photoverify.services.evaluator import evaluate_criteria, overall_passed
from photoverify.services.pricing import estimate_cost
from photoverify.services.ratelimit import FixedWindowRateLimiter, RateLimitResult
from photoverify.services.store import VerificationStore
from photoverify.services.vision.base import DEFAULT_MODELS, TokenUsage
from photoverify.services.vision.registry import VisionAnalyzer
from photoverify.telemetry.logging import bind

log = logging.getLogger(__name__)

VERIFY_ENDPOINT = "verify"


@dataclass(frozen=True)
class VerifyOutcome:
    result: VerificationResult
    verification_id: str
    rate_limit: Optional[RateLimitResult] = None


@dataclass(frozen=True)
class RunOutcome:
    result: VerificationResult
    raw_model_response: Any


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class VerificationOrchestrator:
    def __init__(
        self,
        store: VerificationStore,
        analyzer: VisionAnalyzer,
        settings: Settings,
        *,
        limiter: Optional[FixedWindowRateLimiter] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], float] = time.perf_counter,
        now: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._store = store
        self._analyzer = analyzer
        self._settings = settings
        self._limiter = limiter
        self._sleep = sleep
        self._clock = clock
        self._now = now

    # ------------------------------ front door -------------------------------

    async def load_tenant(self, auth: AuthContext) -> Tenant:
        tenant = await self._store.get_tenant(auth.tenant_id)
        if tenant is None:
            raise NotFound(f"Tenant not found: {auth.tenant_id}")
        if not tenant.is_active:
            raise Forbidden("Tenant is inactive")
        return tenant

    async def check_rate_limit(self, tenant: Tenant) -> Optional[RateLimitResult]:
        if self._limiter is None or not self._settings.RATE_LIMIT_ENABLED:
            return None
        raw = tenant.config or {}
        limit = int(raw.get("maxVerificationsPerMinute") or self._settings.VERIFY_RATE_LIMIT_PER_MINUTE)
        window = self._settings.RATE_LIMIT_WINDOW_S
        rl = await self._limiter.check(tenant.id, VERIFY_ENDPOINT, limit, window)
        if not rl.allowed:
            raise RateLimited(
                f"Rate limit exceeded. Try again in {max(0, rl.reset_at - int(time.time()))} seconds.",
                limit=limit,
                remaining=rl.remaining,
                reset_at=rl.reset_at,
                window_seconds=window,
            )
        return rl

    async def handle(self, request: VerifyRequest, auth: AuthContext) -> VerifyOutcome:
        tenant = await self.load_tenant(auth)
        rl = await self.check_rate_limit(tenant)
        image = request.image()
        if request.task_id:
            result, vid = await self._verify_internal(
                request.task_id, image, auth, tenant, request.config
            )
        elif request.external_task_id and request.config is not None:
            result, vid = await self._verify_external(
                request.external_task_id, image, request.config, auth, tenant
            )
        else:
            raise ValidationError("Either taskId, or externalTaskId with config, must be provided")
        return VerifyOutcome(result=result, verification_id=vid, rate_limit=rl)

    # ------------------------------ modes ------------------------------------

    async def verify(
        self,
        task_id: str,
        image: ImageInput,
        auth: AuthContext,
        config_override: Optional[PhotoVerificationConfig] = None,
    ) -> VerificationResult:
        tenant = await self.load_tenant(auth)
        result, _ = await self._verify_internal(task_id, image, auth, tenant, config_override)
        return result

    async def verify_external(
        self,
        external_task_id: str,
        image: ImageInput,
        config: PhotoVerificationConfig,
        auth: AuthContext,
    ) -> VerificationResult:
        tenant = await self.load_tenant(auth)
        result, _ = await self._verify_external(external_task_id, image, config, auth, tenant)
        return result

    async def _verify_internal(
        self,
        task_id: str,
        image: ImageInput,
        auth: AuthContext,
        tenant: Tenant,
        config_override: Optional[PhotoVerificationConfig],
    ) -> Tuple[VerificationResult, str]:
        started = self._clock()
        task = await self._store.get_task(auth.tenant_id, task_id)
        if task is None:
            raise NotFound(f"Task not found: {task_id}")
        if task.type != PHOTO_VERIFY:
            raise InvalidTaskType(f"Task {task_id} is not a photo_verify task")

        if config_override is not None:
            config = config_override
        else:
            try:
                config = PhotoVerificationConfig.model_validate(task.photo_verification_config or {})
            except PydanticValidationError as exc:
                raise InvalidConfig(
                    f"Task {task_id} has an invalid verification config",
                    details={"errors": [e.get("msg", "") for e in exc.errors()]},
                ) from None

        run = await self._run(
            image, config, tenant, mode="internal", task_reference=task_id, started=started
        )
        record = await self._store.record_verification(
            auth=auth,
            result=run.result,
            image_url=image.storage_reference(),
            config=config,
            raw_model_response=run.raw_model_response,
            task_id=task_id,
        )
        return run.result, record.id

    async def _verify_external(
        self,
        external_task_id: str,
        image: ImageInput,
        config: PhotoVerificationConfig,
        auth: AuthContext,
        tenant: Tenant,
    ) -> Tuple[VerificationResult, str]:
        started = self._clock()
        run = await self._run(
            image, config, tenant, mode="external", task_reference=external_task_id, started=started
        )
        record = await self._store.record_verification(
            auth=auth,
            result=run.result,
            image_url=image.storage_reference(),
            config=config,
            raw_model_response=run.raw_model_response,
            external_task_id=external_task_id,
        )
        return run.result, record.id

    async def _run(
        self,
        image: ImageInput,
        config: PhotoVerificationConfig,
        tenant: Tenant,
        *,
        mode: VerificationMode,
        task_reference: str,
        started: float,
    ) -> RunOutcome:
        return await self.run_verification(
            image,
            config,
            tenant_config=TenantConfig.model_validate(tenant.config or {}),
            mode=mode,
            task_reference=task_reference,
            started=started,
            tenant_id=tenant.id,
            timeout=self._settings.VERIFY_TIMEOUT_S,
        )

    # ------------------------------ core -------------------------------------

    def resolve_model(
        self, config: PhotoVerificationConfig, tenant_config: Optional[TenantConfig] = None
    ) -> Tuple[str, str]:
        tc = tenant_config or TenantConfig()
        provider = config.provider or tc.default_provider or self._settings.DEFAULT_VISION_PROVIDER
        model = config.model
        if not model and tc.default_model and tc.default_provider == provider:
            model = tc.default_model
        return provider, model or DEFAULT_MODELS[provider]

    async def run_verification(
        self,
        image: ImageInput,
        config: PhotoVerificationConfig,
        *,
        mode: VerificationMode,
        task_reference: str,
        tenant_config: Optional[TenantConfig] = None,
        started: Optional[float] = None,
        tenant_id: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> RunOutcome:
        """
        Run the attempt loop and evaluate the first usable analysis.

        ``timeout`` is the run's budget, measured from ``started``. Attempts
        that no longer fit in it are skipped and an in-flight call is cut at
        the deadline; either way the run ends in the manual-review fallback or
        a VerificationExhausted subclass.
        """
        if not config.criteria:
            raise InvalidConfig("Verification config must define at least one criterion")

        started = self._clock() if started is None else started
        deadline = None if timeout is None else started + timeout
        provider, model = self.resolve_model(config, tenant_config)
        model_used = f"{provider}/{model}"
        vlog = bind(log, tenant_id=tenant_id, task_reference=task_reference, model=model_used)

        attempts = 1 + config.max_retries
        usage = TokenUsage()
        last_message = "unknown error"
        made = 0
        out_of_time = False

        for attempt in range(attempts):
            if attempt > 0:
                delay = self._settings.RETRY_BACKOFF_BASE_S * (2 ** (attempt - 1))
                if deadline is not None and self._clock() + delay >= deadline:
                    out_of_time = True
                    break
                await self._sleep(delay)
            remaining = None if deadline is None else deadline - self._clock()
            if remaining is not None and remaining <= 0:
                out_of_time = True
                break

            made += 1
            try:
                outcome = await asyncio.wait_for(
                    self._analyzer.analyze(image, config, provider=provider, model=model),
                    timeout=remaining,
                )
            except ProviderNotConfigured:
                raise
            except asyncio.TimeoutError:
                out_of_time = True
                last_message = f"Vision call cut off at the {timeout:g}s verification budget"
                vlog.warning("vision attempt hit the verification deadline", extra={"attempt": made})
                break
            except ProviderError as exc:
                usage = usage + TokenUsage(exc.input_tokens, exc.output_tokens)
                last_message = exc.message
                vlog.warning(
                    "vision attempt failed",
                    extra={"attempt": made, "attempts": attempts, "error": exc.message},
                )
                continue

            usage = usage + outcome.usage
            criteria_results = evaluate_criteria(outcome.analysis, config)
            overall_confidence = outcome.analysis.overall_confidence
            passed = overall_passed(config, criteria_results, overall_confidence)
            result = self._finish(
                passed=passed,
                overall_confidence=overall_confidence,
                criteria_results=criteria_results,
                model_used=model_used,
                model=model,
                usage=usage,
                retry_count=attempt,
                mode=mode,
                task_reference=task_reference,
                started=started,
            )
            metrics.inc_verification(provider, "passed" if passed else "failed")
            vlog.info(
                "verification complete",
                extra={"passed": passed, "retry_count": attempt, "cost_usd": result.estimated_cost_usd},
            )
            return RunOutcome(result=result, raw_model_response=outcome.analysis.model_dump(mode="json"))

        if not config.fallback_to_manual:
            if out_of_time:
                metrics.inc_verification(provider, "timeout")
                raise VerificationTimeout(
                    f"Verification exceeded {timeout:g}s after {made} attempts: {last_message}",
                    attempts=made,
                    last_error=last_message,
                )
            metrics.inc_verification(provider, "exhausted")
            raise VerificationExhausted(
                f"Verification failed after {attempts} attempts: {last_message}",
                attempts=attempts,
                last_error=last_message,
            )

        vlog.warning(
            "vision attempts failed; routing to manual review",
            extra={"error": last_message, "attempts": made, "out_of_time": out_of_time},
        )
        result = self._finish(
            passed=False,
            overall_confidence=0.0,
            criteria_results=[],
            model_used=model_used,
            model=model,
            usage=usage,
            retry_count=max(0, made - 1),
            mode=mode,
            task_reference=task_reference,
            started=started,
        )
        metrics.inc_verification(provider, "fallback")
        return RunOutcome(
            result=result,
            raw_model_response={"error": last_message, "attempts": made, "fallback": True},
        )

    def _finish(
        self,
        *,
        passed: bool,
        overall_confidence: float,
        criteria_results,
        model_used: str,
        model: str,
        usage: TokenUsage,
        retry_count: int,
        mode: VerificationMode,
        task_reference: str,
        started: float,
    ) -> VerificationResult:
        elapsed = max(0.0, self._clock() - started)
        cost = estimate_cost(model, usage)
        metrics.add_usage(model_used, usage.input_tokens, usage.output_tokens, cost)
        metrics.observe_latency(mode, elapsed)
        return VerificationResult(
            passed=passed,
            overall_confidence=overall_confidence,
            criteria_results=list(criteria_results),
            model_used=model_used,
            processing_time_ms=int(round(elapsed * 1000)),
            processed_at=self._now(),
            retry_count=retry_count,
            input_tokens=usage.input_tokens,
            output_tokens=usage.output_tokens,
            estimated_cost_usd=cost,
            mode=mode,
            task_reference=task_reference,
        )
