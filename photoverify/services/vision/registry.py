from __future__ import annotations

import asyncio
import logging
from typing import Callable, Dict, List, Mapping, Optional

import httpx

from photoverify.config import Settings
from photoverify.errors import ProviderError, ProviderNotConfigured
from photoverify.observability import metrics
from photoverify.schemas.verification import ImageInput, PhotoVerificationConfig
from photoverify.services.vision.anthropic_adapter import AnthropicVisionProvider
from photoverify.services.vision.base import AnalysisOutcome, VisionProvider
from photoverify.services.vision.gemini_adapter import GeminiVisionProvider
from photoverify.services.vision.http_base import HttpVisionProvider
from photoverify.services.vision.openai_adapter import OpenAIVisionProvider

log = logging.getLogger(__name__)

_ADAPTERS: Dict[str, Callable[..., HttpVisionProvider]] = {
    "openai": OpenAIVisionProvider,
    "gemini": GeminiVisionProvider,
    "anthropic": AnthropicVisionProvider,
}


def build_http_client(settings: Settings) -> httpx.AsyncClient:
    limits = httpx.Limits(max_connections=100, max_keepalive_connections=20, keepalive_expiry=20)
    return httpx.AsyncClient(timeout=settings.VISION_HTTP_TIMEOUT_S, limits=limits)


def build_provider(name: str, settings: Settings, http_client: httpx.AsyncClient) -> VisionProvider:
    """
    Factory for provider instances by canonical name.
    Raises ProviderNotConfigured for unknown names or a missing API key.
    """
    key = (name or "").strip().lower()
    adapter = _ADAPTERS.get(key)
    if adapter is None:
        raise ProviderNotConfigured(f"Unknown vision provider: {name!r}", provider=key or None)
    api_key = {
        "openai": settings.OPENAI_API_KEY,
        "gemini": settings.GEMINI_API_KEY,
        "anthropic": settings.ANTHROPIC_API_KEY,
    }[key]
    base_url = {
        "openai": settings.OPENAI_BASE_URL,
        "gemini": settings.GEMINI_BASE_URL,
        "anthropic": settings.ANTHROPIC_BASE_URL,
    }[key]
    if not (api_key or "").strip():
        raise ProviderNotConfigured(f"{key.upper()}_API_KEY is not set", provider=key)
    return adapter(
        api_key.strip(),
        http_client=http_client,
        base_url=base_url,
        max_tokens=settings.VISION_MAX_TOKENS,
        temperature=settings.VISION_TEMPERATURE,
        timeout=settings.VISION_HTTP_TIMEOUT_S,
    )


class ProviderRegistry:
    """
    Explicit provider registry built once at service start.
    Backends are constructed on first use and reused; the lock guards
    construction only, never a provider call.
    """

    def __init__(
        self,
        settings: Settings,
        http_client: httpx.AsyncClient,
        *,
        providers: Optional[Mapping[str, VisionProvider]] = None,
    ) -> None:
        self._settings = settings
        self._http_client = http_client
        self._providers: Dict[str, VisionProvider] = dict(providers or {})
        self._lock = asyncio.Lock()

    @property
    def http_client(self) -> httpx.AsyncClient:
        return self._http_client

    async def get(self, name: str) -> VisionProvider:
        provider = self._providers.get(name)
        if provider is not None:
            return provider
        async with self._lock:
            provider = self._providers.get(name)
            if provider is None:
                provider = build_provider(name, self._settings, self._http_client)
                self._providers[name] = provider
                log.info("vision provider initialized", extra={"provider": name})
        return provider

    def configured(self) -> List[str]:
        names = set(self._providers)
        names.update(n for n in _ADAPTERS if self._settings.provider_configured(n))
        return sorted(names)

    async def aclose(self) -> None:
        await self._http_client.aclose()


class VisionAnalyzer:
    """Single entry point the orchestrator calls for one provider attempt."""

    def __init__(self, registry: ProviderRegistry) -> None:
        self._registry = registry

    @property
    def registry(self) -> ProviderRegistry:
        return self._registry

    async def analyze(
        self,
        image: ImageInput,
        config: PhotoVerificationConfig,
        *,
        provider: str,
        model: str,
    ) -> AnalysisOutcome:
        try:
            backend = await self._registry.get(provider)
            outcome = await backend.analyze(image, config, model)
        except ProviderError as exc:
            metrics.inc_provider_attempt(provider, exc.code.lower())
            raise
        metrics.inc_provider_attempt(provider, "ok")
        return outcome
