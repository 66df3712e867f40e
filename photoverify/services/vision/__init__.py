"""Vision provider abstraction: prompts, adapters, parsing and the registry."""

from photoverify.services.vision.base import (
    DEFAULT_MODELS,
    AnalysisOutcome,
    CriterionFinding,
    TokenUsage,
    VisionAnalysis,
    VisionProvider,
)
from photoverify.services.vision.registry import (
    ProviderRegistry,
    VisionAnalyzer,
    build_http_client,
    build_provider,
)

__all__ = [
    "DEFAULT_MODELS",
    "AnalysisOutcome",
    "CriterionFinding",
    "TokenUsage",
    "VisionAnalysis",
    "VisionProvider",
    "ProviderRegistry",
    "VisionAnalyzer",
    "build_http_client",
    "build_provider",
]
