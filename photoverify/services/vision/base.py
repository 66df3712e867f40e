from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Protocol

from pydantic import BaseModel, ConfigDict, Field, field_validator

from photoverify.schemas.verification import ImageInput, ObservedValue, PhotoVerificationConfig

DEFAULT_MODELS: Dict[str, str] = {
    "openai": "gpt-4o-mini",
    "gemini": "gemini-2.0-flash",
    "anthropic": "claude-3-5-haiku-latest",
}


@dataclass(frozen=True)
class TokenUsage:
    input_tokens: int = 0
    output_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens

    def __add__(self, other: "TokenUsage") -> "TokenUsage":
        return TokenUsage(
            self.input_tokens + other.input_tokens,
            self.output_tokens + other.output_tokens,
        )


def _clamp_unit(value: Any) -> float:
    if value is None or isinstance(value, bool):
        return 0.0
    try:
        f = float(value)
    except (TypeError, ValueError):
        return 0.0
    if f != f:  # NaN
        return 0.0
    return min(1.0, max(0.0, f))


class CriterionFinding(BaseModel):
    """One entry of the provider's ``criteria_results`` array."""

    model_config = ConfigDict(extra="ignore")

    criterion_id: str
    passed: bool = False
    value: ObservedValue = None
    confidence: float = 0.0
    reasoning: str = ""

    @field_validator("criterion_id", mode="before")
    @classmethod
    def _id_to_str(cls, v: Any) -> Any:
        return str(v) if isinstance(v, (int, float)) and not isinstance(v, bool) else v

    @field_validator("value", mode="before")
    @classmethod
    def _scalar_value(cls, v: Any) -> Any:
        if isinstance(v, (dict, list)):
            return json.dumps(v, ensure_ascii=False)
        return v

    @field_validator("confidence", mode="before")
    @classmethod
    def _clamp(cls, v: Any) -> float:
        return _clamp_unit(v)

    @field_validator("reasoning", mode="before")
    @classmethod
    def _reasoning_text(cls, v: Any) -> str:
        return "" if v is None else str(v)


class VisionAnalysis(BaseModel):
    model_config = ConfigDict(extra="ignore")

    criteria_results: List[CriterionFinding]
    overall_assessment: str = ""
    overall_confidence: float = 0.0

    @field_validator("overall_confidence", mode="before")
    @classmethod
    def _clamp(cls, v: Any) -> float:
        return _clamp_unit(v)

    @field_validator("overall_assessment", mode="before")
    @classmethod
    def _assessment_text(cls, v: Any) -> str:
        return "" if v is None else str(v)

    def finding(self, criterion_id: str) -> Optional[CriterionFinding]:
        for item in self.criteria_results:
            if item.criterion_id == criterion_id:
                return item
        return None


@dataclass(frozen=True)
class AnalysisOutcome:
    analysis: VisionAnalysis
    usage: TokenUsage
    provider: str
    model: str


class VisionProvider(Protocol):
    name: str

    async def analyze(
        self, image: ImageInput, config: PhotoVerificationConfig, model: str
    ) -> AnalysisOutcome: ...
