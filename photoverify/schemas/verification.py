from __future__ import annotations

import re
from datetime import datetime
from typing import Annotated, Any, List, Literal, Optional, Union

from pydantic import (
    AliasChoices,
    ConfigDict,
    Field,
    StrictBool,
    StrictFloat,
    StrictInt,
    StrictStr,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel

from photoverify.config import ProviderName
from photoverify.schemas import AppBaseModel

CriterionKind = Literal["boolean", "count", "text"]
VerificationMode = Literal["internal", "external"]

# Provider-reported values keep their JSON type (bool stays bool, 3 stays int).
ObservedValue = Union[StrictBool, StrictInt, StrictFloat, StrictStr, None]

NOT_EVALUATED = "NOT_EVALUATED"


# ------------------------------ Criteria -------------------------------------


class _CriterionBase(AppBaseModel):
    id: str = Field(min_length=1)
    label: str
    required: bool = True


class BooleanCriterion(_CriterionBase):
    kind: Literal["boolean"] = "boolean"
    expected_value: Optional[Union[StrictBool, StrictInt, StrictFloat, StrictStr]] = None


class CountCriterion(_CriterionBase):
    kind: Literal["count"] = "count"
    min: Optional[float] = None
    max: Optional[float] = None

    @model_validator(mode="after")
    def _bounds_ordered(self) -> "CountCriterion":
        if self.min is not None and self.max is not None and self.min > self.max:
            raise ValueError(f"criterion {self.id!r}: min must not exceed max")
        return self


class TextCriterion(_CriterionBase):
    kind: Literal["text"] = "text"


VerificationCriterion = Annotated[
    Union[BooleanCriterion, CountCriterion, TextCriterion],
    Field(discriminator="kind"),
]


class PhotoVerificationConfig(AppBaseModel):
    prompt_text: str = Field(
        default="",
        validation_alias=AliasChoices("promptText", "prompt", "prompt_text"),
    )
    criteria: List[VerificationCriterion] = Field(default_factory=list)
    provider: Optional[ProviderName] = None
    model: Optional[str] = None
    max_retries: int = Field(default=2, ge=0, le=10)
    fallback_to_manual: bool = True
    confidence_threshold: float = Field(default=0.8, ge=0.0, le=1.0)

    @field_validator("criteria", mode="before")
    @classmethod
    def _accept_type_alias(cls, value: Any) -> Any:
        # Older clients send the criterion kind as "type".
        if not isinstance(value, list):
            return value
        out = []
        for item in value:
            if isinstance(item, dict) and "kind" not in item and "type" in item:
                item = {**item, "kind": item["type"]}
                item.pop("type", None)
            out.append(item)
        return out

    @field_validator("criteria")
    @classmethod
    def _unique_ids(cls, value: List[Any]) -> List[Any]:
        seen: set[str] = set()
        for criterion in value:
            if criterion.id in seen:
                raise ValueError(f"duplicate criterion id: {criterion.id!r}")
            seen.add(criterion.id)
        return value

    def snapshot(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


# ------------------------------ Results --------------------------------------


class _FrozenModel(AppBaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, protected_namespaces=(), frozen=True
    )


class CriterionResult(_FrozenModel):
    criterion_id: str
    label: str
    passed: bool
    observed_value: ObservedValue = None
    confidence: float = Field(ge=0.0, le=1.0)
    reasoning: str = ""


class VerificationResult(_FrozenModel):
    passed: bool
    overall_confidence: float = Field(ge=0.0, le=1.0)
    criteria_results: List[CriterionResult] = Field(default_factory=list)
    model_used: str
    processing_time_ms: int = Field(ge=0)
    processed_at: datetime
    retry_count: int = Field(default=0, ge=0)
    input_tokens: int = Field(default=0, ge=0)
    output_tokens: int = Field(default=0, ge=0)
    estimated_cost_usd: float = Field(default=0.0, ge=0.0)
    mode: VerificationMode
    task_reference: str


# ------------------------------ Image / request ------------------------------

_DATA_URL_RE = re.compile(r"^data:(?P<mime>[\w.+-]+/[\w.+-]+);base64,(?P<data>.*)$", re.S)


class ImageInput(_FrozenModel):
    """Exactly one of ``url`` / ``base64`` is set."""

    url: Optional[str] = None
    base64: Optional[str] = None
    mime_type: str = "image/jpeg"

    @model_validator(mode="after")
    def _exactly_one(self) -> "ImageInput":
        if bool(self.url) == bool(self.base64):
            raise ValueError("exactly one of url or base64 must be provided")
        return self

    @classmethod
    def from_base64(cls, raw: str) -> "ImageInput":
        m = _DATA_URL_RE.match(raw.strip())
        if m:
            return cls(base64=m.group("data"), mime_type=m.group("mime"))
        return cls(base64=raw.strip())

    def storage_reference(self) -> str:
        if self.url:
            return self.url
        return f"base64:{(self.base64 or '')[:50]}..."


class VerifyRequest(AppBaseModel):
    task_id: Optional[str] = None
    external_task_id: Optional[str] = None
    image_url: Optional[str] = None
    image_base64: Optional[str] = None
    config: Optional[PhotoVerificationConfig] = None

    @field_validator("image_url")
    @classmethod
    def _http_url(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return value
        if not re.match(r"^https?://\S+$", value.strip()):
            raise ValueError("imageUrl must be an http(s) URL")
        return value.strip()

    @model_validator(mode="after")
    def _check_shape(self) -> "VerifyRequest":
        if not self.image_url and not self.image_base64:
            raise ValueError("Either imageUrl or imageBase64 must be provided")
        if self.image_url and self.image_base64:
            raise ValueError("Provide only one of imageUrl or imageBase64")
        if not self.task_id and not self.external_task_id:
            raise ValueError("Either taskId or externalTaskId must be provided")
        if self.task_id and self.external_task_id:
            raise ValueError("Provide only one of taskId or externalTaskId")
        if self.external_task_id and self.config is None:
            raise ValueError("config is required when externalTaskId is provided")
        return self

    @property
    def mode(self) -> VerificationMode:
        return "external" if self.external_task_id else "internal"

    def image(self) -> ImageInput:
        if self.image_url:
            return ImageInput(url=self.image_url)
        return ImageInput.from_base64(self.image_base64 or "")


__all__ = [
    "NOT_EVALUATED",
    "BooleanCriterion",
    "CountCriterion",
    "TextCriterion",
    "VerificationCriterion",
    "PhotoVerificationConfig",
    "CriterionResult",
    "VerificationResult",
    "ImageInput",
    "VerifyRequest",
    "ObservedValue",
]
