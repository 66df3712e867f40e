from __future__ import annotations

import json
import re

from pydantic import ValidationError as PydanticValidationError

from photoverify.errors import MalformedResponse
from photoverify.services.vision.base import TokenUsage, VisionAnalysis

_FENCE_RE = re.compile(r"^\s*```[\w-]*\s*\n?(?P<body>.*?)\n?\s*```\s*$", re.S)


def strip_code_fences(text: str) -> str:
    """Remove one enclosing markdown code fence (```json ... ```), if present."""
    m = _FENCE_RE.match(text or "")
    if m:
        return m.group("body").strip()
    return (text or "").strip()


def parse_analysis(text: str, *, provider: str, usage: TokenUsage) -> VisionAnalysis:
    """Parse a model reply into a VisionAnalysis or raise MalformedResponse.

    The raised error carries the attempt's token usage so the caller can still
    account for it.
    """

    def _fail(reason: str) -> MalformedResponse:
        return MalformedResponse(
            reason,
            provider=provider,
            input_tokens=usage.input_tokens,
            output_tokens=usage.output_tokens,
        )

    body = strip_code_fences(text)
    if not body:
        raise _fail("Empty response from vision model")
    try:
        data = json.loads(body)
    except json.JSONDecodeError:
        raise _fail(f"Failed to parse model response as JSON: {body[:200]}") from None

    if not isinstance(data, dict) or not isinstance(data.get("criteria_results"), list):
        raise _fail("Invalid response structure: missing criteria_results array")

    try:
        return VisionAnalysis.model_validate(data)
    except PydanticValidationError as exc:
        raise _fail(f"Invalid criteria_results entry: {exc.errors()[0].get('msg', '')}") from None
