from __future__ import annotations

from typing import Any, List

from photoverify.schemas.verification import (
    BooleanCriterion,
    CountCriterion,
    PhotoVerificationConfig,
)

SYSTEM_PROMPT = """You are an expert image verification system for retail and field operations.
Your job is to analyze photos and verify specific criteria.

IMPORTANT RULES:
- Be precise and objective in your analysis
- If you cannot determine something with confidence, say so
- Return your confidence as a decimal between 0.0 and 1.0
- For "boolean" criteria: determine if the condition is true or false
- For "count" criteria: count the specific items asked about
- For "text" criteria: extract or identify the requested text/information

You MUST respond with valid JSON only. No markdown, no code blocks, just raw JSON.

Response format:
{
  "criteria_results": [
    {
      "criterion_id": "<id>",
      "passed": <true/false>,
      "value": <observed value>,
      "confidence": <0.0-1.0>,
      "reasoning": "<brief explanation>"
    }
  ],
  "overall_assessment": "<brief summary>",
  "overall_confidence": <0.0-1.0>
}"""


def _fmt(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def describe_criteria(config: PhotoVerificationConfig) -> List[str]:
    lines: List[str] = []
    for i, c in enumerate(config.criteria, start=1):
        line = f'{i}. [{c.id}] "{c.label}" (type: {c.kind})'
        if isinstance(c, BooleanCriterion) and c.expected_value is not None:
            line += f" | expected: {_fmt(c.expected_value)}"
        if isinstance(c, CountCriterion):
            if c.min is not None:
                line += f" | min: {_fmt(c.min)}"
            if c.max is not None:
                line += f" | max: {_fmt(c.max)}"
        if c.required:
            line += " | REQUIRED"
        lines.append(line)
    return lines


def build_user_prompt(config: PhotoVerificationConfig) -> str:
    criteria = "\n".join(describe_criteria(config))
    return (
        f"{config.prompt_text}\n\n"
        "Verify the following criteria in this image:\n\n"
        f"{criteria}\n\n"
        "Analyze the image carefully and respond with JSON containing results for each criterion."
    )
