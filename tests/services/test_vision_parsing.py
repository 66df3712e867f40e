from __future__ import annotations

import pytest

from photoverify.errors import MalformedResponse
from photoverify.schemas.verification import PhotoVerificationConfig
from photoverify.services.vision.base import TokenUsage
from photoverify.services.vision.parsing import parse_analysis, strip_code_fences
from photoverify.services.vision.prompts import SYSTEM_PROMPT, build_user_prompt

_BODY = '{"criteria_results": [{"criterion_id": "a", "passed": true, "value": 3, "confidence": 0.9, "reasoning": "x"}], "overall_confidence": 0.88}'


def test_strip_code_fences_variants():
    assert strip_code_fences(f"```json\n{_BODY}\n```") == _BODY
    assert strip_code_fences(f"```\n{_BODY}\n```") == _BODY
    assert strip_code_fences(f"  {_BODY}  ") == _BODY


def test_parse_fenced_response():
    analysis = parse_analysis(f"```json\n{_BODY}\n```", provider="openai", usage=TokenUsage())
    assert analysis.overall_confidence == pytest.approx(0.88)
    finding = analysis.finding("a")
    assert finding is not None
    assert finding.value == 3
    assert finding.passed is True


def test_non_json_raises_malformed_with_usage():
    with pytest.raises(MalformedResponse) as exc_info:
        parse_analysis("I think the shelf looks fine", provider="openai", usage=TokenUsage(40, 7))
    assert exc_info.value.input_tokens == 40
    assert exc_info.value.output_tokens == 7
    assert exc_info.value.provider == "openai"


def test_missing_criteria_results_raises_malformed():
    with pytest.raises(MalformedResponse):
        parse_analysis('{"overall_confidence": 0.5}', provider="gemini", usage=TokenUsage())
    with pytest.raises(MalformedResponse):
        parse_analysis("", provider="gemini", usage=TokenUsage())


def test_confidence_is_clamped_and_structured_values_stringified():
    analysis = parse_analysis(
        '{"criteria_results": [{"criterion_id": 7, "passed": true, "value": {"n": 2},'
        ' "confidence": 1.7}], "overall_confidence": -2}',
        provider="openai",
        usage=TokenUsage(),
    )
    finding = analysis.criteria_results[0]
    assert finding.criterion_id == "7"
    assert finding.confidence == 1.0
    assert finding.value == '{"n": 2}'
    assert analysis.overall_confidence == 0.0


def test_user_prompt_lists_every_criterion():
    cfg = PhotoVerificationConfig(
        prompt_text="Audit the cooler.",
        criteria=[
            {"id": "door", "label": "Door closed", "kind": "boolean", "expectedValue": True},
            {"id": "cans", "label": "Cans", "kind": "count", "min": 5, "max": 20, "required": False},
            {"id": "brand", "label": "Brand", "kind": "text"},
        ],
    )
    prompt = build_user_prompt(cfg)
    assert prompt.startswith("Audit the cooler.")
    assert '1. [door] "Door closed" (type: boolean) | expected: true | REQUIRED' in prompt
    assert '2. [cans] "Cans" (type: count) | min: 5 | max: 20' in prompt
    assert "2. [cans] \"Cans\" (type: count) | min: 5 | max: 20 | REQUIRED" not in prompt
    assert '3. [brand] "Brand" (type: text) | REQUIRED' in prompt
    assert "criteria_results" in SYSTEM_PROMPT
    assert "0.0 and 1.0" in SYSTEM_PROMPT
