"""Pure criteria evaluation: provider findings in, final per-criterion verdicts out."""

from __future__ import annotations

import math
import re
from typing import Any, List, Optional, Sequence

from photoverify.schemas.verification import (
    NOT_EVALUATED,
    BooleanCriterion,
    CountCriterion,
    CriterionResult,
    PhotoVerificationConfig,
)
from photoverify.services.vision.base import VisionAnalysis

NOT_EVALUATED_REASON = "Criterion was not evaluated by the model"

_LEADING_NUMBER = re.compile(r"^\s*([-+]?\d+(?:\.\d+)?)")


def parse_count(value: Any) -> Optional[float]:
    """Numeric reading of an observed count; None when it has none."""
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        return None if math.isnan(value) else float(value)
    m = _LEADING_NUMBER.match(str(value))
    return float(m.group(1)) if m else None


def values_match(observed: Any, expected: Any) -> bool:
    """Strict equality: a bool never equals a number or a string."""
    if isinstance(expected, bool) or isinstance(observed, bool):
        return isinstance(observed, bool) and isinstance(expected, bool) and observed is expected
    if isinstance(expected, (int, float)):
        return isinstance(observed, (int, float)) and observed == expected
    return type(observed) is type(expected) and observed == expected


def evaluate_criteria(
    analysis: VisionAnalysis, config: PhotoVerificationConfig
) -> List[CriterionResult]:
    results: List[CriterionResult] = []
    for criterion in config.criteria:
        finding = analysis.finding(criterion.id)
        if finding is None:
            results.append(
                CriterionResult(
                    criterion_id=criterion.id,
                    label=criterion.label,
                    passed=False,
                    observed_value=NOT_EVALUATED,
                    confidence=0.0,
                    reasoning=NOT_EVALUATED_REASON,
                )
            )
            continue

        passed = finding.passed

        if isinstance(criterion, CountCriterion) and (
            criterion.min is not None or criterion.max is not None
        ):
            count = parse_count(finding.value)
            if count is None:
                passed = False
            else:
                if criterion.min is not None and count < criterion.min:
                    passed = False
                if criterion.max is not None and count > criterion.max:
                    passed = False

        if isinstance(criterion, BooleanCriterion) and criterion.expected_value is not None:
            passed = values_match(finding.value, criterion.expected_value)

        # Confidence gate applies to every kind.
        if finding.confidence < config.confidence_threshold:
            passed = False

        results.append(
            CriterionResult(
                criterion_id=criterion.id,
                label=criterion.label,
                passed=passed,
                observed_value=finding.value,
                confidence=finding.confidence,
                reasoning=finding.reasoning,
            )
        )
    return results


def overall_passed(
    config: PhotoVerificationConfig,
    results: Sequence[CriterionResult],
    overall_confidence: float,
) -> bool:
    by_id = {r.criterion_id: r for r in results}
    required_ok = all(
        by_id[c.id].passed for c in config.criteria if c.required and c.id in by_id
    )
    return config.confidence_threshold <= overall_confidence and required_ok
