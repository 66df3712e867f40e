from __future__ import annotations

import logging
from typing import Any, Callable, Set

from prometheus_client import REGISTRY, Counter, Histogram

_log = logging.getLogger(__name__)

_model_label_max = 100
_LABEL_OVERFLOW = "__overflow__"
_seen_models: Set[str] = set()


def configure(*, model_label_max: int) -> None:
    """Set how many distinct model labels are kept before folding into the overflow label."""
    global _model_label_max
    _model_label_max = max(1, int(model_label_max))


def _get_or_create_metric(factory, name: str, documentation: str, **kwargs):
    """
    Prometheus helper that tolerates re-registration across tests.
    """
    try:
        return factory(name, documentation, **kwargs)
    except ValueError:
        existing = getattr(REGISTRY, "_names_to_collectors", {}).get(name)
        if existing is not None:
            return existing
        raise


def _best_effort(msg: str, fn: Callable[[], Any]) -> None:
    # Metrics never fail a verification.
    try:
        fn()
    except Exception as e:  # pragma: no cover
        _log.debug("%s: %s", msg, e)


def _model_label(model: str) -> str:
    # Models come from tenant configs; cap the label set.
    if not model:
        return "unknown"
    if model in _seen_models:
        return model
    if len(_seen_models) < _model_label_max:
        _seen_models.add(model)
        return model
    return _LABEL_OVERFLOW


VERIFICATIONS_TOTAL = _get_or_create_metric(
    Counter,
    "photoverify_verifications_total",
    "Completed verifications by provider and outcome",
    labelnames=("provider", "outcome"),
)

PROVIDER_ATTEMPTS_TOTAL = _get_or_create_metric(
    Counter,
    "photoverify_provider_attempts_total",
    "Vision provider calls by provider and result",
    labelnames=("provider", "result"),
)

TOKENS_TOTAL = _get_or_create_metric(
    Counter,
    "photoverify_tokens_total",
    "Tokens consumed by model and direction",
    labelnames=("model", "direction"),
)

COST_USD_TOTAL = _get_or_create_metric(
    Counter,
    "photoverify_estimated_cost_usd_total",
    "Estimated provider cost in USD by model",
    labelnames=("model",),
)

VERIFICATION_LATENCY = _get_or_create_metric(
    Histogram,
    "photoverify_verification_seconds",
    "End-to-end verification latency",
    labelnames=("mode",),
    buckets=(0.5, 1.0, 2.5, 5.0, 10.0, 20.0, 30.0, 60.0),
)

RATE_LIMIT_BLOCKS = _get_or_create_metric(
    Counter,
    "photoverify_rate_limited_total",
    "Requests rejected by the fixed-window rate limiter",
    labelnames=("endpoint",),
)

RATE_LIMIT_FAIL_OPEN = _get_or_create_metric(
    Counter,
    "photoverify_rate_limit_fail_open_total",
    "Rate-limit checks allowed because the counter store failed",
    labelnames=("endpoint",),
)


def inc_verification(provider: str, outcome: str) -> None:
    _best_effort(
        "inc verification",
        lambda: VERIFICATIONS_TOTAL.labels(provider=provider or "unknown", outcome=outcome).inc(),
    )


def inc_provider_attempt(provider: str, result: str) -> None:
    _best_effort(
        "inc provider attempt",
        lambda: PROVIDER_ATTEMPTS_TOTAL.labels(provider=provider or "unknown", result=result).inc(),
    )


def add_usage(model: str, input_tokens: int, output_tokens: int, cost_usd: float) -> None:
    label = _model_label(model)

    def _apply() -> None:
        if input_tokens:
            TOKENS_TOTAL.labels(model=label, direction="input").inc(input_tokens)
        if output_tokens:
            TOKENS_TOTAL.labels(model=label, direction="output").inc(output_tokens)
        if cost_usd:
            COST_USD_TOTAL.labels(model=label).inc(cost_usd)

    _best_effort("add usage", _apply)


def observe_latency(mode: str, seconds: float) -> None:
    _best_effort(
        "observe latency",
        lambda: VERIFICATION_LATENCY.labels(mode=mode).observe(max(0.0, seconds)),
    )


def inc_rate_limited(endpoint: str) -> None:
    _best_effort("inc rate limited", lambda: RATE_LIMIT_BLOCKS.labels(endpoint=endpoint).inc())


def inc_rate_limit_fail_open(endpoint: str) -> None:
    _best_effort(
        "inc fail open", lambda: RATE_LIMIT_FAIL_OPEN.labels(endpoint=endpoint).inc()
    )
