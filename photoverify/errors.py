"""Error taxonomy shared by the services and the HTTP layer.

Every error carries a stable machine-readable ``code`` and the HTTP status the
error handlers render it with. Services raise these; routes never translate
them by hand.
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class PhotoVerifyError(Exception):
    code: str = "INTERNAL_ERROR"
    status_code: int = 500

    def __init__(
        self,
        message: str = "",
        *,
        details: Optional[Dict[str, Any]] = None,
        code: Optional[str] = None,
    ) -> None:
        super().__init__(message or self.code.lower())
        self.message = message or self.code.lower()
        self.details = details
        if code:
            self.code = code


class ValidationError(PhotoVerifyError):
    """Malformed or incomplete request; never retried."""

    code = "VALIDATION_ERROR"
    status_code = 400


class Unauthorized(PhotoVerifyError):
    code = "UNAUTHORIZED"
    status_code = 401


class Forbidden(PhotoVerifyError):
    code = "FORBIDDEN"
    status_code = 403


class NotFound(PhotoVerifyError):
    code = "NOT_FOUND"
    status_code = 404


class Conflict(PhotoVerifyError):
    code = "CONFLICT"
    status_code = 409


class InvalidTaskType(PhotoVerifyError):
    code = "INVALID_TASK_TYPE"
    status_code = 422


class InvalidConfig(PhotoVerifyError):
    code = "INVALID_CONFIG"
    status_code = 422


class RateLimited(PhotoVerifyError):
    """Quota exceeded; retryable after ``reset_at`` (epoch seconds)."""

    code = "RATE_LIMITED"
    status_code = 429

    def __init__(
        self,
        message: str = "Rate limit exceeded",
        *,
        limit: int,
        remaining: int,
        reset_at: int,
        window_seconds: int,
    ) -> None:
        super().__init__(
            message,
            details={
                "limit": limit,
                "window": f"{window_seconds}s",
                "resetAt": reset_at,
            },
        )
        self.limit = limit
        self.remaining = remaining
        self.reset_at = reset_at
        self.window_seconds = window_seconds


class TokenUsageMixin:
    """Carries whatever token usage a failed provider attempt reported."""

    input_tokens: int = 0
    output_tokens: int = 0

    def set_usage(self, input_tokens: int = 0, output_tokens: int = 0) -> None:
        self.input_tokens = max(0, int(input_tokens or 0))
        self.output_tokens = max(0, int(output_tokens or 0))


class ProviderError(TokenUsageMixin, PhotoVerifyError):
    """Transient vision-model failure; retried by the orchestrator."""

    code = "PROVIDER_ERROR"
    status_code = 502

    def __init__(
        self,
        message: str = "provider_error",
        *,
        provider: Optional[str] = None,
        input_tokens: int = 0,
        output_tokens: int = 0,
        code: Optional[str] = None,
    ) -> None:
        super().__init__(message, code=code)
        self.provider = provider
        self.set_usage(input_tokens, output_tokens)


class ProviderNotConfigured(ProviderError):
    code = "PROVIDER_NOT_CONFIGURED"


class ProviderRateLimited(ProviderError):
    """Provider indicated a rate/quota limit (HTTP 429)."""

    code = "PROVIDER_RATE_LIMITED"

    def __init__(
        self,
        message: str = "rate_limited",
        *,
        provider: Optional[str] = None,
        retry_after_s: Optional[float] = None,
    ) -> None:
        super().__init__(message, provider=provider)
        self.retry_after_s = retry_after_s


class MalformedResponse(ProviderError):
    """Provider answered but the payload is not the structured contract."""

    code = "MALFORMED_RESPONSE"


class VerificationExhausted(PhotoVerifyError):
    code = "VERIFICATION_EXHAUSTED"
    status_code = 502

    def __init__(self, message: str, *, attempts: int, last_error: Optional[str] = None) -> None:
        super().__init__(message, details={"attempts": attempts, "lastError": last_error})
        self.attempts = attempts
        self.last_error = last_error


class VerificationTimeout(VerificationExhausted):
    """The verification budget ran out before any attempt produced an analysis."""

    code = "VERIFICATION_TIMEOUT"
    status_code = 504


class PersistenceError(PhotoVerifyError):
    """An unrecorded verification is never reported as a success."""

    code = "PERSISTENCE_ERROR"
    status_code = 500


__all__ = [
    "PhotoVerifyError",
    "ValidationError",
    "Unauthorized",
    "Forbidden",
    "NotFound",
    "Conflict",
    "InvalidTaskType",
    "InvalidConfig",
    "RateLimited",
    "ProviderError",
    "ProviderNotConfigured",
    "ProviderRateLimited",
    "MalformedResponse",
    "VerificationExhausted",
    "VerificationTimeout",
    "PersistenceError",
]
