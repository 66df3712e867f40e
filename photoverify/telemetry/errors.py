"""Global JSON error handling with stable error codes and request correlation."""

from __future__ import annotations

import logging
import time
from datetime import datetime, timezone
from typing import Any, Dict, Optional
from uuid import uuid4

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from photoverify.errors import PhotoVerifyError, RateLimited
from photoverify.middleware.request_id import REQUEST_ID_HEADER, get_request_id

log = logging.getLogger(__name__)

# Map plain HTTP statuses (routing errors etc.) to stable machine-readable codes
_STATUS_TO_CODE = {
    400: "VALIDATION_ERROR",
    401: "UNAUTHORIZED",
    403: "FORBIDDEN",
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
    413: "PAYLOAD_TOO_LARGE",
    415: "UNSUPPORTED_MEDIA_TYPE",
    422: "VALIDATION_ERROR",
    429: "RATE_LIMITED",
}


def _rid_from_request(request: Request) -> str:
    """Best-effort request id:
    1) context var set by RequestIDMiddleware
    2) request.state / inbound header
    3) new UUID4
    """
    return (
        get_request_id()
        or getattr(request.state, "request_id", None)
        or request.headers.get(REQUEST_ID_HEADER)
        or str(uuid4())
    )


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def rate_limit_headers(
    limit: int, remaining: Optional[int] = None, reset_at: Optional[int] = None
) -> Dict[str, str]:
    # Remaining/Reset are unknown when the counter store failed open.
    headers = {"X-RateLimit-Limit": str(limit)}
    if remaining is not None:
        headers["X-RateLimit-Remaining"] = str(remaining)
    if reset_at is not None:
        headers["X-RateLimit-Reset"] = str(reset_at)
    return headers


def _json_error(
    request: Request,
    *,
    message: str,
    status: int,
    code: Optional[str] = None,
    details: Any = None,
    headers: Optional[Dict[str, str]] = None,
) -> JSONResponse:
    rid = _rid_from_request(request)
    error: Dict[str, Any] = {
        "code": code or _STATUS_TO_CODE.get(status, "ERROR"),
        "message": message,
    }
    if details is not None:
        error["details"] = details
    body = {
        "success": False,
        "error": error,
        "meta": {"requestId": rid, "timestamp": _utc_now_iso()},
    }
    resp = JSONResponse(status_code=status, content=body, headers=headers)
    resp.headers[REQUEST_ID_HEADER] = rid
    return resp


def register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(PhotoVerifyError)
    async def domain_exc_handler(request: Request, exc: PhotoVerifyError) -> JSONResponse:
        headers: Optional[Dict[str, str]] = None
        if isinstance(exc, RateLimited):
            headers = rate_limit_headers(exc.limit, exc.remaining, exc.reset_at)
            headers["Retry-After"] = str(max(0, exc.reset_at - int(time.time())))
        if exc.status_code >= 500:
            log.warning("request failed: %s", exc.code, extra={"error": exc.message})
        return _json_error(
            request,
            message=exc.message,
            status=exc.status_code,
            code=exc.code,
            details=exc.details,
            headers=headers,
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exc_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        detail = exc.detail if isinstance(exc.detail, str) else "HTTP error"
        return _json_error(
            request,
            message=detail,
            status=exc.status_code,
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exc_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        errors = [
            {"loc": list(err.get("loc", ())), "msg": err.get("msg", ""), "type": err.get("type", "")}
            for err in exc.errors()
        ]
        message = errors[0]["msg"] if errors else "Validation failed"
        return _json_error(
            request,
            message=message,
            status=400,
            code="VALIDATION_ERROR",
            details={"errors": errors},
        )

    @app.exception_handler(Exception)
    async def unhandled_exc_handler(request: Request, exc: Exception) -> JSONResponse:
        # Do not leak internals; logs carry details correlated by request_id.
        log.error("unhandled error", exc_info=exc)
        return _json_error(
            request,
            message="Internal server error",
            status=500,
            code="INTERNAL_ERROR",
        )
