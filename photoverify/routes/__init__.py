from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict

from fastapi import Request

from photoverify.middleware.request_id import get_request_id
from photoverify.schemas.auth import AuthContext


def envelope(request: Request, auth: AuthContext, data: Any, **meta: Any) -> Dict[str, Any]:
    """Success envelope shared by every /api route."""
    return {
        "success": True,
        "data": data,
        "meta": {
            "tenantId": auth.tenant_id,
            "requestId": get_request_id() or getattr(request.state, "request_id", None),
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            **meta,
        },
    }
