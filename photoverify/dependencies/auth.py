from __future__ import annotations

from typing import Callable

from fastapi import Depends, Request

from photoverify.errors import Forbidden, Unauthorized
from photoverify.schemas.auth import ROLES, AuthContext


def get_auth_context(request: Request) -> AuthContext:
    """
    Resolve the caller from the trusted gateway headers.
    Authentication itself happens upstream; this only shapes the context.
    """
    settings = request.app.state.settings
    tenant_id = (request.headers.get(settings.TENANT_ID_HEADER) or "").strip()
    if not tenant_id:
        raise Unauthorized("Missing tenant identity")
    role = (request.headers.get(settings.ROLE_HEADER) or "").strip().lower()
    if role not in ROLES:
        raise Unauthorized("Missing or unknown role")
    slug = (request.headers.get(settings.TENANT_SLUG_HEADER) or "").strip()
    user_id = (request.headers.get(settings.USER_ID_HEADER) or "").strip() or None
    return AuthContext(tenant_id=tenant_id, tenant_slug=slug, role=role, user_id=user_id)  # type: ignore[arg-type]


def require_role(*roles: str) -> Callable[..., AuthContext]:
    allowed = frozenset(roles)

    def _dependency(auth: AuthContext = Depends(get_auth_context)) -> AuthContext:
        if auth.role not in allowed:
            raise Forbidden(f"Role '{auth.role}' may not perform this action")
        return auth

    return _dependency


AdminOnly = require_role("admin")
Writer = require_role("admin", "operator")

__all__ = ["get_auth_context", "require_role", "AdminOnly", "Writer"]
