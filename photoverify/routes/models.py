from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Depends, Request

from photoverify.dependencies.auth import get_auth_context
from photoverify.routes import envelope
from photoverify.schemas.auth import AuthContext
from photoverify.services.pricing import available_models

router = APIRouter(prefix="/api/models", tags=["models"])


@router.get("")
async def list_models(
    request: Request, auth: AuthContext = Depends(get_auth_context)
) -> Dict[str, Any]:
    configured = request.app.state.registry.configured()
    return envelope(request, auth, {"models": available_models(configured)})
