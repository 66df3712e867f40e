from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Depends, Request, Response

from photoverify.dependencies.auth import get_auth_context
from photoverify.dependencies.services import get_orchestrator
from photoverify.routes import envelope
from photoverify.schemas.auth import AuthContext
from photoverify.schemas.verification import VerifyRequest
from photoverify.services.orchestrator import VerificationOrchestrator
from photoverify.telemetry.errors import rate_limit_headers

router = APIRouter(prefix="/api", tags=["verify"])


@router.post("/verify")
async def verify_photo(
    body: VerifyRequest,
    request: Request,
    response: Response,
    auth: AuthContext = Depends(get_auth_context),
    orchestrator: VerificationOrchestrator = Depends(get_orchestrator),
) -> Dict[str, Any]:
    """Verify one photo against a task's criteria (internal) or an inline config (external)."""
    outcome = await orchestrator.handle(body, auth)
    rl = outcome.rate_limit
    if rl is not None and rl.failed_open:
        response.headers.update(rate_limit_headers(rl.limit))
    elif rl is not None:
        response.headers.update(rate_limit_headers(rl.limit, rl.remaining, rl.reset_at))
    return envelope(
        request,
        auth,
        outcome.result.model_dump(mode="json", by_alias=True),
        verificationId=outcome.verification_id,
    )
