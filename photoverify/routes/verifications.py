from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query, Request

from photoverify.dependencies.auth import get_auth_context
from photoverify.dependencies.services import get_store, rate_limit
from photoverify.routes import envelope
from photoverify.schemas.auth import AuthContext
from photoverify.schemas.tasks import verification_out
from photoverify.services.store import VerificationStore

router = APIRouter(
    prefix="/api/verifications",
    tags=["verifications"],
    dependencies=[Depends(rate_limit("verifications"))],
)


@router.get("")
async def list_verifications(
    request: Request,
    task_id: Optional[str] = Query(None, alias="taskId", description="Internal task id"),
    external_task_id: Optional[str] = Query(
        None, alias="externalTaskId", description="Caller-side task id (external mode)"
    ),
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    auth: AuthContext = Depends(get_auth_context),
    store: VerificationStore = Depends(get_store),
) -> Dict[str, Any]:
    rows, total = await store.list_verifications(
        auth.tenant_id,
        task_id=task_id,
        external_task_id=external_task_id,
        limit=limit,
        offset=offset,
    )
    return envelope(
        request,
        auth,
        {
            "verifications": [
                verification_out(r).model_dump(mode="json", by_alias=True) for r in rows
            ],
            "pagination": {"limit": limit, "offset": offset, "count": len(rows), "total": total},
        },
    )
