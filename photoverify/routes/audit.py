from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query, Request

from photoverify.dependencies.auth import AdminOnly
from photoverify.dependencies.services import get_store
from photoverify.routes import envelope
from photoverify.schemas.auth import AuthContext
from photoverify.schemas.tasks import audit_out
from photoverify.services.store import VerificationStore

router = APIRouter(prefix="/api/audit", tags=["audit"])


@router.get("")
async def list_audit(
    request: Request,
    action: Optional[str] = Query(None, description="Filter by action, e.g. photo_verified"),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    auth: AuthContext = Depends(AdminOnly),
    store: VerificationStore = Depends(get_store),
) -> Dict[str, Any]:
    rows = await store.list_audit(auth.tenant_id, action=action, limit=limit, offset=offset)
    return envelope(
        request,
        auth,
        {
            "entries": [audit_out(r).model_dump(mode="json", by_alias=True) for r in rows],
            "pagination": {"limit": limit, "offset": offset, "count": len(rows)},
        },
    )
