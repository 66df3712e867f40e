from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Depends, Request

from photoverify.dependencies.auth import AdminOnly
from photoverify.dependencies.services import get_store
from photoverify.routes import envelope
from photoverify.schemas.auth import AuthContext
from photoverify.schemas.tenants import TenantCreate, tenant_out
from photoverify.services.store import VerificationStore

router = APIRouter(prefix="/api/tenants", tags=["tenants"])


@router.get("")
async def list_tenants(
    request: Request,
    auth: AuthContext = Depends(AdminOnly),
    store: VerificationStore = Depends(get_store),
) -> Dict[str, Any]:
    tenants = await store.list_tenants()
    return envelope(
        request,
        auth,
        [tenant_out(t).model_dump(mode="json", by_alias=True) for t in tenants],
    )


@router.post("", status_code=201)
async def create_tenant(
    body: TenantCreate,
    request: Request,
    auth: AuthContext = Depends(AdminOnly),
    store: VerificationStore = Depends(get_store),
) -> Dict[str, Any]:
    tenant = await store.create_tenant(body, actor=auth)
    return envelope(request, auth, tenant_out(tenant).model_dump(mode="json", by_alias=True))
