from __future__ import annotations

from datetime import date
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query, Request

from photoverify.dependencies.auth import get_auth_context
from photoverify.dependencies.services import get_usage, rate_limit
from photoverify.routes import envelope
from photoverify.schemas.auth import AuthContext
from photoverify.schemas.usage import GroupBy
from photoverify.services.usage import UsageAggregator, resolve_range

router = APIRouter(prefix="/api/billing", tags=["billing"], dependencies=[Depends(rate_limit("billing"))])


@router.get("")
async def billing_usage(
    request: Request,
    from_date: Optional[date] = Query(None, alias="from", description="Start date (YYYY-MM-DD)"),
    to_date: Optional[date] = Query(None, alias="to", description="End date, inclusive (YYYY-MM-DD)"),
    group_by: GroupBy = Query("day", alias="groupBy"),
    tenant_filter: Optional[str] = Query(None, alias="tenantId", description="Admin only"),
    auth: AuthContext = Depends(get_auth_context),
    usage: UsageAggregator = Depends(get_usage),
) -> Dict[str, Any]:
    start, end = resolve_range(from_date, to_date)
    # Non-admins always see their own tenant.
    tenant_id = tenant_filter if (auth.is_admin and tenant_filter) else auth.tenant_id

    report = await usage.summarize(tenant_id, start, end, group_by)
    if auth.is_admin and not tenant_filter:
        report = report.model_copy(update={"all_tenants": await usage.all_tenants(start, end)})

    return envelope(
        request,
        auth,
        report.model_dump(mode="json", by_alias=True, exclude_none=True),
    )
