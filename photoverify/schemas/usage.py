from __future__ import annotations

from datetime import date
from typing import List, Literal, Optional

from pydantic import Field

from photoverify.schemas import AppBaseModel

GroupBy = Literal["day", "week", "month"]


class UsageSummary(AppBaseModel):
    total_verifications: int = 0
    total_input_tokens: int = 0
    total_output_tokens: int = 0
    total_tokens: int = 0
    total_cost_usd: float = 0.0
    avg_processing_ms: int = 0
    passed_count: int = 0
    failed_count: int = 0


class ModelUsage(AppBaseModel):
    model_used: str
    verifications: int
    input_tokens: int
    output_tokens: int
    cost_usd: float
    avg_ms: int


class UsagePoint(AppBaseModel):
    period: date
    verifications: int = 0
    input_tokens: int = 0
    output_tokens: int = 0
    cost_usd: float = 0.0
    passed: int = 0
    failed: int = 0


class TenantUsage(AppBaseModel):
    tenant_id: str
    tenant_name: str
    tenant_slug: str
    verifications: int = 0
    input_tokens: int = 0
    output_tokens: int = 0
    cost_usd: float = 0.0
    passed: int = 0
    failed: int = 0


class UsagePeriod(AppBaseModel):
    from_date: date = Field(alias="from")
    to_date: date = Field(alias="to")
    group_by: GroupBy


class UsageReport(AppBaseModel):
    period: UsagePeriod
    tenant_id: str
    summary: UsageSummary
    by_model: List[ModelUsage] = Field(default_factory=list)
    time_series: List[UsagePoint] = Field(default_factory=list)
    all_tenants: Optional[List[TenantUsage]] = None
