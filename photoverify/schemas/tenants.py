from __future__ import annotations

from datetime import datetime
from typing import Any, List, Optional

from pydantic import Field

from photoverify.config import ProviderName
from photoverify.schemas import AppBaseModel


class TenantConfig(AppBaseModel):
    max_requests_per_minute: int = Field(default=30, ge=1)
    max_verifications_per_minute: int = Field(default=20, ge=1)
    max_requests_per_day: int = Field(default=1000, ge=1)
    default_provider: Optional[ProviderName] = None
    default_model: Optional[str] = None
    storage_limit_mb: int = Field(default=100, ge=0)
    allowed_origins: List[str] = Field(default_factory=list)


class TenantCreate(AppBaseModel):
    name: str = Field(min_length=1)
    slug: str = Field(min_length=1, max_length=64, pattern=r"^[a-z0-9-]+$")
    config: TenantConfig = Field(default_factory=TenantConfig)


class TenantOut(AppBaseModel):
    id: str
    name: str
    slug: str
    is_active: bool
    config: TenantConfig
    created_at: datetime
    updated_at: datetime


def tenant_out(tenant: Any) -> TenantOut:
    return TenantOut(
        id=tenant.id,
        name=tenant.name,
        slug=tenant.slug,
        is_active=tenant.is_active,
        config=TenantConfig.model_validate(tenant.config or {}),
        created_at=tenant.created_at,
        updated_at=tenant.updated_at,
    )
