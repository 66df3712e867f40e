from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import Field, field_validator

from photoverify.schemas import AppBaseModel
from photoverify.schemas.verification import PhotoVerificationConfig

TaskStatus = Literal["pending", "in_progress", "completed", "failed", "manual_review"]
TERMINAL_STATUSES = frozenset({"completed", "failed", "manual_review"})
PHOTO_VERIFY = "photo_verify"


def _require_criteria(config: Optional[PhotoVerificationConfig]) -> Optional[PhotoVerificationConfig]:
    if config is not None and not config.criteria:
        raise ValueError("photoVerificationConfig.criteria must not be empty")
    return config


class TaskCreate(AppBaseModel):
    title: str = Field(min_length=1)
    description: Optional[str] = None
    type: Literal["photo_verify"] = PHOTO_VERIFY
    photo_verification_config: PhotoVerificationConfig
    assigned_to: Optional[str] = None
    customer_id: Optional[str] = None
    due_date: Optional[datetime] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)

    _criteria = field_validator("photo_verification_config")(_require_criteria)


class TaskUpdate(AppBaseModel):
    title: Optional[str] = Field(default=None, min_length=1)
    description: Optional[str] = None
    status: Optional[TaskStatus] = None
    photo_verification_config: Optional[PhotoVerificationConfig] = None
    assigned_to: Optional[str] = None
    customer_id: Optional[str] = None
    due_date: Optional[datetime] = None
    metadata: Optional[Dict[str, Any]] = None

    _criteria = field_validator("photo_verification_config")(_require_criteria)


class TaskOut(AppBaseModel):
    id: str
    tenant_id: str
    title: str
    description: Optional[str] = None
    type: str
    status: TaskStatus
    photo_verification_config: Dict[str, Any]
    assigned_to: Optional[str] = None
    customer_id: Optional[str] = None
    due_date: Optional[datetime] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime
    updated_at: datetime


class VerificationRecordOut(AppBaseModel):
    id: str
    task_id: Optional[str] = None
    external_task_id: Optional[str] = None
    image_url: str
    passed: bool
    overall_confidence: float
    criteria_results: List[Dict[str, Any]]
    config_used: Optional[Dict[str, Any]] = None
    model_used: str
    processing_time_ms: int
    retry_count: int
    input_tokens: int
    output_tokens: int
    estimated_cost_usd: float
    created_at: datetime


class TaskDetailOut(TaskOut):
    verifications: List[VerificationRecordOut] = Field(default_factory=list)


class AuditEntryOut(AppBaseModel):
    id: str
    tenant_id: str
    action: str
    entity_type: str
    entity_id: Optional[str] = None
    user_id: Optional[str] = None
    details: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime


def task_out(task: Any) -> TaskOut:
    return TaskOut(
        id=task.id,
        tenant_id=task.tenant_id,
        title=task.title,
        description=task.description,
        type=task.type,
        status=task.status,
        photo_verification_config=task.photo_verification_config or {},
        assigned_to=task.assigned_to,
        customer_id=task.customer_id,
        due_date=task.due_date,
        metadata=task.extra or {},
        created_at=task.created_at,
        updated_at=task.updated_at,
    )


def verification_out(row: Any) -> VerificationRecordOut:
    return VerificationRecordOut(
        id=row.id,
        task_id=row.task_id,
        external_task_id=row.external_task_id,
        image_url=row.image_url,
        passed=row.passed,
        overall_confidence=row.overall_confidence,
        criteria_results=row.criteria_results or [],
        config_used=row.config_used,
        model_used=row.model_used,
        processing_time_ms=row.processing_time_ms,
        retry_count=row.retry_count,
        input_tokens=row.input_tokens,
        output_tokens=row.output_tokens,
        estimated_cost_usd=row.estimated_cost_usd,
        created_at=row.created_at,
    )


def audit_out(row: Any) -> AuditEntryOut:
    return AuditEntryOut(
        id=row.id,
        tenant_id=row.tenant_id,
        action=row.action,
        entity_type=row.entity_type,
        entity_id=row.entity_id,
        user_id=row.user_id,
        details=row.details or {},
        created_at=row.created_at,
    )
