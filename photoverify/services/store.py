"""Tenant-scoped persistence and the append-only audit trail.

Every public method opens its own session. Database failures surface as
PersistenceError; a verification that was not recorded is never reported as a
success.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional, Tuple

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from photoverify.db.session import Database
from photoverify.errors import Conflict, NotFound, PersistenceError
from photoverify.models import AuditLogEntry, Task, Tenant, Verification, new_id, utcnow
from photoverify.schemas.auth import AuthContext
from photoverify.schemas.tasks import TERMINAL_STATUSES, TaskCreate, TaskUpdate
from photoverify.schemas.tenants import TenantCreate
from photoverify.schemas.verification import PhotoVerificationConfig, VerificationResult

log = logging.getLogger(__name__)

ACTION_PHOTO_VERIFIED = "photo_verified"
ACTION_TASK_CREATED = "task_created"
ACTION_TASK_UPDATED = "task_updated"
ACTION_TASK_DELETED = "task_deleted"
ACTION_TENANT_CREATED = "tenant_created"


def next_task_status(current: str, passed: bool, fallback_to_manual: bool) -> str:
    """Status a task moves to after a verification; terminal states stay put."""
    if current in TERMINAL_STATUSES:
        return current
    if passed:
        return "completed"
    return "manual_review" if fallback_to_manual else "failed"


class VerificationStore:
    def __init__(self, db: Database) -> None:
        self._db = db

    @property
    def db(self) -> Database:
        return self._db

    @asynccontextmanager
    async def _session(self, op: str) -> AsyncIterator[AsyncSession]:
        try:
            async with self._db.session() as session:
                yield session
        except IntegrityError as exc:
            log.error("integrity error", extra={"op": op}, exc_info=True)
            raise PersistenceError(f"Database constraint violated during {op}") from exc
        except SQLAlchemyError as exc:
            log.error("persistence failure", extra={"op": op}, exc_info=True)
            raise PersistenceError(f"Database error during {op}") from exc

    @staticmethod
    def _audit(
        session: AsyncSession,
        *,
        tenant_id: str,
        action: str,
        entity_type: str,
        entity_id: Optional[str],
        user_id: Optional[str],
        details: Dict[str, Any],
    ) -> None:
        session.add(
            AuditLogEntry(
                id=new_id(),
                tenant_id=tenant_id,
                action=action,
                entity_type=entity_type,
                entity_id=entity_id,
                user_id=user_id,
                details=details,
                created_at=utcnow(),
            )
        )

    # ------------------------------ tenants ----------------------------------

    async def get_tenant(self, tenant_id: str) -> Optional[Tenant]:
        async with self._session("get_tenant") as session:
            return await session.get(Tenant, tenant_id)

    async def list_tenants(self, *, active_only: bool = False) -> List[Tenant]:
        stmt = select(Tenant).order_by(Tenant.name)
        if active_only:
            stmt = stmt.where(Tenant.is_active.is_(True))
        async with self._session("list_tenants") as session:
            return list((await session.execute(stmt)).scalars().all())

    async def create_tenant(self, data: TenantCreate, *, actor: Optional[AuthContext] = None) -> Tenant:
        async with self._session("create_tenant") as session:
            taken = await session.execute(select(Tenant.id).where(Tenant.slug == data.slug))
            if taken.first() is not None:
                raise Conflict(f"Tenant slug already exists: {data.slug}")
            now = utcnow()
            tenant = Tenant(
                id=new_id(),
                name=data.name,
                slug=data.slug,
                is_active=True,
                config=data.config.model_dump(mode="json", by_alias=True),
                created_at=now,
                updated_at=now,
            )
            session.add(tenant)
            self._audit(
                session,
                tenant_id=tenant.id,
                action=ACTION_TENANT_CREATED,
                entity_type="tenant",
                entity_id=tenant.id,
                user_id=actor.user_id if actor else None,
                details={"slug": data.slug, "createdBy": actor.tenant_id if actor else None},
            )
            await session.commit()
            return tenant

    # ------------------------------ tasks ------------------------------------

    async def get_task(self, tenant_id: str, task_id: str) -> Optional[Task]:
        stmt = select(Task).where(Task.id == task_id, Task.tenant_id == tenant_id)
        async with self._session("get_task") as session:
            return (await session.execute(stmt)).scalars().first()

    async def list_tasks(
        self,
        tenant_id: str,
        *,
        status: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> Tuple[List[Task], int]:
        where = [Task.tenant_id == tenant_id]
        if status:
            where.append(Task.status == status)
        stmt = (
            select(Task)
            .where(*where)
            .order_by(Task.created_at.desc(), Task.id)
            .limit(limit)
            .offset(offset)
        )
        count_stmt = select(func.count()).select_from(Task).where(*where)
        async with self._session("list_tasks") as session:
            items = list((await session.execute(stmt)).scalars().all())
            total = int((await session.execute(count_stmt)).scalar_one())
        return items, total

    async def create_task(self, auth: AuthContext, data: TaskCreate) -> Task:
        async with self._session("create_task") as session:
            now = utcnow()
            task = Task(
                id=new_id(),
                tenant_id=auth.tenant_id,
                title=data.title,
                description=data.description,
                type=data.type,
                status="pending",
                photo_verification_config=data.photo_verification_config.snapshot(),
                assigned_to=data.assigned_to,
                customer_id=data.customer_id,
                due_date=data.due_date,
                extra=dict(data.metadata),
                created_at=now,
                updated_at=now,
            )
            session.add(task)
            self._audit(
                session,
                tenant_id=auth.tenant_id,
                action=ACTION_TASK_CREATED,
                entity_type="task",
                entity_id=task.id,
                user_id=auth.user_id,
                details={"title": data.title, "type": data.type},
            )
            await session.commit()
            return task

    async def update_task(self, auth: AuthContext, task_id: str, data: TaskUpdate) -> Task:
        changes = data.model_dump(exclude_unset=True)
        async with self._session("update_task") as session:
            stmt = select(Task).where(Task.id == task_id, Task.tenant_id == auth.tenant_id)
            task = (await session.execute(stmt)).scalars().first()
            if task is None:
                raise NotFound(f"Task not found: {task_id}")
            for field, value in changes.items():
                if field == "photo_verification_config":
                    if data.photo_verification_config is not None:
                        task.photo_verification_config = data.photo_verification_config.snapshot()
                elif field == "metadata":
                    task.extra = dict(value or {})
                elif field in ("title", "status") and value is None:
                    continue
                else:
                    setattr(task, field, value)
            task.updated_at = utcnow()
            self._audit(
                session,
                tenant_id=auth.tenant_id,
                action=ACTION_TASK_UPDATED,
                entity_type="task",
                entity_id=task.id,
                user_id=auth.user_id,
                details={"fields": sorted(changes)},
            )
            await session.commit()
            return task

    async def delete_task(self, auth: AuthContext, task_id: str) -> None:
        async with self._session("delete_task") as session:
            stmt = select(Task).where(Task.id == task_id, Task.tenant_id == auth.tenant_id)
            task = (await session.execute(stmt)).scalars().first()
            if task is None:
                raise NotFound(f"Task not found: {task_id}")
            # Verifications outlive the task for audit; drop the link only.
            await session.execute(
                update(Verification).where(Verification.task_id == task_id).values(task_id=None)
            )
            await session.delete(task)
            self._audit(
                session,
                tenant_id=auth.tenant_id,
                action=ACTION_TASK_DELETED,
                entity_type="task",
                entity_id=task_id,
                user_id=auth.user_id,
                details={"title": task.title},
            )
            await session.commit()

    # ------------------------------ verifications ----------------------------

    async def record_verification(
        self,
        *,
        auth: AuthContext,
        result: VerificationResult,
        image_url: str,
        config: PhotoVerificationConfig,
        raw_model_response: Any = None,
        task_id: Optional[str] = None,
        external_task_id: Optional[str] = None,
    ) -> Verification:
        """Insert the verification, move the task, and audit, in one transaction."""
        async with self._session("record_verification") as session:
            verification = Verification(
                id=new_id(),
                tenant_id=auth.tenant_id,
                task_id=task_id,
                external_task_id=external_task_id,
                image_url=image_url,
                passed=result.passed,
                overall_confidence=result.overall_confidence,
                criteria_results=[
                    r.model_dump(mode="json", by_alias=True) for r in result.criteria_results
                ],
                config_used=config.snapshot(),
                raw_model_response=raw_model_response,
                model_used=result.model_used,
                processing_time_ms=result.processing_time_ms,
                retry_count=result.retry_count,
                input_tokens=result.input_tokens,
                output_tokens=result.output_tokens,
                estimated_cost_usd=result.estimated_cost_usd,
                created_at=result.processed_at,
            )
            session.add(verification)

            details: Dict[str, Any] = {
                "verificationId": verification.id,
                "mode": result.mode,
                "passed": result.passed,
                "confidence": result.overall_confidence,
                "modelUsed": result.model_used,
                "processingTimeMs": result.processing_time_ms,
                "inputTokens": result.input_tokens,
                "outputTokens": result.output_tokens,
                "estimatedCostUsd": result.estimated_cost_usd,
                "retryCount": result.retry_count,
            }

            if task_id is not None:
                stmt = select(Task).where(Task.id == task_id, Task.tenant_id == auth.tenant_id)
                task = (await session.execute(stmt)).scalars().first()
                if task is not None:
                    previous = task.status
                    task.status = next_task_status(
                        previous, result.passed, config.fallback_to_manual
                    )
                    if task.status != previous:
                        task.updated_at = utcnow()
                    details["previousStatus"] = previous
                    details["taskStatus"] = task.status

            self._audit(
                session,
                tenant_id=auth.tenant_id,
                action=ACTION_PHOTO_VERIFIED,
                entity_type="task" if task_id is not None else "external_task",
                entity_id=task_id if task_id is not None else external_task_id,
                user_id=auth.user_id,
                details=details,
            )
            await session.commit()
            return verification

    async def list_verifications(
        self,
        tenant_id: str,
        *,
        task_id: Optional[str] = None,
        external_task_id: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> Tuple[List[Verification], int]:
        where = [Verification.tenant_id == tenant_id]
        if task_id:
            where.append(Verification.task_id == task_id)
        if external_task_id:
            where.append(Verification.external_task_id == external_task_id)
        stmt = (
            select(Verification)
            .where(*where)
            .order_by(Verification.created_at.desc(), Verification.id)
            .limit(limit)
            .offset(offset)
        )
        count_stmt = select(func.count()).select_from(Verification).where(*where)
        async with self._session("list_verifications") as session:
            items = list((await session.execute(stmt)).scalars().all())
            total = int((await session.execute(count_stmt)).scalar_one())
        return items, total

    # ------------------------------ audit ------------------------------------

    async def list_audit(
        self,
        tenant_id: str,
        *,
        action: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> List[AuditLogEntry]:
        stmt = select(AuditLogEntry).where(AuditLogEntry.tenant_id == tenant_id)
        if action:
            stmt = stmt.where(AuditLogEntry.action == action)
        stmt = stmt.order_by(AuditLogEntry.created_at.desc(), AuditLogEntry.id).limit(limit).offset(offset)
        async with self._session("list_audit") as session:
            return list((await session.execute(stmt)).scalars().all())
