from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query, Request

from photoverify.dependencies.auth import AdminOnly, Writer, get_auth_context
from photoverify.dependencies.services import get_store, rate_limit
from photoverify.errors import NotFound
from photoverify.routes import envelope
from photoverify.schemas.auth import AuthContext
from photoverify.schemas.tasks import (
    TaskCreate,
    TaskDetailOut,
    TaskStatus,
    TaskUpdate,
    task_out,
    verification_out,
)
from photoverify.services.store import VerificationStore

router = APIRouter(prefix="/api/tasks", tags=["tasks"], dependencies=[Depends(rate_limit("tasks"))])


def _dump(model: Any) -> Dict[str, Any]:
    return model.model_dump(mode="json", by_alias=True)


@router.get("")
async def list_tasks(
    request: Request,
    status: Optional[TaskStatus] = Query(None, description="Filter by task status"),
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    auth: AuthContext = Depends(get_auth_context),
    store: VerificationStore = Depends(get_store),
) -> Dict[str, Any]:
    items, total = await store.list_tasks(auth.tenant_id, status=status, limit=limit, offset=offset)
    return envelope(
        request,
        auth,
        {
            "tasks": [_dump(task_out(t)) for t in items],
            "pagination": {"limit": limit, "offset": offset, "count": len(items), "total": total},
        },
    )


@router.post("", status_code=201)
async def create_task(
    body: TaskCreate,
    request: Request,
    auth: AuthContext = Depends(Writer),
    store: VerificationStore = Depends(get_store),
) -> Dict[str, Any]:
    task = await store.create_task(auth, body)
    return envelope(request, auth, _dump(task_out(task)))


@router.get("/{task_id}")
async def get_task(
    task_id: str,
    request: Request,
    auth: AuthContext = Depends(get_auth_context),
    store: VerificationStore = Depends(get_store),
) -> Dict[str, Any]:
    task = await store.get_task(auth.tenant_id, task_id)
    if task is None:
        raise NotFound(f"Task {task_id} not found")
    verifications, _ = await store.list_verifications(auth.tenant_id, task_id=task_id, limit=100)
    detail = TaskDetailOut(
        **task_out(task).model_dump(),
        verifications=[verification_out(v) for v in verifications],
    )
    return envelope(request, auth, _dump(detail))


@router.put("/{task_id}")
async def update_task(
    task_id: str,
    body: TaskUpdate,
    request: Request,
    auth: AuthContext = Depends(Writer),
    store: VerificationStore = Depends(get_store),
) -> Dict[str, Any]:
    task = await store.update_task(auth, task_id, body)
    return envelope(request, auth, _dump(task_out(task)))


@router.delete("/{task_id}")
async def delete_task(
    task_id: str,
    request: Request,
    auth: AuthContext = Depends(AdminOnly),
    store: VerificationStore = Depends(get_store),
) -> Dict[str, Any]:
    await store.delete_task(auth, task_id)
    return envelope(request, auth, {"id": task_id, "deleted": True})
