"""
Tasks API Routes.

Register, inspect, run and cancel tasks held by the application's
TaskManager.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from fastapi import APIRouter, Body, Depends, HTTPException, Query, Request, status
from pydantic import BaseModel, ValidationError

from taskweave.core.exceptions import TaskAlreadyRunningError
from taskweave.core.manager import TaskManager
from taskweave.knowledge.store import to_jsonable
from taskweave.tasks.models import TaskStatus, parse_task_config
from taskweave.tasks.task import Task

router = APIRouter()


# ============================================================================
# Response Models
# ============================================================================


class TaskResponse(BaseModel):
    """Task response model."""

    id: str
    name: str
    description: str
    status: TaskStatus
    retries: int
    max_retries: int
    plugins: list[str]
    dependencies: list[str]
    agent_id: str | None
    session_id: str | None
    created_at: datetime
    started_at: datetime | None
    completed_at: datetime | None


class TaskDetailResponse(TaskResponse):
    """Detailed task response with input and result."""

    input: Any = None
    result: dict[str, Any] | None = None


class RunRequest(BaseModel):
    """Request body for running tasks."""

    task_ids: list[str] | None = None


class RunResponse(BaseModel):
    """Results of a run, keyed by task ID, and the executed waves."""

    results: dict[str, dict[str, Any]]
    waves: list[list[str]]


class ExecuteRequest(BaseModel):
    """Request body for executing a single task."""

    input: Any = None


def _to_response(task: Task, detail: bool = False) -> TaskResponse:
    data = {
        "id": task.id,
        "name": task.name,
        "description": task.config.description,
        "status": task.status,
        "retries": task.retries,
        "max_retries": task.config.max_retries,
        "plugins": list(task.config.plugins),
        "dependencies": list(task.dependencies),
        "agent_id": task.agent_id,
        "session_id": task.session_id,
        "created_at": task.created_at,
        "started_at": task.started_at,
        "completed_at": task.completed_at,
    }
    if not detail:
        return TaskResponse(**data)
    return TaskDetailResponse(
        **data,
        input=to_jsonable(task.config.input),
        result=to_jsonable(task.result.to_dict()) if task.result else None,
    )


def get_manager(request: Request) -> TaskManager:
    """Get the TaskManager attached to the application."""
    manager = getattr(request.app.state, "manager", None)
    if manager is None:
        raise HTTPException(status_code=503, detail="Task manager not initialized")
    return manager


def _get_task_or_404(manager: TaskManager, task_id: str) -> Task:
    task = manager.get_task(task_id)
    if task is None:
        raise HTTPException(status_code=404, detail=f"Task with ID {task_id} not found")
    return task


# ============================================================================
# Routes
# ============================================================================


@router.get("/", response_model=list[TaskResponse])
async def list_tasks(
    agent_id: str | None = Query(None, description="Filter by agent"),
    session_id: str | None = Query(None, description="Filter by session"),
    status_filter: TaskStatus | None = Query(None, alias="status", description="Filter by status"),
    manager: TaskManager = Depends(get_manager),
) -> list[TaskResponse]:
    """
    List registered tasks.

    Args:
        agent_id: Optional agent filter.
        session_id: Optional session filter.
        status_filter: Optional status filter.

    Returns:
        List of tasks.
    """
    await manager.wait_for_tasks_loaded()

    if session_id:
        tasks = manager.get_tasks_by_session(session_id)
    else:
        tasks = manager.get_all_tasks()

    if agent_id:
        tasks = [t for t in tasks if t.agent_id == agent_id]
    if status_filter is not None:
        tasks = [t for t in tasks if t.status == status_filter]

    return [_to_response(t) for t in tasks]


@router.post("/", response_model=TaskDetailResponse, status_code=status.HTTP_201_CREATED)
async def create_task(
    payload: dict[str, Any] = Body(..., description="Task configuration"),
    manager: TaskManager = Depends(get_manager),
) -> TaskResponse:
    """
    Create and register a task.

    Accepts ``dependencies`` or the legacy ``dependsOn`` key.

    Raises:
        HTTPException: 422 if the configuration is invalid.
    """
    try:
        config = parse_task_config(payload)
    except (ValidationError, TypeError) as e:
        raise HTTPException(status_code=422, detail=str(e)) from e

    task = await manager.create_task(config)
    return _to_response(task, detail=True)


@router.post("/run", response_model=RunResponse)
async def run_tasks(
    request: RunRequest | None = None,
    manager: TaskManager = Depends(get_manager),
) -> RunResponse:
    """
    Run all tasks, or the given subset, to completion.

    Returns:
        Per-task results and the executed waves.
    """
    task_ids = request.task_ids if request else None
    results = await manager.run(task_ids)
    return RunResponse(
        results={task_id: to_jsonable(r.to_dict()) for task_id, r in results.items()},
        waves=[w.task_ids for w in manager.last_waves],
    )


@router.post("/cancel-all")
async def cancel_all_tasks(manager: TaskManager = Depends(get_manager)) -> dict[str, int]:
    """Cancel every registered task."""
    return {"cancelled": manager.cancel_all()}


@router.get("/{task_id}", response_model=TaskDetailResponse)
async def get_task(
    task_id: str,
    manager: TaskManager = Depends(get_manager),
) -> TaskResponse:
    """
    Get single task by ID.

    Raises:
        HTTPException: If task not found.
    """
    await manager.wait_for_tasks_loaded()
    return _to_response(_get_task_or_404(manager, task_id), detail=True)


@router.post("/{task_id}/execute")
async def execute_task(
    task_id: str,
    request: ExecuteRequest | None = None,
    manager: TaskManager = Depends(get_manager),
) -> dict[str, Any]:
    """
    Execute one task directly, without its dependencies.

    Raises:
        HTTPException: 404 if not found, 409 if already running.
    """
    await manager.wait_for_tasks_loaded()
    _get_task_or_404(manager, task_id)

    try:
        result = await manager.execute_task(task_id, request.input if request else None)
    except TaskAlreadyRunningError as e:
        raise HTTPException(status_code=409, detail=str(e)) from e

    return to_jsonable(result.to_dict())


@router.post("/{task_id}/cancel")
async def cancel_task(
    task_id: str,
    manager: TaskManager = Depends(get_manager),
) -> dict[str, Any]:
    """
    Cancel a task.

    Raises:
        HTTPException: If task not found.
    """
    if not manager.cancel_task(task_id):
        raise HTTPException(status_code=404, detail=f"Task with ID {task_id} not found")
    return {"task_id": task_id, "cancelled": True}
