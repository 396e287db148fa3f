"""Task REST API endpoints for Mission Control.

Provides the read side of the task table, collaborator status changes, and
the engine operations: complete planning, manual dispatch and the
operator-triggered dispatch retry. Also serves the live status indicator
of a task.
"""

from __future__ import annotations

from dataclasses import asdict
from datetime import datetime
from typing import Any

import structlog
from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from mission_control.database.models.activity import ActivityType
from mission_control.database.models.task import TaskPriority, TaskStatus
from mission_control.database.queries.activity import list_activities
from mission_control.database.queries.task import create_task, get_task, list_tasks
from mission_control.database.queries.workflow import get_workflow_template
from mission_control.gateway.client import GatewayError
from mission_control.gateway.models import GatewaySession
from mission_control.orchestrator.dispatcher import DispatchPreconditionError
from mission_control.orchestrator.pipeline import resolve_pipeline_stage
from mission_control.orchestrator.session_directory import SessionDirectory
from mission_control.orchestrator.state_machine import (
    DispatchOutcome,
    ForbiddenTransitionError,
    InvalidTransitionError,
    TaskNotFoundError,
    TaskStateMachine,
    parse_status,
)
from mission_control.orchestrator.status_indicator import derive_indicator, has_live_session
from mission_control.web.dependencies import (
    get_session_directory,
    get_session_factory,
    get_state_machine,
)

logger = structlog.get_logger(__name__)


# --- Pydantic Schemas ---


class TaskCreate(BaseModel):
    """Request schema for creating a new task."""

    title: str = Field(..., min_length=1, max_length=255)
    description: str | None = None
    workspace_id: str = Field(default="default", min_length=1)
    priority: TaskPriority = TaskPriority.normal
    assigned_agent_id: str | None = None
    workflow_template_id: str | None = None
    current_stage: int | None = Field(default=None, ge=1)
    due_date: datetime | None = None


class TaskStatusUpdate(BaseModel):
    """Request schema for a collaborator status change."""

    status: str
    updated_by_agent_id: str | None = None


class PlanningComplete(BaseModel):
    """Request schema for completing planning."""

    agent_id: str | None = None


class TaskResponse(BaseModel):
    """Response schema for task data."""

    id: str
    workspace_id: str
    title: str
    description: str | None
    priority: TaskPriority
    status: TaskStatus
    assigned_agent_id: str | None
    planning_complete: bool
    planning_dispatch_error: str | None
    workflow_template_id: str | None
    current_stage: int | None
    due_date: datetime | None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class ActivityResponse(BaseModel):
    """Response schema for a task activity entry."""

    id: str
    task_id: str
    agent_id: str | None
    activity_type: ActivityType
    message: str
    created_at: datetime

    model_config = {"from_attributes": True}


class IndicatorResponse(BaseModel):
    """Live status indicator of a task. ``indicator`` is None when nothing
    should be displayed."""

    task_id: str
    status: TaskStatus
    session_live: bool
    indicator: dict[str, Any] | None


def _not_found(task_id: str) -> HTTPException:
    logger.warning("task_not_found", task_id=task_id)
    return HTTPException(status_code=404, detail="Task not found")


def create_tasks_router() -> APIRouter:
    """Create the task router.

    Returns:
        APIRouter mounted under /api/tasks.
    """
    router = APIRouter(prefix="/api/tasks", tags=["tasks"])

    @router.get("/", response_model=list[TaskResponse])
    async def list_tasks_endpoint(
        workspace_id: str | None = None,
        status: str | None = None,
        session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),  # noqa: B008
    ) -> list[TaskResponse]:
        """List tasks with optional workspace and status filters.

        Raises:
            HTTPException: 400 if status is invalid.
        """
        status_filter = None
        if status is not None:
            try:
                status_filter = parse_status(status)
            except ValueError as e:
                logger.warning("invalid_status_filter", status=status)
                raise HTTPException(status_code=400, detail=str(e))

        async with session_factory() as session:
            tasks = await list_tasks(
                session,
                workspace_id=workspace_id,
                status_filter=status_filter,
            )

        logger.info("tasks_listed", count=len(tasks), workspace_id=workspace_id, status=status)
        return [TaskResponse.model_validate(task) for task in tasks]

    @router.get("/{task_id}", response_model=TaskResponse)
    async def get_task_endpoint(
        task_id: str,
        session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),  # noqa: B008
    ) -> TaskResponse:
        """Get a single task by ID.

        Raises:
            HTTPException: 404 if task not found.
        """
        async with session_factory() as session:
            task = await get_task(session, task_id)

        if task is None:
            raise _not_found(task_id)
        return TaskResponse.model_validate(task)

    @router.post("/", response_model=TaskResponse, status_code=201)
    async def create_task_endpoint(
        task_data: TaskCreate,
        session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),  # noqa: B008
    ) -> TaskResponse:
        """Create a new task in the planning state."""
        async with session_factory() as session:
            async with session.begin():
                task = await create_task(
                    session,
                    title=task_data.title,
                    description=task_data.description,
                    workspace_id=task_data.workspace_id,
                    priority=task_data.priority,
                    assigned_agent_id=task_data.assigned_agent_id,
                    workflow_template_id=task_data.workflow_template_id,
                    current_stage=task_data.current_stage,
                    due_date=task_data.due_date,
                )

        logger.info("task_created_via_api", task_id=task.id, title=task.title)
        return TaskResponse.model_validate(task)

    @router.patch("/{task_id}/status", response_model=TaskResponse)
    async def update_task_status_endpoint(
        task_id: str,
        status_update: TaskStatusUpdate,
        state_machine: TaskStateMachine = Depends(get_state_machine),  # noqa: B008
    ) -> TaskResponse:
        """Move a task to a new status on behalf of a collaborator.

        Raises:
            HTTPException: 400 for an unknown status or an invalid
                transition, 403 when a non-master agent approves a reviewed
                task, 404 if the task does not exist.
        """
        try:
            task = await state_machine.transition(
                task_id,
                status_update.status,
                updated_by_agent_id=status_update.updated_by_agent_id,
            )
        except TaskNotFoundError:
            raise _not_found(task_id)
        except ForbiddenTransitionError as e:
            logger.warning("task_transition_forbidden", task_id=task_id, agent_id=e.agent_id)
            raise HTTPException(status_code=403, detail=str(e))
        except (InvalidTransitionError, ValueError) as e:
            logger.warning("task_transition_rejected", task_id=task_id, error=str(e))
            raise HTTPException(status_code=400, detail=str(e))

        return TaskResponse.model_validate(task)

    @router.post("/{task_id}/planning/complete", response_model=DispatchOutcome)
    async def complete_planning_endpoint(
        task_id: str,
        body: PlanningComplete | None = None,
        state_machine: TaskStateMachine = Depends(get_state_machine),  # noqa: B008
    ) -> DispatchOutcome:
        """Finish planning and dispatch the task to its agent.

        A failed dispatch is not an HTTP error here: planning did complete,
        and the outcome reports the task parked in pending_dispatch.
        """
        agent_id = body.agent_id if body is not None else None
        try:
            outcome = await state_machine.complete_planning(task_id, agent_id=agent_id)
        except TaskNotFoundError:
            raise _not_found(task_id)
        except (InvalidTransitionError, DispatchPreconditionError) as e:
            raise HTTPException(status_code=400, detail=str(e))

        logger.info(
            "planning_completed_via_api",
            task_id=task_id,
            success=outcome.success,
            status=outcome.status.value,
        )
        return outcome

    @router.post("/{task_id}/dispatch")
    async def dispatch_task_endpoint(
        task_id: str,
        state_machine: TaskStateMachine = Depends(get_state_machine),  # noqa: B008
    ) -> Any:
        """Dispatch a task in inbox or assigned to its agent.

        Returns:
            The outcome on success, or 500 with the failure details.
        """
        try:
            outcome = await state_machine.dispatch_task(task_id)
        except TaskNotFoundError:
            raise _not_found(task_id)
        except (InvalidTransitionError, DispatchPreconditionError) as e:
            raise HTTPException(status_code=400, detail=str(e))

        if not outcome.success:
            return JSONResponse(
                status_code=500,
                content={"error": "Dispatch failed", "details": outcome.error},
            )
        return outcome.model_dump(mode="json")

    @router.post("/{task_id}/planning/retry-dispatch")
    async def retry_dispatch_endpoint(
        task_id: str,
        state_machine: TaskStateMachine = Depends(get_state_machine),  # noqa: B008
    ) -> Any:
        """Retry the dispatch of a task whose previous dispatch failed.

        Returns:
            ``{"success": true, "message": ...}`` on success, or 500 with
            ``{"error": "Dispatch retry failed", "details": ...}``.

        Raises:
            HTTPException: 404 if the task does not exist, 400 if planning is
                not complete, no agent is assigned, or the task has moved on.
        """
        try:
            outcome = await state_machine.retry_dispatch(task_id)
        except TaskNotFoundError:
            raise _not_found(task_id)
        except (DispatchPreconditionError, InvalidTransitionError) as e:
            logger.warning("dispatch_retry_rejected", task_id=task_id, error=str(e))
            raise HTTPException(status_code=400, detail=str(e))

        if not outcome.success:
            return JSONResponse(
                status_code=500,
                content={"error": "Dispatch retry failed", "details": outcome.error},
            )
        return {"success": True, "message": "Dispatch retry successful"}

    @router.get("/{task_id}/activities", response_model=list[ActivityResponse])
    async def list_activities_endpoint(
        task_id: str,
        session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),  # noqa: B008
    ) -> list[ActivityResponse]:
        """Return the activity log of a task, oldest first."""
        async with session_factory() as session:
            task = await get_task(session, task_id)
            if task is None:
                raise _not_found(task_id)
            activities = await list_activities(session, task_id)
        return [ActivityResponse.model_validate(a) for a in activities]

    @router.get("/{task_id}/indicator", response_model=IndicatorResponse)
    async def get_indicator_endpoint(
        task_id: str,
        session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),  # noqa: B008
        directory: SessionDirectory = Depends(get_session_directory),  # noqa: B008
    ) -> IndicatorResponse:
        """Derive the live status indicator of a task.

        When the Gateway cannot be reached every session counts as absent.
        """
        async with session_factory() as session:
            task = await get_task(session, task_id)
            if task is None:
                raise _not_found(task_id)
            template = None
            if task.workflow_template_id:
                template = await get_workflow_template(session, task.workflow_template_id)

        sessions: dict[str, GatewaySession | None] = {}
        if task.assigned_agent_id:
            try:
                sessions = await directory.sessions_by_agent([task.assigned_agent_id])
            except GatewayError as e:
                logger.warning("indicator_gateway_unavailable", task_id=task_id, error=str(e))

        pipeline = resolve_pipeline_stage(task, [template] if template else [])
        indicator = derive_indicator(task, sessions, pipeline)
        return IndicatorResponse(
            task_id=task.id,
            status=task.status,
            session_live=has_live_session(task, sessions),
            indicator=asdict(indicator) if indicator else None,
        )

    return router
