"""Task query functions for Mission Control.

Write functions flush but never commit: the caller owns the transaction
(``async with session.begin(): ...``) so a status change and its activity
row land in a single atomic write.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

import structlog
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from mission_control.database.models.base import utcnow
from mission_control.database.models.task import Task, TaskPriority, TaskStatus

logger = structlog.get_logger(__name__)


async def create_task(
    session: AsyncSession,
    title: str,
    description: str | None = None,
    workspace_id: str = "default",
    priority: TaskPriority = TaskPriority.normal,
    assigned_agent_id: str | None = None,
    workflow_template_id: str | None = None,
    current_stage: int | None = None,
    due_date: datetime | None = None,
) -> Task:
    """Create a new task in the planning state.

    Args:
        session: Active async database session.
        title: Short task description.
        description: Detailed instructions for the agent.
        workspace_id: Workspace the task belongs to.
        priority: Operator-assigned priority.
        assigned_agent_id: Optional agent to assign up front.
        workflow_template_id: Optional pipeline template.
        current_stage: Optional 1-indexed pipeline stage.
        due_date: Optional due date.

    Returns:
        The newly created Task instance.
    """
    task = Task(
        title=title,
        description=description,
        workspace_id=workspace_id,
        priority=priority,
        status=TaskStatus.planning,
        assigned_agent_id=assigned_agent_id,
        planning_complete=False,
        workflow_template_id=workflow_template_id,
        current_stage=current_stage,
        due_date=due_date,
    )
    session.add(task)
    await session.flush()
    await session.refresh(task)

    logger.info(
        "task_created",
        task_id=task.id,
        workspace_id=workspace_id,
        title=title,
        status=task.status.value,
    )
    return task


async def get_task(
    session: AsyncSession,
    task_id: str,
) -> Task | None:
    """Retrieve a task by ID.

    Args:
        session: Active async database session.
        task_id: Identifier of the task to retrieve.

    Returns:
        The Task instance if found, None otherwise.
    """
    stmt = select(Task).where(Task.id == task_id)
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def list_tasks(
    session: AsyncSession,
    workspace_id: str | None = None,
    status_filter: TaskStatus | None = None,
) -> list[Task]:
    """List tasks, newest first, with optional filters.

    Args:
        session: Active async database session.
        workspace_id: Optional workspace to filter by.
        status_filter: Optional status to filter by.

    Returns:
        List of matching Task instances.
    """
    stmt = select(Task)

    if workspace_id is not None:
        stmt = stmt.where(Task.workspace_id == workspace_id)

    if status_filter is not None:
        stmt = stmt.where(Task.status == status_filter)

    stmt = stmt.order_by(Task.created_at.desc())

    result = await session.execute(stmt)
    return list(result.scalars().all())


async def update_task_fields(
    session: AsyncSession,
    task_id: str,
    **values: Any,
) -> Task:
    """Write the given columns of a task in one UPDATE and bump updated_at.

    Args:
        session: Active async database session.
        task_id: Identifier of the task to update.
        **values: Column values to write.

    Returns:
        The refreshed Task instance.

    Raises:
        ValueError: If task not found.
    """
    task = await get_task(session, task_id)
    if task is None:
        raise ValueError(f"Task {task_id} not found")

    values.setdefault("updated_at", utcnow())
    stmt = update(Task).where(Task.id == task_id).values(**values)
    await session.execute(stmt)
    await session.refresh(task)

    logger.debug(
        "task_fields_updated",
        task_id=task_id,
        fields=sorted(values),
    )
    return task
