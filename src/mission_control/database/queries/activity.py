"""Task activity log query functions for Mission Control."""

from __future__ import annotations

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from mission_control.database.models.activity import ActivityType, TaskActivity

logger = structlog.get_logger(__name__)


async def log_activity(
    session: AsyncSession,
    task_id: str,
    activity_type: ActivityType,
    message: str,
    agent_id: str | None = None,
) -> TaskActivity:
    """Append an activity row for a task. The caller owns the transaction.

    Args:
        session: Active async database session.
        task_id: Task the activity belongs to.
        activity_type: Kind of activity.
        message: Human-readable description.
        agent_id: Agent involved, if any.

    Returns:
        The new TaskActivity row.
    """
    activity = TaskActivity(
        task_id=task_id,
        agent_id=agent_id,
        activity_type=activity_type,
        message=message,
    )
    session.add(activity)
    await session.flush()

    logger.debug(
        "task_activity_logged",
        task_id=task_id,
        activity_type=activity_type.value,
    )
    return activity


async def list_activities(
    session: AsyncSession,
    task_id: str,
) -> list[TaskActivity]:
    """Return a task's activity log, oldest first."""
    stmt = (
        select(TaskActivity)
        .where(TaskActivity.task_id == task_id)
        .order_by(TaskActivity.created_at.asc())
    )
    result = await session.execute(stmt)
    return list(result.scalars().all())
