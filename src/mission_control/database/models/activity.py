"""Task activity log model for Mission Control.

Append-only rows recording every state change the engine performs on a
task, so operators can see when and why a dispatch failed.
"""

from __future__ import annotations

import enum

from sqlalchemy import Enum, ForeignKey, Text
from sqlalchemy.orm import Mapped, mapped_column

from mission_control.database.models.base import Base, TimestampMixin


class ActivityType(str, enum.Enum):
    """Kind of activity recorded against a task."""

    status_changed = "status_changed"
    dispatched = "dispatched"
    dispatch_failed = "dispatch_failed"


class TaskActivity(TimestampMixin, Base):
    """A single entry in a task's activity log.

    Attributes:
        task_id: Task the activity belongs to.
        agent_id: Agent involved, if any.
        activity_type: Kind of activity.
        message: Human-readable description.
    """

    __tablename__ = "task_activities"

    task_id: Mapped[str] = mapped_column(
        ForeignKey("tasks.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    agent_id: Mapped[str | None] = mapped_column(
        ForeignKey("agents.id"),
        nullable=True,
    )
    activity_type: Mapped[ActivityType] = mapped_column(
        Enum(ActivityType, name="activity_type"),
        nullable=False,
    )
    message: Mapped[str] = mapped_column(Text, nullable=False)
