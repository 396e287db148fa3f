"""Task model for Mission Control.

Defines the Task table, the TaskStatus lifecycle enum and the TaskPriority
enum. A task is a unit of work planned by an operator, assigned to an agent
and dispatched to that agent's session on the Gateway.
"""

from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import Boolean, DateTime, Enum, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from mission_control.database.models.base import Base, TimestampMixin


class TaskStatus(str, enum.Enum):
    """Lifecycle state of a task.

    States:
        planning: Task is being specified. Not yet eligible for dispatch.
        inbox: Planning finished. Waiting for (or already handed to) an agent.
        assigned: An agent has been assigned.
        in_progress: The agent is working on the task.
        testing: Deliverables are being verified.
        review: Awaiting human review.
        done: Terminal. No outgoing transitions.
        pending_dispatch: Planning finished but the hand-off to the agent's
            session failed. Exits only through a successful retry.
    """

    planning = "planning"
    inbox = "inbox"
    assigned = "assigned"
    in_progress = "in_progress"
    testing = "testing"
    review = "review"
    done = "done"
    pending_dispatch = "pending_dispatch"


class TaskPriority(str, enum.Enum):
    """Operator-assigned task priority."""

    low = "low"
    normal = "normal"
    high = "high"
    urgent = "urgent"


class Task(TimestampMixin, Base):
    """A unit of work tracked by Mission Control.

    Invariant: when status is pending_dispatch, planning_complete is True and
    planning_dispatch_error holds the reason of the last failed hand-off.

    Attributes:
        id: uuid4 text primary key (from TimestampMixin).
        workspace_id: Workspace the task belongs to.
        title: Short description of the task.
        description: Detailed instructions for the agent.
        priority: Operator-assigned priority.
        status: Current lifecycle state.
        assigned_agent_id: Agent responsible for the task, if any.
        planning_complete: Set once planning finished. Never reset.
        planning_dispatch_error: Reason of the most recent failed dispatch.
        workflow_template_id: Optional multi-stage pipeline template.
        current_stage: 1-indexed stage within the pipeline template.
        due_date: Optional due date.
        created_at: Row creation timestamp (from TimestampMixin).
        updated_at: Last modification timestamp (from TimestampMixin).
        assigned_agent: Relationship to the assigned Agent.
    """

    __tablename__ = "tasks"

    workspace_id: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        default="default",
    )
    title: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    priority: Mapped[TaskPriority] = mapped_column(
        Enum(TaskPriority, name="task_priority"),
        default=TaskPriority.normal,
        nullable=False,
    )
    status: Mapped[TaskStatus] = mapped_column(
        Enum(TaskStatus, name="task_status"),
        default=TaskStatus.planning,
        nullable=False,
    )
    assigned_agent_id: Mapped[str | None] = mapped_column(
        ForeignKey("agents.id"),
        nullable=True,
    )
    planning_complete: Mapped[bool] = mapped_column(
        Boolean,
        default=False,
        nullable=False,
    )
    planning_dispatch_error: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )
    workflow_template_id: Mapped[str | None] = mapped_column(
        ForeignKey("workflow_templates.id"),
        nullable=True,
    )
    current_stage: Mapped[int | None] = mapped_column(Integer, nullable=True)
    due_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # Relationships
    assigned_agent: Mapped["Agent"] = relationship(  # noqa: F821
        "Agent",
        lazy="selectin",
    )
