"""SQLAlchemy ORM models for Mission Control.

All models use SQLAlchemy 2.0 declarative style with Mapped[] type annotations.
"""

from mission_control.database.models.activity import ActivityType, TaskActivity
from mission_control.database.models.agent import Agent
from mission_control.database.models.base import Base, TimestampMixin
from mission_control.database.models.task import Task, TaskPriority, TaskStatus
from mission_control.database.models.workflow import WorkflowRole, WorkflowTemplate

__all__ = [
    "Base",
    "TimestampMixin",
    "Task",
    "TaskStatus",
    "TaskPriority",
    "Agent",
    "WorkflowTemplate",
    "WorkflowRole",
    "TaskActivity",
    "ActivityType",
]
