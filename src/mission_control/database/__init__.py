"""Database layer for Mission Control.

Public API:
    get_engine: Create an AsyncEngine from DatabaseConfig.
    get_session_factory: Create an async_sessionmaker from an engine.
    Base: SQLAlchemy declarative base for all models.
"""

from mission_control.database.connection import get_engine, get_session_factory
from mission_control.database.models import (
    ActivityType,
    Agent,
    Base,
    Task,
    TaskActivity,
    TaskPriority,
    TaskStatus,
    TimestampMixin,
    WorkflowRole,
    WorkflowTemplate,
)

__all__ = [
    "get_engine",
    "get_session_factory",
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
