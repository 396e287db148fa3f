"""Database query functions for Mission Control.

This module provides async query functions for:
- Task creation, lookup and field updates
- Agent lookup
- Workflow template lookup
- The task activity log

Write functions flush but do not commit; callers wrap them in
``async with session.begin()``.
"""

from mission_control.database.queries.activity import list_activities, log_activity
from mission_control.database.queries.agent import create_agent, get_agent
from mission_control.database.queries.task import (
    create_task,
    get_task,
    list_tasks,
    update_task_fields,
)
from mission_control.database.queries.workflow import create_workflow_template, get_workflow_template

__all__ = [
    # Task queries
    "create_task",
    "get_task",
    "list_tasks",
    "update_task_fields",
    # Agent queries
    "create_agent",
    "get_agent",
    # Workflow queries
    "create_workflow_template",
    "get_workflow_template",
    # Activity queries
    "log_activity",
    "list_activities",
]
