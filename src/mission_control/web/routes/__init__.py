"""FastAPI route definitions for Mission Control.

Routers for tasks, Gateway sessions, health checks and the SSE stream.
"""

from __future__ import annotations

from mission_control.web.routes.events import create_events_router
from mission_control.web.routes.health import (
    HealthResponse,
    ReadinessResponse,
    create_health_router,
)
from mission_control.web.routes.sessions import SessionCreate, create_sessions_router
from mission_control.web.routes.tasks import (
    IndicatorResponse,
    PlanningComplete,
    TaskCreate,
    TaskResponse,
    TaskStatusUpdate,
    create_tasks_router,
)

__all__ = [
    # Events / SSE
    "create_events_router",
    # Health
    "HealthResponse",
    "ReadinessResponse",
    "create_health_router",
    # Sessions
    "SessionCreate",
    "create_sessions_router",
    # Tasks
    "IndicatorResponse",
    "PlanningComplete",
    "TaskCreate",
    "TaskResponse",
    "TaskStatusUpdate",
    "create_tasks_router",
]
