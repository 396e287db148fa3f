"""FastAPI dependencies resolving engine components from ``app.state``."""

from __future__ import annotations

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from mission_control.events import EventBroadcaster
from mission_control.orchestrator.session_directory import SessionDirectory
from mission_control.orchestrator.state_machine import TaskStateMachine


def get_session_factory(request: Request) -> async_sessionmaker[AsyncSession]:
    """Extract session factory from FastAPI app state.

    Args:
        request: Incoming FastAPI request.

    Returns:
        Session factory created during application startup.
    """
    return request.app.state.session_factory


def get_session_directory(request: Request) -> SessionDirectory:
    """Return the application's session directory."""
    return request.app.state.session_directory


def get_event_broadcaster(request: Request) -> EventBroadcaster:
    """Return the application's event broadcaster."""
    return request.app.state.broadcaster


def get_state_machine(request: Request) -> TaskStateMachine:
    """Build a state machine bound to the current app's components."""
    state = request.app.state
    return TaskStateMachine(
        session_factory=state.session_factory,
        executor=state.dispatch_executor,
        broadcaster=state.broadcaster,
        dispatch_config=state.config.dispatch,
    )
