"""Gateway session endpoints for Mission Control.

Read-through views of the live sessions hosted by the Gateway, plus
session creation. Nothing here is stored locally; every request asks the
Gateway.

Example:
    >>> from fastapi import FastAPI
    >>> from mission_control.web.routes.sessions import create_sessions_router
    >>>
    >>> app = FastAPI()
    >>> app.include_router(create_sessions_router())
"""

from __future__ import annotations

from collections.abc import Awaitable
from typing import Any, TypeVar

import structlog
from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from mission_control.gateway.client import (
    GatewayConnectionError,
    GatewayRequestError,
    GatewayTimeoutError,
)
from mission_control.gateway.models import GatewaySession, SessionHistoryEntry
from mission_control.orchestrator.session_directory import SessionDirectory
from mission_control.web.dependencies import get_session_directory

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class SessionCreate(BaseModel):
    """Request schema for creating a Gateway session."""

    channel: str = Field(..., min_length=1)
    peer: str | None = None


async def _gateway_call(operation: str, call: Awaitable[T]) -> T:
    """Await a Gateway call, translating its failures into HTTP errors.

    Unreachable Gateway -> 503, timeout -> 504, Gateway-side error -> 502.
    """
    try:
        return await call
    except GatewayConnectionError as e:
        logger.warning("gateway_unavailable", operation=operation, error=str(e))
        raise HTTPException(status_code=503, detail="Failed to connect to Gateway")
    except GatewayTimeoutError as e:
        logger.warning("gateway_timeout", operation=operation, error=str(e))
        raise HTTPException(status_code=504, detail=str(e))
    except GatewayRequestError as e:
        logger.warning("gateway_request_failed", operation=operation, error=str(e))
        raise HTTPException(status_code=502, detail=str(e))


def create_sessions_router() -> APIRouter:
    """Create the Gateway session router.

    Returns:
        APIRouter mounted under /api/gateway/sessions.

    Routes:
        GET /api/gateway/sessions/ - List live sessions
        POST /api/gateway/sessions/ - Create a session
        GET /api/gateway/sessions/{session_id} - Get one session
        GET /api/gateway/sessions/{session_id}/history - Session messages
    """
    router = APIRouter(prefix="/api/gateway/sessions", tags=["sessions"])

    @router.get("/", response_model=list[GatewaySession])
    async def list_sessions_endpoint(
        directory: SessionDirectory = Depends(get_session_directory),  # noqa: B008
    ) -> list[GatewaySession]:
        """List every live session on the Gateway."""
        sessions = await _gateway_call("list_sessions", directory.list_sessions())
        logger.info("gateway_sessions_listed", count=len(sessions))
        return sessions

    @router.post("/", response_model=GatewaySession, status_code=201)
    async def create_session_endpoint(
        body: SessionCreate,
        directory: SessionDirectory = Depends(get_session_directory),  # noqa: B008
    ) -> GatewaySession:
        """Create a session on ``channel``, optionally bound to ``peer``."""
        return await _gateway_call(
            "create_session",
            directory.create_session(body.channel, peer=body.peer),
        )

    @router.get("/{session_id}", response_model=GatewaySession)
    async def get_session_endpoint(
        session_id: str,
        directory: SessionDirectory = Depends(get_session_directory),  # noqa: B008
    ) -> GatewaySession:
        """Get a live session by ID.

        Raises:
            HTTPException: 404 if no live session has this ID.
        """
        session = await _gateway_call("get_session", directory.get_session(session_id))
        if session is None:
            logger.warning("gateway_session_not_found", session_id=session_id)
            raise HTTPException(status_code=404, detail="Session not found")
        return session

    @router.get("/{session_id}/history", response_model=list[SessionHistoryEntry])
    async def get_session_history_endpoint(
        session_id: str,
        directory: SessionDirectory = Depends(get_session_directory),  # noqa: B008
    ) -> list[Any]:
        """Return the message history of a session."""
        return await _gateway_call("session_history", directory.session_history(session_id))

    return router
