"""Probe endpoints.

``/health/`` answers as long as the process is serving. ``/health/ready``
also runs a trivial query; it reports the Gateway link for information
only, because every Gateway call connects on demand.
"""

from __future__ import annotations

from typing import Literal

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from mission_control.logging import get_logger
from mission_control.orchestrator.session_directory import SessionDirectory
from mission_control.web.dependencies import get_session_directory, get_session_factory

logger = get_logger(__name__)

LinkState = Literal["connected", "disconnected"]


class HealthResponse(BaseModel):
    status: Literal["ok"] = "ok"


class ReadinessResponse(BaseModel):
    """Readiness report; ``status`` is "unhealthy" when the database is down."""

    status: Literal["ok", "unhealthy"]
    database: LinkState
    gateway: LinkState


async def _database_reachable(session_factory: async_sessionmaker[AsyncSession]) -> bool:
    try:
        async with session_factory() as session:
            await session.execute(text("SELECT 1"))
    except Exception as exc:
        logger.warning("readiness_check_failed", error=str(exc))
        return False
    return True


def create_health_router() -> APIRouter:
    """Build the ``/health`` router."""
    router = APIRouter(prefix="/health", tags=["health"])

    @router.get("/", response_model=HealthResponse)
    async def health() -> HealthResponse:
        return HealthResponse()

    @router.get("/ready", response_model=ReadinessResponse)
    async def readiness(
        session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),  # noqa: B008
        directory: SessionDirectory = Depends(get_session_directory),  # noqa: B008
    ) -> ReadinessResponse:
        database_ok = await _database_reachable(session_factory)
        report = ReadinessResponse(
            status="ok" if database_ok else "unhealthy",
            database="connected" if database_ok else "disconnected",
            gateway="connected" if directory.is_connected() else "disconnected",
        )
        logger.debug("readiness_checked", **report.model_dump())
        return report

    return router
