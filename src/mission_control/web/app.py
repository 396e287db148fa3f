"""FastAPI application factory for Mission Control.

Creates the application and wires the engine together:

- Gateway client, session directory and dispatch executor are created with
  the app (no I/O happens until a request needs the Gateway)
- the database engine and session factory are created on startup
- Gateway events are relayed to the SSE stream as session activity

Example usage:
    >>> from mission_control.config import MissionControlConfig
    >>> from mission_control.web.app import create_app
    >>>
    >>> app = create_app(MissionControlConfig())
    >>>
    >>> import uvicorn
    >>> uvicorn.run(app, host="0.0.0.0", port=4000)
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from mission_control import __version__
from mission_control.config import MissionControlConfig
from mission_control.database.connection import get_engine, get_session_factory
from mission_control.events import get_broadcaster
from mission_control.gateway.client import GatewayClient
from mission_control.logging import get_logger
from mission_control.orchestrator.dispatcher import DispatchExecutor
from mission_control.orchestrator.session_directory import SessionDirectory
from mission_control.web.middleware import BearerTokenMiddleware, RequestLoggingMiddleware
from mission_control.web.routes.events import create_events_router
from mission_control.web.routes.health import create_health_router
from mission_control.web.routes.sessions import create_sessions_router
from mission_control.web.routes.tasks import create_tasks_router

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Open the database pool on startup; release it and the Gateway on shutdown.

    Args:
        app: FastAPI application instance

    Yields:
        None after startup, cleans up on context exit
    """
    config: MissionControlConfig = app.state.config

    logger.info("app_startup_begin", host=config.web.host, port=config.web.port)

    engine = get_engine(config.database)
    app.state.engine = engine
    app.state.session_factory = get_session_factory(engine)

    logger.info(
        "database_pool_initialized",
        pool_size=config.database.pool_size,
        max_overflow=config.database.max_overflow,
    )

    yield

    logger.info("app_shutdown_begin")
    await app.state.gateway_client.close()
    await app.state.broadcaster.close()
    await engine.dispose()
    logger.info("database_pool_disposed")


def create_app(config: MissionControlConfig | None = None) -> FastAPI:
    """Create and configure a FastAPI application.

    Args:
        config: Optional MissionControlConfig. If None, creates default config.

    Returns:
        Configured FastAPI application instance.
    """
    if config is None:
        config = MissionControlConfig()

    app = FastAPI(
        title="Mission Control",
        version=__version__,
        description="Task dispatch and session-liveness engine",
        lifespan=lifespan,
    )

    broadcaster = get_broadcaster()
    gateway_client = GatewayClient(config.gateway, on_event=broadcaster.relay_gateway_event)
    session_directory = SessionDirectory(gateway_client)

    app.state.config = config
    app.state.broadcaster = broadcaster
    app.state.gateway_client = gateway_client
    app.state.session_directory = session_directory
    app.state.dispatch_executor = DispatchExecutor(
        session_directory,
        gateway_config=config.gateway,
        dispatch_config=config.dispatch,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.web.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    if config.web.api_token:
        app.add_middleware(BearerTokenMiddleware, token=config.web.api_token)
    # Added last so it runs first and logs rejected requests too
    app.add_middleware(RequestLoggingMiddleware)

    app.include_router(create_health_router())
    app.include_router(create_tasks_router())
    app.include_router(create_sessions_router())
    app.include_router(create_events_router())

    logger.info(
        "app_created",
        cors_origins=config.web.cors_origins,
        auth_enabled=bool(config.web.api_token),
        version=__version__,
    )

    return app
