"""Pytest fixtures for integration tests.

Provides an in-memory SQLite database (via aiosqlite), a Gateway session
directory double, and a FastAPI app wired to both. The production system
uses PostgreSQL; the models avoid PostgreSQL-only column types so the same
schema runs here unchanged.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator, Awaitable, Callable
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from sqlalchemy.pool import StaticPool
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from mission_control.config import DispatchConfig, GatewayConfig, MissionControlConfig
from mission_control.database.models import Agent, Base, Task
from mission_control.database.queries.agent import create_agent
from mission_control.database.queries.task import create_task, update_task_fields
from mission_control.events import EventBroadcaster
from mission_control.gateway.models import GatewaySession
from mission_control.orchestrator.dispatcher import DispatchExecutor
from mission_control.orchestrator.session_directory import SessionDirectory
from mission_control.orchestrator.state_machine import TaskStateMachine
from mission_control.web.app import create_app


@pytest_asyncio.fixture
async def engine() -> AsyncGenerator[AsyncEngine, None]:
    """Create an in-memory SQLite async engine with all tables.

    Yields:
        Configured AsyncEngine instance using in-memory SQLite.
    """
    test_engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        echo=False,
        poolclass=StaticPool,
    )

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield test_engine

    await test_engine.dispose()


@pytest_asyncio.fixture
async def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Create an async session factory bound to the test engine."""
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    """Create a database session rolled back after the test."""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def make_agent(
    session_factory: async_sessionmaker[AsyncSession],
) -> Callable[..., Awaitable[Agent]]:
    """Return a coroutine function that commits a new agent."""

    async def _make_agent(name: str = "Ada", **kwargs: Any) -> Agent:
        async with session_factory() as session:
            async with session.begin():
                return await create_agent(session, name=name, **kwargs)

    return _make_agent


@pytest.fixture
def make_task(
    session_factory: async_sessionmaker[AsyncSession],
) -> Callable[..., Awaitable[Task]]:
    """Return a coroutine function that commits a new task.

    Keyword arguments accepted by ``create_task`` are passed through; the
    rest (status, planning_complete, planning_dispatch_error, ...) are
    written afterwards so tests can start from any lifecycle state.
    """
    create_kwargs = {
        "description",
        "workspace_id",
        "priority",
        "assigned_agent_id",
        "workflow_template_id",
        "current_stage",
        "due_date",
    }

    async def _make_task(title: str = "Write docs", **kwargs: Any) -> Task:
        creation = {k: v for k, v in kwargs.items() if k in create_kwargs}
        extra = {k: v for k, v in kwargs.items() if k not in create_kwargs}
        async with session_factory() as session:
            async with session.begin():
                task = await create_task(session, title=title, **creation)
                if extra:
                    task = await update_task_fields(session, task.id, **extra)
                return task

    return _make_task


@pytest.fixture
def directory() -> AsyncMock:
    """SessionDirectory double: Gateway reachable, no live sessions."""
    mock = AsyncMock(spec=SessionDirectory)
    mock.is_connected = MagicMock(return_value=True)
    mock.find_agent_session.return_value = None
    mock.create_session.return_value = GatewaySession(id="sess-1", channel="mission-control")
    mock.sessions_by_agent.return_value = {}
    mock.list_sessions.return_value = []
    return mock


@pytest.fixture
def broadcaster() -> EventBroadcaster:
    """A broadcaster private to the test."""
    return EventBroadcaster()


@pytest.fixture
def executor(directory: AsyncMock) -> DispatchExecutor:
    return DispatchExecutor(
        directory,
        gateway_config=GatewayConfig(),
        dispatch_config=DispatchConfig(),
    )


@pytest.fixture
def state_machine(
    session_factory: async_sessionmaker[AsyncSession],
    executor: DispatchExecutor,
    broadcaster: EventBroadcaster,
) -> TaskStateMachine:
    return TaskStateMachine(session_factory, executor, broadcaster)


@pytest.fixture
def app(
    session_factory: async_sessionmaker[AsyncSession],
    directory: AsyncMock,
    executor: DispatchExecutor,
    broadcaster: EventBroadcaster,
) -> FastAPI:
    """FastAPI app wired to the test database and Gateway double."""
    test_app = create_app(MissionControlConfig())
    test_app.state.session_factory = session_factory
    test_app.state.session_directory = directory
    test_app.state.dispatch_executor = executor
    test_app.state.broadcaster = broadcaster
    return test_app


@pytest_asyncio.fixture
async def client(app: FastAPI) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client for the test app."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
