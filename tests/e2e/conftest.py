"""Pytest fixtures for E2E tests.

End-to-end tests drive Mission Control through its HTTP API with every
component real except the Gateway's far end: the GatewayClient talks to a
scripted in-memory Gateway that speaks the same frame protocol (challenge,
connect, sessions.*, chat.send). Requests therefore cross the web layer, the
state machine, the dispatch executor, the session directory and the
client's framing before reaching the fake.
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import AsyncGenerator, Awaitable, Callable
from typing import Any

import pytest
import pytest_asyncio
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool
from websockets.exceptions import ConnectionClosedOK

from mission_control.config import DispatchConfig, GatewayConfig, MissionControlConfig
from mission_control.database.models import Agent, Base
from mission_control.database.queries.agent import create_agent
from mission_control.events import EventBroadcaster
from mission_control.gateway.client import GatewayClient
from mission_control.orchestrator.dispatcher import DispatchExecutor
from mission_control.orchestrator.session_directory import SessionDirectory
from mission_control.web.app import create_app

_CLOSED = object()


class ScriptedGatewaySocket:
    """One client connection to the scripted Gateway."""

    def __init__(self, gateway: ScriptedGateway) -> None:
        self.gateway = gateway
        self.inbox: asyncio.Queue[Any] = asyncio.Queue()

    async def send(self, raw: str) -> None:
        self.inbox.put_nowait(json.dumps(self.gateway.handle(json.loads(raw))))

    async def recv(self) -> str:
        item = await self.inbox.get()
        if item is _CLOSED:
            raise ConnectionClosedOK(None, None)
        return item

    async def close(self) -> None:
        self.inbox.put_nowait(_CLOSED)


class ScriptedGateway:
    """In-memory Gateway keeping sessions and the chat messages it receives.

    Attributes:
        online: When False, new connections are refused.
        sessions: Live sessions, as the Gateway reports them.
        messages: Params of every ``chat.send`` call, in order.
    """

    def __init__(self) -> None:
        self.online = True
        self.sessions: list[dict[str, Any]] = []
        self.messages: list[dict[str, Any]] = []
        self.connections = 0

    async def connect(self, url: str) -> ScriptedGatewaySocket:
        if not self.online:
            raise OSError("Connection refused")
        self.connections += 1
        socket = ScriptedGatewaySocket(self)
        socket.inbox.put_nowait(
            json.dumps({"type": "event", "event": "connect.challenge", "payload": {"nonce": "n"}})
        )
        return socket

    def handle(self, frame: dict[str, Any]) -> dict[str, Any]:
        method = frame["method"]
        params = frame.get("params") or {}

        if method == "connect":
            payload: Any = {"protocol": 3}
        elif method == "sessions.list":
            payload = {"sessions": list(self.sessions)}
        elif method == "sessions.create":
            payload = {
                "id": f"sess-{len(self.sessions) + 1}",
                "channel": params["channel"],
                "peer": params.get("peer"),
            }
            self.sessions.append(payload)
        elif method == "chat.send":
            self.messages.append(params)
            payload = {"runId": f"run-{len(self.messages)}"}
        else:
            return {
                "type": "res",
                "id": frame["id"],
                "ok": False,
                "error": {"message": f"unknown method {method}"},
            }
        return {"type": "res", "id": frame["id"], "ok": True, "payload": payload}

    def messages_for(self, session_id: str) -> list[str]:
        return [m["message"] for m in self.messages if m["sessionKey"].endswith(f":{session_id}")]


@pytest_asyncio.fixture
async def e2e_engine() -> AsyncGenerator[AsyncEngine, None]:
    """Create an in-memory SQLite async engine for E2E testing.

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
async def e2e_session_factory(e2e_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Create an async session factory bound to the test engine."""
    return async_sessionmaker(bind=e2e_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
def gateway() -> ScriptedGateway:
    return ScriptedGateway()


@pytest.fixture
def broadcaster() -> EventBroadcaster:
    return EventBroadcaster()


@pytest_asyncio.fixture
async def gateway_client(
    gateway: ScriptedGateway,
    broadcaster: EventBroadcaster,
) -> AsyncGenerator[GatewayClient, None]:
    """A real GatewayClient connected (on demand) to the scripted Gateway."""
    config = GatewayConfig.model_construct(
        url="ws://gateway.test:18789",
        token="e2e-token",
        connect_timeout_seconds=1.0,
        request_timeout_seconds=1.0,
    )
    client = GatewayClient(
        config,
        connector=gateway.connect,
        on_event=broadcaster.relay_gateway_event,
    )
    yield client
    await client.close()


@pytest.fixture
def e2e_app(
    e2e_session_factory: async_sessionmaker[AsyncSession],
    gateway_client: GatewayClient,
    broadcaster: EventBroadcaster,
) -> FastAPI:
    """The application with its engine pointed at the scripted Gateway."""
    config = MissionControlConfig()
    directory = SessionDirectory(gateway_client)

    app = create_app(config)
    app.state.session_factory = e2e_session_factory
    app.state.broadcaster = broadcaster
    app.state.gateway_client = gateway_client
    app.state.session_directory = directory
    app.state.dispatch_executor = DispatchExecutor(
        directory,
        gateway_config=gateway_client.config,
        dispatch_config=DispatchConfig(),
    )
    return app


@pytest_asyncio.fixture
async def api(e2e_app: FastAPI) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client for the E2E app."""
    async with AsyncClient(transport=ASGITransport(app=e2e_app), base_url="http://test") as ac:
        yield ac


@pytest.fixture
def register_agent(
    e2e_session_factory: async_sessionmaker[AsyncSession],
) -> Callable[..., Awaitable[Agent]]:
    """Return a coroutine function that registers an agent."""

    async def _register(name: str = "Ada", **kwargs: Any) -> Agent:
        async with e2e_session_factory() as session:
            async with session.begin():
                return await create_agent(session, name=name, **kwargs)

    return _register
