"""Unit tests for FastAPI application setup.

Tests cover:
- Application factory creates FastAPI instance wired to the engine
- CORS middleware is configured correctly
- Request logging and bearer token middleware
- Health endpoints return expected responses
- Readiness endpoint verifies database connectivity and reports the Gateway
"""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from httpx import ASGITransport, AsyncClient

from mission_control.config import MissionControlConfig, WebConfig
from mission_control.orchestrator.dispatcher import DispatchExecutor
from mission_control.orchestrator.session_directory import SessionDirectory
from mission_control.web.app import create_app
from mission_control.web.middleware import BearerTokenMiddleware, RequestLoggingMiddleware


def healthy_session_factory() -> MagicMock:
    """Session factory whose sessions answer any query."""
    mock_session = AsyncMock()
    mock_session.execute = AsyncMock(return_value=MagicMock())
    factory = MagicMock()
    factory.return_value.__aenter__ = AsyncMock(return_value=mock_session)
    factory.return_value.__aexit__ = AsyncMock(return_value=None)
    return factory


def client_for(app: FastAPI) -> AsyncClient:
    return AsyncClient(transport=ASGITransport(app=app), base_url="http://test")


class TestCreateApp:
    """Test application factory function."""

    def test_returns_fastapi_instance(self) -> None:
        """Test that create_app returns a FastAPI instance."""
        assert isinstance(create_app(), FastAPI)

    def test_app_metadata(self) -> None:
        """Test title and version."""
        app = create_app()
        assert app.title == "Mission Control"
        assert app.version == "0.1.0"

    def test_app_stores_config_in_state(self) -> None:
        """Test that config is stored in app.state."""
        config = MissionControlConfig()
        app = create_app(config)
        assert app.state.config is config

    def test_engine_components_created_without_io(self) -> None:
        """Test the Gateway components exist and are not connected."""
        app = create_app()

        assert isinstance(app.state.session_directory, SessionDirectory)
        assert isinstance(app.state.dispatch_executor, DispatchExecutor)
        assert app.state.session_directory.is_connected() is False


class TestMiddlewareRegistration:
    """Test middleware configuration."""

    def test_cors_uses_config_origins(self) -> None:
        """Test that CORS middleware uses origins from config."""
        origins = ["https://app.example.com", "https://admin.example.com"]
        app = create_app(MissionControlConfig(web=WebConfig(cors_origins=origins)))

        [cors] = [m for m in app.user_middleware if m.cls == CORSMiddleware]
        assert cors.kwargs["allow_origins"] == origins
        assert cors.kwargs["allow_credentials"] is True

    def test_logging_middleware_is_registered(self) -> None:
        """Test that RequestLoggingMiddleware is added to the app."""
        app = create_app()
        assert any(m.cls == RequestLoggingMiddleware for m in app.user_middleware)

    def test_bearer_middleware_only_with_token(self) -> None:
        """Test the token check is installed only when a token is configured."""
        assert not any(m.cls == BearerTokenMiddleware for m in create_app().user_middleware)

        app = create_app(MissionControlConfig(web=WebConfig(api_token="s3cret")))
        assert any(m.cls == BearerTokenMiddleware for m in app.user_middleware)


class TestHealthEndpoints:
    """Test liveness and readiness."""

    @pytest.mark.asyncio
    async def test_health_returns_ok(self) -> None:
        """Test that /health/ returns status ok."""
        async with client_for(create_app()) as client:
            response = await client.get("/health/")

        assert response.status_code == 200
        assert response.json() == {"status": "ok"}

    @pytest.mark.asyncio
    async def test_readiness_when_db_healthy(self) -> None:
        """Test readiness reports the database and a disconnected Gateway."""
        app = create_app()
        app.state.session_factory = healthy_session_factory()

        async with client_for(app) as client:
            response = await client.get("/health/ready")

        assert response.status_code == 200
        assert response.json() == {
            "status": "ok",
            "database": "connected",
            "gateway": "disconnected",
        }

    @pytest.mark.asyncio
    async def test_readiness_reports_connected_gateway(self) -> None:
        """Test the Gateway status comes from the session directory."""
        app = create_app()
        app.state.session_factory = healthy_session_factory()
        directory = MagicMock(spec=SessionDirectory)
        directory.is_connected.return_value = True
        app.state.session_directory = directory

        async with client_for(app) as client:
            response = await client.get("/health/ready")

        assert response.json()["gateway"] == "connected"

    @pytest.mark.asyncio
    async def test_readiness_when_db_fails(self) -> None:
        """Test that readiness returns unhealthy when database fails."""
        app = create_app()
        factory = MagicMock()
        factory.return_value.__aenter__ = AsyncMock(
            side_effect=Exception("Database connection failed")
        )
        factory.return_value.__aexit__ = AsyncMock(return_value=None)
        app.state.session_factory = factory

        async with client_for(app) as client:
            response = await client.get("/health/ready")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "unhealthy"
        assert data["database"] == "disconnected"


class TestCorrelationId:
    """Test correlation ID handling in middleware."""

    @pytest.mark.asyncio
    async def test_response_includes_correlation_id(self) -> None:
        """Test that response includes X-Correlation-ID header."""
        async with client_for(create_app()) as client:
            response = await client.get("/health/")
        assert "X-Correlation-ID" in response.headers

    @pytest.mark.asyncio
    async def test_response_echoes_provided_correlation_id(self) -> None:
        """Test that provided correlation ID is echoed in response."""
        async with client_for(create_app()) as client:
            response = await client.get("/health/", headers={"X-Correlation-ID": "corr-12345"})
        assert response.headers["X-Correlation-ID"] == "corr-12345"


class TestBearerToken:
    """Test API token enforcement."""

    @pytest.fixture
    def secured_app(self) -> FastAPI:
        app = create_app(MissionControlConfig(web=WebConfig(api_token="s3cret")))
        directory = AsyncMock(spec=SessionDirectory)
        directory.list_sessions.return_value = []
        app.state.session_directory = directory
        return app

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "headers",
        [{}, {"Authorization": "Bearer wrong"}, {"Authorization": "Basic s3cret"}],
    )
    async def test_rejects_missing_or_wrong_token(self, secured_app: FastAPI, headers) -> None:
        """Test requests without the right bearer token get 401."""
        async with client_for(secured_app) as client:
            response = await client.get("/api/gateway/sessions/", headers=headers)

        assert response.status_code == 401
        assert response.json() == {"detail": "Unauthorized"}
        assert "X-Correlation-ID" in response.headers

    @pytest.mark.asyncio
    async def test_accepts_token(self, secured_app: FastAPI) -> None:
        """Test the configured token is accepted."""
        async with client_for(secured_app) as client:
            response = await client.get(
                "/api/gateway/sessions/", headers={"Authorization": "Bearer s3cret"}
            )

        assert response.status_code == 200
        assert response.json() == []

    @pytest.mark.asyncio
    async def test_health_is_public(self, secured_app: FastAPI) -> None:
        """Test probes need no credentials."""
        async with client_for(secured_app) as client:
            response = await client.get("/health/")

        assert response.status_code == 200


class TestRouterRegistration:
    """Test that routers are properly registered."""

    @pytest.mark.parametrize(
        "path",
        [
            "/health/",
            "/health/ready",
            "/api/tasks/",
            "/api/tasks/{task_id}/planning/retry-dispatch",
            "/api/tasks/{task_id}/indicator",
            "/api/gateway/sessions/",
            "/events/stream",
        ],
    )
    def test_route_exists(self, path: str) -> None:
        """Test each route is mounted."""
        assert path in [route.path for route in create_app().routes]
