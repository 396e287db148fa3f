"""Web interface for Mission Control.

FastAPI application exposing the task engine, Gateway sessions and a
Server-Sent Events stream of engine events.
"""

from __future__ import annotations

from mission_control.web.app import create_app
from mission_control.web.middleware import BearerTokenMiddleware, RequestLoggingMiddleware

__all__ = [
    "create_app",
    "BearerTokenMiddleware",
    "RequestLoggingMiddleware",
]
