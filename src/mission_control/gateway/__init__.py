"""Gateway integration for Mission Control.

The Gateway is the remote service that hosts agent sessions. This package
provides the WebSocket RPC client and the models it returns.
"""

from mission_control.gateway.client import (
    GatewayClient,
    GatewayConnectionError,
    GatewayError,
    GatewayRequestError,
    GatewayTimeoutError,
)
from mission_control.gateway.models import GatewaySession, SessionHistoryEntry

__all__ = [
    "GatewayClient",
    "GatewayError",
    "GatewayConnectionError",
    "GatewayTimeoutError",
    "GatewayRequestError",
    "GatewaySession",
    "SessionHistoryEntry",
]
