"""WebSocket RPC client for the agent Gateway.

The Gateway hosts agent sessions and speaks a small JSON frame protocol:

- requests: ``{"type": "req", "id", "method", "params"}``
- responses: ``{"type": "res", "id", "ok", "payload", "error": {"message"}}``
  (older Gateways answer ``{"id", "result" | "error"}``; both are accepted)
- events: ``{"type": "event", "event", "payload"}``

Connecting opens the socket (token passed as the ``token`` query parameter),
waits for the ``connect.challenge`` event and answers with a ``connect``
request describing this client. The connection counts as established only
once that request succeeds.

There is no background reconnect loop. Callers connect-if-needed right
before each network operation, and every pending call fails as soon as the
socket closes. All state lives on the client instance.
"""

from __future__ import annotations

import asyncio
import json
import platform
import uuid
from collections.abc import Awaitable, Callable
from typing import Any
from urllib.parse import urlencode, urlsplit, urlunsplit

import structlog
import websockets

from mission_control.config import GatewayConfig
from mission_control.gateway.models import (
    GatewaySession,
    SessionHistoryEntry,
    parse_sessions,
)

logger = structlog.get_logger(__name__)

Connector = Callable[[str], Awaitable[Any]]
EventHandler = Callable[[str, Any], None]

CHALLENGE_EVENT = "connect.challenge"


class GatewayError(Exception):
    """Base class for Gateway failures."""


class GatewayConnectionError(GatewayError, ConnectionError):
    """The Gateway is unreachable, the handshake failed or the socket closed."""


class GatewayTimeoutError(GatewayError, TimeoutError):
    """A Gateway call did not complete within its timeout.

    Attributes:
        method: RPC method that timed out.
        timeout: Timeout that was exceeded, in seconds.
    """

    def __init__(self, method: str, timeout: float):
        self.method = method
        self.timeout = timeout
        super().__init__(f"Gateway call {method} timed out after {timeout:g}s")


class GatewayRequestError(GatewayError):
    """The Gateway answered a call with an error.

    Attributes:
        method: RPC method that failed.
    """

    def __init__(self, message: str, method: str | None = None):
        self.method = method
        super().__init__(message)


class GatewayClient:
    """Client for the Gateway RPC protocol.

    Attributes:
        config: Gateway connection settings.
    """

    def __init__(
        self,
        config: GatewayConfig,
        connector: Connector | None = None,
        on_event: EventHandler | None = None,
    ) -> None:
        """Initialize the client without connecting.

        Args:
            config: Gateway connection settings.
            connector: Coroutine function opening a socket for a URL.
                Defaults to ``websockets.connect``.
            on_event: Optional callback receiving (event_name, payload) for
                every Gateway event other than the handshake challenge.
        """
        self.config = config
        self._connector: Connector = connector or websockets.connect
        self._on_event = on_event

        self._ws: Any | None = None
        self._connected = False
        self._pending: dict[str, asyncio.Future[Any]] = {}
        self._challenge: asyncio.Future[Any] | None = None
        self._reader_task: asyncio.Task[None] | None = None
        self._connect_task: asyncio.Task[None] | None = None
        self.logger = logger.bind(component="GatewayClient")

    def is_connected(self) -> bool:
        """Whether the socket is open and the handshake completed. No I/O."""
        return self._connected and self._ws is not None

    async def connect(self) -> None:
        """Connect and authenticate, unless already connected.

        Concurrent callers share the same in-flight attempt.

        Raises:
            GatewayConnectionError: If the Gateway is unreachable, rejects the
                handshake, or the handshake exceeds the connect timeout.
        """
        if self.is_connected():
            return

        if self._connect_task is None or self._connect_task.done():
            self._connect_task = asyncio.create_task(
                self._establish(), name="gateway-connect"
            )
        await asyncio.shield(self._connect_task)

    async def call(self, method: str, params: dict[str, Any] | None = None) -> Any:
        """Invoke a Gateway method and return its payload.

        Args:
            method: RPC method name, e.g. ``sessions.list``.
            params: Method parameters.

        Returns:
            The response payload.

        Raises:
            GatewayConnectionError: If not connected or the socket closes
                before the response arrives.
            GatewayTimeoutError: If no response arrives in time.
            GatewayRequestError: If the Gateway reports a failure.
        """
        if not self.is_connected():
            raise GatewayConnectionError("Not connected to gateway")
        return await self._request(method, params or {})

    async def list_sessions(self) -> list[GatewaySession]:
        """Return every live session known to the Gateway."""
        payload = await self.call("sessions.list")
        return parse_sessions(payload)

    async def create_session(self, channel: str, peer: str | None = None) -> GatewaySession:
        """Open a new session on ``channel``, optionally bound to ``peer``."""
        params: dict[str, Any] = {"channel": channel}
        if peer is not None:
            params["peer"] = peer
        payload = await self.call("sessions.create", params)
        return GatewaySession.model_validate(payload)

    async def chat_send(self, session_key: str, message: str, idempotency_key: str) -> Any:
        """Send a chat message to the agent behind ``session_key``."""
        return await self.call(
            "chat.send",
            {
                "sessionKey": session_key,
                "message": message,
                "idempotencyKey": idempotency_key,
            },
        )

    async def session_history(self, session_id: str) -> list[SessionHistoryEntry]:
        """Return the message history of a session."""
        payload = await self.call("sessions.history", {"session_id": session_id})
        if isinstance(payload, dict):
            payload = payload.get("messages", [])
        return [SessionHistoryEntry.model_validate(item) for item in payload or []]

    async def close(self) -> None:
        """Disconnect. Safe to call repeatedly."""
        if self._connect_task is not None and not self._connect_task.done():
            self._connect_task.cancel()
            try:
                await self._connect_task
            except (asyncio.CancelledError, GatewayError):
                pass

        ws = self._ws
        self._mark_closed(ws, "client closed")
        if self._reader_task is not None:
            self._reader_task.cancel()
            try:
                await self._reader_task
            except asyncio.CancelledError:
                pass
            self._reader_task = None
        if ws is not None:
            await ws.close()
            self.logger.info("gateway_disconnected")

    def _build_url(self) -> str:
        if not self.config.token:
            return self.config.url
        parts = urlsplit(self.config.url)
        query = "&".join(
            q for q in (parts.query, urlencode({"token": self.config.token})) if q
        )
        return urlunsplit(parts._replace(query=query))

    def _connect_params(self) -> dict[str, Any]:
        return {
            "minProtocol": self.config.protocol_version,
            "maxProtocol": self.config.protocol_version,
            "client": {
                "id": self.config.client_id,
                "version": self.config.client_version,
                "platform": platform.system().lower(),
                "mode": "ui",
            },
            "auth": {"token": self.config.token or ""},
            "role": self.config.role,
            "scopes": list(self.config.scopes),
        }

    async def _establish(self) -> None:
        timeout = self.config.connect_timeout_seconds
        self.logger.info("gateway_connecting", url=self.config.url)
        try:
            await asyncio.wait_for(self._handshake(), timeout=timeout)
        except asyncio.TimeoutError as exc:
            await self._abort_handshake()
            self.logger.warning("gateway_connect_timeout", timeout=timeout)
            raise GatewayConnectionError(
                f"Gateway handshake timed out after {timeout:g}s"
            ) from exc
        except GatewayConnectionError:
            await self._abort_handshake()
            raise
        except (GatewayError, OSError, websockets.WebSocketException) as exc:
            await self._abort_handshake()
            self.logger.warning("gateway_connect_failed", error=str(exc))
            raise GatewayConnectionError(f"Failed to connect to gateway: {exc}") from exc

        self.logger.info("gateway_connected", url=self.config.url)

    async def _handshake(self) -> None:
        loop = asyncio.get_running_loop()
        self._challenge = loop.create_future()

        ws = await self._connector(self._build_url())
        self._ws = ws
        self._reader_task = asyncio.create_task(self._read_loop(ws), name="gateway-reader")

        nonce = await self._challenge
        self.logger.debug("gateway_challenge_received", has_nonce=nonce is not None)

        await self._request("connect", self._connect_params())
        self._connected = True

    async def _abort_handshake(self) -> None:
        ws = self._ws
        self._challenge = None
        self._mark_closed(ws, "handshake aborted")
        if self._reader_task is not None:
            self._reader_task.cancel()
            self._reader_task = None
        if ws is not None:
            try:
                await ws.close()
            except (OSError, websockets.WebSocketException):
                pass

    async def _request(self, method: str, params: dict[str, Any]) -> Any:
        ws = self._ws
        if ws is None:
            raise GatewayConnectionError("Not connected to gateway")

        request_id = str(uuid.uuid4())
        future: asyncio.Future[Any] = asyncio.get_running_loop().create_future()
        self._pending[request_id] = future
        frame = {"type": "req", "id": request_id, "method": method, "params": params}
        timeout = self.config.request_timeout_seconds

        try:
            await ws.send(json.dumps(frame))
            return await asyncio.wait_for(future, timeout=timeout)
        except asyncio.TimeoutError as exc:
            self.logger.warning("gateway_call_timeout", method=method, timeout=timeout)
            raise GatewayTimeoutError(method, timeout) from exc
        except websockets.ConnectionClosed as exc:
            raise GatewayConnectionError("connection closed") from exc
        finally:
            self._pending.pop(request_id, None)

    async def _read_loop(self, ws: Any) -> None:
        reason = "connection closed"
        try:
            while True:
                raw = await ws.recv()
                self._handle_frame(raw)
        except websockets.ConnectionClosed:
            pass
        except OSError as exc:
            reason = f"connection lost: {exc}"
        finally:
            if self._ws is ws:
                self.logger.info("gateway_connection_closed", reason=reason)
            self._mark_closed(ws, reason)

    def _handle_frame(self, raw: str | bytes) -> None:
        try:
            frame = json.loads(raw)
        except (TypeError, ValueError):
            self.logger.warning("gateway_frame_unparseable")
            return
        if not isinstance(frame, dict):
            return

        if frame.get("type") == "event":
            self._handle_event(frame.get("event"), frame.get("payload"))
            return

        future = self._pending.get(frame.get("id")) if "id" in frame else None
        if future is None or future.done():
            return

        if frame.get("type") == "res":
            if frame.get("ok"):
                future.set_result(frame.get("payload"))
            else:
                future.set_exception(
                    GatewayRequestError(_error_message(frame.get("error")))
                )
        elif frame.get("error"):
            future.set_exception(GatewayRequestError(_error_message(frame["error"])))
        else:
            future.set_result(frame.get("result"))

    def _handle_event(self, event: str | None, payload: Any) -> None:
        if event == CHALLENGE_EVENT:
            if self._challenge is not None and not self._challenge.done():
                nonce = payload.get("nonce") if isinstance(payload, dict) else None
                self._challenge.set_result(nonce)
            return

        self.logger.debug("gateway_event", gateway_event=event)
        if self._on_event is not None and event:
            self._on_event(event, payload)

    def _mark_closed(self, ws: Any | None, reason: str) -> None:
        if ws is not None and self._ws is not ws:
            return

        self._ws = None
        self._connected = False

        pending = list(self._pending.values())
        self._pending.clear()
        for future in pending:
            if not future.done():
                future.set_exception(GatewayConnectionError(reason))

        if self._challenge is not None and not self._challenge.done():
            self._challenge.set_exception(GatewayConnectionError(reason))


def _error_message(error: Any) -> str:
    if isinstance(error, dict):
        return str(error.get("message") or "Gateway request failed")
    if error:
        return str(error)
    return "Gateway request failed"
