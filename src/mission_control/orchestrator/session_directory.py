"""Session directory for Mission Control.

Thin view over the Gateway's live sessions. It answers two questions for
the rest of the engine: does an agent currently have a live session, and
how do we get one when it does not.

The directory holds no session cache. Every lookup asks the Gateway, which
is the only source of truth for liveness.
"""

from __future__ import annotations

from collections.abc import Iterable

import structlog

from mission_control.gateway.client import GatewayClient
from mission_control.gateway.models import GatewaySession, SessionHistoryEntry

logger = structlog.get_logger(__name__)


class SessionDirectory:
    """Lookup and creation of agent sessions on the Gateway.

    Every network operation connects first if needed and carries the
    client's per-call timeout.

    Attributes:
        client: Gateway RPC client.
    """

    def __init__(self, client: GatewayClient) -> None:
        self.client = client
        self.logger = logger.bind(component="SessionDirectory")

    def is_connected(self) -> bool:
        """Whether the Gateway connection is up. Never touches the network."""
        return self.client.is_connected()

    async def connect(self) -> None:
        """Connect to the Gateway.

        Raises:
            GatewayConnectionError: A ConnectionError raised when the Gateway
                is unreachable.
        """
        await self.client.connect()

    async def ensure_connected(self) -> None:
        """Connect only when no connection is currently established."""
        if not self.client.is_connected():
            self.logger.debug("session_directory_connecting")
            await self.client.connect()

    async def list_sessions(self) -> list[GatewaySession]:
        """Return all live sessions. Order is unspecified and may be empty."""
        await self.ensure_connected()
        sessions = await self.client.list_sessions()
        self.logger.debug("sessions_listed", count=len(sessions))
        return sessions

    async def create_session(self, channel: str, peer: str | None = None) -> GatewaySession:
        """Create a new session. Not idempotent.

        Args:
            channel: Channel to open the session on.
            peer: Optional peer (agent id) to bind the session to.

        Returns:
            The session created by the Gateway.
        """
        await self.ensure_connected()
        session = await self.client.create_session(channel, peer=peer)
        self.logger.info(
            "session_created",
            session_id=session.id,
            channel=channel,
            peer=peer,
        )
        return session

    async def send_chat(self, session_key: str, message: str, idempotency_key: str) -> None:
        """Deliver a chat message to the session addressed by ``session_key``."""
        await self.ensure_connected()
        await self.client.chat_send(session_key, message, idempotency_key)

    async def session_history(self, session_id: str) -> list[SessionHistoryEntry]:
        """Return the message history of a session."""
        await self.ensure_connected()
        return await self.client.session_history(session_id)

    async def get_session(self, session_id: str) -> GatewaySession | None:
        """Return the live session with ``session_id``, or None."""
        for session in await self.list_sessions():
            if session.id == session_id:
                return session
        return None

    async def find_agent_session(self, agent_id: str) -> GatewaySession | None:
        """Return a live session bound to ``agent_id``, or None."""
        for session in await self.list_sessions():
            if session.agent_id == agent_id:
                return session
        return None

    async def sessions_by_agent(
        self,
        agent_ids: Iterable[str],
    ) -> dict[str, GatewaySession | None]:
        """Map each agent id to one of its live sessions (or None).

        Issues a single ``sessions.list`` call regardless of how many agents
        are asked about.
        """
        wanted = [agent_id for agent_id in agent_ids if agent_id]
        if not wanted:
            return {}

        live: dict[str, GatewaySession] = {}
        for session in await self.list_sessions():
            if session.agent_id and session.agent_id not in live:
                live[session.agent_id] = session
        return {agent_id: live.get(agent_id) for agent_id in wanted}
