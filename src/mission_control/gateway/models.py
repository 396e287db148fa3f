"""Pydantic models for data returned by the Gateway."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class GatewaySession(BaseModel):
    """A live agent session hosted by the Gateway.

    Never persisted. Unknown fields sent by the Gateway are ignored.

    Attributes:
        id: Session identifier assigned by the Gateway.
        channel: Channel the session was opened on.
        peer: Peer the session is bound to (the agent id for dispatch sessions).
        model: Model serving the session, if reported.
        status: Gateway-reported session status, if any.
    """

    model_config = ConfigDict(extra="ignore", coerce_numbers_to_str=True)

    id: str
    channel: str | None = None
    peer: str | None = None
    model: str | None = None
    status: str | None = None

    @property
    def agent_id(self) -> str | None:
        """Agent the session belongs to, derived from its peer."""
        return self.peer or None


class SessionHistoryEntry(BaseModel):
    """One message in a session's history."""

    model_config = ConfigDict(extra="allow")

    role: str | None = None
    content: Any = None
    timestamp: str | None = Field(default=None)


def parse_sessions(payload: Any) -> list[GatewaySession]:
    """Parse a ``sessions.list`` payload.

    The Gateway answers either with a bare list or with an object wrapping
    the list under ``sessions``.
    """
    if isinstance(payload, dict):
        payload = payload.get("sessions", [])
    if not payload:
        return []
    return [GatewaySession.model_validate(item) for item in payload]
