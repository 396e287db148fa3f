"""Agent model for Mission Control.

An agent is a worker that receives tasks through a session hosted by the
Gateway. Master agents coordinate other agents and are the only agents
allowed to approve work out of review.
"""

from __future__ import annotations

from sqlalchemy import Boolean, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from mission_control.database.models.base import Base, TimestampMixin


class Agent(TimestampMixin, Base):
    """A worker agent registered in a workspace.

    Attributes:
        id: uuid4 text primary key (from TimestampMixin).
        workspace_id: Workspace the agent belongs to.
        name: Display name.
        role: Free-form role description.
        avatar_emoji: Emoji shown next to the agent name.
        is_master: Whether the agent is a master (coordinating) agent.
        gateway_agent_id: Route identifier of the agent inside the Gateway.
    """

    __tablename__ = "agents"

    workspace_id: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        default="default",
    )
    name: Mapped[str] = mapped_column(Text, nullable=False)
    role: Mapped[str | None] = mapped_column(Text, nullable=True)
    avatar_emoji: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_master: Mapped[bool] = mapped_column(
        Boolean,
        default=False,
        nullable=False,
    )
    gateway_agent_id: Mapped[str | None] = mapped_column(Text, nullable=True)
