"""Agent query functions for Mission Control."""

from __future__ import annotations

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from mission_control.database.models.agent import Agent

logger = structlog.get_logger(__name__)


async def create_agent(
    session: AsyncSession,
    name: str,
    workspace_id: str = "default",
    role: str | None = None,
    avatar_emoji: str | None = None,
    is_master: bool = False,
    gateway_agent_id: str | None = None,
) -> Agent:
    """Register a new agent. The caller owns the transaction.

    Args:
        session: Active async database session.
        name: Display name.
        workspace_id: Workspace the agent belongs to.
        role: Free-form role description.
        avatar_emoji: Emoji shown next to the agent name.
        is_master: Whether the agent coordinates other agents.
        gateway_agent_id: Route identifier of the agent inside the Gateway.

    Returns:
        The newly created Agent instance.
    """
    agent = Agent(
        name=name,
        workspace_id=workspace_id,
        role=role,
        avatar_emoji=avatar_emoji,
        is_master=is_master,
        gateway_agent_id=gateway_agent_id,
    )
    session.add(agent)
    await session.flush()
    await session.refresh(agent)

    logger.info("agent_created", agent_id=agent.id, name=name, is_master=is_master)
    return agent


async def get_agent(session: AsyncSession, agent_id: str) -> Agent | None:
    """Retrieve an agent by ID, or None if it does not exist."""
    result = await session.execute(select(Agent).where(Agent.id == agent_id))
    return result.scalar_one_or_none()
