"""Workflow template query functions for Mission Control."""

from __future__ import annotations

from collections.abc import Sequence

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from mission_control.database.models.workflow import WorkflowRole, WorkflowTemplate

logger = structlog.get_logger(__name__)


async def create_workflow_template(
    session: AsyncSession,
    name: str,
    slug: str,
    roles: Sequence[tuple[str, str]] = (),
) -> WorkflowTemplate:
    """Create a template whose stages follow the order of ``roles``.

    Args:
        session: Active async database session.
        name: Display name.
        slug: Unique URL-friendly identifier.
        roles: (role_slug, display_name) pairs, first stage first.

    Returns:
        The newly created WorkflowTemplate with its roles loaded.
    """
    template = WorkflowTemplate(name=name, slug=slug)
    template.roles = [
        WorkflowRole(stage_order=index, role_slug=role_slug, display_name=display_name)
        for index, (role_slug, display_name) in enumerate(roles, start=1)
    ]
    session.add(template)
    await session.flush()
    await session.refresh(template, attribute_names=["roles"])

    logger.info("workflow_template_created", template_id=template.id, slug=slug, stages=len(roles))
    return template


async def get_workflow_template(
    session: AsyncSession,
    template_id: str,
) -> WorkflowTemplate | None:
    """Retrieve a template (roles eagerly loaded) by ID."""
    result = await session.execute(
        select(WorkflowTemplate).where(WorkflowTemplate.id == template_id)
    )
    return result.scalar_one_or_none()
