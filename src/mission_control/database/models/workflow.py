"""Workflow template models for Mission Control.

A workflow template describes a multi-stage pipeline (for example
builder, tester, reviewer). Tasks that reference a template carry a
current_stage pointing into the template's ordered roles.
"""

from __future__ import annotations

from sqlalchemy import ForeignKey, Integer, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from mission_control.database.models.base import Base, TimestampMixin


class WorkflowTemplate(TimestampMixin, Base):
    """A named multi-stage pipeline.

    Attributes:
        name: Display name.
        slug: URL-friendly identifier.
        roles: Stage roles of the pipeline, in no guaranteed order.
    """

    __tablename__ = "workflow_templates"

    name: Mapped[str] = mapped_column(Text, nullable=False)
    slug: Mapped[str] = mapped_column(Text, nullable=False, unique=True)

    roles: Mapped[list["WorkflowRole"]] = relationship(
        "WorkflowRole",
        back_populates="template",
        lazy="selectin",
        cascade="all, delete-orphan",
    )


class WorkflowRole(TimestampMixin, Base):
    """One stage of a workflow template.

    Attributes:
        template_id: Owning template.
        stage_order: Position of the stage in the pipeline (ascending).
        role_slug: Machine name of the role.
        display_name: Human-readable role name.
    """

    __tablename__ = "workflow_roles"

    template_id: Mapped[str] = mapped_column(
        ForeignKey("workflow_templates.id", ondelete="CASCADE"),
        nullable=False,
    )
    stage_order: Mapped[int] = mapped_column(Integer, nullable=False)
    role_slug: Mapped[str] = mapped_column(Text, nullable=False)
    display_name: Mapped[str] = mapped_column(Text, nullable=False)

    template: Mapped[WorkflowTemplate] = relationship(
        "WorkflowTemplate",
        back_populates="roles",
    )
