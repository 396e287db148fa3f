"""Initial schema for Mission Control.

Creates the agents, workflow_templates, workflow_roles, tasks and
task_activities tables along with the status, priority and activity
enums.

Revision ID: 001
Revises: None
Create Date: 2026-10-19
"""

from __future__ import annotations

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

TASK_STATUSES = (
    "planning",
    "inbox",
    "assigned",
    "in_progress",
    "testing",
    "review",
    "done",
    "pending_dispatch",
)
TASK_PRIORITIES = ("low", "normal", "high", "urgent")
ACTIVITY_TYPES = ("status_changed", "dispatched", "dispatch_failed")


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "agents",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("workspace_id", sa.String(64), nullable=False, server_default="default"),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("role", sa.Text(), nullable=True),
        sa.Column("avatar_emoji", sa.Text(), nullable=True),
        sa.Column("is_master", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("gateway_agent_id", sa.Text(), nullable=True),
        *_timestamps(),
    )

    op.create_table(
        "workflow_templates",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("slug", sa.Text(), nullable=False, unique=True),
        *_timestamps(),
    )

    op.create_table(
        "workflow_roles",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "template_id",
            sa.String(36),
            sa.ForeignKey("workflow_templates.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("stage_order", sa.Integer(), nullable=False),
        sa.Column("role_slug", sa.Text(), nullable=False),
        sa.Column("display_name", sa.Text(), nullable=False),
        *_timestamps(),
    )
    op.create_index("idx_workflow_roles_template", "workflow_roles", ["template_id", "stage_order"])

    op.create_table(
        "tasks",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("workspace_id", sa.String(64), nullable=False, server_default="default"),
        sa.Column("title", sa.Text(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column(
            "priority",
            sa.Enum(*TASK_PRIORITIES, name="task_priority"),
            nullable=False,
            server_default="normal",
        ),
        sa.Column(
            "status",
            sa.Enum(*TASK_STATUSES, name="task_status"),
            nullable=False,
            server_default="planning",
        ),
        sa.Column("assigned_agent_id", sa.String(36), sa.ForeignKey("agents.id"), nullable=True),
        sa.Column("planning_complete", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("planning_dispatch_error", sa.Text(), nullable=True),
        sa.Column(
            "workflow_template_id",
            sa.String(36),
            sa.ForeignKey("workflow_templates.id"),
            nullable=True,
        ),
        sa.Column("current_stage", sa.Integer(), nullable=True),
        sa.Column("due_date", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    op.create_index("idx_tasks_workspace_status", "tasks", ["workspace_id", "status"])
    op.create_index("idx_tasks_assigned_agent", "tasks", ["assigned_agent_id"])

    op.create_table(
        "task_activities",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "task_id",
            sa.String(36),
            sa.ForeignKey("tasks.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("agent_id", sa.String(36), sa.ForeignKey("agents.id"), nullable=True),
        sa.Column(
            "activity_type",
            sa.Enum(*ACTIVITY_TYPES, name="activity_type"),
            nullable=False,
        ),
        sa.Column("message", sa.Text(), nullable=False),
        *_timestamps(),
    )
    op.create_index("ix_task_activities_task_id", "task_activities", ["task_id"])


def downgrade() -> None:
    op.drop_index("ix_task_activities_task_id", table_name="task_activities")
    op.drop_table("task_activities")

    op.drop_index("idx_tasks_assigned_agent", table_name="tasks")
    op.drop_index("idx_tasks_workspace_status", table_name="tasks")
    op.drop_table("tasks")

    op.drop_index("idx_workflow_roles_template", table_name="workflow_roles")
    op.drop_table("workflow_roles")
    op.drop_table("workflow_templates")
    op.drop_table("agents")

    sa.Enum(name="activity_type").drop(op.get_bind(), checkfirst=True)
    sa.Enum(name="task_status").drop(op.get_bind(), checkfirst=True)
    sa.Enum(name="task_priority").drop(op.get_bind(), checkfirst=True)
