"""Pipeline stage resolution.

Tasks created from a workflow template move through the template's roles
one stage at a time. This module works out where a task currently stands
from the task row and the available templates, with no I/O.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from typing import Any

from mission_control.database.models.task import TaskStatus

COMPLETE_STATUSES = frozenset({TaskStatus.done, TaskStatus.review})


@dataclass(frozen=True)
class PipelineStageInfo:
    """Where a task stands within its workflow template.

    Attributes:
        template_name: Name of the workflow template.
        current_stage: 1-indexed stage, clamped to [1, total_stages].
        total_stages: Number of roles in the template.
        current_role: Role of the current stage.
        roles: All roles, sorted by stage_order.
        is_complete: True once the task reached review or done.
    """

    template_name: str
    current_stage: int
    total_stages: int
    current_role: Any
    roles: Sequence[Any]
    is_complete: bool


def resolve_pipeline_stage(task: Any, templates: Iterable[Any]) -> PipelineStageInfo | None:
    """Resolve the pipeline stage of ``task``.

    Args:
        task: Task with ``workflow_template_id``, ``current_stage`` and
            ``status`` attributes.
        templates: Templates with ``id``, ``name`` and ``roles``.

    Returns:
        The stage info, or None when the task has no template, the template
        is unknown, or the template has no roles.
    """
    template_id = getattr(task, "workflow_template_id", None)
    if not template_id:
        return None

    template = next((t for t in templates if t.id == template_id), None)
    if template is None or not template.roles:
        return None

    roles = sorted(template.roles, key=lambda role: role.stage_order)
    total = len(roles)
    current = max(1, min(task.current_stage or 1, total))

    return PipelineStageInfo(
        template_name=template.name,
        current_stage=current,
        total_stages=total,
        current_role=roles[current - 1],
        roles=tuple(roles),
        is_complete=_status_value(task.status) in {s.value for s in COMPLETE_STATUSES},
    )


def _status_value(status: Any) -> str:
    return status.value if isinstance(status, TaskStatus) else str(status)
