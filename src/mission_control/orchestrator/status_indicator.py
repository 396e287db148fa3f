"""Live status indicator derivation.

Combines a task's lifecycle state with the presence of its agent's Gateway
session (and its pipeline stage, when it has one) into the short status
line shown next to the task. Derivation is pure: the same inputs always
give the same indicator, and ``now`` only affects the relative
"Last active" sublabel.
"""

from __future__ import annotations

import math
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from mission_control.database.models.task import TaskStatus
from mission_control.orchestrator.pipeline import PipelineStageInfo

DEFAULT_AGENT_NAME = "Agent"

MINUTES_IN_DAY = 24 * 60
MINUTES_IN_MONTH = 30 * MINUTES_IN_DAY


@dataclass(frozen=True)
class StatusIndicator:
    """What to display for a task.

    Attributes:
        label: Main status text.
        pulse: Whether the indicator should animate.
        urgent: Whether the task needs operator attention.
        tone: Color family of the indicator.
        sublabel: Secondary text, if any.
    """

    label: str
    pulse: bool
    urgent: bool
    tone: str
    sublabel: str | None = None


def format_time_ago(when: datetime, now: datetime | None = None) -> str:
    """Render ``when`` relative to ``now`` as e.g. "5 minutes ago".

    Buckets and wording follow date-fns ``formatDistanceToNow`` with
    ``addSuffix``: "about 2 months ago", "over 1 year ago", "almost 3 years
    ago" and so on. Naive datetimes are taken to be UTC. Times in the future
    are treated as just now.
    """
    now = _aware(now or datetime.now(timezone.utc))
    when = min(_aware(when), now)
    minutes = _round_half_up((now - when).total_seconds() / 60)

    if minutes == 0:
        return "less than a minute ago"
    if minutes < 45:
        return f"{_plural(minutes, 'minute')} ago"
    if minutes < 90:
        return "about 1 hour ago"
    if minutes < MINUTES_IN_DAY:
        return f"about {_plural(_round_half_up(minutes / 60), 'hour')} ago"
    if minutes < 2520:
        return "1 day ago"
    if minutes < MINUTES_IN_MONTH:
        return f"{_plural(_round_half_up(minutes / MINUTES_IN_DAY), 'day')} ago"
    if minutes < 2 * MINUTES_IN_MONTH:
        return f"about {_plural(_round_half_up(minutes / MINUTES_IN_MONTH), 'month')} ago"

    months = _calendar_months_between(when, now)
    if months < 12:
        return f"{_plural(_round_half_up(minutes / MINUTES_IN_MONTH), 'month')} ago"

    years, remainder = divmod(months, 12)
    if remainder < 3:
        return f"about {_plural(years, 'year')} ago"
    if remainder < 9:
        return f"over {_plural(years, 'year')} ago"
    return f"almost {_plural(years + 1, 'year')} ago"


def has_live_session(task: Any, sessions_by_agent: Mapping[str, Any | None]) -> bool:
    """Whether the task's assigned agent currently has a Gateway session."""
    agent_id = task.assigned_agent_id
    return bool(agent_id) and sessions_by_agent.get(agent_id) is not None


def derive_indicator(
    task: Any,
    sessions_by_agent: Mapping[str, Any | None],
    pipeline_info: PipelineStageInfo | None = None,
    now: datetime | None = None,
    agent_name: str | None = None,
) -> StatusIndicator | None:
    """Derive the status indicator of a task.

    Args:
        task: Task with ``status``, ``assigned_agent_id``, ``updated_at`` and
            ``planning_dispatch_error`` attributes.
        sessions_by_agent: Live session (or None) per agent id.
        pipeline_info: Resolved pipeline stage of the task, if any.
        now: Reference time for the relative sublabel.
        agent_name: Agent display name. Defaults to the name of the task's
            loaded ``assigned_agent``, then to "Agent".

    Returns:
        The indicator, or None for done tasks and unrecognized statuses.
    """
    try:
        status = TaskStatus(getattr(task.status, "value", task.status))
    except ValueError:
        return None

    agent_id = task.assigned_agent_id
    has_session = has_live_session(task, sessions_by_agent)

    if status == TaskStatus.planning:
        return StatusIndicator("Continue planning", pulse=True, urgent=True, tone="purple")

    if status == TaskStatus.inbox:
        if not agent_id:
            return StatusIndicator("Unassigned — needs agent", pulse=False, urgent=False, tone="gray")
        return StatusIndicator("Ready for dispatch", pulse=False, urgent=False, tone="gray")

    if status == TaskStatus.pending_dispatch:
        return StatusIndicator(
            "Dispatch failed — retry needed",
            pulse=False,
            urgent=True,
            tone="red",
            sublabel=task.planning_dispatch_error,
        )

    if status == TaskStatus.assigned:
        label = _agent_label(task, pipeline_info, agent_name)
        if has_session:
            return StatusIndicator(f"{label} — connected, preparing", pulse=False, urgent=False, tone="yellow")
        return StatusIndicator(f"{label} — waiting for dispatch", pulse=False, urgent=True, tone="red")

    if status == TaskStatus.in_progress:
        label = _agent_label(task, pipeline_info, agent_name)
        sublabel = _last_active(task, now)
        if has_session:
            return StatusIndicator(f"{label} working", pulse=True, urgent=True, tone="emerald", sublabel=sublabel)
        return StatusIndicator(f"{label} disconnected", pulse=False, urgent=False, tone="orange", sublabel=sublabel)

    if status == TaskStatus.testing:
        return StatusIndicator("Testing deliverables…", pulse=False, urgent=False, tone="cyan")

    if status == TaskStatus.review:
        return StatusIndicator("Awaiting review", pulse=False, urgent=True, tone="purple")

    return None


def _agent_label(task: Any, pipeline_info: PipelineStageInfo | None, agent_name: str | None) -> str:
    if agent_name is None:
        agent = getattr(task, "assigned_agent", None)
        agent_name = getattr(agent, "name", None)
    name = agent_name or DEFAULT_AGENT_NAME
    if pipeline_info is not None and not pipeline_info.is_complete:
        return f"{name} ({pipeline_info.current_role.display_name})"
    return name


def _last_active(task: Any, now: datetime | None) -> str | None:
    if task.updated_at is None:
        return None
    return f"Last active {format_time_ago(task.updated_at, now)}"


def _aware(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _round_half_up(value: float) -> int:
    return math.floor(value + 0.5)


def _plural(count: int, unit: str) -> str:
    return f"1 {unit}" if count == 1 else f"{count} {unit}s"


def _calendar_months_between(earlier: datetime, later: datetime) -> int:
    """Whole calendar months from ``earlier`` to ``later``."""
    months = (later.year - earlier.year) * 12 + later.month - earlier.month
    position = (later.day, later.hour, later.minute, later.second, later.microsecond)
    start = (earlier.day, earlier.hour, earlier.minute, earlier.second, earlier.microsecond)
    if months > 0 and position < start:
        months -= 1
    return months
