"""Dispatch executor for Mission Control.

Hands a planned task to its assigned agent: find (or open) the agent's
session on the Gateway, build the task brief and transmit it.

The executor never raises Gateway failures. Whatever goes wrong on the
Gateway path comes back as ``DispatchResult(success=False, error=...)`` so
the state machine can park the task in ``pending_dispatch`` for a retry.
It performs no internal retries and keeps no state between calls.
"""

from __future__ import annotations

import re
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Callable

import structlog
from pydantic import BaseModel

from mission_control.config import DispatchConfig, GatewayConfig
from mission_control.database.models.task import TaskPriority
from mission_control.orchestrator.pipeline import PipelineStageInfo
from mission_control.orchestrator.session_directory import SessionDirectory

logger = structlog.get_logger(__name__)

PRIORITY_EMOJI: dict[str, str] = {
    TaskPriority.low.value: "\U0001F535",
    TaskPriority.normal.value: "⚪",
    TaskPriority.high.value: "\U0001F7E1",
    TaskPriority.urgent.value: "\U0001F534",
}

DEFAULT_ROUTE = "main"
COMPLETION_MARKER = "TASK_COMPLETE"


class DispatchPreconditionError(Exception):
    """Raised when a dispatch is attempted without its prerequisites.

    This signals a caller bug (or an operator retrying too early) rather
    than a Gateway failure, so it is never turned into a DispatchResult.

    Attributes:
        task_id: The task the dispatch was attempted for.
        reason: What was missing.
    """

    def __init__(self, reason: str, task_id: str | None = None):
        self.reason = reason
        self.task_id = task_id
        super().__init__(reason)


@dataclass(frozen=True)
class DispatchRequest:
    """Everything the executor needs to dispatch one task.

    Attributes:
        task_id: Task being dispatched.
        task_title: Task title.
        agent_id: Assigned agent (required, non-empty).
        agent_name: Agent display name, for logs and activity messages.
        workspace_id: Workspace of the task.
        description: Task instructions.
        priority: Task priority value.
        due_date: Optional due date.
        gateway_agent_id: Agent's route id inside the Gateway.
        is_master: Whether the agent is a master agent.
        pipeline: Resolved pipeline stage, when the task uses a template.
    """

    task_id: str
    task_title: str
    agent_id: str
    agent_name: str
    workspace_id: str = "default"
    description: str | None = None
    priority: str = TaskPriority.normal.value
    due_date: datetime | None = None
    gateway_agent_id: str | None = None
    is_master: bool = False
    pipeline: PipelineStageInfo | None = None


class DispatchResult(BaseModel):
    """Outcome of one dispatch attempt.

    Attributes:
        success: Whether the brief reached the agent's session.
        error: Failure reason when success is False.
        session_key: Session key the brief was sent to, on success.
    """

    success: bool
    error: str | None = None
    session_key: str | None = None


def slugify(value: str) -> str:
    """Lowercase ``value`` and collapse non-alphanumerics into single dashes."""
    return re.sub(r"[^a-z0-9]+", "-", value.lower()).strip("-")


def build_session_key(request: DispatchRequest, session_id: str) -> str:
    """Session key routing the brief to the agent.

    Master agents are addressed through their own Gateway route. Every other
    agent is reached through the default route.
    """
    route = DEFAULT_ROUTE
    if request.is_master and request.gateway_agent_id:
        route = request.gateway_agent_id
    return f"agent:{route}:{session_id}"


def build_task_message(request: DispatchRequest, config: DispatchConfig) -> str:
    """Render the brief sent to the agent.

    Args:
        request: The dispatch request.
        config: Dispatch settings (deliverables root and callback URL).

    Returns:
        The markdown task brief.
    """
    emoji = PRIORITY_EMOJI.get(request.priority, PRIORITY_EMOJI[TaskPriority.normal.value])
    output_dir = f"{config.projects_path.rstrip('/')}/{slugify(request.task_title)}"
    base = f"{config.public_url}/api/tasks/{request.task_id}"

    lines = [
        f"{emoji} **NEW TASK ASSIGNED**",
        "",
        f"**Title:** {request.task_title}",
    ]
    if request.description:
        lines.append(f"**Description:** {request.description}")
    lines.append(f"**Priority:** {request.priority.upper()}")
    if request.due_date is not None:
        lines.append(f"**Due:** {request.due_date.isoformat()}")
    lines.append(f"**Task ID:** {request.task_id}")

    if request.gateway_agent_id and not request.is_master and request.gateway_agent_id != "worker":
        lines.append(f"**ROUTE TO PIPELINE:** {request.gateway_agent_id}")

    if request.pipeline is not None:
        stage = request.pipeline
        lines.append(f"**PIPELINE STAGE:** {stage.current_stage}/{stage.total_stages}")
        for index, role in enumerate(stage.roles, start=1):
            marker = "->" if index == stage.current_stage else "  "
            lines.append(f"{marker} {index}. {role.display_name}")

    lines += [
        "",
        f"**OUTPUT DIRECTORY:** {output_dir}",
        "Create this directory and save all deliverables there.",
        "",
        "**IMPORTANT:** After completing work, you MUST call these APIs:",
        f"1. Log activity: POST {base}/activities",
        '   Body: {"activity_type": "completed", "message": "Description of what was done"}',
        f"2. Register deliverable: POST {base}/deliverables",
        f'   Body: {{"deliverable_type": "file", "title": "File name", "path": "{output_dir}/filename"}}',
        f"3. Update status: PATCH {base}/status",
        '   Body: {"status": "review"}',
        "",
        "When complete, reply with:",
        f"`{COMPLETION_MARKER}: [brief summary of what you did]`",
        "",
        "If you need help or clarification, ask the orchestrator.",
    ]
    return "\n".join(lines)


class DispatchExecutor:
    """Delivers task briefs to agent sessions.

    Attributes:
        directory: Session directory used to find or create sessions.
        gateway_config: Gateway settings (session channel).
        dispatch_config: Dispatch settings (message content).
    """

    def __init__(
        self,
        directory: SessionDirectory,
        gateway_config: GatewayConfig,
        dispatch_config: DispatchConfig,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the executor.

        Args:
            directory: Session directory over the Gateway client.
            gateway_config: Gateway settings.
            dispatch_config: Dispatch settings.
            clock: Returns the current epoch time in seconds. Used for
                idempotency keys.
        """
        self.directory = directory
        self.gateway_config = gateway_config
        self.dispatch_config = dispatch_config
        self._clock = clock
        self._logger = logger.bind(component="DispatchExecutor")

    async def dispatch(self, request: DispatchRequest) -> DispatchResult:
        """Dispatch one task to its agent's session.

        Args:
            request: The task and agent to dispatch.

        Returns:
            DispatchResult describing success, or the failure reason.

        Raises:
            DispatchPreconditionError: If the request has no agent.
        """
        if not request.agent_id:
            raise DispatchPreconditionError("No agent assigned", task_id=request.task_id)

        log = self._logger.bind(task_id=request.task_id, agent_id=request.agent_id)
        log.info("dispatch_started", agent_name=request.agent_name)

        try:
            await self.directory.ensure_connected()

            session = await self.directory.find_agent_session(request.agent_id)
            if session is None:
                session = await self.directory.create_session(
                    self.gateway_config.channel, peer=request.agent_id
                )
                log.info("dispatch_session_created", session_id=session.id)
            else:
                log.debug("dispatch_session_reused", session_id=session.id)

            session_key = build_session_key(request, session.id)
            message = build_task_message(request, self.dispatch_config)
            idempotency_key = f"dispatch-{request.task_id}-{int(self._clock() * 1000)}"

            await self.directory.send_chat(session_key, message, idempotency_key)
        except Exception as exc:
            error = str(exc) or type(exc).__name__
            log.warning("dispatch_failed", error=error, error_type=type(exc).__name__)
            return DispatchResult(success=False, error=error)

        log.info("dispatch_succeeded", session_key=session_key)
        return DispatchResult(success=True, session_key=session_key)
