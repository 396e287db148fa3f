"""Task lifecycle state machine for Mission Control.

Owns the task ``status`` field and the rules for moving between statuses,
including the dispatch-failure branch::

    planning -> inbox -> assigned -> in_progress -> testing -> review -> done
                  \\________ pending_dispatch ________/

A task leaves ``planning`` only through ``complete_planning``. It enters
``pending_dispatch`` only when a dispatch attempt fails and leaves it only
through a successful retry (back to ``inbox``). An exception raised while
dispatching is stored as the task's dispatch error like any other failure.
Every
operation writes ``{status, planning_dispatch_error, updated_at}`` in a
single atomic update, appends an activity row, and publishes exactly one
event. No per-task locking is done: concurrent operations on the same task
interleave and the last write wins.
"""

from __future__ import annotations

from typing import Any

import structlog
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from mission_control.config import DispatchConfig
from mission_control.database.models.activity import ActivityType
from mission_control.database.models.task import Task, TaskStatus
from mission_control.database.queries.activity import log_activity
from mission_control.database.queries.agent import get_agent
from mission_control.database.queries.task import get_task, update_task_fields
from mission_control.database.queries.workflow import get_workflow_template
from mission_control.events import EventBroadcaster, SSEEventType
from mission_control.logging import bind_task_context, clear_task_context
from mission_control.orchestrator.dispatcher import (
    DispatchExecutor,
    DispatchPreconditionError,
    DispatchRequest,
    DispatchResult,
)
from mission_control.orchestrator.pipeline import resolve_pipeline_stage

logger = structlog.get_logger(__name__)


class InvalidTransitionError(Exception):
    """Raised when an invalid state transition is attempted.

    Attributes:
        current: The current task status.
        target: The attempted target status.
        task_id: The ID of the task that failed to transition.
    """

    def __init__(self, current: TaskStatus, target: TaskStatus, task_id: str | None = None):
        self.current = current
        self.target = target
        self.task_id = task_id
        msg = f"Invalid transition from {current.value} to {target.value}"
        if task_id:
            msg += f" for task {task_id}"
        super().__init__(msg)


class TaskNotFoundError(LookupError):
    """Raised when a task id does not resolve to a row.

    Attributes:
        task_id: The ID that was looked up.
    """

    def __init__(self, task_id: str):
        self.task_id = task_id
        super().__init__(f"Task {task_id} not found")


class ForbiddenTransitionError(Exception):
    """Raised when the requester may not perform an otherwise valid transition.

    Attributes:
        task_id: The task being transitioned.
        agent_id: The agent that requested the transition.
    """

    def __init__(self, message: str, task_id: str, agent_id: str | None = None):
        self.task_id = task_id
        self.agent_id = agent_id
        super().__init__(message)


# Authoritative state machine definition
VALID_TRANSITIONS: dict[TaskStatus, set[TaskStatus]] = {
    TaskStatus.planning: {TaskStatus.inbox, TaskStatus.pending_dispatch},
    TaskStatus.inbox: {
        TaskStatus.assigned,
        TaskStatus.in_progress,
        TaskStatus.testing,
        TaskStatus.review,
        TaskStatus.done,
        TaskStatus.pending_dispatch,
    },
    TaskStatus.assigned: {
        TaskStatus.in_progress,
        TaskStatus.testing,
        TaskStatus.review,
        TaskStatus.done,
        TaskStatus.pending_dispatch,
    },
    TaskStatus.in_progress: {TaskStatus.testing, TaskStatus.review, TaskStatus.done},
    TaskStatus.testing: {TaskStatus.review, TaskStatus.done},
    TaskStatus.review: {TaskStatus.done},
    TaskStatus.pending_dispatch: {TaskStatus.inbox},
    TaskStatus.done: set(),  # Terminal state - no transitions allowed
}

# Statuses only the dispatch operations may move a task out of
DISPATCH_OWNED_STATUSES = frozenset({TaskStatus.planning, TaskStatus.pending_dispatch})

# Statuses a manual dispatch may start from
DISPATCHABLE_STATUSES = frozenset({TaskStatus.inbox, TaskStatus.assigned})

# Statuses a retry may start from. A planning task only qualifies once its
# planning_complete flag is set (an earlier outcome write was lost).
RETRYABLE_STATUSES = frozenset({TaskStatus.pending_dispatch, TaskStatus.planning})


def validate_transition(current: TaskStatus, target: TaskStatus) -> bool:
    """Validate if a state transition is allowed.

    Args:
        current: Current task status.
        target: Target task status.

    Returns:
        True if the transition is valid according to VALID_TRANSITIONS.
    """
    return target in VALID_TRANSITIONS.get(current, set())


def parse_status(value: TaskStatus | str) -> TaskStatus:
    """Parse a status value, rejecting anything outside the enumeration.

    Raises:
        ValueError: If ``value`` is not a known status.
    """
    if isinstance(value, TaskStatus):
        return value
    try:
        return TaskStatus(value)
    except ValueError:
        raise ValueError(f"Invalid status: {value}") from None


def task_event_data(task: Task) -> dict[str, Any]:
    """Event payload describing the current state of a task."""
    return {
        "task_id": task.id,
        "workspace_id": task.workspace_id,
        "status": task.status.value,
        "assigned_agent_id": task.assigned_agent_id,
        "planning_complete": task.planning_complete,
        "planning_dispatch_error": task.planning_dispatch_error,
        "updated_at": task.updated_at.isoformat() if task.updated_at else None,
    }


class DispatchOutcome(BaseModel):
    """Result of an engine operation that involves a dispatch.

    Attributes:
        task_id: The task operated on.
        success: Whether the dispatch succeeded (or was not needed).
        status: Task status after the operation.
        error: Stored dispatch error, if any.
    """

    task_id: str
    success: bool
    status: TaskStatus
    error: str | None = None


class TaskStateMachine:
    """Applies lifecycle operations to tasks.

    Attributes:
        session_factory: Produces database sessions.
        executor: Dispatch executor used to hand tasks to agents.
        broadcaster: Receives one event per state-changing operation.
        dispatch_config: Dispatch settings (default agent name).
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        executor: DispatchExecutor,
        broadcaster: EventBroadcaster,
        dispatch_config: DispatchConfig | None = None,
    ) -> None:
        self.session_factory = session_factory
        self.executor = executor
        self.broadcaster = broadcaster
        self.dispatch_config = dispatch_config or DispatchConfig()
        self.logger = logger.bind(component="TaskStateMachine")

    async def complete_planning(
        self,
        task_id: str,
        agent_id: str | None = None,
    ) -> DispatchOutcome:
        """Finish planning and hand the task to its agent.

        Args:
            task_id: Task whose planning finished.
            agent_id: Agent to assign. Defaults to the already assigned agent.

        Returns:
            The outcome. Without an agent the task simply moves to inbox.

        Raises:
            TaskNotFoundError: If the task does not exist.
            InvalidTransitionError: If the task is not in planning.
            DispatchPreconditionError: If ``agent_id`` names an unknown agent.
        """
        async with self.session_factory() as session:
            async with session.begin():
                task = await self._get_task(session, task_id)
                if task.status != TaskStatus.planning:
                    raise InvalidTransitionError(task.status, TaskStatus.inbox, task_id)

                target_agent = agent_id or task.assigned_agent_id
                if agent_id and await get_agent(session, agent_id) is None:
                    raise DispatchPreconditionError(
                        f"Agent {agent_id} not found", task_id=task_id
                    )

            bind_task_context(task_id, target_agent)
            try:
                fields: dict[str, Any] = {"planning_complete": True}
                if agent_id:
                    fields["assigned_agent_id"] = agent_id

                if not target_agent:
                    self.logger.info("planning_completed_without_agent", task_id=task_id)
                    return await self._record_outcome(
                        session,
                        task_id,
                        DispatchResult(success=True),
                        success_status=TaskStatus.inbox,
                        message="Planning complete, no agent assigned",
                        event_type=SSEEventType.TASK_UPDATED,
                        **fields,
                    )

                agent_name, result = await self._run_dispatch(session, task, target_agent)
                return await self._record_outcome(
                    session,
                    task_id,
                    result,
                    success_status=TaskStatus.inbox,
                    agent_id=target_agent,
                    message=f"Planning complete, dispatched to {agent_name}",
                    **fields,
                )
            finally:
                clear_task_context()

    async def retry_dispatch(self, task_id: str) -> DispatchOutcome:
        """Re-attempt the dispatch of a task whose previous dispatch failed.

        Args:
            task_id: Task to retry.

        Returns:
            The outcome: inbox with the error cleared on success, or
            pending_dispatch with the new error on failure.

        Raises:
            TaskNotFoundError: If the task does not exist.
            DispatchPreconditionError: If planning is not complete or no agent
                is assigned. The task is left untouched.
            InvalidTransitionError: If the task has moved past dispatch.
        """
        async with self.session_factory() as session:
            async with session.begin():
                task = await self._get_task(session, task_id)
                if not task.planning_complete:
                    raise DispatchPreconditionError(
                        "Cannot retry dispatch: planning is not complete", task_id=task_id
                    )
                if not task.assigned_agent_id:
                    raise DispatchPreconditionError(
                        "Cannot retry dispatch: no agent assigned", task_id=task_id
                    )
                if task.status not in RETRYABLE_STATUSES:
                    raise InvalidTransitionError(task.status, TaskStatus.inbox, task_id)
                agent_id = task.assigned_agent_id

            bind_task_context(task_id, agent_id)
            self.logger.info("dispatch_retry_requested", task_id=task_id, agent_id=agent_id)
            try:
                try:
                    async with session.begin():
                        request = await self._build_request(session, task, agent_id)
                    result = await self.executor.dispatch(request)
                except Exception as exc:
                    return await self._record_retry_error(session, task, exc)

                return await self._record_outcome(
                    session,
                    task_id,
                    result,
                    success_status=TaskStatus.inbox,
                    agent_id=agent_id,
                    message=f"Dispatch retry to {request.agent_name}",
                )
            finally:
                clear_task_context()

    async def dispatch_task(self, task_id: str) -> DispatchOutcome:
        """Dispatch a task sitting in inbox or assigned to its agent.

        Args:
            task_id: Task to dispatch.

        Returns:
            The outcome: in_progress on success, pending_dispatch on failure.

        Raises:
            TaskNotFoundError: If the task does not exist.
            InvalidTransitionError: If the task is not in inbox or assigned.
            DispatchPreconditionError: If planning is not complete or no agent
                is assigned.
        """
        async with self.session_factory() as session:
            async with session.begin():
                task = await self._get_task(session, task_id)
                if task.status not in DISPATCHABLE_STATUSES:
                    raise InvalidTransitionError(task.status, TaskStatus.in_progress, task_id)
                if not task.planning_complete:
                    raise DispatchPreconditionError(
                        "Cannot dispatch: planning is not complete", task_id=task_id
                    )
                if not task.assigned_agent_id:
                    raise DispatchPreconditionError(
                        "Cannot dispatch: no agent assigned", task_id=task_id
                    )
                agent_id = task.assigned_agent_id

            bind_task_context(task_id, agent_id)
            try:
                agent_name, result = await self._run_dispatch(session, task, agent_id)
                return await self._record_outcome(
                    session,
                    task_id,
                    result,
                    success_status=TaskStatus.in_progress,
                    agent_id=agent_id,
                    message=f"Dispatched to {agent_name}",
                )
            finally:
                clear_task_context()

    async def transition(
        self,
        task_id: str,
        target: TaskStatus | str,
        updated_by_agent_id: str | None = None,
    ) -> Task:
        """Move a task to ``target`` on behalf of a collaborator.

        Args:
            task_id: Task to transition.
            target: Target status (enum member or its string value).
            updated_by_agent_id: Agent requesting the change, if any.

        Returns:
            The updated Task.

        Raises:
            ValueError: If ``target`` is not a known status.
            TaskNotFoundError: If the task does not exist.
            InvalidTransitionError: If the transition is not allowed. Tasks in
                planning or pending_dispatch only move through
                complete_planning and retry_dispatch, and pending_dispatch
                cannot be entered directly.
            ForbiddenTransitionError: If a non-master agent tries to approve a
                task out of review.
        """
        target_status = parse_status(target)

        async with self.session_factory() as session:
            async with session.begin():
                task = await self._get_task(session, task_id)
                current = task.status

                if (
                    current in DISPATCH_OWNED_STATUSES
                    or target_status == TaskStatus.pending_dispatch
                    or not validate_transition(current, target_status)
                ):
                    raise InvalidTransitionError(current, target_status, task_id)

                if (
                    current == TaskStatus.review
                    and target_status == TaskStatus.done
                    and updated_by_agent_id
                ):
                    agent = await get_agent(session, updated_by_agent_id)
                    if agent is None or not agent.is_master:
                        raise ForbiddenTransitionError(
                            "Only a master agent can approve tasks out of review",
                            task_id=task_id,
                            agent_id=updated_by_agent_id,
                        )

                task = await update_task_fields(session, task_id, status=target_status)
                await log_activity(
                    session,
                    task_id,
                    ActivityType.status_changed,
                    f"Status changed from {current.value} to {target_status.value}",
                    agent_id=updated_by_agent_id,
                )

        self.logger.info(
            "task_transition",
            task_id=task_id,
            from_status=current.value,
            to_status=target_status.value,
            updated_by_agent_id=updated_by_agent_id,
        )
        await self.broadcaster.publish(SSEEventType.TASK_UPDATED, task_event_data(task))
        return task

    async def _get_task(self, session: AsyncSession, task_id: str) -> Task:
        task = await get_task(session, task_id)
        if task is None:
            raise TaskNotFoundError(task_id)
        return task

    async def _build_request(
        self,
        session: AsyncSession,
        task: Task,
        agent_id: str,
    ) -> DispatchRequest:
        agent = await get_agent(session, agent_id)

        pipeline = None
        if task.workflow_template_id:
            template = await get_workflow_template(session, task.workflow_template_id)
            if template is not None:
                pipeline = resolve_pipeline_stage(task, [template])

        return DispatchRequest(
            task_id=task.id,
            task_title=task.title,
            agent_id=agent_id,
            agent_name=agent.name if agent else self.dispatch_config.default_agent_name,
            workspace_id=task.workspace_id,
            description=task.description,
            priority=task.priority.value,
            due_date=task.due_date,
            gateway_agent_id=agent.gateway_agent_id if agent else None,
            is_master=agent.is_master if agent else False,
            pipeline=pipeline,
        )

    async def _run_dispatch(
        self,
        session: AsyncSession,
        task: Task,
        agent_id: str,
    ) -> tuple[str, DispatchResult]:
        """Build and send a dispatch, reporting any exception as a failed result.

        Returns:
            The agent display name and the dispatch result.
        """
        try:
            async with session.begin():
                request = await self._build_request(session, task, agent_id)
            return request.agent_name, await self.executor.dispatch(request)
        except Exception as exc:
            self.logger.exception("dispatch_error", task_id=task.id, error=str(exc))
            if session.in_transaction():
                await session.rollback()
            return self.dispatch_config.default_agent_name, DispatchResult(
                success=False, error=f"Dispatch error: {exc}"
            )

    async def _record_outcome(
        self,
        session: AsyncSession,
        task_id: str,
        result: DispatchResult,
        success_status: TaskStatus,
        message: str,
        agent_id: str | None = None,
        event_type: SSEEventType = SSEEventType.TASK_DISPATCHED,
        **fields: Any,
    ) -> DispatchOutcome:
        if result.success:
            status, error = success_status, None
            activity_type = (
                ActivityType.dispatched
                if event_type == SSEEventType.TASK_DISPATCHED
                else ActivityType.status_changed
            )
            activity_message = message
        else:
            status, error = TaskStatus.pending_dispatch, result.error
            activity_type = ActivityType.dispatch_failed
            activity_message = f"Dispatch failed: {result.error}"
            event_type = SSEEventType.DISPATCH_FAILED

        try:
            async with session.begin():
                task = await update_task_fields(
                    session,
                    task_id,
                    status=status,
                    planning_dispatch_error=error,
                    **fields,
                )
                await log_activity(
                    session, task_id, activity_type, activity_message, agent_id=agent_id
                )
        except Exception:
            self.logger.exception(
                "dispatch_outcome_persist_failed",
                task_id=task_id,
                dispatch_success=result.success,
                intended_status=status.value,
            )
            raise

        self.logger.info(
            "dispatch_outcome_recorded",
            task_id=task_id,
            success=result.success,
            status=status.value,
            error=error,
        )
        await self.broadcaster.publish(event_type, task_event_data(task))
        return DispatchOutcome(task_id=task_id, success=result.success, status=status, error=error)

    async def _record_retry_error(
        self,
        session: AsyncSession,
        task: Task,
        exc: Exception,
    ) -> DispatchOutcome:
        error = f"Retry error: {exc}"
        self.logger.exception("dispatch_retry_error", task_id=task.id, error=str(exc))

        if session.in_transaction():
            await session.rollback()
        try:
            async with session.begin():
                task = await update_task_fields(session, task.id, planning_dispatch_error=error)
                await log_activity(
                    session,
                    task.id,
                    ActivityType.dispatch_failed,
                    error,
                    agent_id=task.assigned_agent_id,
                )
        except Exception:
            self.logger.exception("dispatch_outcome_persist_failed", task_id=task.id)
            raise

        await self.broadcaster.publish(SSEEventType.DISPATCH_FAILED, task_event_data(task))
        return DispatchOutcome(task_id=task.id, success=False, status=task.status, error=error)
