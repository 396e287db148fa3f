"""Integration tests for TaskStateMachine against a real database.

The Gateway side is a SessionDirectory double; everything from the state
machine down to the activity log is real.
"""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock

import pytest

from mission_control.database.models.activity import ActivityType
from mission_control.database.models.task import TaskStatus
from mission_control.database.queries.activity import list_activities
from mission_control.database.queries.task import get_task
from mission_control.database.queries.workflow import create_workflow_template
from mission_control.events import SSEEventType
from mission_control.gateway.client import GatewayConnectionError
from mission_control.gateway.models import GatewaySession
from mission_control.orchestrator.dispatcher import DispatchPreconditionError
from mission_control.orchestrator.state_machine import (
    ForbiddenTransitionError,
    InvalidTransitionError,
    TaskNotFoundError,
)


async def load(session_factory, task_id):
    async with session_factory() as session:
        return await get_task(session, task_id)


async def activities(session_factory, task_id):
    async with session_factory() as session:
        return await list_activities(session, task_id)


@pytest.fixture
def events(broadcaster):
    """Collect every event the broadcaster publishes during the test."""
    received = []
    original = broadcaster.broadcast_nowait

    def record(event):
        received.append(event)
        original(event)

    broadcaster.broadcast_nowait = record
    return received


class TestCompletePlanning:
    """Test finishing planning with and without an agent."""

    @pytest.mark.asyncio
    async def test_without_agent_moves_to_inbox(self, state_machine, make_task, session_factory, events, directory):
        task = await make_task()

        outcome = await state_machine.complete_planning(task.id)

        assert outcome.success is True
        assert outcome.status == TaskStatus.inbox
        stored = await load(session_factory, task.id)
        assert stored.status == TaskStatus.inbox
        assert stored.planning_complete is True
        directory.send_chat.assert_not_awaited()
        assert [e.event for e in events] == [SSEEventType.TASK_UPDATED]

    @pytest.mark.asyncio
    async def test_with_agent_dispatches(
        self, state_machine, make_task, make_agent, session_factory, directory, events
    ):
        agent = await make_agent("Ada")
        task = await make_task(title="Write docs", description="All of them")

        outcome = await state_machine.complete_planning(task.id, agent_id=agent.id)

        assert outcome.success is True
        assert outcome.status == TaskStatus.inbox
        stored = await load(session_factory, task.id)
        assert stored.assigned_agent_id == agent.id
        assert stored.planning_complete is True
        assert stored.planning_dispatch_error is None

        directory.create_session.assert_awaited_once_with("mission-control", peer=agent.id)
        session_key, message, idempotency_key = directory.send_chat.await_args.args
        assert session_key == "agent:main:sess-1"
        assert "**Title:** Write docs" in message
        assert "**Description:** All of them" in message
        assert idempotency_key.startswith(f"dispatch-{task.id}-")

        [activity] = await activities(session_factory, task.id)
        assert activity.activity_type == ActivityType.dispatched
        assert activity.message == "Planning complete, dispatched to Ada"
        assert [e.event for e in events] == [SSEEventType.TASK_DISPATCHED]

    @pytest.mark.asyncio
    async def test_uses_already_assigned_agent(self, state_machine, make_task, make_agent, directory):
        agent = await make_agent()
        task = await make_task(assigned_agent_id=agent.id)

        outcome = await state_machine.complete_planning(task.id)

        assert outcome.success is True
        directory.send_chat.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_reuses_live_session(self, state_machine, make_task, make_agent, directory):
        agent = await make_agent()
        task = await make_task(assigned_agent_id=agent.id)
        directory.find_agent_session.return_value = GatewaySession(id="live-7", peer=agent.id)

        await state_machine.complete_planning(task.id)

        directory.create_session.assert_not_awaited()
        assert directory.send_chat.await_args.args[0] == "agent:main:live-7"

    @pytest.mark.asyncio
    async def test_master_agent_routed_through_own_route(
        self, state_machine, make_task, make_agent, directory
    ):
        agent = await make_agent("Chief", is_master=True, gateway_agent_id="chief")
        task = await make_task(assigned_agent_id=agent.id)

        await state_machine.complete_planning(task.id)

        assert directory.send_chat.await_args.args[0] == "agent:chief:sess-1"

    @pytest.mark.asyncio
    async def test_pipeline_stage_in_message(
        self, state_machine, make_task, make_agent, session_factory, directory
    ):
        async with session_factory() as session:
            async with session.begin():
                template = await create_workflow_template(
                    session,
                    name="Standard",
                    slug="standard",
                    roles=[("builder", "Builder"), ("tester", "Tester")],
                )
        agent = await make_agent()
        task = await make_task(
            assigned_agent_id=agent.id, workflow_template_id=template.id, current_stage=2
        )

        await state_machine.complete_planning(task.id)

        message = directory.send_chat.await_args.args[1]
        assert "**PIPELINE STAGE:** 2/2" in message
        assert "-> 2. Tester" in message

    @pytest.mark.asyncio
    async def test_dispatch_failure_parks_task(
        self, state_machine, make_task, make_agent, session_factory, directory, events
    ):
        agent = await make_agent()
        task = await make_task(assigned_agent_id=agent.id)
        directory.ensure_connected.side_effect = GatewayConnectionError(
            "Failed to connect to gateway"
        )

        outcome = await state_machine.complete_planning(task.id)

        assert outcome.success is False
        assert outcome.status == TaskStatus.pending_dispatch
        assert outcome.error == "Failed to connect to gateway"
        stored = await load(session_factory, task.id)
        assert stored.status == TaskStatus.pending_dispatch
        assert stored.planning_complete is True
        assert stored.planning_dispatch_error == "Failed to connect to gateway"

        [activity] = await activities(session_factory, task.id)
        assert activity.activity_type == ActivityType.dispatch_failed
        assert activity.message == "Dispatch failed: Failed to connect to gateway"
        assert [e.event for e in events] == [SSEEventType.DISPATCH_FAILED]

    @pytest.mark.asyncio
    async def test_unexpected_error_parks_task(
        self, state_machine, executor, make_task, make_agent, session_factory, events, monkeypatch
    ):
        agent = await make_agent()
        task = await make_task()
        monkeypatch.setattr(executor, "dispatch", AsyncMock(side_effect=RuntimeError("boom")))

        outcome = await state_machine.complete_planning(task.id, agent_id=agent.id)

        assert outcome.success is False
        assert outcome.status == TaskStatus.pending_dispatch
        assert outcome.error == "Dispatch error: boom"
        stored = await load(session_factory, task.id)
        assert stored.status == TaskStatus.pending_dispatch
        assert stored.planning_complete is True
        assert stored.assigned_agent_id == agent.id
        assert stored.planning_dispatch_error == "Dispatch error: boom"

        [activity] = await activities(session_factory, task.id)
        assert activity.activity_type == ActivityType.dispatch_failed
        assert [e.event for e in events] == [SSEEventType.DISPATCH_FAILED]

    @pytest.mark.asyncio
    async def test_unknown_agent_rejected(self, state_machine, make_task, session_factory):
        task = await make_task()

        with pytest.raises(DispatchPreconditionError, match="not found"):
            await state_machine.complete_planning(task.id, agent_id="ghost")

        stored = await load(session_factory, task.id)
        assert stored.status == TaskStatus.planning
        assert stored.planning_complete is False

    @pytest.mark.asyncio
    async def test_not_in_planning(self, state_machine, make_task):
        task = await make_task(status=TaskStatus.inbox)

        with pytest.raises(InvalidTransitionError):
            await state_machine.complete_planning(task.id)

    @pytest.mark.asyncio
    async def test_missing_task(self, state_machine):
        with pytest.raises(TaskNotFoundError):
            await state_machine.complete_planning("missing")


class TestDispatchTask:
    """Test manual dispatch of inbox and assigned tasks."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("start", [TaskStatus.inbox, TaskStatus.assigned])
    async def test_success_moves_to_in_progress(
        self, state_machine, make_task, make_agent, session_factory, start
    ):
        agent = await make_agent()
        task = await make_task(assigned_agent_id=agent.id, status=start, planning_complete=True)

        outcome = await state_machine.dispatch_task(task.id)

        assert outcome.success is True
        assert outcome.status == TaskStatus.in_progress
        assert (await load(session_factory, task.id)).status == TaskStatus.in_progress

    @pytest.mark.asyncio
    async def test_failure_moves_to_pending_dispatch(
        self, state_machine, make_task, make_agent, session_factory, directory
    ):
        agent = await make_agent()
        task = await make_task(
            assigned_agent_id=agent.id, status=TaskStatus.assigned, planning_complete=True
        )
        directory.send_chat.side_effect = asyncio.TimeoutError()

        outcome = await state_machine.dispatch_task(task.id)

        assert outcome.success is False
        assert outcome.error == "TimeoutError"
        stored = await load(session_factory, task.id)
        assert stored.status == TaskStatus.pending_dispatch
        assert stored.planning_dispatch_error == "TimeoutError"

    @pytest.mark.asyncio
    async def test_unexpected_error_parks_task(
        self, state_machine, executor, make_task, make_agent, session_factory, monkeypatch
    ):
        agent = await make_agent()
        task = await make_task(
            assigned_agent_id=agent.id, status=TaskStatus.inbox, planning_complete=True
        )
        monkeypatch.setattr(executor, "dispatch", AsyncMock(side_effect=RuntimeError("boom")))

        outcome = await state_machine.dispatch_task(task.id)

        assert outcome.success is False
        assert outcome.status == TaskStatus.pending_dispatch
        stored = await load(session_factory, task.id)
        assert stored.status == TaskStatus.pending_dispatch
        assert stored.planning_dispatch_error == "Dispatch error: boom"

    @pytest.mark.asyncio
    async def test_requires_agent(self, state_machine, make_task):
        task = await make_task(status=TaskStatus.inbox, planning_complete=True)

        with pytest.raises(DispatchPreconditionError, match="no agent assigned"):
            await state_machine.dispatch_task(task.id)

    @pytest.mark.asyncio
    async def test_requires_planning_complete(self, state_machine, make_task, make_agent):
        agent = await make_agent()
        task = await make_task(assigned_agent_id=agent.id, status=TaskStatus.inbox)

        with pytest.raises(DispatchPreconditionError, match="planning is not complete"):
            await state_machine.dispatch_task(task.id)

    @pytest.mark.asyncio
    async def test_wrong_status(self, state_machine, make_task, make_agent):
        agent = await make_agent()
        task = await make_task(
            assigned_agent_id=agent.id, status=TaskStatus.review, planning_complete=True
        )

        with pytest.raises(InvalidTransitionError):
            await state_machine.dispatch_task(task.id)


class TestTransition:
    """Test collaborator-driven status changes."""

    @pytest.mark.asyncio
    async def test_forward_transition(self, state_machine, make_task, session_factory, events):
        task = await make_task(status=TaskStatus.in_progress)

        updated = await state_machine.transition(task.id, "testing")

        assert updated.status == TaskStatus.testing
        [activity] = await activities(session_factory, task.id)
        assert activity.activity_type == ActivityType.status_changed
        assert activity.message == "Status changed from in_progress to testing"
        [event] = events
        assert event.event == SSEEventType.TASK_UPDATED
        assert event.data["status"] == "testing"

    @pytest.mark.asyncio
    async def test_backward_transition_rejected(self, state_machine, make_task, session_factory):
        task = await make_task(status=TaskStatus.review)

        with pytest.raises(InvalidTransitionError):
            await state_machine.transition(task.id, TaskStatus.in_progress)

        assert (await load(session_factory, task.id)).status == TaskStatus.review

    @pytest.mark.asyncio
    async def test_pending_dispatch_not_enterable(self, state_machine, make_task):
        task = await make_task(status=TaskStatus.inbox)

        with pytest.raises(InvalidTransitionError):
            await state_machine.transition(task.id, "pending_dispatch")

    @pytest.mark.asyncio
    async def test_pending_dispatch_left_only_by_retry(self, state_machine, make_task):
        task = await make_task(
            status=TaskStatus.pending_dispatch,
            planning_complete=True,
            planning_dispatch_error="boom",
        )

        with pytest.raises(InvalidTransitionError):
            await state_machine.transition(task.id, "inbox")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("target", ["inbox", "in_progress", "done"])
    async def test_planning_left_only_by_complete_planning(
        self, state_machine, make_task, session_factory, target
    ):
        task = await make_task()

        with pytest.raises(InvalidTransitionError):
            await state_machine.transition(task.id, target)

        stored = await load(session_factory, task.id)
        assert stored.status == TaskStatus.planning
        assert stored.planning_complete is False

    @pytest.mark.asyncio
    async def test_unknown_status(self, state_machine, make_task):
        task = await make_task()

        with pytest.raises(ValueError, match="Invalid status"):
            await state_machine.transition(task.id, "archived")

    @pytest.mark.asyncio
    async def test_review_approval_needs_master(self, state_machine, make_task, make_agent):
        worker = await make_agent("Worker")
        task = await make_task(status=TaskStatus.review)

        with pytest.raises(ForbiddenTransitionError):
            await state_machine.transition(task.id, "done", updated_by_agent_id=worker.id)

    @pytest.mark.asyncio
    async def test_review_approval_by_master(self, state_machine, make_task, make_agent, session_factory):
        master = await make_agent("Chief", is_master=True)
        task = await make_task(status=TaskStatus.review)

        updated = await state_machine.transition(task.id, "done", updated_by_agent_id=master.id)

        assert updated.status == TaskStatus.done
        [activity] = await activities(session_factory, task.id)
        assert activity.agent_id == master.id

    @pytest.mark.asyncio
    async def test_review_approval_by_operator(self, state_machine, make_task):
        task = await make_task(status=TaskStatus.review)

        updated = await state_machine.transition(task.id, "done")

        assert updated.status == TaskStatus.done

    @pytest.mark.asyncio
    async def test_assigned_via_transition_does_not_dispatch(
        self, state_machine, make_task, make_agent, directory
    ):
        agent = await make_agent()
        task = await make_task(assigned_agent_id=agent.id, status=TaskStatus.inbox)

        updated = await state_machine.transition(task.id, "assigned")

        assert updated.status == TaskStatus.assigned
        directory.send_chat.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_missing_task(self, state_machine):
        with pytest.raises(TaskNotFoundError):
            await state_machine.transition("missing", "inbox")
