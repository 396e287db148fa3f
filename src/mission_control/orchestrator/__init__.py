"""Task dispatch and session-liveness engine.

This package contains the task lifecycle state machine, the dispatch
executor that hands tasks to agent sessions, the session directory over
the Gateway, and the pure derivations (pipeline stage, status indicator)
used to display live task status.
"""

from __future__ import annotations

from mission_control.orchestrator.dispatcher import (
    DispatchExecutor,
    DispatchPreconditionError,
    DispatchRequest,
    DispatchResult,
)
from mission_control.orchestrator.pipeline import PipelineStageInfo, resolve_pipeline_stage
from mission_control.orchestrator.session_directory import SessionDirectory
from mission_control.orchestrator.state_machine import (
    VALID_TRANSITIONS,
    DispatchOutcome,
    ForbiddenTransitionError,
    InvalidTransitionError,
    TaskNotFoundError,
    TaskStateMachine,
    parse_status,
    validate_transition,
)
from mission_control.orchestrator.status_indicator import (
    StatusIndicator,
    derive_indicator,
    format_time_ago,
)

__all__ = [
    # Dispatch
    "DispatchExecutor",
    "DispatchPreconditionError",
    "DispatchRequest",
    "DispatchResult",
    # Sessions
    "SessionDirectory",
    # State machine
    "TaskStateMachine",
    "VALID_TRANSITIONS",
    "DispatchOutcome",
    "InvalidTransitionError",
    "TaskNotFoundError",
    "ForbiddenTransitionError",
    "parse_status",
    "validate_transition",
    # Derivations
    "PipelineStageInfo",
    "resolve_pipeline_stage",
    "StatusIndicator",
    "derive_indicator",
    "format_time_ago",
]
