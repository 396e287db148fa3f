"""Structured logging for Mission Control.

structlog renders every event (JSON for production, console for local
development) while stdlib logging owns the handlers, so an optional
size-rotated log file works the same way it does for any other Python
service.

Two pieces of request-scoped context are carried through contextvars:

- a correlation id, set by the HTTP middleware for each request
- the task/agent pair currently being processed by the engine

Example usage:
    >>> from mission_control.config import LoggingConfig
    >>> from mission_control.logging import bind_task_context, get_logger, setup_logging
    >>>
    >>> setup_logging(LoggingConfig(level="DEBUG", format="console"))
    >>> logger = get_logger(__name__)
    >>> bind_task_context(task_id="6f1c...", agent_id="agent-42")
    >>> logger.info("dispatch_started", session_key="agent:main:abc")
"""

from __future__ import annotations

import contextvars
import logging
import logging.handlers
import sys
from typing import Any, TextIO

import structlog

from mission_control.config import LoggingConfig

_correlation_id: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "mission_control_correlation_id", default=None
)


def add_correlation_id(
    logger: Any, method_name: str, event_dict: dict[str, Any]
) -> dict[str, Any]:
    """structlog processor that stamps the current correlation id, if any."""
    correlation_id = _correlation_id.get()
    if correlation_id is not None:
        event_dict["correlation_id"] = correlation_id
    return event_dict


def set_correlation_id(correlation_id: str | None) -> None:
    """Set (or clear, with None) the correlation id for the current context."""
    _correlation_id.set(correlation_id)


def get_correlation_id() -> str | None:
    """Return the correlation id of the current context."""
    return _correlation_id.get()


def bind_task_context(task_id: str, agent_id: str | None = None) -> None:
    """Bind the task being processed (and its agent) to subsequent log lines.

    Args:
        task_id: Task identifier
        agent_id: Assigned agent identifier, omitted from the context when None
    """
    context: dict[str, Any] = {"task_id": task_id}
    if agent_id is not None:
        context["agent_id"] = agent_id
    structlog.contextvars.bind_contextvars(**context)


def clear_task_context() -> None:
    """Remove any task/agent binding from the current context."""
    structlog.contextvars.unbind_contextvars("task_id", "agent_id")


def _build_handler(config: LoggingConfig, stream: TextIO) -> logging.Handler:
    if config.file is None:
        return logging.StreamHandler(stream)

    config.file.parent.mkdir(parents=True, exist_ok=True)
    return logging.handlers.RotatingFileHandler(
        filename=config.file,
        maxBytes=config.rotation_size_mb * 1024 * 1024,
        backupCount=config.retention_count,
        encoding="utf-8",
    )


def _processor_chain(output_format: str) -> list[Any]:
    renderer: Any = (
        structlog.processors.JSONRenderer()
        if output_format == "json"
        else structlog.dev.ConsoleRenderer()
    )
    return [
        structlog.contextvars.merge_contextvars,
        add_correlation_id,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        renderer,
    ]


def setup_logging(config: LoggingConfig, stream: TextIO | None = None) -> None:
    """Install the root handler and the structlog processor chain.

    Safe to call more than once; earlier root handlers are replaced.

    Args:
        config: Logging section of MissionControlConfig
        stream: Stream for console output when no log file is configured.
            Defaults to stdout; the CLI passes stderr to keep stdout clean.
    """
    level = logging.getLevelName(config.level)

    handler = _build_handler(config, stream or sys.stdout)
    handler.setLevel(level)

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    structlog.configure(
        processors=_processor_chain(config.format),
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        context_class=dict,
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Return a structlog logger named after the calling module."""
    return structlog.get_logger(name)
