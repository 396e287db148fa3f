"""In-process event broadcasting.

Every state-changing engine operation publishes exactly one event. Events
fan out to subscriber queues (the SSE stream is the main consumer) on a
best-effort basis: they are not persisted, and a subscriber whose queue
is full misses events rather than slowing the publisher down.
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import AsyncIterator
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from mission_control.logging import get_logger

logger = get_logger(__name__)

SUBSCRIBER_QUEUE_SIZE = 256


class SSEEventType(str, Enum):
    """Types of broadcast events."""

    TASK_UPDATED = "task_updated"
    TASK_DISPATCHED = "task_dispatched"
    DISPATCH_FAILED = "dispatch_failed"
    SESSION_ACTIVITY = "session_activity"
    SYSTEM = "system"


@dataclass
class SSEEvent:
    """A broadcast event."""

    event: SSEEventType
    data: dict[str, Any]
    id: str | None = None
    retry: int | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to the mapping expected by EventSourceResponse."""
        result: dict[str, Any] = {
            "event": self.event.value,
            "data": json.dumps(self.data, default=str),
        }
        if self.id is not None:
            result["id"] = self.id
        if self.retry is not None:
            result["retry"] = self.retry
        return result


class EventBroadcaster:
    """Fan-out of events to all current subscribers."""

    def __init__(self) -> None:
        self._queues: list[asyncio.Queue[SSEEvent | None]] = []
        self.logger = logger.bind(component="EventBroadcaster")

    @property
    def subscriber_count(self) -> int:
        return len(self._queues)

    async def subscribe(self) -> AsyncIterator[SSEEvent]:
        """Yield events as they are published until ``close()`` is called."""
        queue: asyncio.Queue[SSEEvent | None] = asyncio.Queue(maxsize=SUBSCRIBER_QUEUE_SIZE)
        self._queues.append(queue)
        self.logger.info("sse_client_connected", total_clients=len(self._queues))
        try:
            while True:
                event = await queue.get()
                if event is None:
                    break
                yield event
        finally:
            self._queues.remove(queue)
            self.logger.info("sse_client_disconnected", total_clients=len(self._queues))

    def broadcast_nowait(self, event: SSEEvent) -> None:
        """Publish an event to every subscriber without waiting on any of them."""
        for queue in list(self._queues):
            try:
                queue.put_nowait(event)
            except asyncio.QueueFull:
                self.logger.warning("sse_event_dropped", event_type=event.event.value)
        self.logger.debug(
            "sse_event_broadcast",
            event_type=event.event.value,
            client_count=len(self._queues),
        )

    async def broadcast(self, event: SSEEvent) -> None:
        """Publish an event to every subscriber."""
        self.broadcast_nowait(event)

    async def publish(self, event_type: SSEEventType, data: dict[str, Any]) -> None:
        """Stamp ``data`` with a timestamp and broadcast it as ``event_type``."""
        payload = dict(data)
        payload.setdefault("timestamp", datetime.now(timezone.utc).isoformat())
        await self.broadcast(SSEEvent(event=event_type, data=payload))

    def relay_gateway_event(self, event_name: str, payload: Any = None) -> None:
        """Forward a Gateway event to subscribers as session activity.

        Synchronous so it can be handed to GatewayClient as ``on_event``.
        """
        data: dict[str, Any] = {
            "gateway_event": event_name,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
        if payload:
            data["details"] = payload
        self.broadcast_nowait(SSEEvent(event=SSEEventType.SESSION_ACTIVITY, data=data))

    async def close(self) -> None:
        """End every active subscription."""
        for queue in list(self._queues):
            try:
                queue.put_nowait(None)
            except asyncio.QueueFull:
                queue.get_nowait()
                queue.put_nowait(None)


_broadcaster: EventBroadcaster | None = None


def get_broadcaster() -> EventBroadcaster:
    """Get or create the global event broadcaster.

    Returns:
        The singleton EventBroadcaster instance.
    """
    global _broadcaster
    if _broadcaster is None:
        _broadcaster = EventBroadcaster()
    return _broadcaster
