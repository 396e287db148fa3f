"""Server-Sent Events (SSE) endpoint for real-time updates.

Streams task and session events published through the application's
EventBroadcaster to connected web clients.
"""

from __future__ import annotations

from collections.abc import AsyncIterator

from fastapi import APIRouter, Depends, Request
from sse_starlette.sse import EventSourceResponse

from mission_control.events import EventBroadcaster
from mission_control.web.dependencies import get_event_broadcaster


def create_events_router() -> APIRouter:
    """Create the events router with SSE streaming endpoint.

    Returns:
        FastAPI router configured with the /events/stream endpoint.
    """
    router = APIRouter(prefix="/events", tags=["events"])

    @router.get("/stream")
    async def stream_events(
        request: Request,
        broadcaster: EventBroadcaster = Depends(get_event_broadcaster),  # noqa: B008
    ) -> EventSourceResponse:
        """Stream server-sent events until the client disconnects."""

        async def event_generator() -> AsyncIterator[dict]:
            async for event in broadcaster.subscribe():
                if await request.is_disconnected():
                    break
                yield event.to_dict()

        return EventSourceResponse(event_generator())

    return router
