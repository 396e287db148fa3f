"""HTTP middleware for Mission Control.

- RequestLoggingMiddleware logs every request with timing and a correlation
  ID (taken from X-Correlation-ID or generated).
- BearerTokenMiddleware rejects requests without the configured API token.
  Health endpoints are always reachable so probes need no credentials.

Example:
    >>> from fastapi import FastAPI
    >>> from mission_control.web.middleware import RequestLoggingMiddleware
    >>>
    >>> app = FastAPI()
    >>> app.add_middleware(RequestLoggingMiddleware)
"""

from __future__ import annotations

import hmac
import time
import uuid
from typing import TYPE_CHECKING

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse

from mission_control.logging import get_logger, set_correlation_id

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from starlette.requests import Request
    from starlette.responses import Response
    from starlette.types import ASGIApp

logger = get_logger(__name__)

PUBLIC_PATH_PREFIXES = ("/health",)
CORRELATION_HEADER = "X-Correlation-ID"


def _elapsed_ms(started: float) -> float:
    return round((time.perf_counter() - started) * 1000, 2)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Logs each HTTP request with its status, duration and correlation ID.

    The correlation ID is echoed back in the response header and stamped on
    every log line emitted while the request is handled.
    """

    async def dispatch(
        self,
        request: Request,
        call_next: Callable[[Request], Awaitable[Response]],
    ) -> Response:
        correlation_id = request.headers.get(CORRELATION_HEADER) or uuid.uuid4().hex
        set_correlation_id(correlation_id)
        log = logger.bind(method=request.method, path=request.url.path)
        started = time.perf_counter()

        if request.url.query:
            log.info("request_started", query=request.url.query)
        else:
            log.info("request_started")

        try:
            response = await call_next(request)
        except Exception as exc:
            log.error(
                "request_failed",
                duration_ms=_elapsed_ms(started),
                error=str(exc),
                exc_info=True,
            )
            raise
        else:
            log.info(
                "request_completed",
                status_code=response.status_code,
                duration_ms=_elapsed_ms(started),
            )
            response.headers[CORRELATION_HEADER] = correlation_id
            return response
        finally:
            set_correlation_id(None)


class BearerTokenMiddleware(BaseHTTPMiddleware):
    """Requires ``Authorization: Bearer <token>`` outside the health endpoints.

    Attributes:
        token: The expected API token.
    """

    def __init__(self, app: ASGIApp, token: str) -> None:
        super().__init__(app)
        self.token = token

    async def dispatch(
        self,
        request: Request,
        call_next: Callable[[Request], Awaitable[Response]],
    ) -> Response:
        """Reject the request with 401 unless it carries the API token."""
        if request.url.path.startswith(PUBLIC_PATH_PREFIXES) or request.method == "OPTIONS":
            return await call_next(request)

        scheme, _, supplied = request.headers.get("Authorization", "").partition(" ")
        if scheme.lower() != "bearer" or not hmac.compare_digest(
            supplied.strip().encode(), self.token.encode()
        ):
            logger.warning("request_unauthorized", method=request.method, path=request.url.path)
            return JSONResponse(status_code=401, content={"detail": "Unauthorized"})

        return await call_next(request)
