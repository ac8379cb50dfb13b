"""
Orbit — request lifecycle middleware.

Every request is counted while in flight (so shutdown can wait for it),
time-boxed, and logged once with a request id bound into structlog's
context for every log line emitted while it runs.
"""

from __future__ import annotations

import asyncio
import time
import uuid
from contextlib import asynccontextmanager
from typing import AsyncIterator

import structlog
from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

logger = structlog.get_logger("orbit.http")

REQUEST_ID_HEADER = "X-Request-ID"


class RequestTracker:
    """Counts in-flight requests; ``drain`` waits for the count to hit zero."""

    def __init__(self) -> None:
        self.in_flight = 0
        self._idle = asyncio.Event()
        self._idle.set()

    @asynccontextmanager
    async def track(self) -> AsyncIterator[None]:
        self.in_flight += 1
        self._idle.clear()
        try:
            yield
        finally:
            self.in_flight -= 1
            if self.in_flight == 0:
                self._idle.set()

    async def drain(self, timeout_seconds: float) -> bool:
        """Return ``True`` once idle, ``False`` if the timeout won."""
        try:
            await asyncio.wait_for(self._idle.wait(), timeout=timeout_seconds)
        except asyncio.TimeoutError:
            logger.warning("drain_timeout_exceeded", remaining_requests=self.in_flight)
            return False
        return True


def _elapsed_ms(start: float) -> float:
    return round((time.perf_counter() - start) * 1000, 2)


class RequestContextMiddleware(BaseHTTPMiddleware):

    def __init__(self, app, tracker: RequestTracker, timeout_seconds: float = 30.0) -> None:
        super().__init__(app)
        self.tracker = tracker
        self.timeout_seconds = timeout_seconds

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            method=request.method,
            path=request.url.path,
        )

        start = time.perf_counter()
        async with self.tracker.track():
            try:
                response = await asyncio.wait_for(call_next(request), timeout=self.timeout_seconds)
            except asyncio.TimeoutError:
                logger.warning("request_timeout", timeout=self.timeout_seconds)
                response = JSONResponse(
                    status_code=504,
                    content={"detail": "Request timed out", "code": "timeout"},
                )
            except Exception:
                logger.exception("request_error", duration_ms=_elapsed_ms(start))
                raise

        response.headers[REQUEST_ID_HEADER] = request_id
        logger.info("request_handled", status=response.status_code, duration_ms=_elapsed_ms(start))
        return response
