"""FastAPI middleware that tags every request with an id and logs its outcome.

An incoming ``X-Request-ID`` header is reused when present so ids survive a
proxy hop; otherwise a fresh UUID4 hex is generated. The id is bound into
structlog contextvars, so every log line emitted while the request runs
carries ``request_id``, and it is echoed back in the response header.
"""
from __future__ import annotations

import time
import uuid

import structlog
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response
from structlog.contextvars import bind_contextvars, clear_contextvars

logger = structlog.get_logger(__name__)


class RequestIdMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, header_name: str = "X-Request-ID") -> None:  # type: ignore[override]
        super().__init__(app)
        self.header_name = header_name

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:  # type: ignore[override]
        request_id = request.headers.get(self.header_name) or uuid.uuid4().hex
        clear_contextvars()
        bind_contextvars(request_id=request_id, method=request.method, path=request.url.path)
        request.state.request_id = request_id

        started = time.perf_counter()
        try:
            response: Response = await call_next(request)
            logger.info(
                "Request handled",
                status_code=response.status_code,
                duration_ms=round((time.perf_counter() - started) * 1000, 1),
            )
        finally:
            # Always clear contextvars to avoid leaking into the next request
            clear_contextvars()

        response.headers[self.header_name] = request_id
        return response
