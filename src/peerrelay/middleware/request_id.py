"""Request ID middleware — unique ID per HTTP request for log correlation.

Learn: The ID comes from the incoming X-Request-ID header (set by an
ingress or a sibling instance) or is generated here. It is bound into
structlog's contextvars, so every log line emitted while handling the
request carries it, and echoed back on the response.
"""

import time
import uuid

import structlog
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

logger = structlog.get_logger()


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Generate/propagate X-Request-ID and log each request once."""

    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            method=request.method,
            path=request.url.path,
        )

        started = time.monotonic()
        response: Response = await call_next(request)
        logger.debug(
            "peerrelay.request",
            status_code=response.status_code,
            duration_ms=round((time.monotonic() - started) * 1000, 1),
        )
        response.headers["X-Request-ID"] = request_id
        return response
