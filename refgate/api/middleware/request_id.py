"""Request ID middleware — binds a request id into the structlog context."""

from __future__ import annotations

import time
import uuid

import structlog
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

log = structlog.get_logger("refgate.api")


def _parse_request_id(value: str) -> str | None:
    try:
        return str(uuid.UUID(value))
    except ValueError:
        return None


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Reuse a valid incoming X-Request-ID or mint one, and echo it back."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        request_id = _parse_request_id(request.headers.get("x-request-id", "")) or str(
            uuid.uuid4()
        )
        tokens = structlog.contextvars.bind_contextvars(
            request_id=request_id,
            method=request.method,
            path=request.url.path,
        )
        start = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception:
            log.exception(
                "request.failed", duration_ms=round((time.perf_counter() - start) * 1000, 1)
            )
            raise
        else:
            log.info(
                "request.completed",
                status_code=response.status_code,
                duration_ms=round((time.perf_counter() - start) * 1000, 1),
            )
            response.headers["X-Request-ID"] = request_id
            return response
        finally:
            structlog.contextvars.reset_contextvars(**tokens)
