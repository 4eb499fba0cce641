"""Logging context middleware for observability.

Binds actor_id, organization_id, and request_id to structlog contextvars
for the duration of each request and records request metrics.
"""

import time
from collections.abc import Callable
from uuid import uuid4

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from kudos.observability.logging import (
    bind_request_context,
    clear_request_context,
    get_logger,
)
from kudos.observability.metrics import REQUEST_COUNT, REQUEST_LATENCY

logger = get_logger(__name__)


class LoggingContextMiddleware(BaseHTTPMiddleware):
    """Middleware that binds request context to structlog contextvars.

    Headers:
        X-Actor-ID: Authenticated actor (set by the upstream gateway)
        X-Organization-ID: Actor's organization
        X-Request-ID: Caller-supplied request id (generated if absent)
    """

    async def dispatch(  # type: ignore[override]
        self, request: Request, call_next: Callable[[Request], Response]
    ) -> Response:
        clear_request_context()

        request_id = request.headers.get("X-Request-ID") or uuid4().hex
        bind_request_context(
            request_id=request_id,
            actor_id=request.headers.get("X-Actor-ID"),
            organization_id=request.headers.get("X-Organization-ID"),
        )

        logger.info("request_started", method=request.method, path=request.url.path)

        start = time.perf_counter()
        response = await call_next(request)  # type: ignore[misc]
        elapsed = time.perf_counter() - start

        endpoint = request.url.path
        route = request.scope.get("route")
        if route is not None and getattr(route, "path", None):
            endpoint = route.path

        REQUEST_COUNT.labels(endpoint=endpoint, status=str(response.status_code)).inc()
        REQUEST_LATENCY.labels(endpoint=endpoint).observe(elapsed)

        logger.info(
            "request_completed",
            method=request.method,
            path=request.url.path,
            status_code=response.status_code,
            duration_ms=round(elapsed * 1000, 2),
        )

        response.headers["X-Request-ID"] = request_id
        return response  # type: ignore[no-any-return]
