"""
Request logging middleware.

Binds a request id to the structlog context for the duration of the
request, logs one line per request and records the HTTP metrics served
on /metrics.
"""
import time
import uuid

import structlog
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from app.routes.metrics import track_request

logger = structlog.get_logger()

REQUEST_ID_HEADER = "X-Request-ID"


def _route_label(request: Request) -> str:
    # Route template keeps metric label cardinality bounded
    route = request.scope.get("route")
    return getattr(route, "path", request.url.path)


class LoggingMiddleware(BaseHTTPMiddleware):
    """Logs method, route, tenant, status and duration of every request."""

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(request_id=request_id)
        started = time.perf_counter()

        try:
            response = await call_next(request)
        except Exception as e:
            duration = time.perf_counter() - started
            logger.error(
                "request_failed",
                route=_route_label(request),
                method=request.method,
                tenant_id=getattr(request.state, "tenant_id", None),
                duration_ms=round(duration * 1000, 2),
                error=str(e),
            )
            track_request(request.method, _route_label(request), 500, duration)
            raise

        duration = time.perf_counter() - started
        logger.info(
            "request_completed",
            route=_route_label(request),
            method=request.method,
            # Set by the auth dependency on authenticated routes
            tenant_id=getattr(request.state, "tenant_id", None),
            status_code=response.status_code,
            duration_ms=round(duration * 1000, 2),
        )
        track_request(request.method, _route_label(request), response.status_code, duration)

        response.headers[REQUEST_ID_HEADER] = request_id
        return response
