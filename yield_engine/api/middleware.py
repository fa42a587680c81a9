"""Request logging, trace ids and HTTP metrics."""

import re
import time
import uuid

import structlog
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from yield_engine.utils.logging import get_logger
from yield_engine.utils.metrics import http_request_duration, http_requests

log = get_logger(__name__)

# Health checks and metric scrapes are logged at debug
QUIET_PATHS = frozenset({"/health", "/metrics"})

_PATH_CONTEXT = (
    (re.compile(r"^/api/agents/(?P<agent_id>[^/]+)"), "agent_id"),
    (re.compile(r"^/api/grants/(?P<principal>[^/]+)"), "principal"),
)


def path_context(path: str) -> dict[str, str]:
    """Agent id or principal named in the request path, for log binding."""
    for pattern, key in _PATH_CONTEXT:
        match = pattern.match(path)
        if match and match.group(key) not in ("start", "stop", "dispatch"):
            return {key: match.group(key).lower() if key == "principal" else match.group(key)}
    return {}


def route_label(request: Request) -> str:
    """Route template for metric labels, so ids don't explode cardinality."""
    route = request.scope.get("route")
    return getattr(route, "path", None) or "unmatched"


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Bind a trace id per request, log it with timing and count it."""

    async def dispatch(self, request: Request, call_next) -> Response:
        # Honour an upstream X-Request-ID
        trace_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.trace_id = trace_id

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(trace_id=trace_id, **path_context(request.url.path))

        started = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception as e:
            http_requests.labels(method=request.method, route=route_label(request), status="500").inc()
            log.error("request_failed", method=request.method, path=request.url.path, error=str(e))
            raise

        elapsed = time.perf_counter() - started
        route = route_label(request)
        http_requests.labels(method=request.method, route=route, status=str(response.status_code)).inc()
        http_request_duration.labels(method=request.method, route=route).observe(elapsed)

        emit = log.debug if request.url.path in QUIET_PATHS else log.info
        emit(
            "request",
            method=request.method,
            path=request.url.path,
            status=response.status_code,
            duration_ms=round(elapsed * 1000, 2),
        )

        response.headers["X-Request-ID"] = trace_id
        return response
