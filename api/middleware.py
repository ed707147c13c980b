"""
Request context middleware
"""

import logging
import time
import uuid
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

logger = logging.getLogger(__name__)

# Polled by orchestrators and load balancers; not worth a log line each
_QUIET_PATHS = ("/health",)


class RequestContextMiddleware(BaseHTTPMiddleware):
    """
    Tags every request with an id (an incoming X-Request-ID is reused) and
    reports the handler latency in X-API-Latency-ms.

    Server errors are logged at WARNING with the request id so they can be
    matched against the activity log of the job they started.
    """

    async def dispatch(self, request: Request, call_next):
        request.state.request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
        started = time.perf_counter()

        response: Response = await call_next(request)

        elapsed_ms = (time.perf_counter() - started) * 1000
        response.headers["X-Request-ID"] = request.state.request_id
        response.headers["X-API-Latency-ms"] = f"{elapsed_ms:.1f}"

        line = f"[{request.state.request_id}] {request.method} {request.url.path} -> {response.status_code} ({elapsed_ms:.1f}ms)"
        if response.status_code >= 500:
            logger.warning(line)
        elif request.url.path not in _QUIET_PATHS:
            logger.info(line)

        return response
