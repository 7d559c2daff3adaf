"""
Request logging middleware: method, path, status and duration only.
Headers, bodies and query strings are never logged; analysis queries
travel in the body.
"""
import logging
import time

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

logger = logging.getLogger(__name__)

# Scraped every few seconds; logging them drowns everything else.
_QUIET_PATHS = ("/metrics", "/api/analysis/health")


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next) -> Response:
        method = request.method
        path = request.scope.get("path", "")
        start = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception:
            duration_ms = (time.perf_counter() - start) * 1000
            logger.exception("request_failed method=%s path=%s duration_ms=%.1f", method, path, duration_ms)
            raise
        duration_ms = (time.perf_counter() - start) * 1000
        status = response.status_code

        if status >= 500:
            level = logging.ERROR
        elif status >= 400:
            level = logging.WARNING
        elif path.startswith(_QUIET_PATHS):
            level = logging.DEBUG
        else:
            level = logging.INFO
        logger.log(
            level,
            "request_finished method=%s path=%s status=%s duration_ms=%.1f",
            method, path, status, duration_ms,
        )
        return response
