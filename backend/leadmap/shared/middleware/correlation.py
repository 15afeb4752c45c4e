"""
Request Middleware

Correlation ID: every request gets an id (or reuses the caller's
X-Request-ID) so worker callbacks can be traced across log lines.
"""
import logging
import time

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from leadmap.shared.core.logging import set_correlation_id, bind_scraping_session

logger = logging.getLogger("request")


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """
    Assigns a correlation ID to each request and echoes it back
    in the X-Request-ID response header.
    """

    async def dispatch(self, request: Request, call_next) -> Response:
        correlation_id = set_correlation_id(request.headers.get("X-Request-ID"))
        bind_scraping_session(None)

        started = time.perf_counter()
        response = await call_next(request)
        elapsed_ms = (time.perf_counter() - started) * 1000

        response.headers["X-Request-ID"] = correlation_id
        logger.debug(f"{request.method} {request.url.path} -> {response.status_code} ({elapsed_ms:.0f}ms)")
        return response
