"""
SpeechCraft Processing Server — Request Logging Middleware
===========================================================

What:  One access-log line per HTTP request.
Why:   Request volume, latency and error rates without a metrics stack.
How:   Measures the time around call_next and logs to `speechcraft.access`.

Log line:
    POST /api/process 200 2345.6ms [a1b2c3d4] from 10.0.0.7

Level by status class: 5xx → ERROR, 4xx → WARNING, otherwise INFO.

Privacy:
    Never logged: request bodies (speech transcripts), API keys.
"""

import logging
import time

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from speechcraft.middleware.rate_limit import client_ip
from speechcraft.middleware.request_id import request_id_var

logger = logging.getLogger("speechcraft.access")

# Probed every few seconds by the platform; logging them drowns real traffic
QUIET_PATHS = {"/health", "/api/health"}


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, trust_proxy: bool = False):
        super().__init__(app)
        self.trust_proxy = trust_proxy

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        path = request.url.path
        if path in QUIET_PATHS:
            return await call_next(request)

        start_time = time.perf_counter()
        response = await call_next(request)
        duration_ms = (time.perf_counter() - start_time) * 1000

        status = response.status_code
        if status >= 500:
            log_level = logging.ERROR
        elif status >= 400:
            log_level = logging.WARNING
        else:
            log_level = logging.INFO

        rid = request_id_var.get("")
        ip = client_ip(request, self.trust_proxy)
        logger.log(
            log_level,
            "%s %s %d %.1fms [%s] from %s",
            request.method,
            path,
            status,
            duration_ms,
            rid,
            ip,
            extra={
                "request_id": rid,
                "method": request.method,
                "path": path,
                "status": status,
                "duration_ms": round(duration_ms, 2),
                "client_ip": ip,
            },
        )
        return response
