"""
SpeechCraft Processing Server — Request ID Middleware
======================================================

What:  Assigns a short correlation ID to each request and echoes it back.
Why:   Every log line of one request shares the ID, and error bodies carry it
       as `requestId` so a user report can be matched to server logs.
How:   Client-supplied X-Request-ID is reused; otherwise a new one is generated.
"""

import uuid
from contextvars import ContextVar

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

# Coroutine-local: concurrent requests share one thread
request_id_var: ContextVar[str] = ContextVar("request_id", default="")


def get_request_id(request: Request) -> str:
    """Request ID for error bodies; falls back to the context variable."""
    return getattr(request.state, "request_id", "") or request_id_var.get("")


class RequestIDMiddleware(BaseHTTPMiddleware):
    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        # 8 chars is enough to correlate and keeps log lines short
        rid = request.headers.get("X-Request-ID") or str(uuid.uuid4())[:8]

        request_id_var.set(rid)
        request.state.request_id = rid

        response = await call_next(request)
        response.headers["X-Request-ID"] = rid
        return response
