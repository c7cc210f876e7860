"""
SpeechCraft Processing Server — Rate Limiting
==============================================

What:  In-memory sliding-window rate limiting.
Why:   Every processing call costs provider tokens; a leaked key or a looping
       client must not be able to burn through the budget.
How:   SlidingWindowRateLimiter keeps a list of request timestamps per key.
       It is used twice:
         - RateLimitMiddleware: global limit keyed by client IP (20/min)
         - processing_rate_limit dependency: POST /api/process, keyed by API
           key or IP (10/min), see speechcraft.dependencies

Algorithm: Sliding Window Log
    1. Drop the key's timestamps older than the window
    2. If the remaining count >= limit → reject; retry after the oldest expires
    3. Otherwise record now and allow

    Fixed windows allow a 2x burst at the boundary; a sliding window does not.

Thread Safety:
    Single-process asyncio only. Limits are per process: with N workers the
    effective limit is N times higher.
"""

import logging
import time
from collections import defaultdict
from typing import Dict, List, Optional

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from speechcraft.middleware.request_id import get_request_id

logger = logging.getLogger(__name__)


def client_ip(request: Request, trust_proxy: bool = False) -> str:
    """
    Client address used as a rate-limit key.

    Behind a reverse proxy every request comes from the proxy, so with
    trust_proxy the first X-Forwarded-For hop is used instead. Never enable
    it when clients can reach the server directly: the header is spoofable.
    """
    if trust_proxy:
        forwarded = request.headers.get("X-Forwarded-For", "")
        first_hop = forwarded.split(",")[0].strip()
        if first_hop:
            return first_hop
    return request.client.host if request.client else "unknown"


class SlidingWindowRateLimiter:
    """
    Per-key sliding window.

    hit(key) records a request and returns None when allowed, or the number
    of seconds to wait when the key is over its limit (rejected requests are
    not recorded).
    """

    # Sweep idle keys every N recorded requests
    CLEANUP_EVERY = 1000

    def __init__(self, max_requests: int, window_seconds: int):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._requests: Dict[str, List[float]] = defaultdict(list)
        self._recorded = 0

    def hit(self, key: str, now: Optional[float] = None) -> Optional[int]:
        now = time.time() if now is None else now
        window_start = now - self.window_seconds

        timestamps = [ts for ts in self._requests[key] if ts > window_start]
        self._requests[key] = timestamps

        if len(timestamps) >= self.max_requests:
            return int(timestamps[0] + self.window_seconds - now) + 1

        timestamps.append(now)
        self._recorded += 1
        if self._recorded % self.CLEANUP_EVERY == 0:
            self._cleanup_inactive(window_start)
        return None

    def reset(self) -> None:
        self._requests.clear()
        self._recorded = 0

    def _cleanup_inactive(self, window_start: float) -> None:
        inactive = [
            key for key, timestamps in self._requests.items()
            if not timestamps or timestamps[-1] <= window_start
        ]
        for key in inactive:
            del self._requests[key]

        if inactive:
            logger.debug("Cleaned up %d inactive rate-limit keys", len(inactive))


class RateLimitMiddleware(BaseHTTPMiddleware):
    """
    Global per-IP limit on every route except the API docs. Health probes
    are limited too: each one reaches the note store and the provider.

    Response on limit:
        429 {"success": false, "error": "RATE_LIMIT_EXCEEDED",
             "message": ..., "details": {"retryAfter": N}, "requestId": ...}
        plus a Retry-After header.
    """

    EXCLUDED_PATHS = {"/docs", "/openapi.json", "/redoc"}

    def __init__(
        self,
        app,
        max_requests: int = 20,
        window_seconds: int = 60,
        trust_proxy: bool = False,
    ):
        super().__init__(app)
        self.limiter = SlidingWindowRateLimiter(max_requests, window_seconds)
        self.trust_proxy = trust_proxy

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        if request.url.path in self.EXCLUDED_PATHS:
            return await call_next(request)

        ip = client_ip(request, self.trust_proxy)
        retry_after = self.limiter.hit(ip)
        if retry_after is None:
            return await call_next(request)

        logger.warning(
            "Rate limit exceeded for IP %s on %s %s",
            ip,
            request.method,
            request.url.path,
        )
        return JSONResponse(
            status_code=429,
            content={
                "success": False,
                "error": "RATE_LIMIT_EXCEEDED",
                "message": (
                    f"Too many requests. Please wait {retry_after} seconds before retrying."
                ),
                "details": {"retryAfter": retry_after},
                "requestId": get_request_id(request),
            },
            headers={"Retry-After": str(retry_after)},
        )
