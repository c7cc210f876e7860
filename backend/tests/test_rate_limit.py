"""
SpeechCraft Processing Server — Rate Limiter Unit Tests
========================================================

What we test:
    ✅ Sliding window admits max_requests per window per key
    ✅ Keys are independent
    ✅ Old requests slide out of the window
    ✅ Client IP resolution with and without a trusted proxy
"""

from starlette.requests import Request

from speechcraft.middleware.rate_limit import SlidingWindowRateLimiter, client_ip


def _request(headers=None, client=("10.0.0.7", 5000)):
    scope = {
        "type": "http",
        "method": "GET",
        "path": "/",
        "headers": [
            (k.lower().encode("latin-1"), v.encode("latin-1"))
            for k, v in (headers or {}).items()
        ],
        "client": client,
    }
    return Request(scope)


class TestSlidingWindowRateLimiter:
    def test_allows_up_to_limit(self):
        limiter = SlidingWindowRateLimiter(max_requests=3, window_seconds=60)

        assert [limiter.hit("k", now=100.0 + i) for i in range(3)] == [None, None, None]
        assert limiter.hit("k", now=103.0) is not None

    def test_retry_after_counts_down_to_oldest_expiry(self):
        limiter = SlidingWindowRateLimiter(max_requests=1, window_seconds=60)
        limiter.hit("k", now=100.0)

        assert limiter.hit("k", now=130.0) == 31

    def test_keys_are_independent(self):
        limiter = SlidingWindowRateLimiter(max_requests=1, window_seconds=60)

        assert limiter.hit("api_key:a", now=100.0) is None
        assert limiter.hit("api_key:b", now=100.0) is None
        assert limiter.hit("api_key:a", now=100.0) is not None

    def test_window_slides(self):
        limiter = SlidingWindowRateLimiter(max_requests=2, window_seconds=60)
        limiter.hit("k", now=100.0)
        limiter.hit("k", now=130.0)

        assert limiter.hit("k", now=150.0) is not None
        # The request at t=100 has left the window
        assert limiter.hit("k", now=161.0) is None

    def test_rejected_requests_are_not_recorded(self):
        limiter = SlidingWindowRateLimiter(max_requests=1, window_seconds=60)
        limiter.hit("k", now=100.0)
        for second in range(101, 150):
            limiter.hit("k", now=float(second))

        assert limiter.hit("k", now=161.0) is None

    def test_reset(self):
        limiter = SlidingWindowRateLimiter(max_requests=1, window_seconds=60)
        limiter.hit("k", now=100.0)
        limiter.reset()

        assert limiter.hit("k", now=100.0) is None


class TestClientIp:
    def test_uses_socket_peer_by_default(self):
        request = _request(headers={"X-Forwarded-For": "203.0.113.9"})
        assert client_ip(request) == "10.0.0.7"

    def test_uses_first_forwarded_hop_behind_proxy(self):
        request = _request(headers={"X-Forwarded-For": "203.0.113.9, 10.0.0.1"})
        assert client_ip(request, trust_proxy=True) == "203.0.113.9"

    def test_falls_back_without_forwarded_header(self):
        assert client_ip(_request(), trust_proxy=True) == "10.0.0.7"

    def test_missing_client(self):
        assert client_ip(_request(client=None)) == "unknown"
