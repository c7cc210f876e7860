# Middleware package init
"""
SpeechCraft Processing Server — Middleware Package
===================================================

What:  Cross-cutting concerns applied to every request.

Middleware Chain (outermost first):
    Request → [Request ID] → [Logging] → [Rate Limit] → [CORS] → Route Handler

    1. Request ID first, so even rate-limited responses carry X-Request-ID
    2. Logging sees every response, including 429s
    3. Rate Limit rejects abusive clients before any store or provider work

The stricter per-key limit on POST /api/process is a route dependency
(speechcraft.dependencies), not middleware: it only applies to one route.
"""
