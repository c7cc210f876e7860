"""
SpeechCraft Processing Server — Route Dependencies
===================================================

What:  FastAPI dependencies for services, shared-secret auth and the
       per-route processing rate limit.
Why:   Services live on app.state (built by create_app), so tests can build an
       app around an in-memory store and a mocked provider without patching
       module globals.

Auth:
    The mobile app sends one shared secret, as `x-api-key: <secret>` or as
    `Authorization: Bearer <secret>`.
        missing header     → 401 MISSING_API_KEY
        wrong secret       → 401 INVALID_API_KEY
        server secret unset → 500 CONFIG_ERROR
"""

import logging
import secrets
from typing import Annotated, Optional

from fastapi import Depends, Request

from speechcraft.config import Settings
from speechcraft.exceptions import (
    AuthenticationError,
    ConfigurationError,
    RateLimitExceededError,
)
from speechcraft.middleware.rate_limit import SlidingWindowRateLimiter, client_ip
from speechcraft.services.completion_base import CompletionService
from speechcraft.services.note_processor import NoteProcessor
from speechcraft.services.note_store import NoteStore

logger = logging.getLogger(__name__)


# ── Services ──────────────────────────────────────────────────────────────


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_note_store(request: Request) -> NoteStore:
    return request.app.state.note_store


def get_completion_service(request: Request) -> CompletionService:
    return request.app.state.completion_service


def get_note_processor(request: Request) -> NoteProcessor:
    return request.app.state.note_processor


SettingsDep = Annotated[Settings, Depends(get_settings)]
NoteStoreDep = Annotated[NoteStore, Depends(get_note_store)]
CompletionServiceDep = Annotated[CompletionService, Depends(get_completion_service)]
NoteProcessorDep = Annotated[NoteProcessor, Depends(get_note_processor)]


# ── Shared-Secret Auth ────────────────────────────────────────────────────


def extract_api_key(request: Request) -> Optional[str]:
    """x-api-key wins; otherwise Authorization with an optional `Bearer ` prefix."""
    key = request.headers.get("x-api-key")
    if not key:
        auth = request.headers.get("authorization", "")
        key = auth[len("Bearer "):] if auth.startswith("Bearer ") else auth
    key = (key or "").strip()
    return key or None


def _key_matches(provided: str, expected: str) -> bool:
    return secrets.compare_digest(provided.encode("utf-8"), expected.encode("utf-8"))


def log_auth_attempt(request: Request, settings: SettingsDep) -> None:
    """Audit line for every guarded request (never logs the key itself)."""
    logger.info(
        "Auth attempt: %s %s key_present=%s ip=%s",
        request.method,
        request.url.path,
        extract_api_key(request) is not None,
        client_ip(request, settings.trust_proxy),
    )


def require_api_key(request: Request, settings: SettingsDep) -> str:
    """
    Raises:
        ConfigurationError: API_SECRET_KEY is not configured
        AuthenticationError: key missing (MISSING_API_KEY) or wrong (INVALID_API_KEY)
    """
    if not settings.api_secret_key:
        logger.error("API_SECRET_KEY is not configured; rejecting %s", request.url.path)
        raise ConfigurationError(message="Server configuration error")

    key = extract_api_key(request)
    if key is None:
        raise AuthenticationError(
            message="API key required. Send it in the x-api-key or Authorization header.",
            code="MISSING_API_KEY",
        )
    if not _key_matches(key, settings.api_secret_key):
        logger.warning(
            "Invalid API key for %s %s from %s",
            request.method,
            request.url.path,
            client_ip(request, settings.trust_proxy),
        )
        raise AuthenticationError(message="Invalid API key", code="INVALID_API_KEY")
    return key


def optional_api_key(request: Request, settings: SettingsDep) -> bool:
    """True only for a correct key; anything else is simply anonymous."""
    key = extract_api_key(request)
    if key is None or not settings.api_secret_key:
        return False
    return _key_matches(key, settings.api_secret_key)


ApiKeyDep = Annotated[str, Depends(require_api_key)]
OptionalAuthDep = Annotated[bool, Depends(optional_api_key)]


# ── Processing Rate Limit ─────────────────────────────────────────────────


def processing_rate_limit(request: Request, settings: SettingsDep) -> None:
    """
    Stricter limit for POST /api/process.

    Keyed by the presented key (`api_key:<key>`), else by client IP
    (`ip:<ip>`). Runs before authentication, so a flood of bad keys is
    throttled too.
    """
    limiter: SlidingWindowRateLimiter = request.app.state.processing_limiter
    key = extract_api_key(request)
    bucket = f"api_key:{key}" if key else f"ip:{client_ip(request, settings.trust_proxy)}"

    retry_after = limiter.hit(bucket)
    if retry_after is not None:
        logger.warning("Processing rate limit exceeded for %s", bucket.split(":")[0])
        raise RateLimitExceededError(
            retry_after=retry_after,
            code="PROCESSING_RATE_LIMIT",
            message=(
                "Too many processing requests. "
                f"Please wait {retry_after} seconds before retrying."
            ),
        )
