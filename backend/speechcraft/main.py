"""
SpeechCraft Processing Server — FastAPI Application Factory
============================================================

What:  Creates and configures the FastAPI application instance.
Why:   Centralizes back-end selection, middleware, routes, exception handlers
       and lifecycle in one place.
How:   Factory pattern: create_app() returns a configured FastAPI instance.
Who:   Called by uvicorn (uvicorn speechcraft.main:app) and by the test suite.

Application Architecture:
    ┌──────────────────────────────────────────────────────────┐
    │                      FastAPI App                         │
    │                                                          │
    │  Middleware Chain:                                       │
    │  ┌──────────┐ ┌──────────┐ ┌────────────┐ ┌──────────┐  │
    │  │  Req ID  │→│ Logging  │→│ Rate Limit │→│   CORS   │  │
    │  └──────────┘ └──────────┘ └────────────┘ └──────────┘  │
    │                                                          │
    │  Routes:                                                 │
    │  ┌───────────────┐ ┌────────────────┐ ┌──────────────┐  │
    │  │ POST /process │ │ GET /status/id │ │ GET /stats   │  │
    │  └───────────────┘ └────────────────┘ └──────────────┘  │
    │  GET /   GET /health   GET /api/health                   │
    │                                                          │
    │  app.state: settings, note_store, completion_service,    │
    │             note_processor, processing_limiter           │
    └──────────────────────────────────────────────────────────┘

Lifecycle:
    Startup:  configure logging, report configuration gaps (never crash)
    Shutdown: close the completion client and dispose the database engine
"""

import logging
import sys
import time
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from speechcraft import __version__
from speechcraft.config import Settings
from speechcraft.config import settings as default_settings
from speechcraft.exceptions import RateLimitExceededError, SpeechCraftError
from speechcraft.middleware.logging import RequestLoggingMiddleware
from speechcraft.middleware.rate_limit import RateLimitMiddleware, SlidingWindowRateLimiter
from speechcraft.middleware.request_id import RequestIDMiddleware, get_request_id
from speechcraft.routes import health, process, stats
from speechcraft.services.completion_base import CompletionService
from speechcraft.services.note_processor import NoteProcessor
from speechcraft.services.note_store import InMemoryNoteStore, NoteStore

logger = logging.getLogger(__name__)

AVAILABLE_ENDPOINTS = [
    "GET /",
    "GET /health",
    "GET /api/health",
    "POST /api/process",
    "GET /api/status/:noteId",
    "GET /api/stats",
]


# ══════════════════════════════════════════════════════════════════════════
# Logging Configuration
# ══════════════════════════════════════════════════════════════════════════

def setup_logging(level: str = "INFO") -> None:
    """
    Configure logging once for the whole process.

    Format: 2024-01-15T12:00:00 [INFO] speechcraft.services.note_processor: ...
    stdout only: the hosting platform collects container output.
    """
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
        handlers=[logging.StreamHandler(sys.stdout)],
        force=True,
    )

    # Access lines come from speechcraft.access instead
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("openai").setLevel(logging.WARNING)


# ══════════════════════════════════════════════════════════════════════════
# Back-end Selection
# ══════════════════════════════════════════════════════════════════════════

def build_note_store(settings: Settings) -> NoteStore:
    """postgres when DATABASE_URL is set (or forced), else the in-memory store."""
    if settings.resolved_note_store_backend == "postgres":
        # Imported lazily: the memory back end needs no database driver
        from speechcraft.database import build_engine, build_session_factory
        from speechcraft.services.postgres_store import PostgresNoteStore

        engine = build_engine(settings)
        return PostgresNoteStore(
            session_factory=build_session_factory(engine),
            tier_limits=settings.tier_limits,
            engine=engine,
        )
    return InMemoryNoteStore(
        tier_limits=settings.tier_limits,
        fabricate_missing=settings.stub_fabricate_notes,
    )


def build_completion_service(settings: Settings) -> CompletionService:
    """openai when OPENAI_API_KEY is set (or forced), else simulated."""
    if settings.resolved_completion_backend == "openai":
        from speechcraft.services.openai_service import OpenAICompletionService

        return OpenAICompletionService(settings)

    from speechcraft.services.simulated_completion import SimulatedCompletionService

    return SimulatedCompletionService()


# ══════════════════════════════════════════════════════════════════════════
# Application Lifespan (Startup & Shutdown)
# ══════════════════════════════════════════════════════════════════════════

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    settings: Settings = app.state.settings

    # ── Startup ───────────────────────────────────────────────────────────
    setup_logging(settings.log_level)
    logger.info("=" * 60)
    logger.info("SpeechCraft Processing Server %s starting up...", __version__)
    logger.info(
        "Environment: %s | note store: %s | completion: %s",
        settings.environment,
        app.state.note_store.backend,
        app.state.completion_service.backend,
    )

    # Missing credentials degrade the service but never stop it
    for warning in settings.missing_configuration():
        logger.warning("Configuration: %s", warning)

    logger.info("Server ready at http://%s:%d", settings.backend_host, settings.backend_port)
    logger.info("=" * 60)

    yield

    # ── Shutdown ──────────────────────────────────────────────────────────
    logger.info("SpeechCraft Processing Server shutting down...")
    await app.state.completion_service.close()
    await app.state.note_store.close()
    logger.info("Shutdown complete.")


# ══════════════════════════════════════════════════════════════════════════
# Exception Handlers
# ══════════════════════════════════════════════════════════════════════════

def error_body(
    request: Request,
    code: str,
    message: str,
    details: Optional[dict] = None,
    **extra,
) -> dict:
    """{"success": false, "error", "message", "details"?, "requestId"}"""
    body = {"success": False, "error": code, "message": message}
    if details:
        body["details"] = details
    body.update(extra)
    body["requestId"] = get_request_id(request)
    return body


def register_exception_handlers(app: FastAPI, settings: Settings) -> None:
    """
    Map exceptions to the JSON error body.

    Handler hierarchy:
        SpeechCraftError        → its own status_code / code / details
        RequestValidationError  → 400 VALIDATION_ERROR
        HTTPException 404       → 404 NOT_FOUND + availableEndpoints
        Exception (fallback)    → 500 INTERNAL_ERROR

    Security: context dicts and stack traces are logged, never returned,
    except in development mode where 500 responses include them.
    """

    @app.exception_handler(SpeechCraftError)
    async def handle_speechcraft_error(request: Request, exc: SpeechCraftError):
        rid = get_request_id(request)
        if exc.status_code >= 500:
            logger.error("[%s] %s: %s | Context: %s", rid, exc.code, exc.message, exc.context)
        else:
            logger.warning("[%s] %s: %s", rid, exc.code, exc.message)

        details = dict(exc.details)
        if exc.status_code >= 500 and settings.is_development and exc.context:
            details["debug"] = {k: str(v) for k, v in exc.context.items()}

        headers = {}
        if isinstance(exc, RateLimitExceededError):
            headers["Retry-After"] = str(exc.retry_after)

        return JSONResponse(
            status_code=exc.status_code,
            content=error_body(request, exc.code, exc.message, details),
            headers=headers,
        )

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(request: Request, exc: RequestValidationError):
        """FastAPI's 422 becomes 400: clients only ever see one status for bad input."""
        errors = [
            {
                "field": ".".join(str(part) for part in err.get("loc", ()) if part != "body"),
                "message": err.get("msg", ""),
            }
            for err in exc.errors()
        ]
        logger.warning("[%s] Request validation failed: %s", get_request_id(request), errors)
        return JSONResponse(
            status_code=400,
            content=error_body(
                request,
                "VALIDATION_ERROR",
                "Invalid request body",
                {"errors": errors},
            ),
        )

    @app.exception_handler(StarletteHTTPException)
    async def handle_http_exception(request: Request, exc: StarletteHTTPException):
        if exc.status_code == 404:
            return JSONResponse(
                status_code=404,
                content=error_body(
                    request,
                    "NOT_FOUND",
                    f"Endpoint {request.method} {request.url.path} not found",
                    availableEndpoints=AVAILABLE_ENDPOINTS,
                ),
            )
        code = "METHOD_NOT_ALLOWED" if exc.status_code == 405 else "HTTP_ERROR"
        return JSONResponse(
            status_code=exc.status_code,
            content=error_body(request, code, str(exc.detail)),
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception):
        """Catch-all: generic 500, full stack trace in the server log only."""
        rid = get_request_id(request)
        logger.error("[%s] Unexpected error: %s", rid, str(exc), exc_info=True)
        details = None
        if settings.is_development:
            details = {"type": type(exc).__name__, "error": str(exc)}
        return JSONResponse(
            status_code=500,
            content=error_body(
                request,
                "INTERNAL_ERROR",
                "An unexpected error occurred. Please try again later.",
                details,
            ),
        )


# ══════════════════════════════════════════════════════════════════════════
# Application Factory
# ══════════════════════════════════════════════════════════════════════════

def create_app(
    settings: Optional[Settings] = None,
    note_store: Optional[NoteStore] = None,
    completion_service: Optional[CompletionService] = None,
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        settings: defaults to the environment-loaded singleton
        note_store / completion_service: explicit instances (tests); otherwise
            selected from settings

    Services are built here rather than in the lifespan, so an app driven
    through httpx's ASGITransport (which skips lifespan) is fully wired.
    """
    settings = settings or default_settings

    app = FastAPI(
        title="SpeechCraft Processing Server",
        description=(
            "Enhances speech-to-text notes with an AI completion provider. "
            "Notes are read from and written back to the SpeechCraft note store."
        ),
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    # ── Shared State ──────────────────────────────────────────────────────
    started_at = time.time()
    app.state.settings = settings
    app.state.started_at = started_at
    app.state.note_store = note_store or build_note_store(settings)
    app.state.completion_service = completion_service or build_completion_service(settings)
    app.state.note_processor = NoteProcessor(
        store=app.state.note_store,
        completion=app.state.completion_service,
        claim_ttl=settings.processing_claim_ttl,
        environment=settings.environment,
        started_at=started_at,
    )
    app.state.processing_limiter = SlidingWindowRateLimiter(
        settings.processing_rate_limit_requests,
        settings.processing_rate_limit_window,
    )

    # ── Register Middleware ───────────────────────────────────────────────
    # Last added runs first: RequestID → Logging → RateLimit → CORS → route
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=False,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID", "Retry-After"],
    )
    app.add_middleware(
        RateLimitMiddleware,
        max_requests=settings.rate_limit_requests,
        window_seconds=settings.rate_limit_window,
        trust_proxy=settings.trust_proxy,
    )
    app.add_middleware(RequestLoggingMiddleware, trust_proxy=settings.trust_proxy)
    app.add_middleware(RequestIDMiddleware)

    # ── Register Exception Handlers ───────────────────────────────────────
    register_exception_handlers(app, settings)

    # ── Register Routes ───────────────────────────────────────────────────
    app.include_router(health.router)
    app.include_router(process.router)
    app.include_router(stats.router)

    return app


# uvicorn expects `speechcraft.main:app` to be importable
app = create_app()
