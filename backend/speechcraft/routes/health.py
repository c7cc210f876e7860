"""
SpeechCraft Processing Server — Service Info and Health Routes
===============================================================

What:  GET / (service info), GET /health and GET /api/health (probes).
Why:   The hosting platform routes traffic only to instances that can do the
       job end-to-end, so health covers both external dependencies.
How:   Lightweight checks: SELECT 1 on the store, a model listing on the
       provider. Neither consumes tokens.

Status:
    healthy:   store AND provider reachable   (HTTP 200)
    unhealthy: either one unreachable         (HTTP 503)

    A relay that cannot reach its provider only ever produces fallback text,
    so there is no "degraded" level here.
"""

import logging
import time
from datetime import datetime, timezone

from fastapi import APIRouter, Request, Response

from speechcraft import __version__
from speechcraft.dependencies import CompletionServiceDep, NoteStoreDep, SettingsDep
from speechcraft.schemas.note import (
    DependencyHealth,
    HealthResponse,
    ServiceInfoResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Health"])

ENDPOINTS = {
    "health": "GET /health",
    "process": "POST /api/process",
    "status": "GET /api/status/{noteId}",
    "stats": "GET /api/stats",
}


def _uptime(request: Request) -> float:
    return round(time.time() - request.app.state.started_at, 2)


@router.get(
    "/",
    response_model=ServiceInfoResponse,
    response_model_by_alias=True,
    summary="Service information",
)
async def service_info(request: Request, settings: SettingsDep) -> ServiceInfoResponse:
    return ServiceInfoResponse(
        service="SpeechCraft Processing Server",
        version=__version__,
        status="running",
        environment=settings.environment,
        uptime_seconds=_uptime(request),
        timestamp=datetime.now(timezone.utc),
        endpoints=ENDPOINTS,
    )


@router.get(
    "/health",
    response_model=HealthResponse,
    responses={503: {"description": "A dependency is unreachable", "model": HealthResponse}},
    summary="Service health check",
)
@router.get("/api/health", response_model=HealthResponse, include_in_schema=False)
async def health_check(
    request: Request,
    response: Response,
    store: NoteStoreDep,
    completion: CompletionServiceDep,
) -> HealthResponse:
    """
    Probe the note store and the completion provider.

    Health checks never raise: a failing probe is reported, not propagated.
    """
    store_ok = await store.health_check()
    completion_ok = await completion.health_check()

    if not store_ok:
        logger.warning("Health check: note store unreachable (%s)", store.backend)
    if not completion_ok:
        logger.warning("Health check: completion service unreachable (%s)", completion.backend)

    info = completion.describe()
    healthy = store_ok and completion_ok
    if not healthy:
        response.status_code = 503

    return HealthResponse(
        success=healthy,
        status="healthy" if healthy else "unhealthy",
        timestamp=datetime.now(timezone.utc),
        version=__version__,
        uptime_seconds=_uptime(request),
        services={
            "noteStore": DependencyHealth(
                status="healthy" if store_ok else "unhealthy",
                backend=store.backend,
            ),
            "completion": DependencyHealth(
                status="healthy" if completion_ok else "unhealthy",
                backend=info.get("backend", completion.backend),
                model=info.get("model"),
            ),
        },
    )
