"""
GET /api/stats: processing aggregates.

Optional auth: anonymous callers get counts and server info; a valid key also
unlocks token usage, note type distribution and provider details.
"""

from fastapi import APIRouter

from speechcraft.dependencies import NoteProcessorDep, OptionalAuthDep
from speechcraft.schemas.note import StatsResponse

router = APIRouter(prefix="/api", tags=["Stats"])


@router.get(
    "/stats",
    response_model=StatsResponse,
    response_model_by_alias=True,
    response_model_exclude_none=True,
    summary="Processing statistics",
)
async def stats(processor: NoteProcessorDep, authenticated: OptionalAuthDep) -> StatsResponse:
    return StatsResponse(data=await processor.get_stats(authenticated))
