"""
SpeechCraft Processing Server — Processing Route Handlers
==========================================================

What:  POST /api/process (enhance a note) and GET /api/status/{noteId}.
Why:   The mobile app saves a note, then asks this server to enhance it.
How:   Thin handlers: validate input, delegate to NoteProcessor, wrap the
       result in the {"success", "message", "data"} envelope.

Guard order on POST /api/process:
    log_auth_attempt → processing_rate_limit → require_api_key
    The rate limit runs before auth so that guessing keys is throttled too.
"""

import logging

from typing import Optional

from fastapi import APIRouter, Body, Depends

from speechcraft.dependencies import (
    NoteProcessorDep,
    log_auth_attempt,
    processing_rate_limit,
    require_api_key,
)
from speechcraft.exceptions import ValidationError
from speechcraft.schemas.note import (
    ErrorResponse,
    NoteStatusResponse,
    ProcessNoteRequest,
    ProcessNoteResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["Processing"])


@router.post(
    "/process",
    response_model=ProcessNoteResponse,
    response_model_by_alias=True,
    dependencies=[
        Depends(log_auth_attempt),
        Depends(processing_rate_limit),
        Depends(require_api_key),
    ],
    responses={
        400: {"description": "Missing noteId or malformed body", "model": ErrorResponse},
        401: {"description": "Missing or invalid API key", "model": ErrorResponse},
        404: {"description": "Note not found", "model": ErrorResponse},
        409: {"description": "Note is being processed by another request", "model": ErrorResponse},
        429: {"description": "Rate limit or monthly limit reached", "model": ErrorResponse},
        500: {"description": "Processing failed", "model": ErrorResponse},
    },
    summary="Enhance a saved note",
    description=(
        "Formats the note's transcript with the completion provider according to its "
        "category. When the provider is unavailable the note is stored with locally "
        "formatted fallback text and the response reports openaiSuccess=false."
    ),
)
async def process_note(
    processor: NoteProcessorDep,
    body: Optional[ProcessNoteRequest] = Body(default=None),
) -> ProcessNoteResponse:
    # No body at all counts as a missing noteId
    note_id = ((body.note_id if body else None) or "").strip()
    if not note_id:
        raise ValidationError(
            message="noteId is required",
            field="noteId",
            code="MISSING_NOTE_ID",
        )

    data = await processor.process_note(note_id)

    if data.already_processed:
        message = "Note already processed"
    elif data.openai_success:
        message = "Note processed successfully"
    else:
        message = "Note saved with basic formatting (AI enhancement unavailable)"

    return ProcessNoteResponse(success=True, message=message, data=data)


@router.get(
    "/status/{note_id}",
    response_model=NoteStatusResponse,
    response_model_by_alias=True,
    dependencies=[Depends(log_auth_attempt), Depends(require_api_key)],
    responses={
        401: {"description": "Missing or invalid API key", "model": ErrorResponse},
        404: {"description": "Note not found", "model": ErrorResponse},
    },
    summary="Processing status of a note",
)
async def note_status(note_id: str, processor: NoteProcessorDep) -> NoteStatusResponse:
    return NoteStatusResponse(data=await processor.get_status(note_id))
