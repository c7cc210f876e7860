"""
SpeechCraft Processing Server — Note Processor (Business Logic Orchestrator)
=============================================================================

What:  Central orchestrator for lookup → limit check → claim → complete → persist.
Why:   Encapsulates all processing rules in one place, independent of HTTP.
How:   Composes a NoteStore and a CompletionService received at construction.
Who:   Called by route handlers through the app-state dependency.
When:  For every POST /api/process, GET /api/status/{id} and GET /api/stats.

Orchestration Flow (POST /api/process):
    ┌──────────┐   ┌───────────┐   ┌──────────┐   ┌────────────┐   ┌──────────┐
    │  Lookup  │──▶│  Limits   │──▶│  Claim   │──▶│ Completion │──▶│  Persist │
    │  (Store) │   │  (Store)  │   │  (CAS)   │   │  (1 call)  │   │ + count  │
    └──────────┘   └───────────┘   └──────────┘   └────────────┘   └──────────┘

    completed note      → stored result, nothing else happens
    limit reached       → note failed with limit notice, 429
    claim lost          → 409 (or stored result if it completed meanwhile)
    completion failure  → fallback text, status failed, 200 with openaiSuccess=false
    anything else       → best-effort failed write, 500

Invariants:
    - A completed note is never reprocessed or overwritten.
    - The monthly counter is incremented at most once per successful call,
      and never on fallback.
    - No retries anywhere.
"""

import logging
import time
from datetime import datetime, timezone
from typing import Optional

from speechcraft import __version__
from speechcraft.exceptions import (
    CompletionServiceError,
    LimitReachedError,
    NotFoundError,
    ProcessingConflictError,
    ProcessingError,
)
from speechcraft.models.enums import NoteCategory, NoteStatus
from speechcraft.schemas.note import (
    CompletionInfo,
    DatabaseStats,
    NoteRecord,
    NoteStatusData,
    ProcessNoteData,
    ServerInfo,
    StatsData,
)
from speechcraft.services.completion_base import CompletionService
from speechcraft.services.note_store import NoteStore
from speechcraft.services.prompts import (
    SYSTEM_PROMPT,
    build_fallback_text,
    build_limit_reached_text,
    build_prompt,
    resolve_category,
)

logger = logging.getLogger(__name__)

FALLBACK_MODEL = "fallback"


def _elapsed_ms(start: float) -> int:
    return int((time.perf_counter() - start) * 1000)


class NoteProcessor:
    """
    Business logic layer for note processing.

    Responsibilities:
        - process_note(): the complete enhancement workflow for one note
        - get_status(): status snapshot of one note
        - get_stats(): aggregates for the stats endpoint

    Error Handling Strategy:
        NotFoundError, LimitReachedError and ProcessingConflictError are
        expected outcomes and propagate unchanged. CompletionServiceError is
        absorbed into fallback text. Everything else is logged, the note is
        marked failed if possible, and a ProcessingError propagates.
    """

    def __init__(
        self,
        store: NoteStore,
        completion: CompletionService,
        claim_ttl: int = 300,
        environment: str = "production",
        started_at: Optional[float] = None,
    ):
        self.store = store
        self.completion = completion
        self.claim_ttl = claim_ttl
        self.environment = environment
        self.started_at = started_at or time.time()

    # ══════════════════════════════════════════════════════════════════════
    # Processing
    # ══════════════════════════════════════════════════════════════════════

    async def process_note(self, note_id: str) -> ProcessNoteData:
        """
        Enhance one note end-to-end.

        Returns:
            ProcessNoteData; openai_success=False means fallback text was stored.

        Raises:
            NotFoundError: no note with this id (or a malformed id)
            LimitReachedError: owner's monthly allowance is used up
            ProcessingConflictError: another request holds the processing claim
            ProcessingError: unexpected failure (store outage, bug)
        """
        start = time.perf_counter()
        logger.info("Processing note %s", note_id)

        try:
            # ── Step 1: Lookup ────────────────────────────────────────────
            note = await self.store.get_note(note_id)
            if note is None:
                raise NotFoundError(resource="note", resource_id=note_id)

            # ── Step 2: Completed notes are never reprocessed ─────────────
            if note.processing_status == NoteStatus.COMPLETED.value:
                logger.info("Note %s already processed, returning stored result", note_id)
                return self._stored_result(note, start)

            # ── Step 3: Usage limits ──────────────────────────────────────
            limits = await self.store.check_user_limits(note.user_id)
            if limits.limit_reached:
                logger.warning(
                    "User %s reached monthly limit (%d notes, tier=%s)",
                    note.user_id,
                    limits.monthly_note_count,
                    limits.subscription_tier,
                )
                written = await self.store.mark_failed(
                    note_id,
                    processed_text=build_limit_reached_text(note.original_text),
                    stale_after=self.claim_ttl,
                )
                if not written:
                    # A live claim elsewhere owns the note
                    return await self._claim_lost(note_id, start)
                raise LimitReachedError(
                    monthly_count=limits.monthly_note_count,
                    subscription_tier=limits.subscription_tier,
                    notes_remaining=limits.notes_remaining,
                    context={"note_id": note_id, "user_id": note.user_id},
                )

            # ── Step 4: Claim (pending/failed/stale → processing) ─────────
            claimed = await self.store.claim_for_processing(note_id, self.claim_ttl)
            if claimed is None:
                return await self._claim_lost(note_id, start)

            # ── Steps 5-7: Completion, persist ────────────────────────────
            category = resolve_category(claimed.note_type)
            return await self._enhance(claimed, category, start)

        except (NotFoundError, LimitReachedError, ProcessingConflictError):
            raise
        except Exception as e:
            logger.error(
                "Unexpected error processing note %s: %s", note_id, str(e), exc_info=True
            )
            await self._mark_failed_quietly(note_id)
            raise ProcessingError(
                message="Processing failed",
                context={
                    "note_id": note_id,
                    "error_type": type(e).__name__,
                    "error": str(e),
                },
            ) from e

    async def _enhance(
        self, note: NoteRecord, category: NoteCategory, start: float
    ) -> ProcessNoteData:
        try:
            if not note.original_text or not note.original_text.strip():
                raise CompletionServiceError(message="Note has no text to enhance")
            result = await self.completion.complete(
                build_prompt(note.original_text, category),
                system_prompt=SYSTEM_PROMPT,
            )
        except CompletionServiceError as e:
            # Degraded outcome: keep the user's words, formatted locally
            logger.warning(
                "Completion failed for note %s (%s), storing fallback text",
                note.id,
                e.code,
            )
            elapsed = time.perf_counter() - start
            updated = await self.store.update_note(
                note.id,
                processed_text=build_fallback_text(note.original_text, category),
                processing_status=NoteStatus.FAILED.value,
                tokens_used=0,
                processing_time=elapsed,
            )
            return self._outcome(
                updated or note,
                start,
                openai_success=False,
                model=FALLBACK_MODEL,
            )

        updated = await self.store.update_note(
            note.id,
            processed_text=result.text,
            processing_status=NoteStatus.COMPLETED.value,
            tokens_used=result.tokens_used,
            processing_time=result.elapsed,
        )
        if updated is None:
            raise NotFoundError(resource="note", resource_id=note.id)

        count = await self.store.increment_note_count(note.user_id)
        logger.info(
            "Note %s completed: %d tokens in %.2fs (user %s now at %d this month)",
            note.id,
            result.tokens_used,
            result.elapsed,
            note.user_id,
            count,
        )
        return self._outcome(updated, start, openai_success=True, model=result.model)

    async def _claim_lost(self, note_id: str, start: float) -> ProcessNoteData:
        current = await self.store.get_note(note_id)
        if current and current.processing_status == NoteStatus.COMPLETED.value:
            return self._stored_result(current, start)
        logger.warning("Note %s is already being processed elsewhere", note_id)
        raise ProcessingConflictError(note_id=note_id)

    async def _mark_failed_quietly(self, note_id: str) -> None:
        try:
            await self.store.mark_failed(note_id)
        except Exception as e:
            logger.error("Could not mark note %s as failed: %s", note_id, str(e))

    def _outcome(
        self,
        note: NoteRecord,
        start: float,
        openai_success: Optional[bool],
        model: Optional[str],
        already_processed: bool = False,
    ) -> ProcessNoteData:
        return ProcessNoteData(
            note_id=note.id,
            original_text=note.original_text,
            processed_text=note.processed_text,
            note_type=note.note_type,
            processing_status=note.processing_status,
            tokens_used=note.tokens_used,
            processing_time=note.processing_time,
            total_time=_elapsed_ms(start),
            openai_success=openai_success,
            model=model,
            already_processed=already_processed,
        )

    def _stored_result(self, note: NoteRecord, start: float) -> ProcessNoteData:
        # The provider's model name is not stored, so it is not reported
        return self._outcome(
            note, start, openai_success=True, model=None, already_processed=True
        )

    # ══════════════════════════════════════════════════════════════════════
    # Read Operations
    # ══════════════════════════════════════════════════════════════════════

    async def get_status(self, note_id: str) -> NoteStatusData:
        note = await self.store.get_note(note_id)
        if note is None:
            raise NotFoundError(resource="note", resource_id=note_id)
        return NoteStatusData(
            note_id=note.id,
            processing_status=note.processing_status,
            tokens_used=note.tokens_used,
            processing_time=note.processing_time,
            has_processed_text=bool(note.processed_text),
            created_at=note.created_at,
            updated_at=note.updated_at,
        )

    async def get_stats(self, authenticated: bool) -> StatsData:
        """
        Aggregates for /api/stats.

        Anonymous callers see only counts and server info; token usage, type
        distribution and provider details require the shared secret.
        """
        stats = await self.store.get_processing_stats()
        server = ServerInfo(
            uptime_seconds=round(time.time() - self.started_at, 1),
            environment=self.environment,
            version=__version__,
            timestamp=datetime.now(timezone.utc),
        )

        if not authenticated:
            return StatsData(
                authenticated=False,
                database=DatabaseStats(
                    total_processed=stats.total_processed,
                    status_counts=stats.status_counts,
                ),
                server=server,
            )

        healthy = await self.completion.health_check()
        info = self.completion.describe()
        return StatsData(
            authenticated=True,
            database=DatabaseStats(
                total_processed=stats.total_processed,
                status_counts=stats.status_counts,
                type_distribution=stats.type_distribution,
                total_tokens_used=stats.total_tokens_used,
                average_processing_time=round(stats.average_processing_time, 3),
            ),
            completion=CompletionInfo(
                status="healthy" if healthy else "unhealthy",
                backend=info.get("backend", self.completion.backend),
                model=info.get("model"),
                max_tokens=info.get("max_tokens"),
                available_note_types=[c.value for c in NoteCategory],
            ),
            server=server,
        )
