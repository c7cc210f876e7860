"""
SpeechCraft Processing Server — Note Store Interface
=====================================================

What:  Abstract access to notes and user profiles, plus the in-memory store.
Why:   The processor only needs a handful of operations on two tables; hiding
       them behind one interface lets the same processing flow run against
       managed PostgreSQL in production and a dict in local runs and tests.
How:   NoteStore defines the operations; PostgresNoteStore (postgres_store.py)
       and InMemoryNoteStore (below) implement them. Both return Pydantic
       records (NoteRecord, UsageLimits, ProcessingStats), never ORM rows.

Store contract:
    - get_note() returns None for unknown AND malformed identifiers
    - claim_for_processing() is an atomic compare-and-swap:
          pending | failed | processing-older-than-stale_after  →  processing
      and returns None when the caller lost the race
    - mark_failed() never overwrites a completed note
    - increment_note_count() restarts the counter at 1 in a new month
"""

import logging
import uuid
from abc import ABC, abstractmethod
from collections import Counter
from datetime import date, datetime, timedelta, timezone
from typing import Any, Dict, Optional

from speechcraft.models.enums import NoteCategory, NoteStatus, SubscriptionTier
from speechcraft.schemas.note import (
    NoteRecord,
    ProcessingStats,
    ProfileRecord,
    UsageLimits,
)

logger = logging.getLogger(__name__)

# Statuses a claim may start from (a stale `processing` claim is handled separately)
CLAIMABLE_STATUSES = (NoteStatus.PENDING.value, NoteStatus.FAILED.value)

# Fields update_note() accepts
UPDATABLE_FIELDS = frozenset(
    {"processed_text", "processing_status", "tokens_used", "processing_time"}
)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def current_period_start(now: Optional[datetime] = None) -> date:
    """First day of the current calendar month (UTC)."""
    return (now or utcnow()).date().replace(day=1)


def parse_note_id(note_id: str) -> Optional[uuid.UUID]:
    try:
        return uuid.UUID(str(note_id))
    except (ValueError, TypeError):
        return None


def compute_usage_limits(
    user_id: str,
    profile: Optional[ProfileRecord],
    tier_limits: Dict[str, Optional[int]],
    period_start: date,
) -> UsageLimits:
    """
    Derive the usage-limit view of one user.

    No profile → free tier with zero notes. A counter from an earlier month
    reads as zero. Unknown tiers get the free-tier limit.
    """
    if profile is None:
        tier = SubscriptionTier.FREE.value
        count = 0
    else:
        tier = profile.subscription_tier or SubscriptionTier.FREE.value
        count = (
            profile.monthly_note_count
            if profile.count_period_start >= period_start
            else 0
        )

    limit = tier_limits.get(tier, tier_limits.get(SubscriptionTier.FREE.value))
    if limit is None:
        return UsageLimits(
            user_id=user_id,
            monthly_note_count=count,
            subscription_tier=tier,
        )

    return UsageLimits(
        user_id=user_id,
        monthly_note_count=count,
        subscription_tier=tier,
        monthly_limit=limit,
        notes_remaining=max(0, limit - count),
        limit_reached=count >= limit,
    )


def _claimable(note: NoteRecord, now: datetime, stale_after: int) -> bool:
    if note.processing_status in CLAIMABLE_STATUSES:
        return True
    return (
        note.processing_status == NoteStatus.PROCESSING.value
        and note.updated_at < now - timedelta(seconds=stale_after)
    )


def summarize_notes(notes) -> ProcessingStats:
    """Aggregate ProcessingStats over an iterable of NoteRecord."""
    processed = [n for n in notes if n.processing_status != NoteStatus.PENDING.value]
    times = [n.processing_time for n in processed if n.processing_time]
    return ProcessingStats(
        total_processed=len(processed),
        status_counts=dict(Counter(n.processing_status for n in processed)),
        type_distribution=dict(Counter(n.note_type for n in processed)),
        total_tokens_used=sum(n.tokens_used or 0 for n in processed),
        average_processing_time=(sum(times) / len(times)) if times else 0.0,
    )


class NoteStore(ABC):
    """Operations the processor and the routes need from the note store."""

    backend: str = "unknown"

    @abstractmethod
    async def get_note(self, note_id: str) -> Optional[NoteRecord]:
        ...

    @abstractmethod
    async def create_note(
        self,
        user_id: str,
        original_text: str,
        note_type: str = NoteCategory.GENERAL.value,
        note_id: Optional[str] = None,
        processing_status: str = NoteStatus.PENDING.value,
    ) -> NoteRecord:
        """Insert a note. Notes are normally created by the client app."""
        ...

    @abstractmethod
    async def update_note(self, note_id: str, **fields: Any) -> Optional[NoteRecord]:
        """Write the given fields (see UPDATABLE_FIELDS) and refresh updated_at."""
        ...

    @abstractmethod
    async def claim_for_processing(
        self, note_id: str, stale_after: int
    ) -> Optional[NoteRecord]:
        """Atomically move a claimable note to `processing`; None if not claimable."""
        ...

    @abstractmethod
    async def mark_failed(
        self,
        note_id: str,
        processed_text: Optional[str] = None,
        stale_after: Optional[int] = None,
    ) -> bool:
        """
        Set status `failed` unless the note is completed. True when written.

        With stale_after, only a claimable note is written (same condition as
        claim_for_processing), so a live claim held elsewhere is left alone.
        """
        ...

    @abstractmethod
    async def get_user_profile(self, user_id: str) -> Optional[ProfileRecord]:
        ...

    @abstractmethod
    async def check_user_limits(self, user_id: str) -> UsageLimits:
        ...

    @abstractmethod
    async def increment_note_count(self, user_id: str) -> int:
        """Count one more processed note this month; returns the new count."""
        ...

    @abstractmethod
    async def get_processing_stats(self) -> ProcessingStats:
        ...

    @abstractmethod
    async def health_check(self) -> bool:
        ...

    def describe(self) -> Dict[str, Any]:
        return {"backend": self.backend}

    async def close(self) -> None:
        return None


# ══════════════════════════════════════════════════════════════════════════
# In-Memory Store
# ══════════════════════════════════════════════════════════════════════════


class InMemoryNoteStore(NoteStore):
    """
    Dict-backed store for local runs and tests.

    Each operation completes without awaiting anything, so under a single
    event loop every method is atomic, including the claim.

    fabricate_missing:
        Unknown (well-formed) note IDs resolve to a newly created pending demo
        note instead of None, so a local run with no database can still be
        driven from the app. Off in tests that need 404s.
    """

    backend = "memory"

    DEMO_USER_ID = "00000000-0000-0000-0000-000000000001"
    DEMO_TEXT = (
        "This is a test note for local development. "
        "Connect a database to process real notes."
    )

    def __init__(
        self,
        tier_limits: Optional[Dict[str, Optional[int]]] = None,
        fabricate_missing: bool = False,
    ):
        self.tier_limits = tier_limits or {"free": 10, "premium": None}
        self.fabricate_missing = fabricate_missing
        self.notes: Dict[str, NoteRecord] = {}
        self.profiles: Dict[str, ProfileRecord] = {}

    @staticmethod
    def _key(note_id: str) -> Optional[str]:
        parsed = parse_note_id(note_id)
        return str(parsed) if parsed else None

    async def get_note(self, note_id: str) -> Optional[NoteRecord]:
        key = self._key(note_id)
        if key is None:
            return None
        note = self.notes.get(key)
        if note is None and self.fabricate_missing:
            logger.warning("Note %s not found, fabricating a demo note", key)
            note = await self.create_note(
                user_id=self.DEMO_USER_ID,
                original_text=self.DEMO_TEXT,
                note_id=key,
            )
        return note.model_copy() if note else None

    async def create_note(
        self,
        user_id: str,
        original_text: str,
        note_type: str = NoteCategory.GENERAL.value,
        note_id: Optional[str] = None,
        processing_status: str = NoteStatus.PENDING.value,
    ) -> NoteRecord:
        now = utcnow()
        note = NoteRecord(
            id=self._key(note_id) if note_id else str(uuid.uuid4()),
            user_id=user_id,
            original_text=original_text,
            note_type=note_type,
            processing_status=processing_status,
            created_at=now,
            updated_at=now,
        )
        self.notes[note.id] = note
        return note.model_copy()

    async def update_note(self, note_id: str, **fields: Any) -> Optional[NoteRecord]:
        unknown = set(fields) - UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update note fields: {sorted(unknown)}")
        key = self._key(note_id)
        note = self.notes.get(key) if key else None
        if note is None:
            return None
        updated = note.model_copy(update={**fields, "updated_at": utcnow()})
        self.notes[key] = updated
        return updated.model_copy()

    async def claim_for_processing(
        self, note_id: str, stale_after: int
    ) -> Optional[NoteRecord]:
        key = self._key(note_id)
        note = self.notes.get(key) if key else None
        if note is None:
            return None

        now = utcnow()
        if not _claimable(note, now, stale_after):
            return None

        claimed = note.model_copy(
            update={"processing_status": NoteStatus.PROCESSING.value, "updated_at": now}
        )
        self.notes[key] = claimed
        return claimed.model_copy()

    async def mark_failed(
        self,
        note_id: str,
        processed_text: Optional[str] = None,
        stale_after: Optional[int] = None,
    ) -> bool:
        key = self._key(note_id)
        note = self.notes.get(key) if key else None
        if note is None or note.processing_status == NoteStatus.COMPLETED.value:
            return False
        if stale_after is not None and not _claimable(note, utcnow(), stale_after):
            return False
        fields: Dict[str, Any] = {"processing_status": NoteStatus.FAILED.value}
        if processed_text is not None:
            fields["processed_text"] = processed_text
        await self.update_note(key, **fields)
        return True

    async def get_user_profile(self, user_id: str) -> Optional[ProfileRecord]:
        profile = self.profiles.get(user_id)
        return profile.model_copy() if profile else None

    def set_profile(
        self,
        user_id: str,
        subscription_tier: str = SubscriptionTier.FREE.value,
        monthly_note_count: int = 0,
        count_period_start: Optional[date] = None,
    ) -> ProfileRecord:
        """Seed a profile row (tests and local runs)."""
        profile = ProfileRecord(
            id=user_id,
            monthly_note_count=monthly_note_count,
            count_period_start=count_period_start or current_period_start(),
            subscription_tier=subscription_tier,
        )
        self.profiles[user_id] = profile
        return profile

    async def check_user_limits(self, user_id: str) -> UsageLimits:
        return compute_usage_limits(
            user_id,
            self.profiles.get(user_id),
            self.tier_limits,
            current_period_start(),
        )

    async def increment_note_count(self, user_id: str) -> int:
        period = current_period_start()
        profile = self.profiles.get(user_id)
        if profile is None:
            profile = self.set_profile(user_id, monthly_note_count=1, count_period_start=period)
        elif profile.count_period_start < period:
            profile = self.set_profile(
                user_id,
                subscription_tier=profile.subscription_tier,
                monthly_note_count=1,
                count_period_start=period,
            )
        else:
            profile = profile.model_copy(
                update={"monthly_note_count": profile.monthly_note_count + 1}
            )
            self.profiles[user_id] = profile
        return profile.monthly_note_count

    async def get_processing_stats(self) -> ProcessingStats:
        return summarize_notes(self.notes.values())

    async def health_check(self) -> bool:
        return True

    def describe(self) -> Dict[str, Any]:
        return {"backend": self.backend, "notes": len(self.notes)}
