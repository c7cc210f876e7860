"""
SpeechCraft Processing Server — PostgreSQL Note Store
======================================================

What:  NoteStore implementation over the managed PostgreSQL database that the
       mobile app writes to.
Why:   Production back end; notes and profiles live in the `notes` and
       `profiles` tables.
How:   Async SQLAlchemy 2.0 sessions (asyncpg driver). Each operation opens a
       short session, runs one statement (or a few reads) and commits.
       Rows are converted to Pydantic records before the session closes.

Atomicity:
    - The processing claim is a single UPDATE ... WHERE status IN (...)
      RETURNING, so two concurrent callers cannot both win it.
    - The monthly counter is an INSERT ... ON CONFLICT DO UPDATE that resets
      the count when the stored period is an earlier month.

Error Handling:
    SQLAlchemyError → NoteStoreError (generic message; details logged only).
"""

import logging
from datetime import timedelta
from typing import Any, Dict, Optional

from sqlalchemy import and_, case, func, or_, select, text, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from speechcraft.exceptions import NoteStoreError
from speechcraft.models.enums import NoteCategory, NoteStatus, SubscriptionTier
from speechcraft.models.note import Note
from speechcraft.models.profile import Profile
from speechcraft.schemas.note import (
    NoteRecord,
    ProcessingStats,
    ProfileRecord,
    UsageLimits,
)
from speechcraft.services.note_store import (
    CLAIMABLE_STATUSES,
    UPDATABLE_FIELDS,
    NoteStore,
    compute_usage_limits,
    current_period_start,
    parse_note_id,
    utcnow,
)

logger = logging.getLogger(__name__)


def _claimable(now, stale_after: int):
    """pending/failed, or processing with a claim older than stale_after seconds."""
    return or_(
        Note.processing_status.in_(CLAIMABLE_STATUSES),
        and_(
            Note.processing_status == NoteStatus.PROCESSING.value,
            Note.updated_at < now - timedelta(seconds=stale_after),
        ),
    )


class PostgresNoteStore(NoteStore):
    backend = "postgres"

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        tier_limits: Dict[str, Optional[int]],
        engine: Optional[AsyncEngine] = None,
    ):
        self.session_factory = session_factory
        self.tier_limits = tier_limits
        # Owned engine is disposed on close(); tests pass only a factory
        self.engine = engine

    def _store_error(self, operation: str, error: Exception, **context: Any) -> NoteStoreError:
        logger.error(
            "Note store error during %s: %s", operation, str(error), exc_info=True
        )
        return NoteStoreError(
            context={"operation": operation, "error_type": type(error).__name__, **context}
        )

    # ── Notes ─────────────────────────────────────────────────────────────

    async def get_note(self, note_id: str) -> Optional[NoteRecord]:
        """
        Query plan:
            SELECT * FROM notes WHERE id = :uuid  → primary key lookup
        """
        uid = parse_note_id(note_id)
        if uid is None:
            return None
        try:
            async with self.session_factory() as session:
                result = await session.execute(select(Note).where(Note.id == uid))
                note = result.scalar_one_or_none()
                return NoteRecord.model_validate(note) if note else None
        except SQLAlchemyError as e:
            raise self._store_error("get_note", e, note_id=note_id)

    async def create_note(
        self,
        user_id: str,
        original_text: str,
        note_type: str = NoteCategory.GENERAL.value,
        note_id: Optional[str] = None,
        processing_status: str = NoteStatus.PENDING.value,
    ) -> NoteRecord:
        now = utcnow()
        note = Note(
            user_id=parse_note_id(user_id),
            original_text=original_text,
            note_type=note_type,
            processing_status=processing_status,
            created_at=now,
            updated_at=now,
        )
        if note_id:
            note.id = parse_note_id(note_id)
        try:
            async with self.session_factory() as session:
                session.add(note)
                await session.flush()
                record = NoteRecord.model_validate(note)
                await session.commit()
                return record
        except SQLAlchemyError as e:
            raise self._store_error("create_note", e)

    async def update_note(self, note_id: str, **fields: Any) -> Optional[NoteRecord]:
        unknown = set(fields) - UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update note fields: {sorted(unknown)}")
        uid = parse_note_id(note_id)
        if uid is None:
            return None

        stmt = (
            update(Note)
            .where(Note.id == uid)
            .values(**fields, updated_at=utcnow())
            .returning(Note)
            .execution_options(synchronize_session=False)
        )
        try:
            async with self.session_factory() as session:
                result = await session.execute(stmt)
                note = result.scalar_one_or_none()
                record = NoteRecord.model_validate(note) if note else None
                await session.commit()
                return record
        except SQLAlchemyError as e:
            raise self._store_error("update_note", e, note_id=note_id)

    async def claim_for_processing(
        self, note_id: str, stale_after: int
    ) -> Optional[NoteRecord]:
        """
        UPDATE notes SET processing_status = 'processing', updated_at = now()
        WHERE id = :id AND (processing_status IN ('pending', 'failed')
              OR (processing_status = 'processing' AND updated_at < :cutoff))
        RETURNING *
        """
        uid = parse_note_id(note_id)
        if uid is None:
            return None

        now = utcnow()
        stmt = (
            update(Note)
            .where(Note.id == uid, _claimable(now, stale_after))
            .values(processing_status=NoteStatus.PROCESSING.value, updated_at=now)
            .returning(Note)
            .execution_options(synchronize_session=False)
        )
        try:
            async with self.session_factory() as session:
                result = await session.execute(stmt)
                note = result.scalar_one_or_none()
                record = NoteRecord.model_validate(note) if note else None
                await session.commit()
                return record
        except SQLAlchemyError as e:
            raise self._store_error("claim_for_processing", e, note_id=note_id)

    async def mark_failed(
        self,
        note_id: str,
        processed_text: Optional[str] = None,
        stale_after: Optional[int] = None,
    ) -> bool:
        uid = parse_note_id(note_id)
        if uid is None:
            return False

        now = utcnow()
        if stale_after is None:
            condition = Note.processing_status != NoteStatus.COMPLETED.value
        else:
            condition = _claimable(now, stale_after)

        values: Dict[str, Any] = {
            "processing_status": NoteStatus.FAILED.value,
            "updated_at": now,
        }
        if processed_text is not None:
            values["processed_text"] = processed_text

        stmt = (
            update(Note)
            .where(Note.id == uid, condition)
            .values(**values)
            .returning(Note.id)
            .execution_options(synchronize_session=False)
        )
        try:
            async with self.session_factory() as session:
                result = await session.execute(stmt)
                written = result.scalar_one_or_none() is not None
                await session.commit()
                return written
        except SQLAlchemyError as e:
            raise self._store_error("mark_failed", e, note_id=note_id)

    # ── Profiles / Usage Limits ───────────────────────────────────────────

    async def get_user_profile(self, user_id: str) -> Optional[ProfileRecord]:
        uid = parse_note_id(user_id)
        if uid is None:
            return None
        try:
            async with self.session_factory() as session:
                result = await session.execute(select(Profile).where(Profile.id == uid))
                profile = result.scalar_one_or_none()
                return ProfileRecord.model_validate(profile) if profile else None
        except SQLAlchemyError as e:
            raise self._store_error("get_user_profile", e, user_id=user_id)

    async def check_user_limits(self, user_id: str) -> UsageLimits:
        profile = await self.get_user_profile(user_id)
        return compute_usage_limits(
            user_id, profile, self.tier_limits, current_period_start()
        )

    async def increment_note_count(self, user_id: str) -> int:
        """
        INSERT INTO profiles (id, monthly_note_count, count_period_start, ...)
        VALUES (:id, 1, :period, 'free')
        ON CONFLICT (id) DO UPDATE SET
            monthly_note_count = CASE WHEN profiles.count_period_start = :period
                                      THEN profiles.monthly_note_count + 1 ELSE 1 END,
            count_period_start = :period
        RETURNING monthly_note_count
        """
        period = current_period_start()
        insert_stmt = pg_insert(Profile).values(
            id=parse_note_id(user_id),
            monthly_note_count=1,
            count_period_start=period,
            subscription_tier=SubscriptionTier.FREE.value,
        )
        stmt = insert_stmt.on_conflict_do_update(
            index_elements=[Profile.id],
            set_={
                "monthly_note_count": case(
                    (
                        Profile.count_period_start == period,
                        Profile.monthly_note_count + 1,
                    ),
                    else_=1,
                ),
                "count_period_start": period,
                "updated_at": utcnow(),
            },
        ).returning(Profile.monthly_note_count)

        try:
            async with self.session_factory() as session:
                result = await session.execute(stmt)
                count = result.scalar_one()
                await session.commit()
                return count
        except SQLAlchemyError as e:
            raise self._store_error("increment_note_count", e, user_id=user_id)

    # ── Stats / Health ────────────────────────────────────────────────────

    async def get_processing_stats(self) -> ProcessingStats:
        not_pending = Note.processing_status != NoteStatus.PENDING.value
        try:
            async with self.session_factory() as session:
                status_rows = await session.execute(
                    select(Note.processing_status, func.count(Note.id))
                    .where(not_pending)
                    .group_by(Note.processing_status)
                )
                type_rows = await session.execute(
                    select(Note.note_type, func.count(Note.id))
                    .where(not_pending)
                    .group_by(Note.note_type)
                )
                totals = await session.execute(
                    select(
                        func.coalesce(func.sum(Note.tokens_used), 0),
                        func.avg(
                            case((Note.processing_time > 0, Note.processing_time))
                        ),
                    ).where(not_pending)
                )
                status_counts = {status: count for status, count in status_rows.all()}
                type_distribution = {kind: count for kind, count in type_rows.all()}
                total_tokens, avg_time = totals.one()
        except SQLAlchemyError as e:
            raise self._store_error("get_processing_stats", e)

        return ProcessingStats(
            total_processed=sum(status_counts.values()),
            status_counts=status_counts,
            type_distribution=type_distribution,
            total_tokens_used=int(total_tokens or 0),
            average_processing_time=float(avg_time or 0.0),
        )

    async def health_check(self) -> bool:
        try:
            async with self.session_factory() as session:
                await session.execute(text("SELECT 1"))
            return True
        except Exception as e:
            logger.warning("Note store health check failed: %s", str(e))
            return False

    async def close(self) -> None:
        if self.engine is not None:
            await self.engine.dispose()
            logger.info("Database engine disposed")
