"""
SpeechCraft Processing Server — Note Store Tests
=================================================

What:  Contract tests for InMemoryNoteStore and statement-level tests for
       PostgresNoteStore with a mocked async session (no real DB needed).

What we test:
    ✅ Claim compare-and-swap semantics (pending / failed / stale / live)
    ✅ mark_failed never touches completed notes, nor live claims when conditional
    ✅ Monthly counter rollover and tier limits
    ✅ Stats only count notes that left `pending`
    ✅ Postgres statements (RETURNING, ON CONFLICT) and error wrapping
    ✅ ORM CHECK constraints match the migration
"""

import uuid
from datetime import date, datetime, timedelta, timezone

import pytest
from unittest.mock import AsyncMock, MagicMock
from sqlalchemy.dialects import postgresql
from sqlalchemy.exc import OperationalError
from sqlalchemy.schema import CheckConstraint, CreateTable

from speechcraft.exceptions import NoteStoreError
from speechcraft.models.note import Note
from speechcraft.models.profile import Profile
from speechcraft.schemas.note import ProfileRecord
from speechcraft.services.note_store import (
    InMemoryNoteStore,
    compute_usage_limits,
    current_period_start,
    utcnow,
)
from speechcraft.services.postgres_store import PostgresNoteStore

from conftest import USER_ID

TIER_LIMITS = {"free": 10, "premium": None}


# ══════════════════════════════════════════════════════════════════════════
# Usage limit computation
# ══════════════════════════════════════════════════════════════════════════


class TestComputeUsageLimits:
    def test_missing_profile_is_free_tier_with_zero_notes(self):
        limits = compute_usage_limits(USER_ID, None, TIER_LIMITS, current_period_start())

        assert limits.subscription_tier == "free"
        assert limits.monthly_note_count == 0
        assert limits.notes_remaining == 10
        assert limits.limit_reached is False

    def test_limit_reached_at_exact_limit(self):
        profile = ProfileRecord(
            id=USER_ID, monthly_note_count=10, count_period_start=current_period_start()
        )
        limits = compute_usage_limits(USER_ID, profile, TIER_LIMITS, current_period_start())

        assert limits.limit_reached is True
        assert limits.notes_remaining == 0

    def test_unlimited_tier_has_no_remaining_count(self):
        profile = ProfileRecord(
            id=USER_ID,
            monthly_note_count=999,
            count_period_start=current_period_start(),
            subscription_tier="premium",
        )
        limits = compute_usage_limits(USER_ID, profile, TIER_LIMITS, current_period_start())

        assert limits.limit_reached is False
        assert limits.monthly_limit is None
        assert limits.notes_remaining is None

    def test_counter_from_earlier_month_reads_as_zero(self):
        profile = ProfileRecord(
            id=USER_ID, monthly_note_count=10, count_period_start=date(2020, 1, 1)
        )
        limits = compute_usage_limits(USER_ID, profile, TIER_LIMITS, current_period_start())

        assert limits.monthly_note_count == 0
        assert limits.limit_reached is False

    def test_unknown_tier_gets_free_limit(self):
        profile = ProfileRecord(
            id=USER_ID,
            monthly_note_count=3,
            count_period_start=current_period_start(),
            subscription_tier="enterprise",
        )
        limits = compute_usage_limits(USER_ID, profile, TIER_LIMITS, current_period_start())

        assert limits.monthly_limit == 10


# ══════════════════════════════════════════════════════════════════════════
# In-memory store
# ══════════════════════════════════════════════════════════════════════════


class TestInMemoryNoteStore:
    def setup_method(self):
        self.store = InMemoryNoteStore(tier_limits=TIER_LIMITS)

    @pytest.mark.asyncio
    async def test_unknown_and_malformed_ids_return_none(self):
        assert await self.store.get_note(str(uuid.uuid4())) is None
        assert await self.store.get_note("nope") is None

    @pytest.mark.asyncio
    async def test_fabricates_demo_note_when_enabled(self):
        store = InMemoryNoteStore(tier_limits=TIER_LIMITS, fabricate_missing=True)
        note_id = str(uuid.uuid4())

        note = await store.get_note(note_id)

        assert note.id == note_id
        assert note.processing_status == "pending"
        assert note.user_id == InMemoryNoteStore.DEMO_USER_ID
        # Persisted, so the processor can claim and update it
        assert note_id in store.notes

    @pytest.mark.asyncio
    async def test_returned_records_are_copies(self):
        note = await self.store.create_note(USER_ID, "text")
        note.processing_status = "completed"

        assert (await self.store.get_note(note.id)).processing_status == "pending"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", ["pending", "failed"])
    async def test_claim_from_claimable_status(self, status):
        note = await self.store.create_note(USER_ID, "text", processing_status=status)

        claimed = await self.store.claim_for_processing(note.id, stale_after=300)

        assert claimed.processing_status == "processing"

    @pytest.mark.asyncio
    async def test_second_claim_fails(self):
        note = await self.store.create_note(USER_ID, "text")

        assert await self.store.claim_for_processing(note.id, stale_after=300) is not None
        assert await self.store.claim_for_processing(note.id, stale_after=300) is None

    @pytest.mark.asyncio
    async def test_stale_claim_can_be_taken_over(self):
        note = await self.store.create_note(USER_ID, "text", processing_status="processing")
        self.store.notes[note.id] = note.model_copy(
            update={"updated_at": utcnow() - timedelta(seconds=301)}
        )

        assert await self.store.claim_for_processing(note.id, stale_after=300) is not None

    @pytest.mark.asyncio
    async def test_completed_note_cannot_be_claimed(self):
        note = await self.store.create_note(USER_ID, "text", processing_status="completed")

        assert await self.store.claim_for_processing(note.id, stale_after=0) is None

    @pytest.mark.asyncio
    async def test_mark_failed_skips_completed_notes(self):
        note = await self.store.create_note(USER_ID, "text", processing_status="completed")

        assert await self.store.mark_failed(note.id, processed_text="oops") is False
        stored = await self.store.get_note(note.id)
        assert stored.processing_status == "completed"
        assert stored.processed_text is None

    @pytest.mark.asyncio
    async def test_mark_failed_writes_text(self):
        note = await self.store.create_note(USER_ID, "text")

        assert await self.store.mark_failed(note.id, processed_text="limit") is True
        stored = await self.store.get_note(note.id)
        assert stored.processing_status == "failed"
        assert stored.processed_text == "limit"

    @pytest.mark.asyncio
    async def test_conditional_mark_failed_leaves_live_claim(self):
        note = await self.store.create_note(USER_ID, "text", processing_status="processing")

        assert await self.store.mark_failed(note.id, processed_text="limit", stale_after=300) is False
        stored = await self.store.get_note(note.id)
        assert stored.processing_status == "processing"
        assert stored.processed_text is None

    @pytest.mark.asyncio
    async def test_conditional_mark_failed_writes_stale_claim(self):
        note = await self.store.create_note(USER_ID, "text", processing_status="processing")
        self.store.notes[note.id] = note.model_copy(
            update={"updated_at": utcnow() - timedelta(seconds=301)}
        )

        assert await self.store.mark_failed(note.id, processed_text="limit", stale_after=300) is True
        assert (await self.store.get_note(note.id)).processing_status == "failed"

    @pytest.mark.asyncio
    async def test_update_refreshes_updated_at(self):
        note = await self.store.create_note(USER_ID, "text")

        updated = await self.store.update_note(note.id, tokens_used=3)

        assert updated.tokens_used == 3
        assert updated.updated_at >= note.updated_at

    @pytest.mark.asyncio
    async def test_update_rejects_unknown_fields(self):
        note = await self.store.create_note(USER_ID, "text")

        with pytest.raises(ValueError):
            await self.store.update_note(note.id, user_id="someone-else")

    @pytest.mark.asyncio
    async def test_increment_creates_profile(self):
        assert await self.store.increment_note_count(USER_ID) == 1
        assert await self.store.increment_note_count(USER_ID) == 2

        profile = await self.store.get_user_profile(USER_ID)
        assert profile.subscription_tier == "free"

    @pytest.mark.asyncio
    async def test_increment_restarts_in_new_month(self):
        self.store.set_profile(
            USER_ID,
            subscription_tier="premium",
            monthly_note_count=42,
            count_period_start=date(2020, 1, 1),
        )

        assert await self.store.increment_note_count(USER_ID) == 1
        profile = await self.store.get_user_profile(USER_ID)
        assert profile.count_period_start == current_period_start()
        assert profile.subscription_tier == "premium"

    @pytest.mark.asyncio
    async def test_stats_ignore_pending_notes(self):
        await self.store.create_note(USER_ID, "a")
        done = await self.store.create_note(USER_ID, "b", note_type="todo")
        await self.store.update_note(
            done.id, processing_status="completed", tokens_used=30, processing_time=2.0
        )
        failed = await self.store.create_note(USER_ID, "c", note_type="idea")
        await self.store.update_note(
            failed.id, processing_status="failed", tokens_used=0, processing_time=0.0
        )

        stats = await self.store.get_processing_stats()

        assert stats.total_processed == 2
        assert stats.status_counts == {"completed": 1, "failed": 1}
        assert stats.type_distribution == {"todo": 1, "idea": 1}
        assert stats.total_tokens_used == 30
        # Zero times are left out of the average
        assert stats.average_processing_time == pytest.approx(2.0)


# ══════════════════════════════════════════════════════════════════════════
# PostgreSQL store (mocked session)
# ══════════════════════════════════════════════════════════════════════════


def _sql(statement) -> str:
    return str(statement.compile(dialect=postgresql.dialect()))


def _orm_note(**overrides) -> Note:
    now = datetime.now(timezone.utc)
    values = dict(
        id=uuid.uuid4(),
        user_id=uuid.UUID(USER_ID),
        original_text="buy milk",
        processed_text=None,
        note_type="todo",
        processing_status="pending",
        tokens_used=0,
        processing_time=None,
        created_at=now,
        updated_at=now,
    )
    values.update(overrides)
    return Note(**values)


@pytest.fixture
def mock_session():
    session = AsyncMock()
    session.execute = AsyncMock()
    session.commit = AsyncMock()
    session.flush = AsyncMock()
    session.add = MagicMock()
    return session


@pytest.fixture
def pg_store(mock_session):
    factory = MagicMock()
    factory.return_value.__aenter__.return_value = mock_session
    factory.return_value.__aexit__.return_value = False
    return PostgresNoteStore(session_factory=factory, tier_limits=TIER_LIMITS)


def _result(scalar=None):
    result = MagicMock()
    result.scalar_one_or_none.return_value = scalar
    result.scalar_one.return_value = scalar
    return result


class TestPostgresNoteStore:
    @pytest.mark.asyncio
    async def test_get_note_converts_row(self, pg_store, mock_session):
        row = _orm_note()
        mock_session.execute.return_value = _result(row)

        note = await pg_store.get_note(str(row.id))

        assert note.id == str(row.id)
        assert note.user_id == USER_ID
        assert note.note_type == "todo"

    @pytest.mark.asyncio
    async def test_get_note_malformed_id_skips_query(self, pg_store, mock_session):
        assert await pg_store.get_note("12345") is None
        mock_session.execute.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_claim_is_a_single_conditional_update(self, pg_store, mock_session):
        row = _orm_note(processing_status="processing")
        mock_session.execute.return_value = _result(row)

        claimed = await pg_store.claim_for_processing(str(row.id), stale_after=300)

        assert claimed.processing_status == "processing"
        assert mock_session.execute.await_count == 1
        sql = _sql(mock_session.execute.call_args[0][0])
        assert sql.startswith("UPDATE notes SET")
        assert "notes.processing_status IN" in sql
        assert "notes.updated_at <" in sql
        assert "RETURNING" in sql
        mock_session.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_lost_claim_returns_none(self, pg_store, mock_session):
        mock_session.execute.return_value = _result(None)

        assert await pg_store.claim_for_processing(str(uuid.uuid4()), stale_after=300) is None

    @pytest.mark.asyncio
    async def test_mark_failed_excludes_completed(self, pg_store, mock_session):
        mock_session.execute.return_value = _result(None)

        assert await pg_store.mark_failed(str(uuid.uuid4())) is False
        sql = _sql(mock_session.execute.call_args[0][0])
        assert "notes.processing_status != " in sql

    @pytest.mark.asyncio
    async def test_conditional_mark_failed_uses_claim_condition(self, pg_store, mock_session):
        mock_session.execute.return_value = _result(None)

        assert await pg_store.mark_failed(str(uuid.uuid4()), stale_after=300) is False
        sql = _sql(mock_session.execute.call_args[0][0])
        assert "notes.processing_status IN" in sql
        assert "notes.updated_at <" in sql
        assert "notes.processing_status != " not in sql

    @pytest.mark.asyncio
    async def test_increment_is_an_upsert(self, pg_store, mock_session):
        mock_session.execute.return_value = _result(4)

        assert await pg_store.increment_note_count(USER_ID) == 4
        sql = _sql(mock_session.execute.call_args[0][0])
        assert "INSERT INTO profiles" in sql
        assert "ON CONFLICT (id) DO UPDATE" in sql
        assert "CASE WHEN" in sql
        assert "RETURNING profiles.monthly_note_count" in sql

    @pytest.mark.asyncio
    async def test_check_user_limits_without_profile(self, pg_store, mock_session):
        mock_session.execute.return_value = _result(None)

        limits = await pg_store.check_user_limits(USER_ID)

        assert limits.subscription_tier == "free"
        assert limits.monthly_note_count == 0

    @pytest.mark.asyncio
    async def test_check_user_limits_with_profile(self, pg_store, mock_session):
        profile = Profile(
            id=uuid.UUID(USER_ID),
            monthly_note_count=10,
            count_period_start=current_period_start(),
            subscription_tier="free",
        )
        mock_session.execute.return_value = _result(profile)

        limits = await pg_store.check_user_limits(USER_ID)

        assert limits.limit_reached is True

    @pytest.mark.asyncio
    async def test_processing_stats(self, pg_store, mock_session):
        status_rows = MagicMock()
        status_rows.all.return_value = [("completed", 3), ("failed", 1)]
        type_rows = MagicMock()
        type_rows.all.return_value = [("meeting", 2), ("todo", 2)]
        totals = MagicMock()
        totals.one.return_value = (120, 1.5)
        mock_session.execute.side_effect = [status_rows, type_rows, totals]

        stats = await pg_store.get_processing_stats()

        assert stats.total_processed == 4
        assert stats.status_counts == {"completed": 3, "failed": 1}
        assert stats.type_distribution == {"meeting": 2, "todo": 2}
        assert stats.total_tokens_used == 120
        assert stats.average_processing_time == 1.5

    @pytest.mark.asyncio
    async def test_database_errors_are_wrapped(self, pg_store, mock_session):
        mock_session.execute.side_effect = OperationalError("SELECT", {}, Exception("down"))

        with pytest.raises(NoteStoreError) as exc_info:
            await pg_store.get_note(str(uuid.uuid4()))

        assert exc_info.value.code == "STORE_ERROR"
        assert "down" not in exc_info.value.message

    @pytest.mark.asyncio
    async def test_health_check_reports_failure(self, pg_store, mock_session):
        assert await pg_store.health_check() is True

        mock_session.execute.side_effect = OperationalError("SELECT 1", {}, Exception("down"))
        assert await pg_store.health_check() is False


# ══════════════════════════════════════════════════════════════════════════
# ORM tables match the migration
# ══════════════════════════════════════════════════════════════════════════


def _check_names(model):
    return {c.name for c in model.__table__.constraints if isinstance(c, CheckConstraint)}


class TestTableConstraints:
    def test_notes_checks(self):
        assert _check_names(Note) == {"ck_notes_processing_status", "ck_notes_tokens_used"}
        ddl = str(CreateTable(Note.__table__).compile(dialect=postgresql.dialect()))
        assert (
            "CONSTRAINT ck_notes_processing_status CHECK (processing_status IN "
            "('pending', 'processing', 'completed', 'failed'))"
        ) in ddl

    def test_profiles_checks(self):
        assert _check_names(Profile) == {"ck_profiles_subscription_tier", "ck_profiles_count"}
        ddl = str(CreateTable(Profile.__table__).compile(dialect=postgresql.dialect()))
        assert "CONSTRAINT ck_profiles_count CHECK (monthly_note_count >= 0)" in ddl
