"""
SpeechCraft Processing Server — Note SQLAlchemy Model
======================================================

What:  ORM model representing the `notes` table of the managed PostgreSQL store.
Why:   Maps rows to Python objects for PostgresNoteStore queries.
How:   Inherits from the shared DeclarativeBase; Alembic reads this for migrations.
Who:   Used by PostgresNoteStore; rows are converted to NoteRecord before
       leaving the store.

Table Design Rationale:
    - UUID primary key: generated by the client app when the note is saved
    - original_text: raw speech transcript (never modified by this server)
    - processed_text: AI-enhanced or fallback text; NULL until processing ends
    - note_type: category selecting the prompt template (free-form string so an
      app release with a new category does not break inserts)
    - processing_status: pending → processing → completed | failed
    - tokens_used / processing_time: provider usage for cost reporting
    - updated_at: refreshed on every write; also dates a `processing` claim
"""

import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import CheckConstraint, Float, Index, Integer, String, Text, text
from sqlalchemy.dialects.postgresql import TIMESTAMP, UUID
from sqlalchemy.orm import Mapped, mapped_column

from speechcraft.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Note(Base):
    """
    A captured speech note and its enhancement state.

    Lifecycle:
        1. Inserted by the client app (status = 'pending')
        2. Claimed by the processor (status = 'processing')
        3. Completed with AI text, or failed with fallback / limit text
    """

    __tablename__ = "notes"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
        server_default=text("gen_random_uuid()"),
    )

    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        nullable=False,
        comment="Owning user (profiles.id)",
    )

    original_text: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        comment="Raw speech transcript captured by the app",
    )

    processed_text: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
        default=None,
        comment="Enhanced text, fallback text, or limit notice",
    )

    note_type: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
        default="general",
        server_default=text("'general'"),
        comment="Category: meeting, todo, idea, general",
    )

    processing_status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default="pending",
        server_default=text("'pending'"),
        comment="Processing state: pending, processing, completed, failed",
    )

    tokens_used: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        server_default=text("0"),
    )

    processing_time: Mapped[Optional[float]] = mapped_column(
        Float,
        nullable=True,
        comment="Completion call duration in seconds",
    )

    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        default=_utcnow,
        server_default=text("CURRENT_TIMESTAMP"),
    )

    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        default=_utcnow,
        server_default=text("CURRENT_TIMESTAMP"),
    )

    # Stats aggregate over non-pending notes; the user index serves the app's list view
    __table_args__ = (
        CheckConstraint(
            "processing_status IN ('pending', 'processing', 'completed', 'failed')",
            name="ck_notes_processing_status",
        ),
        CheckConstraint("tokens_used >= 0", name="ck_notes_tokens_used"),
        Index("idx_notes_processing_status", "processing_status"),
        Index("idx_notes_user_id", "user_id"),
    )

    def __repr__(self) -> str:
        return (
            f"<Note(id={self.id}, status='{self.processing_status}', "
            f"type='{self.note_type}')>"
        )
