"""
SpeechCraft Processing Server — Profile SQLAlchemy Model
=========================================================

What:  ORM model for the `profiles` table (one row per app user).
Why:   Holds the monthly processed-note counter and subscription tier that
       the usage-limit check reads and the processor increments.

Counter semantics:
    monthly_note_count belongs to the month starting at count_period_start.
    A counter from an earlier month reads as 0, and the next increment
    restarts it at 1 for the current month. There is no decrement.
"""

import uuid
from datetime import date, datetime, timezone

from sqlalchemy import CheckConstraint, Date, Integer, String, text
from sqlalchemy.dialects.postgresql import TIMESTAMP, UUID
from sqlalchemy.orm import Mapped, mapped_column

from speechcraft.database import Base


class Profile(Base):
    __tablename__ = "profiles"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        comment="Same identifier as the auth user",
    )

    monthly_note_count: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        server_default=text("0"),
    )

    count_period_start: Mapped[date] = mapped_column(
        Date,
        nullable=False,
        server_default=text("date_trunc('month', CURRENT_DATE)::date"),
        comment="First day of the month monthly_note_count belongs to",
    )

    subscription_tier: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default="free",
        server_default=text("'free'"),
    )

    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        server_default=text("CURRENT_TIMESTAMP"),
    )

    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        server_default=text("CURRENT_TIMESTAMP"),
    )

    __table_args__ = (
        CheckConstraint(
            "subscription_tier IN ('free', 'premium')",
            name="ck_profiles_subscription_tier",
        ),
        CheckConstraint("monthly_note_count >= 0", name="ck_profiles_count"),
    )

    def __repr__(self) -> str:
        return (
            f"<Profile(id={self.id}, tier='{self.subscription_tier}', "
            f"count={self.monthly_note_count})>"
        )
