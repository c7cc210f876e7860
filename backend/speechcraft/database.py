"""
SpeechCraft Processing Server — Database Engine Management
===========================================================

What:  Async SQLAlchemy engine and session factory for the PostgreSQL note store.
Why:   Centralizes connection logic; only built when the postgres back end is selected.
How:   build_engine() creates an async engine with connection pooling;
       build_session_factory() hands out sessions to PostgresNoteStore.
Who:   Used by PostgresNoteStore and Alembic.

Why functions (not a module-level engine):
    With no DATABASE_URL the server runs against the in-memory store, and an
    engine must not be created from an empty URL at import time.

Connection Pooling Strategy:
    pool_size:        Persistent connections for normal load
    max_overflow:     Temporary connections for traffic spikes
    pool_pre_ping:    Validates connections before use (catches stale connections)
    pool_recycle=1800: Managed Postgres providers drop idle connections; recycle first
"""

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from speechcraft.config import Settings


class Base(DeclarativeBase):
    """
    Base class for all SQLAlchemy ORM models.

    Registers models with a single metadata object (used by Alembic).
    """
    pass


def build_engine(settings: Settings) -> AsyncEngine:
    """
    Create the async engine for the configured DATABASE_URL.

    Echo SQL only in DEBUG mode.
    """
    return create_async_engine(
        settings.database_url,
        pool_size=settings.db_pool_size,
        max_overflow=settings.db_max_overflow,
        pool_pre_ping=settings.db_pool_pre_ping,
        pool_recycle=1800,
        echo=settings.log_level == "DEBUG",
    )


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """
    expire_on_commit=False: rows stay readable after commit, so the store can
    convert them to records once the transaction is closed.
    """
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )
