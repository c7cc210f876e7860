"""
SpeechCraft Processing Server — Test Configuration (conftest.py)
=================================================================

What:  Shared pytest fixtures for the entire test suite.
Why:   Tests run without a database or provider: the in-memory store stands
       in for PostgreSQL and an AsyncMock stands in for OpenAI.

Fixture Hierarchy (all function-scoped, fresh per test):
    ├── test_settings: Settings built in code (no .env, no environment)
    ├── memory_store: empty InMemoryNoteStore (no fabricated notes)
    ├── mock_completion: CompletionService double returning a fixed result
    ├── processor: NoteProcessor over memory_store + mock_completion
    ├── pending_note: one pending note owned by a free-tier user
    ├── app: FastAPI app wired to the fixtures above
    └── test_client: HTTPX AsyncClient over ASGITransport
"""

import os
from unittest.mock import AsyncMock, MagicMock

# Settings are read on import; keep any developer .env credentials out of tests
os.environ["DATABASE_URL"] = ""
os.environ["OPENAI_API_KEY"] = ""
os.environ["API_SECRET_KEY"] = "test-secret"
os.environ["LOG_LEVEL"] = "WARNING"

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from speechcraft.config import Settings
from speechcraft.services.completion_base import CompletionResult, CompletionService
from speechcraft.services.note_processor import NoteProcessor
from speechcraft.services.note_store import InMemoryNoteStore

API_KEY = "test-secret"
USER_ID = "7c9e6679-7425-40de-944b-e07fc1f90ae7"
ENHANCED_TEXT = "# Meeting Notes\n\n**Key Discussion Points**\n- Budget approved"


@pytest.fixture
def test_settings():
    """
    Settings for tests, isolated from the environment and any .env file.
    """
    return Settings(
        _env_file=None,
        environment="test",
        api_secret_key=API_KEY,
        note_store_backend="memory",
        completion_backend="simulated",
        stub_fabricate_notes=False,
        free_tier_monthly_limit=10,
        premium_tier_monthly_limit=0,
        log_level="WARNING",
    )


@pytest.fixture
def memory_store(test_settings):
    return InMemoryNoteStore(tier_limits=test_settings.tier_limits)


@pytest.fixture
def mock_completion():
    """
    Completion service double.

    complete() returns a fixed CompletionResult; tests override side_effect
    to simulate provider failures.
    """
    completion = MagicMock(spec=CompletionService)
    completion.backend = "openai"
    completion.model = "gpt-3.5-turbo"
    completion.complete = AsyncMock(
        return_value=CompletionResult(
            text=ENHANCED_TEXT,
            tokens_used=42,
            model="gpt-3.5-turbo",
            elapsed=0.8,
        )
    )
    completion.health_check = AsyncMock(return_value=True)
    completion.describe.return_value = {
        "backend": "openai",
        "model": "gpt-3.5-turbo",
        "max_tokens": 1000,
    }
    completion.close = AsyncMock()
    return completion


@pytest.fixture
def processor(memory_store, mock_completion):
    return NoteProcessor(store=memory_store, completion=mock_completion, claim_ttl=300)


@pytest_asyncio.fixture
async def pending_note(memory_store):
    return await memory_store.create_note(
        user_id=USER_ID,
        original_text="  We agreed on the Q3 budget and Sam will send the slides.  ",
        note_type="meeting",
    )


@pytest.fixture
def app(test_settings, memory_store, mock_completion):
    from speechcraft.main import create_app

    return create_app(
        settings=test_settings,
        note_store=memory_store,
        completion_service=mock_completion,
    )


@pytest_asyncio.fixture
async def test_client(app):
    """
    HTTPX AsyncClient routed straight into the app (no server).

    raise_app_exceptions=False: the catch-all 500 handler's response is
    returned to the test instead of the exception being re-raised.
    """
    transport = ASGITransport(app=app, raise_app_exceptions=False)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest.fixture
def auth_headers():
    return {"x-api-key": API_KEY}
