"""
SpeechCraft Processing Server — Application Package Initializer
================================================================

What: Marks the `speechcraft` directory as a Python package.
Why:  Enables module imports like `from speechcraft.config import settings`.
Who:  Used implicitly by Python's import system and explicitly by Alembic, pytest, and uvicorn.

Architecture Note:
    The server is a thin relay between the mobile client, an external note
    store, and an external text-completion provider:

    ┌─────────────────────────────────────┐
    │     Routes + Middleware (HTTP)      │  ← auth, rate limits, status codes
    ├─────────────────────────────────────┤
    │      NoteProcessor (orchestration)  │  ← validate → claim → complete → persist
    ├──────────────────┬──────────────────┤
    │    NoteStore     │ CompletionService│  ← pluggable back ends (live / fake)
    └──────────────────┴──────────────────┘

    The processor is the only place that writes notes; routes call the back
    ends directly only for health probes.
"""

__version__ = "1.0.0"
