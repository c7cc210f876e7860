# Services package init
"""
SpeechCraft Processing Server — Services Layer
===============================================

What:  Business logic sitting between routes (HTTP) and the external systems
       (note store, completion provider).
How:   Services are built once by the app factory, stored on app.state and
       handed to routes through FastAPI dependencies.

Service Inventory:
    - NoteStore (abstract): notes/profiles access
        - PostgresNoteStore: managed PostgreSQL (production)
        - InMemoryNoteStore: dict-backed (local runs, tests)
    - CompletionService (abstract): text completion provider
        - OpenAICompletionService: OpenAI chat completions
        - SimulatedCompletionService: offline stand-in
    - prompts: per-category templates and fallback formatting
    - NoteProcessor: lookup → limits → claim → complete → persist
"""
