# Routes package init
"""
SpeechCraft Processing Server — API Routes Package
===================================================

Route Inventory:
    - health.py:   GET  /                    (service info)
                   GET  /health, /api/health (probes)
    - process.py:  POST /api/process         (enhance a note)
                   GET  /api/status/{noteId} (status snapshot)
    - stats.py:    GET  /api/stats           (aggregates, optional auth)

Routes stay thin: parse the request, call NoteProcessor, wrap the result.
"""
