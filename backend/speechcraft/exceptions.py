"""
SpeechCraft Processing Server — Custom Exception Hierarchy
===========================================================

What:  Application-specific exceptions for every expected failure condition.
Why:   Each condition maps to one HTTP status and one machine-readable code,
       so the mobile client can branch on `error` without parsing messages.
How:   Every exception carries a message, a context dict (logged, never
       returned), an HTTP status, and a code. Global handlers registered in
       main.py turn them into JSON error bodies.
Who:   Raised by services, dependencies and middleware; caught by handlers.

Exception Hierarchy:
    SpeechCraftError (base)              → 500 INTERNAL_ERROR
    ├── ValidationError                  → 400 VALIDATION_ERROR / MISSING_NOTE_ID
    ├── AuthenticationError              → 401 MISSING_API_KEY / INVALID_API_KEY
    ├── ConfigurationError               → 500 CONFIG_ERROR
    ├── NotFoundError                    → 404 NOTE_NOT_FOUND
    ├── ProcessingConflictError          → 409 ALREADY_PROCESSING
    ├── LimitReachedError                → 429 LIMIT_REACHED
    ├── RateLimitExceededError           → 429 RATE_LIMIT_EXCEEDED / PROCESSING_RATE_LIMIT
    ├── ProcessingError                  → 500 PROCESSING_ERROR
    ├── NoteStoreError                   → 500 STORE_ERROR
    └── CompletionServiceError           → 503 COMPLETION_ERROR

    CompletionServiceError never reaches a client through /api/process: the
    NoteProcessor absorbs it into fallback text (openaiSuccess=false).
"""

from typing import Any, Dict, Optional


class SpeechCraftError(Exception):
    """
    Base exception for all SpeechCraft application errors.

    Attributes:
        message:      User-facing error description (safe to return)
        context:      Debug info (logged but NOT returned to client)
        details:      Structured data that IS safe to return (may be empty)
        code:         Machine-readable error code
        status_code:  HTTP status the global handler responds with
    """

    status_code: int = 500
    code: str = "INTERNAL_ERROR"

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        context: Optional[Dict[str, Any]] = None,
        code: Optional[str] = None,
    ):
        self.message = message
        self.context = context or {}
        if code:
            self.code = code
        super().__init__(self.message)

    @property
    def details(self) -> Dict[str, Any]:
        return {}


class ValidationError(SpeechCraftError):
    """
    Raised when client input fails validation.

    When:    Missing noteId, malformed JSON body.
    HTTP:    400 Bad Request (FastAPI's default 422 is remapped to 400 as well,
             so clients only ever see one status for bad input)
    """

    status_code = 400
    code = "VALIDATION_ERROR"

    def __init__(
        self,
        message: str = "Validation failed",
        field: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
        code: Optional[str] = None,
    ):
        ctx = context or {}
        if field:
            ctx["field"] = field
        super().__init__(message=message, context=ctx, code=code)
        self.field = field

    @property
    def details(self) -> Dict[str, Any]:
        return {"field": self.field} if self.field else {}


class AuthenticationError(SpeechCraftError):
    """
    Raised when the shared secret is missing or wrong.

    Two distinct codes let the client tell "you forgot the header" apart from
    "your key is wrong" (MISSING_API_KEY vs INVALID_API_KEY).
    """

    status_code = 401
    code = "INVALID_API_KEY"

    def __init__(
        self,
        message: str = "Invalid API key",
        code: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context, code=code)


class ConfigurationError(SpeechCraftError):
    """Raised when the server itself is misconfigured (e.g. API_SECRET_KEY unset)."""

    status_code = 500
    code = "CONFIG_ERROR"

    def __init__(
        self,
        message: str = "Server configuration error",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class NotFoundError(SpeechCraftError):
    """
    Raised when a requested note does not exist.

    The store returns None for missing rows (and for malformed identifiers);
    the processor converts that into this exception so the route layer stays
    free of None checks.
    """

    status_code = 404
    code = "NOTE_NOT_FOUND"

    def __init__(
        self,
        resource: str = "note",
        resource_id: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        message = f"The requested {resource} was not found"
        if resource_id:
            message = f"{resource.capitalize()} with ID '{resource_id}' was not found"
        ctx = context or {}
        ctx["resource"] = resource
        if resource_id:
            ctx["resource_id"] = resource_id
        super().__init__(message=message, context=ctx)


class ProcessingConflictError(SpeechCraftError):
    """
    Raised when another request already holds the processing claim on a note.

    HTTP:    409 Conflict
    Why:     Two concurrent /api/process calls for one note would otherwise
             both call the completion provider and both bump the monthly
             counter. Only the caller that wins the pending → processing
             compare-and-swap proceeds.
    """

    status_code = 409
    code = "ALREADY_PROCESSING"

    def __init__(
        self,
        note_id: str,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        ctx["note_id"] = note_id
        super().__init__(
            message="This note is already being processed by another request",
            context=ctx,
        )
        self.note_id = note_id

    @property
    def details(self) -> Dict[str, Any]:
        return {"noteId": self.note_id}


class LimitReachedError(SpeechCraftError):
    """
    Raised when the note owner's monthly processing allowance is used up.

    HTTP:    429 Too Many Requests
    Details: monthlyCount, notesRemaining, subscriptionTier so the client can
             show an upgrade prompt.
    """

    status_code = 429
    code = "LIMIT_REACHED"

    def __init__(
        self,
        monthly_count: int,
        subscription_tier: str,
        notes_remaining: Optional[int] = 0,
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message="Monthly processing limit reached", context=context)
        self.monthly_count = monthly_count
        self.subscription_tier = subscription_tier
        self.notes_remaining = notes_remaining

    @property
    def details(self) -> Dict[str, Any]:
        return {
            "monthlyCount": self.monthly_count,
            "notesRemaining": self.notes_remaining,
            "subscriptionTier": self.subscription_tier,
        }


class RateLimitExceededError(SpeechCraftError):
    """
    Raised when a client exceeds a sliding-window request limit.

    Codes:
        RATE_LIMIT_EXCEEDED:    global per-IP limit (middleware)
        PROCESSING_RATE_LIMIT:  stricter limit on POST /api/process
    """

    status_code = 429
    code = "RATE_LIMIT_EXCEEDED"

    def __init__(
        self,
        retry_after: int = 60,
        code: Optional[str] = None,
        message: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        message = message or (
            f"Too many requests. Please wait {retry_after} seconds before retrying."
        )
        ctx = context or {}
        ctx["retry_after"] = retry_after
        super().__init__(message=message, context=ctx, code=code)
        self.retry_after = retry_after

    @property
    def details(self) -> Dict[str, Any]:
        return {"retryAfter": self.retry_after}


class ProcessingError(SpeechCraftError):
    """
    Raised when note processing fails for an unexpected reason.

    The processor has already made a best-effort attempt to mark the note
    `failed` before this propagates. The original exception type is kept in
    context; its message is only exposed in development mode.
    """

    status_code = 500
    code = "PROCESSING_ERROR"

    def __init__(
        self,
        message: str = "Processing failed",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class NoteStoreError(SpeechCraftError):
    """
    Raised when the external note store fails (connection lost, bad query).

    Security Note:
        The message returned to the client is always generic; SQL and driver
        errors are logged server-side only.
    """

    status_code = 500
    code = "STORE_ERROR"

    def __init__(
        self,
        message: str = "The note store is temporarily unavailable. Please try again later.",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class CompletionServiceError(SpeechCraftError):
    """
    Raised when the completion provider call fails.

    Never retried: the processor turns it into a fallback-formatted note.
    """

    status_code = 503
    code = "COMPLETION_ERROR"

    def __init__(
        self,
        message: str = "AI text enhancement service is temporarily unavailable",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)

