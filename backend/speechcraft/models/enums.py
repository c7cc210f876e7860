"""
Enumerations shared by the ORM models, the stores and the processor.
"""

from enum import Enum


class NoteStatus(str, Enum):
    """
    Processing lifecycle of a note.

        pending → processing → completed   (terminal, never reprocessed)
                             → failed      (terminal, may be processed again)
    """

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class NoteCategory(str, Enum):
    """Note kind chosen in the app; selects the prompt and fallback template."""

    MEETING = "meeting"
    TODO = "todo"
    IDEA = "idea"
    GENERAL = "general"


class SubscriptionTier(str, Enum):
    FREE = "free"
    PREMIUM = "premium"
