"""
SpeechCraft Processing Server — Prompt Templates
=================================================

What:  Static instruction templates per note category, the shared system
       prompt, and the locally formatted fallback used when the completion
       provider is unavailable.
Why:   Prompt wording is product content, not logic; keeping it in one module
       lets it be tuned without touching the processor.
How:   Each template has exactly one `{text}` slot for the trimmed transcript.
       Unknown categories resolve to `general` with a warning, never an error.
"""

import logging
import re
from typing import Optional

from speechcraft.models.enums import NoteCategory

logger = logging.getLogger(__name__)


SYSTEM_PROMPT = (
    "You are a professional note-taking assistant. "
    "Transform speech into well-formatted, professional notes."
)

PROMPT_TEMPLATES = {
    NoteCategory.MEETING: """Transform this speech transcript into professional meeting notes:

Input: "{text}"

Please create:
1. **Key Discussion Points** - Main topics covered
2. **Decisions Made** - Clear decisions and conclusions
3. **Action Items** - Specific tasks with context
4. **Next Steps** - Follow-up actions needed

Format with clear headings, bullet points, and professional language.""",

    NoteCategory.TODO: """Convert this speech into actionable tasks:

Input: "{text}"

Please create:
1. **Priority Tasks** - Most important items first
2. **Quick Tasks** - Items that can be done quickly
3. **Long-term Tasks** - Items requiring more time
4. **Context** - Additional details for each task

Format as an organized, prioritized task list.""",

    NoteCategory.IDEA: """Enhance and structure this creative idea:

Input: "{text}"

Please organize into:
1. **Core Concept** - Main idea clearly stated
2. **Key Features** - Important aspects or components
3. **Potential Benefits** - Value and advantages
4. **Next Steps** - How to develop this idea further

Format as a structured idea document with clear sections.""",

    NoteCategory.GENERAL: """Improve and format this note:

Input: "{text}"

Please:
1. **Fix grammar and clarity** - Make it readable
2. **Organize logically** - Structure the content
3. **Add proper formatting** - Use headings and bullets
4. **Enhance professional tone** - Make it polished

Format as a well-structured, professional note.""",
}

FALLBACK_NOTICE = "**Note:** Enhanced formatting temporarily unavailable."

LIMIT_REACHED_NOTICE = (
    "**Note: Monthly processing limit reached. Please upgrade to premium.**"
)

# Sentence terminators become bullet breaks in the todo fallback
_SENTENCE_END = re.compile(r"[.!?]")


def resolve_category(raw: Optional[str]) -> NoteCategory:
    """
    Map a stored note_type to a known category.

    Unknown or empty values fall back to GENERAL and log a warning; the note
    is still processed.
    """
    try:
        return NoteCategory(raw)
    except ValueError:
        logger.warning("Unknown note type %r, using general instead", raw)
        return NoteCategory.GENERAL


def build_prompt(text: str, category: NoteCategory) -> str:
    return PROMPT_TEMPLATES[category].format(text=text.strip())


def build_fallback_text(text: str, category: NoteCategory) -> str:
    """
    Format the original transcript without the provider.

    The transcript is kept verbatim (trimmed) so the user never loses content;
    only the todo layout rewrites punctuation into bullets.
    """
    clean = (text or "").strip()

    if category == NoteCategory.MEETING:
        return f"# Meeting Notes\n\n**Discussion:**\n{clean}\n\n{FALLBACK_NOTICE}"
    if category == NoteCategory.TODO:
        bullets = _SENTENCE_END.sub("\n• ", clean)
        return f"# Task List\n\n• {bullets}\n\n{FALLBACK_NOTICE}"
    if category == NoteCategory.IDEA:
        return f"# Creative Idea\n\n**Concept:**\n{clean}\n\n{FALLBACK_NOTICE}"
    return f"# Note\n\n{clean}\n\n{FALLBACK_NOTICE}"


def build_limit_reached_text(text: str) -> str:
    return f"{text}\n\n{LIMIT_REACHED_NOTICE}"
