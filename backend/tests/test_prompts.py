"""
SpeechCraft Processing Server — Prompt Template Tests
======================================================

What we test:
    ✅ Every category has a template with the transcript substituted
    ✅ Unknown categories resolve to general with a warning
    ✅ Fallback text keeps the transcript for every category
    ✅ Limit notice is appended to the untouched original
"""

import logging

import pytest

from speechcraft.models.enums import NoteCategory
from speechcraft.services.prompts import (
    FALLBACK_NOTICE,
    LIMIT_REACHED_NOTICE,
    PROMPT_TEMPLATES,
    build_fallback_text,
    build_limit_reached_text,
    build_prompt,
    resolve_category,
)


class TestResolveCategory:
    @pytest.mark.parametrize("raw", ["meeting", "todo", "idea", "general"])
    def test_known_categories(self, raw):
        assert resolve_category(raw) == NoteCategory(raw)

    def test_unknown_category_falls_back_to_general(self, caplog):
        with caplog.at_level(logging.WARNING, logger="speechcraft.services.prompts"):
            assert resolve_category("shopping") == NoteCategory.GENERAL
        assert "shopping" in caplog.text

    def test_missing_category_falls_back_to_general(self):
        assert resolve_category(None) == NoteCategory.GENERAL


class TestBuildPrompt:
    def test_every_category_has_a_template(self):
        assert set(PROMPT_TEMPLATES) == set(NoteCategory)

    def test_text_is_trimmed_and_substituted(self):
        prompt = build_prompt("   call the plumber   ", NoteCategory.TODO)
        assert 'Input: "call the plumber"' in prompt
        assert "{text}" not in prompt
        assert "actionable tasks" in prompt

    def test_braces_in_transcript_are_kept(self):
        prompt = build_prompt("use {curly} braces", NoteCategory.GENERAL)
        assert "use {curly} braces" in prompt


class TestFallbackText:
    def test_todo_fallback_turns_sentences_into_bullets(self):
        text = build_fallback_text("buy milk. call mom.", NoteCategory.TODO)
        assert text == (
            "# Task List\n\n• buy milk\n•  call mom\n• \n\n" + FALLBACK_NOTICE
        )

    def test_meeting_fallback(self):
        text = build_fallback_text(" budget approved ", NoteCategory.MEETING)
        assert text == (
            "# Meeting Notes\n\n**Discussion:**\nbudget approved\n\n" + FALLBACK_NOTICE
        )

    def test_idea_fallback(self):
        text = build_fallback_text("solar kettle", NoteCategory.IDEA)
        assert text.startswith("# Creative Idea\n\n**Concept:**\nsolar kettle")
        assert text.endswith(FALLBACK_NOTICE)

    def test_general_fallback(self):
        assert build_fallback_text("hello there", NoteCategory.GENERAL) == (
            "# Note\n\nhello there\n\n" + FALLBACK_NOTICE
        )


def test_limit_reached_text_appends_notice_to_original():
    original = "Remember the dentist on Friday"
    assert build_limit_reached_text(original) == f"{original}\n\n{LIMIT_REACHED_NOTICE}"
