"""Tests for context assembly and prompt rendering."""
import pytest

from notegraph.exceptions import ErrorCode, ValidationError
from notegraph.models.schema import ContextNote
from notegraph.observability import metrics
from notegraph.services.context_assembler import (
    NO_CONTEXT_PLACEHOLDER,
    SYSTEM_PREAMBLE,
    build_context_block,
    render_prompt,
)


class TestAssemble:
    """Tests for ContextAssembler.assemble."""

    def test_search_matches_limited_by_top_k(self, knowledge_base):
        for i in range(4):
            knowledge_base.create_note(f"Garden {i}", "tomatoes grow here")
        context = knowledge_base.assemble_context("tomatoes", top_k=2)
        assert len(context) == 2

    def test_anchor_first_and_not_duplicated(self, knowledge_base):
        """An anchor that also matches the query appears once, first."""
        other = knowledge_base.create_note("Other", "tomatoes tomatoes tomatoes")
        anchor = knowledge_base.create_note("Anchor", "tomatoes")
        context = knowledge_base.assemble_context("tomatoes", note_id=anchor.id)
        assert [c.id for c in context] == [anchor.id, other.id]

    def test_anchor_plus_top_k(self, knowledge_base):
        anchor = knowledge_base.create_note("Anchor", "unrelated")
        for i in range(3):
            knowledge_base.create_note(f"Match {i}", "tomatoes")
        context = knowledge_base.assemble_context("tomatoes", note_id=anchor.id, top_k=2)
        assert context[0].id == anchor.id
        assert len(context) == 3

    def test_missing_anchor_is_skipped(self, knowledge_base):
        note = knowledge_base.create_note("Match", "tomatoes")
        context = knowledge_base.assemble_context("tomatoes", note_id="missing")
        assert [c.id for c in context] == [note.id]

    def test_include_all_uses_recent_notes(self, knowledge_base):
        first = knowledge_base.create_note("First", "alpha")
        second = knowledge_base.create_note("Second", "beta")
        context = knowledge_base.assemble_context(
            "anything at all", top_k=0, include_all=True
        )
        assert [c.id for c in context] == [second.id, first.id]

    def test_include_all_capped(self, knowledge_base):
        for i in range(55):
            knowledge_base.create_note(f"Note {i}", "")
        context = knowledge_base.assemble_context("question", include_all=True)
        assert len(context) == 50

    def test_include_all_with_anchor_not_duplicated(self, knowledge_base):
        anchor = knowledge_base.create_note("Anchor", "")
        knowledge_base.create_note("Newer", "")
        context = knowledge_base.assemble_context(
            "question", note_id=anchor.id, include_all=True
        )
        ids = [c.id for c in context]
        assert ids[0] == anchor.id
        assert len(ids) == len(set(ids)) == 2

    def test_content_truncated(self, knowledge_base):
        anchor = knowledge_base.create_note("Huge", "word " * 2000)
        context = knowledge_base.assemble_context("word", note_id=anchor.id)
        assert len(context) == 1
        assert len(context[0].content) == 4000

        (from_search,) = knowledge_base.assemble_context("word")
        assert len(from_search.content) == 4000

    def test_quotes_stripped_from_query(self, knowledge_base):
        note = knowledge_base.create_note("Quoted", "tomatoes")
        context = knowledge_base.assemble_context('"tomatoes"')
        assert [c.id for c in context] == [note.id]

    def test_unparseable_prompt_falls_back_to_titles(self, knowledge_base):
        """Punctuation FTS5 rejects switches to a title substring match."""
        note = knowledge_base.create_note("Why?", "because")
        knowledge_base.create_note("Unrelated", "why not")
        context = knowledge_base.assemble_context("why?")
        assert [c.id for c in context] == [note.id]

    def test_fallback_recorded_without_error(self, knowledge_base):
        knowledge_base.create_note("Plain", "")
        assert knowledge_base.assemble_context("hello, world") == []
        stats = metrics.snapshot()["assemble_context"]
        assert stats["count"] == 1
        assert stats["error_count"] == 0
        assert stats["flags"] == {"fallback": 1}

    def test_result_count_recorded_without_fallback(self, knowledge_base):
        knowledge_base.create_note("One", "tomatoes")
        knowledge_base.create_note("Two", "tomatoes")
        knowledge_base.assemble_context("tomatoes")
        stats = metrics.snapshot()["assemble_context"]
        assert stats["results"] == 2
        assert stats["flags"] == {}

    def test_top_k_zero(self, knowledge_base):
        knowledge_base.create_note("Match", "tomatoes")
        assert knowledge_base.assemble_context("tomatoes", top_k=0) == []

    @pytest.mark.parametrize("prompt", ["", "   ", None])
    def test_prompt_required(self, knowledge_base, prompt):
        with pytest.raises(ValidationError) as exc_info:
            knowledge_base.assemble_context(prompt)
        assert exc_info.value.code == ErrorCode.PROMPT_REQUIRED

    @pytest.mark.parametrize("top_k", [-1, 2.5, True, "3"])
    def test_invalid_top_k(self, knowledge_base, top_k):
        with pytest.raises(ValidationError) as exc_info:
            knowledge_base.assemble_context("question", top_k=top_k)
        assert exc_info.value.details["field"] == "top_k"

    def test_empty_store(self, knowledge_base):
        assert knowledge_base.assemble_context("anything") == []


class TestRenderPrompt:
    """Tests for prompt rendering."""

    def test_context_block_format(self):
        notes = [
            ContextNote(id="1", title="Alpha", content="first"),
            ContextNote(id="2", title="Beta", content="second"),
        ]
        assert build_context_block(notes) == (
            "[Note 1: Alpha]\nfirst\n\n[Note 2: Beta]\nsecond"
        )

    def test_full_prompt_layout(self):
        notes = [ContextNote(id="1", title="Alpha", content="first")]
        prompt = render_prompt("What is alpha?", notes)
        assert prompt.startswith(SYSTEM_PREAMBLE + "\n\nContext:\n[Note 1: Alpha]\nfirst")
        assert prompt.endswith("\n\nUser question: What is alpha?\n\nAnswer:")

    def test_placeholder_without_context(self):
        prompt = render_prompt("Anything?", [])
        assert f"Context:\n{NO_CONTEXT_PLACEHOLDER}\n\n" in prompt

    def test_preamble_mentions_citation_format(self):
        assert "[Note: title]" in SYSTEM_PREAMBLE
