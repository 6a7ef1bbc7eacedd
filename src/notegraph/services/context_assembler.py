"""Selection of notes to use as retrieval context for text generation.

The assembler is synchronous and has no side effects; it never talks to the
generation backend, so it keeps working when that backend is down.
"""
import logging
from typing import Dict, Iterable, List, Optional

from notegraph.config import (
    CONTEXT_CONTENT_CHARS,
    DEFAULT_TOP_K,
    INCLUDE_ALL_LIMIT,
)
from notegraph.exceptions import (
    ErrorCode,
    NoteNotFoundError,
    SearchSyntaxError,
    ValidationError,
)
from notegraph.models.schema import ContextNote
from notegraph.observability import timed_operation
from notegraph.storage.fts_index import FtsIndex
from notegraph.storage.note_repository import NoteRepository
from notegraph.utils import truncate

logger = logging.getLogger(__name__)

SYSTEM_PREAMBLE = (
    "You are a helpful assistant with access to a personal knowledge base of "
    "notes. Use ONLY the provided context when possible. If information is not "
    "in context, say you don't see it in the notes.\n"
    "Return concise answers. If citing notes, reference them as [Note: title]."
)

NO_CONTEXT_PLACEHOLDER = "(no relevant notes)"


def build_context_block(notes: Iterable[ContextNote]) -> str:
    """Render context notes as ``[Note i: title]`` blocks separated by blank lines."""
    return "\n\n".join(
        f"[Note {i}: {note.title}]\n{truncate(note.content, CONTEXT_CONTENT_CHARS)}"
        for i, note in enumerate(notes, start=1)
    )


def render_prompt(prompt: str, notes: Iterable[ContextNote]) -> str:
    """Full generation prompt: preamble, context block, then the question."""
    context_block = build_context_block(notes) or NO_CONTEXT_PLACEHOLDER
    return (
        f"{SYSTEM_PREAMBLE}\n\n"
        f"Context:\n{context_block}\n\n"
        f"User question: {prompt}\n\n"
        "Answer:"
    )


class ContextAssembler:
    """Builds a bounded, de-duplicated, ordered set of context notes."""

    def __init__(self, notes: NoteRepository, fts: FtsIndex):
        self.notes = notes
        self.fts = fts

    def assemble(
        self,
        prompt: str,
        note_id: Optional[str] = None,
        top_k: int = DEFAULT_TOP_K,
        include_all: bool = False,
    ) -> List[ContextNote]:
        """Select context notes for ``prompt``.

        Sources are consumed in order and de-duplicated by note id, the first
        occurrence winning:

        1. the anchor note ``note_id``, if given and present;
        2. with ``include_all``, up to INCLUDE_ALL_LIMIT most recently
           updated notes (``top_k`` is ignored and step 3 is skipped);
        3. otherwise a full-text query built from the prompt with quote
           characters stripped, limited to ``top_k``. If the engine rejects
           the query, a title substring match with the same limit is used.

        Raises:
            ValidationError: If ``prompt`` is blank or ``top_k`` is negative.
        """
        if not isinstance(prompt, str) or not prompt.strip():
            raise ValidationError(
                "Prompt required", field="prompt", code=ErrorCode.PROMPT_REQUIRED
            )
        if isinstance(top_k, bool) or not isinstance(top_k, int) or top_k < 0:
            raise ValidationError(
                "top_k must be a non-negative integer", field="top_k", value=top_k
            )

        selected: Dict[str, ContextNote] = {}

        def push(note: ContextNote) -> None:
            if note.id not in selected:
                selected[note.id] = note

        with timed_operation("assemble_context", top_k=top_k, include_all=include_all) as op:
            if note_id:
                anchor = self._anchor(note_id)
                if anchor is not None:
                    push(anchor)

            if include_all:
                for note in self.notes.recent_for_context(INCLUDE_ALL_LIMIT):
                    push(note)
            else:
                query = prompt.replace('"', "")
                try:
                    matches = self.fts.match_notes(query, top_k)
                except SearchSyntaxError:
                    logger.info(
                        "Full-text query rejected, falling back to title search"
                    )
                    op["fallback"] = True
                    matches = self.fts.fallback_title_search(query, top_k)
                for note in matches:
                    push(note)

            op["result_count"] = len(selected)

        return list(selected.values())

    def _anchor(self, note_id: str) -> Optional[ContextNote]:
        try:
            note = self.notes.get(note_id)
        except NoteNotFoundError:
            logger.warning(f"Anchor note {note_id} not found, continuing without it")
            return None
        return ContextNote(
            id=note.id,
            title=note.title,
            content=truncate(note.content, CONTEXT_CONTENT_CHARS),
        )
