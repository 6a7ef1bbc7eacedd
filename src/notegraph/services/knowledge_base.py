"""The knowledge base: an explicitly opened and closed store object."""
import logging
import tempfile
from typing import Any, Dict, List, Optional

from notegraph.config import DEFAULT_TOP_K, NotegraphConfig
from notegraph.exceptions import ErrorCode, StorageError
from notegraph.models.db_models import get_session_factory, init_db
from notegraph.models.schema import (
    ContextNote,
    Graph,
    Note,
    NoteRef,
    NoteSummary,
    SearchHit,
    TagCount,
)
from notegraph.observability import metrics, traced
from notegraph.services.context_assembler import ContextAssembler
from notegraph.services.graph_service import GraphService
from notegraph.storage.fts_index import FtsIndex
from notegraph.storage.note_repository import NoteRepository
from notegraph.storage.relation_index import RelationIndex

logger = logging.getLogger(__name__)


class KnowledgeBase:
    """Facade over the note store, its derived indexes and read projections.

    Nothing is shared at module level: construct one, ``open()`` it (or use
    it as a context manager) and pass it to whatever serves requests.

    Example:
        with KnowledgeBase(NotegraphConfig(in_memory_db=True)) as kb:
            kb.create_note("Alpha", "See [[Beta]] #draft")
    """

    def __init__(self, config: Optional[NotegraphConfig] = None):
        self.config = config or NotegraphConfig()
        self.engine = None
        self._scratch: Optional[tempfile.TemporaryDirectory] = None
        self._notes: Optional[NoteRepository] = None
        self._relations: Optional[RelationIndex] = None
        self._fts: Optional[FtsIndex] = None
        self._graph: Optional[GraphService] = None
        self._assembler: Optional[ContextAssembler] = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def open(self) -> "KnowledgeBase":
        """Create the engine and schema, and wire the components together."""
        if self.engine is not None:
            return self

        scratch_dir = None
        if self.config.in_memory_db:
            self._scratch = tempfile.TemporaryDirectory(prefix="notegraph-")
            scratch_dir = self._scratch.name
        db_url = self.config.get_db_url(scratch_dir)
        logger.info(f"Opening knowledge base: {db_url}")
        self.engine = init_db(db_url)
        session_factory = get_session_factory(self.engine)

        self._relations = RelationIndex(session_factory)
        self._fts = FtsIndex(self.engine, session_factory)
        self._notes = NoteRepository(
            self.engine,
            session_factory=session_factory,
            relations=self._relations,
            fts=self._fts,
        )
        self._graph = GraphService(self._notes, self._relations)
        self._assembler = ContextAssembler(self._notes, self._fts)

        self._check_search_index()
        return self

    def close(self) -> None:
        """Release all pooled connections. Safe to call twice.

        An in-memory store loses its data here: its scratch file is deleted.
        """
        if self.engine is None:
            return
        self.engine.dispose()
        self.engine = None
        if self._scratch is not None:
            self._scratch.cleanup()
            self._scratch = None
        self._notes = self._relations = self._fts = None
        self._graph = self._assembler = None
        logger.info("Knowledge base closed")

    @property
    def is_open(self) -> bool:
        return self.engine is not None

    def __enter__(self) -> "KnowledgeBase":
        return self.open()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def _check_search_index(self) -> None:
        """Rebuild the search index if it drifted from the notes table."""
        note_count = self._notes.count_notes()
        fts_count = self._fts.count()
        if note_count != fts_count:
            logger.warning(
                f"Search index out of sync ({fts_count} documents, "
                f"{note_count} notes); rebuilding"
            )
            self._fts.rebuild()

    def _require_open(self) -> None:
        if self.engine is None:
            raise StorageError(
                "Knowledge base is not open",
                operation="access",
                code=ErrorCode.STORAGE_READ_FAILED,
            )

    # ------------------------------------------------------------------
    # Components
    # ------------------------------------------------------------------

    @property
    def notes(self) -> NoteRepository:
        self._require_open()
        return self._notes

    @property
    def relations(self) -> RelationIndex:
        self._require_open()
        return self._relations

    @property
    def fts(self) -> FtsIndex:
        self._require_open()
        return self._fts

    @property
    def assembler(self) -> ContextAssembler:
        self._require_open()
        return self._assembler

    # ------------------------------------------------------------------
    # Operations exposed to the outer layer
    # ------------------------------------------------------------------

    def list_notes(self) -> List[NoteSummary]:
        return self.notes.list_notes()

    def get_note(self, note_id: str) -> Note:
        return self.notes.get(note_id)

    def create_note(self, title: str, content: str = "") -> Note:
        return self.notes.create(title, content)

    def update_note(self, note_id: str, title: str, content: Optional[str] = None) -> Note:
        return self.notes.update(note_id, title, content)

    def delete_note(self, note_id: str) -> int:
        return self.notes.delete(note_id)

    def backlinks(self, note_id: str) -> List[NoteRef]:
        self._require_open()
        return self._graph.backlinks(note_id)

    def tags(self) -> List[TagCount]:
        return self.relations.tag_counts()

    @traced("search")
    def search(self, query: str) -> List[SearchHit]:
        """Ranked full-text search; SearchSyntaxError reaches the caller."""
        return self.fts.search(query)

    def graph(self) -> Graph:
        self._require_open()
        return self._graph.graph()

    def assemble_context(
        self,
        prompt: str,
        note_id: Optional[str] = None,
        top_k: int = DEFAULT_TOP_K,
        include_all: bool = False,
    ) -> List[ContextNote]:
        return self.assembler.assemble(
            prompt, note_id=note_id, top_k=top_k, include_all=include_all
        )

    def stats(self) -> Dict[str, Any]:
        """Store sizes plus the operation metrics gathered in this process."""
        return {
            "notes": self.notes.count_notes(),
            "search_documents": self.fts.count(),
            "tags": len(self.relations.tag_counts()),
            "operations": metrics.snapshot(),
        }
