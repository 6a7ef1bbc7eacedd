"""FTS5 full-text search index for notes.

One search document per note (title + content), written and removed inside
the note repository's unit of work. Query-syntax failures are reported as
SearchSyntaxError so callers can choose to recover from them.
"""
import logging
import sqlite3
from typing import Any, Callable, List

from sqlalchemy import text
from sqlalchemy.exc import OperationalError as SQLAlchemyOperationalError
from sqlalchemy.orm import Session

from notegraph.config import CONTEXT_CONTENT_CHARS, SEARCH_RESULT_LIMIT
from notegraph.exceptions import ErrorCode, SearchSyntaxError, StorageError
from notegraph.models.db_models import rebuild_fts_index
from notegraph.models.schema import ContextNote, SearchHit
from notegraph.utils import escape_like_pattern

logger = logging.getLogger(__name__)

# Fragments of SQLite error messages produced by malformed MATCH expressions
_SYNTAX_ERROR_MARKERS = (
    "fts5: syntax error",
    "syntax error",
    "unterminated string",
    "no such column",
    "unknown special query",
)


def _is_syntax_error(error: Exception) -> bool:
    # SQLAlchemy wraps the DBAPI error; its message also embeds the SQL text
    message = str(getattr(error, "orig", error)).lower()
    return any(marker in message for marker in _SYNTAX_ERROR_MARKERS)


class FtsIndex:
    """FTS5 full-text search index.

    Args:
        engine: SQLAlchemy engine used for database access.
        session_factory: Callable returning a context-manager session.
    """

    def __init__(
        self,
        engine: Any,
        session_factory: Callable,
    ) -> None:
        self.engine = engine
        self._session_factory = session_factory

    # ------------------------------------------------------------------
    # Writes (inside a unit of work)
    # ------------------------------------------------------------------

    def index(self, session: Session, note_id: str, title: str, content: str) -> None:
        """Replace the search document of ``note_id`` (delete + insert)."""
        self.unindex(session, note_id)
        session.execute(
            text(
                "INSERT INTO notes_fts(note_id, title, content) "
                "VALUES (:note_id, :title, :content)"
            ),
            {"note_id": note_id, "title": title, "content": content},
        )

    def unindex(self, session: Session, note_id: str) -> None:
        """Remove the search document of ``note_id`` if present."""
        session.execute(
            text("DELETE FROM notes_fts WHERE note_id = :note_id"),
            {"note_id": note_id},
        )

    # ------------------------------------------------------------------
    # Public query API
    # ------------------------------------------------------------------

    def search(self, query: str, limit: int = SEARCH_RESULT_LIMIT) -> List[SearchHit]:
        """Ranked full-text search with highlighted snippets.

        Args:
            query: FTS5 query string, passed through unchanged.
            limit: Maximum results, clamped to 0..SEARCH_RESULT_LIMIT.

        Returns:
            Hits ordered by relevance. An empty query returns [] without
            touching the index.

        Raises:
            SearchSyntaxError: If FTS5 rejects the query.
        """
        query = (query or "").strip()
        if not query:
            return []

        sql = text("""
            SELECT n.id, n.title,
                   snippet(notes_fts, 2, '<b>', '</b>', '…', 10) AS snippet
            FROM notes_fts
            JOIN notes n ON n.id = notes_fts.note_id
            WHERE notes_fts MATCH :query
            ORDER BY bm25(notes_fts)
            LIMIT :limit
        """)
        rows = self._run_match(sql, query, max(0, min(limit, SEARCH_RESULT_LIMIT)))
        return [SearchHit(id=row[0], title=row[1], snippet=row[2] or "") for row in rows]

    def match_notes(
        self,
        query: str,
        limit: int,
        content_chars: int = CONTEXT_CONTENT_CHARS,
    ) -> List[ContextNote]:
        """Full-text match returning note bodies, for retrieval context.

        Raises:
            SearchSyntaxError: If FTS5 rejects the query (an empty query is
                itself a syntax error for FTS5).
        """
        sql = text("""
            SELECT n.id, n.title, substr(n.content, 1, :chars) AS content
            FROM notes_fts
            JOIN notes n ON n.id = notes_fts.note_id
            WHERE notes_fts MATCH :query
            ORDER BY bm25(notes_fts)
            LIMIT :limit
        """)
        rows = self._run_match(sql, query, limit, chars=content_chars)
        return [ContextNote(id=row[0], title=row[1], content=row[2] or "") for row in rows]

    def fallback_title_search(
        self,
        query: str,
        limit: int,
        content_chars: int = CONTEXT_CONTENT_CHARS,
    ) -> List[ContextNote]:
        """Case-insensitive substring match on note titles.

        Used when a full-text query cannot be parsed. LIKE wildcards in the
        query are matched literally.
        """
        term = f"%{escape_like_pattern(query)}%"
        with self._session_factory() as session:
            rows = session.execute(
                text("""
                    SELECT id, title, substr(content, 1, :chars) AS content
                    FROM notes
                    WHERE title LIKE :term ESCAPE '\\'
                    ORDER BY updated_at DESC
                    LIMIT :limit
                """),
                {"term": term, "limit": limit, "chars": content_chars},
            ).fetchall()

        logger.debug(
            f"Fallback title search returned {len(rows)} results for query '{query}'"
        )
        return [ContextNote(id=row[0], title=row[1], content=row[2] or "") for row in rows]

    def count(self) -> int:
        """Number of search documents currently indexed."""
        with self._session_factory() as session:
            return session.execute(text("SELECT COUNT(*) FROM notes_fts")).scalar() or 0

    def rebuild(self) -> int:
        """Rebuild the FTS5 index from the notes table."""
        return rebuild_fts_index(self.engine)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _run_match(self, sql, query: str, limit: int, **params: Any) -> List[Any]:
        with self._session_factory() as session:
            try:
                return session.execute(
                    sql, {"query": query, "limit": limit, **params}
                ).fetchall()
            except (sqlite3.OperationalError, SQLAlchemyOperationalError) as e:
                if _is_syntax_error(e):
                    logger.debug(f"FTS5 rejected query '{query}': {e}")
                    raise SearchSyntaxError(
                        query, reason=str(getattr(e, "orig", e))
                    ) from e
                raise StorageError(
                    "Full-text query failed",
                    operation="search",
                    code=ErrorCode.SEARCH_FAILED,
                    original_error=e,
                ) from e
