"""Repository for note storage and retrieval."""

import logging
import threading
import weakref
from contextlib import contextmanager
from typing import Any, Iterator, List, Optional

from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from notegraph.config import CONTEXT_CONTENT_CHARS, LIST_SNIPPET_CHARS
from notegraph.exceptions import (
    ErrorCode,
    NoteNotFoundError,
    ValidationError,
)
from notegraph.models.db_models import DBNote, get_session_factory
from notegraph.models.schema import (
    ContextNote,
    Note,
    NoteRef,
    NoteSummary,
    ensure_timezone_aware,
    generate_id,
    utc_now,
)
from notegraph.observability import traced
from notegraph.storage.fts_index import FtsIndex
from notegraph.storage.relation_index import RelationIndex

logger = logging.getLogger(__name__)


class NoteRepository:
    """Owner of note rows and the single write path for derived state.

    Every create/update/delete runs as one unit of work: the note row, its
    link and tag rows, and its search document are written in the same
    transaction, so either all of them change or none do. Writers on the same
    note id are serialized by a per-note lock; there is no conflict detection
    (last writer wins).
    """

    def __init__(
        self,
        engine: Any,
        session_factory: Optional[Any] = None,
        relations: Optional[RelationIndex] = None,
        fts: Optional[FtsIndex] = None,
    ):
        """Initialize the repository.

        Args:
            engine: SQLAlchemy engine with the schema already created.
            session_factory: Session factory bound to ``engine``. Created if
                not given.
            relations: Relation index sharing the same database.
            fts: Full-text index sharing the same database.
        """
        self.engine = engine
        self.session_factory = session_factory or get_session_factory(engine)
        self.relations = relations or RelationIndex(self.session_factory)
        self.fts = fts or FtsIndex(engine, self.session_factory)

        # Per-note locks (WeakValueDictionary so unused locks are collected)
        self._note_locks: weakref.WeakValueDictionary[str, threading.RLock] = (
            weakref.WeakValueDictionary()
        )
        self._note_locks_lock = threading.Lock()

    def _get_note_lock(self, note_id: str) -> threading.RLock:
        """Get or create the lock serializing writers of one note."""
        with self._note_locks_lock:
            lock = self._note_locks.get(note_id)
            if lock is None:
                lock = threading.RLock()
                self._note_locks[note_id] = lock
            return lock

    @contextmanager
    def _unit_of_work(self) -> Iterator[Session]:
        """One session, one transaction. Commits on success, rolls back on error."""
        with self.session_factory() as session:
            with session.begin():
                yield session

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    @staticmethod
    def _validate_title(title: Optional[str]) -> str:
        """Return the stripped title or raise ValidationError if it is blank."""
        if title is None or not str(title).strip():
            raise ValidationError(
                "Title is required",
                field="title",
                code=ErrorCode.NOTE_TITLE_REQUIRED,
            )
        return str(title).strip()

    @staticmethod
    def _ensure_title_free(
        session: Session, title: str, exclude_id: Optional[str] = None
    ) -> None:
        query = select(DBNote.id).where(DBNote.title == title)
        if exclude_id is not None:
            query = query.where(DBNote.id != exclude_id)
        if session.scalar(query) is not None:
            raise ValidationError(
                f"A note titled '{title}' already exists",
                field="title",
                value=title,
                code=ErrorCode.NOTE_ALREADY_EXISTS,
            )

    @staticmethod
    def _db_note_to_model(db_note: DBNote) -> Note:
        return Note(
            id=db_note.id,
            title=db_note.title,
            content=db_note.content or "",
            created_at=ensure_timezone_aware(db_note.created_at),
            updated_at=ensure_timezone_aware(db_note.updated_at),
        )

    def _apply_derived(self, session: Session, note_id: str, title: str, content: str) -> None:
        """Regenerate links, tags and the search document for one note."""
        self.relations.rebuild(session, note_id, content)
        self.fts.index(session, note_id, title, content)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    @traced("create_note")
    def create(self, title: str, content: str = "") -> Note:
        """Create a new note.

        Raises:
            ValidationError: If the title is blank or already in use.
        """
        title = self._validate_title(title)
        content = content or ""
        now = utc_now()
        note = Note(
            id=generate_id(),
            title=title,
            content=content,
            created_at=now,
            updated_at=now,
        )

        with self._get_note_lock(note.id):
            try:
                with self._unit_of_work() as session:
                    self._ensure_title_free(session, title)
                    session.add(
                        DBNote(
                            id=note.id,
                            title=note.title,
                            content=note.content,
                            created_at=note.created_at,
                            updated_at=note.updated_at,
                        )
                    )
                    session.flush()
                    self._apply_derived(session, note.id, note.title, note.content)
            except IntegrityError as e:
                # Another writer claimed the title between check and insert
                raise ValidationError(
                    f"A note titled '{title}' already exists",
                    field="title",
                    value=title,
                    code=ErrorCode.NOTE_ALREADY_EXISTS,
                ) from e

        logger.info(f"Created note {note.id} ('{note.title}')")
        return note

    @traced("update_note")
    def update(self, note_id: str, title: str, content: Optional[str] = None) -> Note:
        """Replace a note's title and content.

        Derived state is re-derived unconditionally, even if nothing changed.
        ``content=None`` keeps the current content.

        Raises:
            NoteNotFoundError: If no note has ``note_id``.
            ValidationError: If the title is blank or used by another note.
        """
        title = self._validate_title(title)

        with self._get_note_lock(note_id):
            try:
                with self._unit_of_work() as session:
                    db_note = session.get(DBNote, note_id)
                    if db_note is None:
                        raise NoteNotFoundError(note_id)
                    self._ensure_title_free(session, title, exclude_id=note_id)

                    db_note.title = title
                    if content is not None:
                        db_note.content = content
                    db_note.updated_at = utc_now()
                    session.flush()

                    self._apply_derived(session, note_id, db_note.title, db_note.content)
                    note = self._db_note_to_model(db_note)
            except IntegrityError as e:
                raise ValidationError(
                    f"A note titled '{title}' already exists",
                    field="title",
                    value=title,
                    code=ErrorCode.NOTE_ALREADY_EXISTS,
                ) from e

        logger.info(f"Updated note {note_id} ('{note.title}')")
        return note

    @traced("delete_note")
    def delete(self, note_id: str) -> int:
        """Delete a note with its links, tags and search document.

        Returns:
            Number of note rows removed: 1, or 0 if the id did not exist.
        """
        with self._get_note_lock(note_id):
            with self._unit_of_work() as session:
                self.relations.remove(session, note_id)
                self.fts.unindex(session, note_id)
                result = session.execute(delete(DBNote).where(DBNote.id == note_id))
                removed = result.rowcount or 0

        if removed:
            logger.info(f"Deleted note {note_id}")
        else:
            logger.debug(f"Delete of unknown note {note_id} ignored")
        return removed

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, note_id: str) -> Note:
        """Get a note by ID.

        Raises:
            NoteNotFoundError: If no note has ``note_id``.
        """
        with self.session_factory() as session:
            db_note = session.get(DBNote, note_id)
            if db_note is None:
                raise NoteNotFoundError(note_id)
            return self._db_note_to_model(db_note)

    def get_by_title(self, title: str) -> Optional[Note]:
        """Get a note by its exact title, or None."""
        with self.session_factory() as session:
            db_note = session.scalar(select(DBNote).where(DBNote.title == title))
            if db_note is None:
                return None
            return self._db_note_to_model(db_note)

    def list_notes(self) -> List[NoteSummary]:
        """All notes as summaries, most recently updated first."""
        with self.session_factory() as session:
            rows = session.execute(
                select(
                    DBNote.id,
                    DBNote.title,
                    func.substr(DBNote.content, 1, LIST_SNIPPET_CHARS),
                    DBNote.updated_at,
                ).order_by(DBNote.updated_at.desc(), DBNote.id)
            ).all()

        return [
            NoteSummary(
                id=row[0],
                title=row[1],
                snippet=row[2] or "",
                updated_at=ensure_timezone_aware(row[3]),
            )
            for row in rows
        ]

    def recent_for_context(
        self, limit: int, content_chars: int = CONTEXT_CONTENT_CHARS
    ) -> List[ContextNote]:
        """The ``limit`` most recently updated notes with truncated content."""
        with self.session_factory() as session:
            rows = session.execute(
                select(
                    DBNote.id,
                    DBNote.title,
                    func.substr(DBNote.content, 1, content_chars),
                )
                .order_by(DBNote.updated_at.desc(), DBNote.id)
                .limit(limit)
            ).all()
        return [ContextNote(id=row[0], title=row[1], content=row[2] or "") for row in rows]

    def all_refs(self) -> List[NoteRef]:
        """Every note as an (id, title) reference, oldest first."""
        with self.session_factory() as session:
            rows = session.execute(
                select(DBNote.id, DBNote.title).order_by(DBNote.created_at, DBNote.id)
            ).all()
        return [NoteRef(id=row[0], title=row[1]) for row in rows]

    def count_notes(self) -> int:
        """Get total count of notes in the repository."""
        with self.session_factory() as session:
            return session.execute(select(func.count(DBNote.id))).scalar() or 0
