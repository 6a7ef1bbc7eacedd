"""Derived link and tag tables.

Rows here are never authored directly: they are regenerated from a note's
content inside the note repository's unit of work, and removed with it.
"""
import logging
from typing import List, Tuple

from sqlalchemy import delete, func, insert, select
from sqlalchemy.orm import Session

from notegraph.models.db_models import DBLink, DBNote, DBTag
from notegraph.models.schema import NoteRef, TagCount
from notegraph.storage.content_parser import extract_links, extract_tags

logger = logging.getLogger(__name__)


class RelationIndex:
    """Link (source note -> target title) and tag (note -> tag) index.

    Write methods take the caller's session and never commit; the caller owns
    the transaction boundary. Read methods open their own session.
    """

    def __init__(self, session_factory):
        """Initialize the relation index.

        Args:
            session_factory: SQLAlchemy session factory for read queries.
        """
        self.session_factory = session_factory

    # ------------------------------------------------------------------
    # Writes (inside a unit of work)
    # ------------------------------------------------------------------

    def rebuild(
        self, session: Session, note_id: str, content: str
    ) -> Tuple[List[str], List[str]]:
        """Replace all link and tag rows of ``note_id`` with those in ``content``.

        Returns:
            The (links, tags) that were written.
        """
        links = extract_links(content)
        tags = extract_tags(content)

        self.remove(session, note_id)

        if links:
            session.execute(
                insert(DBLink),
                [{"source_id": note_id, "target_title": t} for t in links],
            )
        if tags:
            session.execute(
                insert(DBTag),
                [{"note_id": note_id, "tag": t} for t in tags],
            )

        logger.debug(
            f"Rebuilt relations for {note_id}: {len(links)} links, {len(tags)} tags"
        )
        return links, tags

    def remove(self, session: Session, note_id: str) -> None:
        """Delete every link and tag row owned by ``note_id``."""
        session.execute(delete(DBLink).where(DBLink.source_id == note_id))
        session.execute(delete(DBTag).where(DBTag.note_id == note_id))

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def backlinks_of(self, title: str) -> List[NoteRef]:
        """Notes whose link set contains ``title``, most recently updated first."""
        with self.session_factory() as session:
            rows = session.execute(
                select(DBNote.id, DBNote.title)
                .join(DBLink, DBLink.source_id == DBNote.id)
                .where(DBLink.target_title == title)
                .order_by(DBNote.updated_at.desc(), DBNote.id)
            ).all()
        return [NoteRef(id=row[0], title=row[1]) for row in rows]

    def tag_counts(self) -> List[TagCount]:
        """All tags with the number of notes using them.

        Ordered by count descending, then tag ascending.
        """
        count_col = func.count(DBTag.id).label("count")
        with self.session_factory() as session:
            rows = session.execute(
                select(DBTag.tag, count_col)
                .group_by(DBTag.tag)
                .order_by(count_col.desc(), DBTag.tag.asc())
            ).all()
        return [TagCount(tag=row[0], count=row[1]) for row in rows]

    def links_of(self, note_id: str) -> List[str]:
        """Target titles currently recorded for ``note_id``."""
        with self.session_factory() as session:
            return list(session.scalars(
                select(DBLink.target_title)
                .where(DBLink.source_id == note_id)
                .order_by(DBLink.id)
            ).all())

    def tags_of(self, note_id: str) -> List[str]:
        """Tags currently recorded for ``note_id``."""
        with self.session_factory() as session:
            return list(session.scalars(
                select(DBTag.tag)
                .where(DBTag.note_id == note_id)
                .order_by(DBTag.id)
            ).all())

    def resolved_edges(self) -> List[Tuple[str, str]]:
        """(source_id, target_id) for every link whose title names a live note.

        Links are weak references: resolution happens here, at read time,
        by exact title match. Dangling links are simply absent.
        """
        with self.session_factory() as session:
            rows = session.execute(
                select(DBLink.source_id, DBNote.id)
                .join(DBNote, DBNote.title == DBLink.target_title)
                .order_by(DBLink.id)
            ).all()
        return [(row[0], row[1]) for row in rows]
