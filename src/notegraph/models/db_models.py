"""SQLAlchemy database models for the notegraph knowledge base."""
import datetime
import logging

from sqlalchemy import (Column, DateTime, ForeignKey, Integer, String, Text,
                        UniqueConstraint, create_engine, event, text)
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import QueuePool

logger = logging.getLogger(__name__)

# Create base class for SQLAlchemy models
Base = declarative_base()


def _now() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


class DBNote(Base):
    """Database model for a note. The only authoritative table."""
    __tablename__ = "notes"
    id = Column(String(64), primary_key=True)
    title = Column(String(512), nullable=False, unique=True, index=True)
    content = Column(Text, nullable=False, default="")
    created_at = Column(DateTime, default=_now, nullable=False)
    updated_at = Column(DateTime, default=_now, nullable=False, index=True)

    def __repr__(self) -> str:
        """Return string representation of note."""
        return f"<Note(id='{self.id}', title='{self.title}')>"


class DBLink(Base):
    """Derived wikilink row: source note -> target title (unresolved)."""
    __tablename__ = "links"
    id = Column(Integer, primary_key=True, autoincrement=True)
    source_id = Column(
        String(64), ForeignKey("notes.id", ondelete="CASCADE"),
        nullable=False, index=True
    )
    target_title = Column(String(512), nullable=False, index=True)

    __table_args__ = (
        UniqueConstraint("source_id", "target_title", name="unique_link_target"),
    )

    def __repr__(self) -> str:
        """Return string representation of link."""
        return f"<Link(source='{self.source_id}', target_title='{self.target_title}')>"


class DBTag(Base):
    """Derived tag row: one per distinct tag body in a note."""
    __tablename__ = "tags"
    id = Column(Integer, primary_key=True, autoincrement=True)
    note_id = Column(
        String(64), ForeignKey("notes.id", ondelete="CASCADE"),
        nullable=False, index=True
    )
    tag = Column(String(255), nullable=False, index=True)

    __table_args__ = (
        UniqueConstraint("note_id", "tag", name="unique_note_tag"),
    )

    def __repr__(self) -> str:
        """Return string representation of tag."""
        return f"<Tag(note='{self.note_id}', tag='{self.tag}')>"


def init_db(db_url: str) -> Engine:
    """Create an engine, apply SQLite pragmas and create all tables.

    The database is always file-backed with WAL journaling: each session gets
    its own pooled connection, so readers keep seeing the last committed
    state while a write transaction is open on another connection.
    """
    # SQLite is single-writer, so a small pool is ideal
    engine = create_engine(
        db_url,
        poolclass=QueuePool,
        pool_size=5,
        max_overflow=10,
        pool_timeout=30,
        pool_pre_ping=True,
        connect_args={"timeout": 30, "check_same_thread": False},
    )

    @event.listens_for(engine, "connect")
    def set_sqlite_pragma(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA synchronous=NORMAL")
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    Base.metadata.create_all(engine)
    init_fts5(engine)

    logger.debug(f"Database initialized at {db_url}")
    return engine


def init_fts5(engine: Engine) -> None:
    """Initialize the FTS5 full-text search virtual table.

    The table is a standalone FTS5 table (not an external-content table):
    search documents are written explicitly by the note repository inside the
    same transaction as the note row, so there are no triggers.
    """
    with engine.connect() as conn:
        conn.execute(text("""
            CREATE VIRTUAL TABLE IF NOT EXISTS notes_fts USING fts5(
                note_id UNINDEXED,
                title,
                content
            )
        """))
        conn.commit()


def rebuild_fts_index(engine: Engine) -> int:
    """Rebuild the FTS5 index from existing notes.

    Returns:
        Number of notes indexed.
    """
    with engine.begin() as conn:
        conn.execute(text("DELETE FROM notes_fts"))
        conn.execute(text("""
            INSERT INTO notes_fts(note_id, title, content)
            SELECT id, title, content FROM notes
        """))
        count = conn.execute(text("SELECT COUNT(*) FROM notes_fts")).scalar()

    return count or 0


def get_session_factory(engine: Engine):
    """Get a session factory for the database."""
    return sessionmaker(bind=engine, expire_on_commit=False)
