"""Data models for the notegraph knowledge base."""

import datetime
import os
import threading
from datetime import timezone
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


def utc_now() -> datetime.datetime:
    """Get current UTC time as timezone-aware datetime.

    Returns:
        Current time with UTC timezone info attached.
    """
    return datetime.datetime.now(timezone.utc)


def ensure_timezone_aware(dt_value: Optional[datetime.datetime]) -> datetime.datetime:
    """Ensure a datetime is timezone-aware, treating naive datetimes as UTC.

    SQLite stores DateTime columns without an offset, so values read back
    from the database are naive UTC.
    """
    if dt_value is None:
        return utc_now()
    if dt_value.tzinfo is None:
        return dt_value.replace(tzinfo=timezone.utc)
    return dt_value


# Thread-safe counter for uniqueness (seeded from PID for cross-process safety)
_id_lock = threading.Lock()
_last_timestamp = 0
_counter = (os.getpid() * 7) % 1_000_000


def generate_id() -> str:
    """Generate a timestamp-based note ID with guaranteed uniqueness.

    Returns:
        A string in format "YYYYMMDDTHHMMSSsssssscccccc" where the last six
        digits are a counter that disambiguates IDs created within the same
        microsecond.
    """
    global _last_timestamp, _counter

    with _id_lock:
        now = utc_now()
        current_timestamp = int(now.timestamp() * 1_000_000)

        if current_timestamp == _last_timestamp:
            _counter += 1
        else:
            _last_timestamp = current_timestamp
            _counter = (os.getpid() * 7) % 1_000_000

        _counter %= 1_000_000

        date_time = now.strftime("%Y%m%dT%H%M%S")
        return f"{date_time}{now.microsecond:06d}{_counter:06d}"


class Note(BaseModel):
    """A note as owned by the note store."""

    model_config = ConfigDict(validate_assignment=True)

    id: str
    title: str
    content: str = ""
    created_at: datetime.datetime = Field(default_factory=utc_now)
    updated_at: datetime.datetime = Field(default_factory=utc_now)

    @field_validator("title")
    @classmethod
    def validate_title(cls, v: str) -> str:
        """Titles are stored exactly as given but must not be blank."""
        if not v or not v.strip():
            raise ValueError("Title cannot be empty")
        return v

    def __str__(self) -> str:
        return f"Note(id={self.id}, title={self.title})"


class NoteSummary(BaseModel):
    """Row of the note listing: a content prefix instead of the full body."""

    id: str
    title: str
    snippet: str
    updated_at: datetime.datetime


class NoteRef(BaseModel):
    """Minimal reference to a note (backlinks, graph nodes, sources used)."""

    id: str
    title: str


class TagCount(BaseModel):
    """A tag together with the number of notes carrying it."""

    tag: str
    count: int


class SearchHit(BaseModel):
    """A ranked full-text match with a highlighted excerpt."""

    id: str
    title: str
    snippet: str


class GraphEdge(BaseModel):
    """Directed edge from a linking note to a resolved target note."""

    source: str
    target: str


class Graph(BaseModel):
    """Whole-vault link graph. Dangling links produce no edge."""

    nodes: List[NoteRef] = Field(default_factory=list)
    edges: List[GraphEdge] = Field(default_factory=list)


class ContextNote(BaseModel):
    """A note selected as retrieval context, content already truncated."""

    id: str
    title: str
    content: str


class AskResult(BaseModel):
    """Outcome of a retrieval + generation round-trip."""

    model: str
    notes_used: List[NoteRef] = Field(default_factory=list)
    response: str = ""
