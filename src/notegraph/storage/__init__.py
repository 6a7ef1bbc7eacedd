"""Storage layer for the notegraph knowledge base."""

from notegraph.storage.content_parser import extract_links, extract_tags
from notegraph.storage.fts_index import FtsIndex
from notegraph.storage.note_repository import NoteRepository
from notegraph.storage.relation_index import RelationIndex

__all__ = [
    "extract_links",
    "extract_tags",
    "FtsIndex",
    "NoteRepository",
    "RelationIndex",
]
