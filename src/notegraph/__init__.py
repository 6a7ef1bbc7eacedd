"""
Notegraph - a personal knowledge base of short linked notes.

Notes are stored in SQLite. Wikilinks and tags are derived from note content
on every write, a full-text index is kept in sync with the notes table, and a
context assembler selects notes to hand to a text-generation model.
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("notegraph")
except PackageNotFoundError:
    __version__ = "0.3.0"
