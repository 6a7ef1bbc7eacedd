"""Extraction of wikilinks and tags from raw note text.

Both extractors are pure: they never raise, and identical input always
yields identical output. Results are de-duplicated and keep the order of
first occurrence, although callers treat them as sets.
"""
import re
from typing import List

# [[Title]] or [[Title#heading]]; the heading part is discarded.
# Aliased links ([[Title|alias]]) are not matched.
WIKILINK_RE = re.compile(r"\[\[([^\]|#]+)(?:#.*?)?\]\]")

# A '#' at start of text or after whitespace, then a run of word characters,
# '-' or '/'. The run is narrowed by _tag_body: \w also admits numeric
# symbols such as '²' and '½', which are not part of a tag.
TAG_RE = re.compile(r"(?<!\S)#([\w\-/]+)\b")

_TAG_SYMBOLS = frozenset("0123456789_-/")


def _tag_body(run: str) -> str:
    """Cut ``run`` at the first character that is not a letter (any script),
    an ASCII digit, '_', '-' or '/', then drop trailing '-' and '/'."""
    for i, ch in enumerate(run):
        if not (ch.isalpha() or ch in _TAG_SYMBOLS):
            run = run[:i]
            break
    return run.rstrip("-/")


def extract_links(content: str) -> List[str]:
    """Return the distinct wikilink targets in ``content``.

    Targets are stripped of surrounding whitespace; empty targets are dropped.

    >>> extract_links("See [[Beta]], [[ Beta ]] and [[Gamma#Intro]]")
    ['Beta', 'Gamma']
    """
    if not content:
        return []
    targets = {}
    for match in WIKILINK_RE.finditer(content):
        target = match.group(1).strip()
        if target:
            targets.setdefault(target, None)
    return list(targets)


def extract_tags(content: str) -> List[str]:
    """Return the distinct tag bodies (without '#') in ``content``.

    A tag body is made of letters, ASCII digits, '_', '-' and '/'.

    >>> extract_tags("#project/alpha and #idea, not a#tag or # heading")
    ['project/alpha', 'idea']
    >>> extract_tags("#x² #½")
    ['x']
    """
    if not content:
        return []
    bodies = (_tag_body(m.group(1)) for m in TAG_RE.finditer(content))
    return list(dict.fromkeys(body for body in bodies if body))
