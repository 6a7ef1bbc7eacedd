"""Tests for the KnowledgeBase lifecycle and store-level guarantees."""
import threading
from pathlib import Path
from typing import List
from unittest.mock import patch

import pytest
from sqlalchemy import text

from notegraph.config import NotegraphConfig
from notegraph.exceptions import StorageError, ValidationError
from notegraph.services.knowledge_base import KnowledgeBase
from notegraph.storage.content_parser import extract_links


class TestLifecycle:
    """Tests for opening and closing the store."""

    def test_open_creates_database_file(self, test_config):
        with KnowledgeBase(test_config) as kb:
            assert kb.is_open
        assert (test_config.base_dir / "db" / "notes.db").exists()
        assert not kb.is_open

    def test_close_twice(self, test_config):
        kb = KnowledgeBase(test_config).open()
        kb.close()
        kb.close()
        assert not kb.is_open

    def test_open_twice_is_noop(self, test_config):
        kb = KnowledgeBase(test_config).open()
        engine = kb.engine
        assert kb.open().engine is engine
        kb.close()

    def test_use_after_close(self, test_config):
        kb = KnowledgeBase(test_config).open()
        kb.close()
        with pytest.raises(StorageError):
            kb.list_notes()
        with pytest.raises(StorageError):
            kb.graph()

    def test_data_persists_across_reopen(self, test_config):
        with KnowledgeBase(test_config) as kb:
            note = kb.create_note("Alpha", "[[Beta]] #kept searchable")
        with KnowledgeBase(test_config) as kb:
            assert kb.get_note(note.id).title == "Alpha"
            assert [t.tag for t in kb.tags()] == ["kept"]
            assert len(kb.search("searchable")) == 1

    def test_search_index_rebuilt_when_out_of_sync(self, test_config):
        with KnowledgeBase(test_config) as kb:
            kb.create_note("Alpha", "recoverable words")
            kb.create_note("Beta", "more recoverable words")
            with kb.engine.begin() as conn:
                conn.execute(text("DELETE FROM notes_fts"))

        with KnowledgeBase(test_config) as kb:
            assert kb.fts.count() == 2
            assert len(kb.search("recoverable")) == 2

    def test_in_memory_store(self, memory_kb):
        note = memory_kb.create_note("Alpha", "[[Beta]]")
        beta = memory_kb.create_note("Beta", "")
        assert [r.id for r in memory_kb.backlinks(beta.id)] == [note.id]

    def test_in_memory_stores_are_independent(self):
        with KnowledgeBase(NotegraphConfig(in_memory_db=True)) as first:
            first.create_note("Only here", "")
            with KnowledgeBase(NotegraphConfig(in_memory_db=True)) as second:
                assert second.list_notes() == []

    def test_in_memory_store_removed_on_close(self):
        kb = KnowledgeBase(NotegraphConfig(in_memory_db=True)).open()
        kb.create_note("Alpha", "")
        scratch = Path(kb._scratch.name)
        assert (scratch / "notes.db").exists()
        kb.close()
        assert not scratch.exists()

    def test_stats(self, knowledge_base):
        note = knowledge_base.create_note("Alpha", "#a #b")
        knowledge_base.create_note("Beta", "#a")
        knowledge_base.update_note(note.id, "Alpha", "#a #b #c")

        stats = knowledge_base.stats()
        assert stats["notes"] == 2
        assert stats["search_documents"] == 2
        assert stats["tags"] == 3
        assert stats["operations"]["create_note"]["count"] == 2
        assert stats["operations"]["update_note"]["count"] == 1


@pytest.fixture(params=["file", "in_memory"])
def any_store(request):
    """Each kind of store: a database file, and an in-memory store."""
    name = "knowledge_base" if request.param == "file" else "memory_kb"
    return request.getfixturevalue(name)


class TestReadIsolation:
    """Readers see only committed state while a write is in progress."""

    def _pause_inside_write(self, kb, reads):
        """Run ``reads`` just before the search document is written."""
        original_index = kb.fts.index
        seen = {}

        def index_after_reads(session, note_id, title, content):
            seen.update(reads())
            return original_index(session, note_id, title, content)

        return patch.object(kb.fts, "index", side_effect=index_after_reads), seen

    def test_update_invisible_until_commit(self, any_store):
        note = any_store.create_note("Alpha", "[[Old]] #old")

        def reads():
            return {
                "links": any_store.relations.links_of(note.id),
                "tags": any_store.relations.tags_of(note.id),
                "content": any_store.get_note(note.id).content,
                "snippets": [n.snippet for n in any_store.list_notes()],
                "search_old": [h.id for h in any_store.search("Old")],
                "search_new": [h.id for h in any_store.search("New")],
            }

        patcher, seen = self._pause_inside_write(any_store, reads)
        with patcher:
            updated = any_store.update_note(note.id, "Alpha", "[[New]] #new")

        assert seen == {
            "links": ["Old"],
            "tags": ["old"],
            "content": "[[Old]] #old",
            "snippets": ["[[Old]] #old"],
            "search_old": [note.id],
            "search_new": [],
        }
        assert updated.content == "[[New]] #new"
        assert any_store.relations.links_of(note.id) == ["New"]
        assert any_store.relations.tags_of(note.id) == ["new"]
        assert any_store.get_note(note.id).content == "[[New]] #new"
        assert [h.id for h in any_store.search("New")] == [note.id]
        assert any_store.search("Old") == []

    def test_create_invisible_until_commit(self, any_store):
        def reads():
            return {
                "count": any_store.notes.count_notes(),
                "tags": any_store.tags(),
            }

        patcher, seen = self._pause_inside_write(any_store, reads)
        with patcher:
            note = any_store.create_note("Alpha", "#fresh")

        assert seen == {"count": 0, "tags": []}
        assert any_store.get_note(note.id).title == "Alpha"
        assert [t.tag for t in any_store.tags()] == ["fresh"]

    def test_failed_write_after_reads_leaves_old_state(self, any_store):
        note = any_store.create_note("Alpha", "[[Old]] #old")

        def reads_then_fail():
            any_store.relations.links_of(note.id)
            any_store.list_notes()
            raise RuntimeError("index down")

        patcher, _ = self._pause_inside_write(any_store, reads_then_fail)
        with patcher:
            with pytest.raises(RuntimeError):
                any_store.update_note(note.id, "Alpha", "[[New]] #new")

        assert any_store.get_note(note.id).content == "[[Old]] #old"
        assert any_store.relations.links_of(note.id) == ["Old"]
        assert any_store.relations.tags_of(note.id) == ["old"]
        assert any_store.search("New") == []
        assert [h.id for h in any_store.search("Old")] == [note.id]


class TestConcurrentWrites:
    """Threads writing through one open store."""

    def test_concurrent_updates_to_one_note(self, knowledge_base):
        note = knowledge_base.create_note("Shared", "")
        errors: List[Exception] = []

        def writer(index: int):
            try:
                for round_ in range(5):
                    knowledge_base.update_note(
                        note.id, "Shared", f"[[Target {index}-{round_}]] #t{index}"
                    )
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=writer, args=(i,)) for i in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        final = knowledge_base.get_note(note.id)
        assert knowledge_base.relations.links_of(note.id) == extract_links(final.content)
        assert knowledge_base.fts.count() == 1

    def test_concurrent_creates_of_different_notes(self, knowledge_base):
        errors: List[Exception] = []

        def writer(index: int):
            try:
                for j in range(5):
                    knowledge_base.create_note(f"Note {index}-{j}", f"#w{index}")
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=writer, args=(i,)) for i in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        assert knowledge_base.notes.count_notes() == 20
        assert knowledge_base.fts.count() == 20
        assert sorted((t.tag, t.count) for t in knowledge_base.tags()) == [
            ("w0", 5), ("w1", 5), ("w2", 5), ("w3", 5),
        ]

    def test_concurrent_creates_with_same_title(self, knowledge_base):
        """Exactly one writer wins a contested title."""
        created = []
        rejected = []
        lock = threading.Lock()

        def writer():
            try:
                note = knowledge_base.create_note("Contested", "")
                with lock:
                    created.append(note)
            except ValidationError as e:
                with lock:
                    rejected.append(e)

        threads = [threading.Thread(target=writer) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(created) == 1
        assert len(rejected) == 3
        assert knowledge_base.notes.count_notes() == 1
