"""Common test fixtures for the notegraph knowledge base."""

import pytest

from notegraph.config import NotegraphConfig
from notegraph.observability import metrics
from notegraph.services.knowledge_base import KnowledgeBase


@pytest.fixture(params=["asyncio"])
def anyio_backend(request):
    """Restrict anyio tests to asyncio only (trio is not installed)."""
    return request.param


@pytest.fixture
def test_config(tmp_path):
    """Config pointing at a database file inside the test's temp directory."""
    return NotegraphConfig(
        base_dir=tmp_path,
        database_path=tmp_path / "db" / "notes.db",
        in_memory_db=False,
        log_dir=tmp_path / "logs",
    )


@pytest.fixture
def knowledge_base(test_config):
    """An open knowledge base backed by a temporary SQLite file."""
    kb = KnowledgeBase(test_config).open()
    yield kb
    kb.close()


@pytest.fixture
def memory_kb():
    """An open in-memory knowledge base (a scratch file deleted on close)."""
    with KnowledgeBase(NotegraphConfig(in_memory_db=True)) as kb:
        yield kb


@pytest.fixture
def note_repository(knowledge_base):
    """The note repository of the temporary knowledge base."""
    return knowledge_base.notes


@pytest.fixture(autouse=True)
def _reset_metrics():
    """Keep the global metrics collector isolated between tests."""
    metrics.reset()
    yield
    metrics.reset()
