"""Common test fixtures for notesync."""

import tempfile
from pathlib import Path

import pytest

from notesync.config import config
from notesync.models.db_models import init_db, init_index_db
from notesync.models.schema import Note
from notesync.observability import metrics
from notesync.services.note_service import NoteService
from notesync.services.user_service import UserService
from notesync.storage.note_repository import NoteRepository
from notesync.storage.search_index import NoteSearchIndex


@pytest.fixture
def temp_dirs():
    """Create temporary directories for the databases and logs."""
    with tempfile.TemporaryDirectory() as db_dir:
        with tempfile.TemporaryDirectory() as log_dir:
            yield Path(db_dir), Path(log_dir)


@pytest.fixture
def test_config(temp_dirs, monkeypatch):
    """Point both stores at temp files (auto-restored even on crash)."""
    db_dir, log_dir = temp_dirs
    monkeypatch.setattr(config, "database_path", db_dir / "test_notesync.db")
    monkeypatch.setattr(config, "index_path", db_dir / "test_notesync_index.db")
    monkeypatch.setattr(config, "in_memory_db", False)
    monkeypatch.setattr(config, "log_dir", log_dir)
    yield config


@pytest.fixture(autouse=True)
def _reset_metrics():
    """Every test starts with empty metrics."""
    metrics.reset()
    yield
    metrics.reset()


@pytest.fixture
def store_engine(test_config):
    engine = init_db()
    yield engine
    engine.dispose()


@pytest.fixture
def index_engine(test_config):
    engine = init_index_db()
    yield engine
    engine.dispose()


@pytest.fixture
def note_repository(store_engine):
    """Create a test note repository."""
    yield NoteRepository(engine=store_engine)


@pytest.fixture
def search_index(index_engine):
    """Create a test search index."""
    yield NoteSearchIndex(engine=index_engine)


@pytest.fixture
def note_service(note_repository, search_index):
    """Create a NoteService over real stores."""
    yield NoteService(repository=note_repository, search_index=search_index)


@pytest.fixture
def user_service(note_repository):
    yield UserService(repository=note_repository.users)


@pytest.fixture
def users(user_service):
    """Register alice, bob and carol; keyed by username."""
    return {
        name: user_service.register_user(name)
        for name in ("alice", "bob", "carol")
    }


@pytest.fixture
def make_note():
    """Build an unsaved Note owned by the given user."""
    def _make(owner, title="A title", content="Some content", tags=None):
        return Note(
            title=title,
            content=content,
            tags=tags or [],
            owner_id=owner.id,
            owner_username=owner.username,
        )
    return _make
