"""Tests for the projection synchronizer."""
import pytest

from notesync.exceptions import ErrorCode, ProjectionSyncError
from notesync.models.schema import Note, NoteDocument
from notesync.services.projection import ProjectionSynchronizer
from tests.fakes import FlakySearchIndex


@pytest.fixture
def note():
    return Note(
        title="Projection",
        content="Body text",
        tags=["zeta", "alpha"],
        owner_id="u1",
        owner_username="alice",
        shared_with=["carol", "bob"],
    )


@pytest.fixture
def flaky_index(search_index):
    return FlakySearchIndex(search_index)


class TestToDocument:
    def test_fields_are_copied(self, note):
        doc = ProjectionSynchronizer.to_document(note)
        assert doc == NoteDocument(
            id=note.id,
            title="Projection",
            content="Body text",
            tags=["ALPHA", "ZETA"],
            owner_username="alice",
            shared_with_usernames=["bob", "carol"],
        )


class TestSync:
    """Upserts, removals and failure tracking."""

    def test_sync_writes_document(self, search_index, note):
        sync = ProjectionSynchronizer(search_index)
        sync.sync(note)
        assert search_index.get(note.id) == ProjectionSynchronizer.to_document(note)
        assert sync.stale_ids == frozenset()

    def test_sync_twice_is_idempotent(self, search_index, note):
        sync = ProjectionSynchronizer(search_index)
        sync.sync(note)
        sync.sync(note)
        assert search_index.count() == 1

    def test_failed_sync_marks_stale(self, flaky_index, note):
        sync = ProjectionSynchronizer(flaky_index)
        flaky_index.fail_upserts = True

        with pytest.raises(ProjectionSyncError) as exc_info:
            sync.sync(note)

        assert exc_info.value.note_id == note.id
        assert exc_info.value.code is ErrorCode.PROJECTION_SYNC_FAILED
        assert isinstance(exc_info.value.original_error, ConnectionError)
        assert sync.stale_ids == {note.id}

    def test_successful_sync_clears_stale(self, flaky_index, note):
        sync = ProjectionSynchronizer(flaky_index)
        flaky_index.fail_upserts = True
        with pytest.raises(ProjectionSyncError):
            sync.sync(note)

        flaky_index.fail_upserts = False
        sync.sync(note)
        assert sync.stale_ids == frozenset()

    def test_remove_missing_is_fine(self, search_index):
        ProjectionSynchronizer(search_index).remove("never-indexed")

    def test_failed_remove(self, flaky_index, note):
        sync = ProjectionSynchronizer(flaky_index)
        sync.sync(note)
        flaky_index.fail_deletes = True

        with pytest.raises(ProjectionSyncError) as exc_info:
            sync.remove(note.id)

        assert exc_info.value.code is ErrorCode.PROJECTION_REMOVE_FAILED
        assert sync.stale_ids == {note.id}
        assert flaky_index.get(note.id) is not None


class TestReconcile:
    def test_syncs_notes_and_drops_orphans(self, search_index, note):
        search_index.upsert(NoteDocument(
            id="orphan", title="gone", content="gone", owner_username="alice"
        ))
        sync = ProjectionSynchronizer(search_index)

        stats = sync.reconcile([note])

        assert stats == {"synced": 1, "removed": 1, "failed": 0}
        assert search_index.get_all_ids() == [note.id]

    def test_counts_failures(self, flaky_index, note):
        sync = ProjectionSynchronizer(flaky_index)
        flaky_index.fail_upserts = True

        stats = sync.reconcile([note])

        assert stats == {"synced": 0, "removed": 0, "failed": 1}
        assert sync.stale_ids == {note.id}
