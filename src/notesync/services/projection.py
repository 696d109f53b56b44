"""Keeps the search projection in step with the relational store."""

import logging
from threading import Lock
from typing import Dict, FrozenSet, Iterable, Set

from notesync.exceptions import ErrorCode, ProjectionSyncError
from notesync.models.schema import Note, NoteDocument
from notesync.storage.search_index import NoteSearchIndex

logger = logging.getLogger(__name__)


class ProjectionSynchronizer:
    """Derives NoteDocuments from notes and writes them to the search index.

    Only called after the relational change has committed. A failed write
    leaves the relational state untouched: the note id is remembered as
    stale and ProjectionSyncError is raised for the caller to log. The next
    successful sync or remove of that id clears it.
    """

    def __init__(self, search_index: NoteSearchIndex):
        self.search_index = search_index
        self._stale: Set[str] = set()
        self._lock = Lock()

    @staticmethod
    def to_document(note: Note) -> NoteDocument:
        """Build the denormalized document for a note."""
        return NoteDocument(
            id=note.id,
            title=note.title,
            content=note.content,
            tags=sorted(note.tags),
            owner_username=note.owner_username,
            shared_with_usernames=sorted(note.shared_with),
        )

    @property
    def stale_ids(self) -> FrozenSet[str]:
        """Ids whose last projection write failed."""
        with self._lock:
            return frozenset(self._stale)

    def sync(self, note: Note) -> None:
        """Upsert the note's document.

        Raises:
            ProjectionSyncError: If the index write fails.
        """
        document = self.to_document(note)
        try:
            self.search_index.upsert(document)
        except Exception as e:
            self._mark_stale(note.id)
            raise ProjectionSyncError(
                f"Failed to index note {note.id}",
                note_id=note.id,
                original_error=e,
            ) from e
        self._clear_stale(note.id)

    def remove(self, note_id: str) -> None:
        """Delete the note's document; a missing document is fine.

        Raises:
            ProjectionSyncError: If the index delete fails.
        """
        try:
            self.search_index.delete_by_id(note_id)
        except Exception as e:
            self._mark_stale(note_id)
            raise ProjectionSyncError(
                f"Failed to remove note {note_id} from the index",
                note_id=note_id,
                code=ErrorCode.PROJECTION_REMOVE_FAILED,
                original_error=e,
            ) from e
        self._clear_stale(note_id)

    def reconcile(self, notes: Iterable[Note]) -> Dict[str, int]:
        """Re-derive every document and drop documents of deleted notes.

        Args:
            notes: Every note in the authoritative store.

        Returns:
            Counts of documents synced, removed and failed.
        """
        stats = {"synced": 0, "removed": 0, "failed": 0}
        known_ids = set()

        for note in notes:
            known_ids.add(note.id)
            try:
                self.sync(note)
                stats["synced"] += 1
            except ProjectionSyncError as e:
                logger.warning(f"Reconcile could not index note {note.id}: {e}")
                stats["failed"] += 1

        for orphan_id in set(self.search_index.get_all_ids()) - known_ids:
            try:
                self.remove(orphan_id)
                stats["removed"] += 1
            except ProjectionSyncError as e:
                logger.warning(f"Reconcile could not remove document {orphan_id}: {e}")
                stats["failed"] += 1

        logger.info(
            f"Projection reconciled: {stats['synced']} synced, "
            f"{stats['removed']} removed, {stats['failed']} failed"
        )
        return stats

    def _mark_stale(self, note_id: str) -> None:
        with self._lock:
            self._stale.add(note_id)

    def _clear_stale(self, note_id: str) -> None:
        with self._lock:
            self._stale.discard(note_id)
