"""Service layer for note operations.

The orchestrator: validates input, resolves users, gates every action
through the access resolver, commits the relational change and then
brings the search projection up to date.
"""

import logging
from typing import Any, Dict, List, Optional

from notesync.exceptions import (
    ErrorCode,
    InvalidInputError,
    InvalidSearchCriteriaError,
    NoteNotFoundError,
    ProjectionSyncError,
    SelfShareError,
    UserNotFoundError,
)
from notesync.models.schema import (
    Note,
    NoteAction,
    NoteOwnership,
    NoteShare,
    User,
    normalize_tag_names,
    utc_now,
)
from notesync.observability import metrics, traced
from notesync.services.access import classify, ensure_can
from notesync.services.projection import ProjectionSynchronizer
from notesync.storage.note_repository import NoteRepository
from notesync.storage.search_index import NoteSearchIndex

logger = logging.getLogger(__name__)

MAX_TITLE_LENGTH = 255


class NoteService:
    """Service for creating, sharing and searching notes on behalf of a user."""

    def __init__(
        self,
        repository: Optional[NoteRepository] = None,
        search_index: Optional[NoteSearchIndex] = None,
        synchronizer: Optional[ProjectionSynchronizer] = None,
        engine: Optional[Any] = None,
        index_engine: Optional[Any] = None,
    ):
        """Initialize the service.

        Args:
            repository: Relational store. Created on ``engine`` if None.
            search_index: Search projection. Created on ``index_engine`` if None.
            synchronizer: Projection writer. Created over ``search_index`` if None.
            engine: Pre-configured engine for the relational store.
            index_engine: Pre-configured engine for the search index.
        """
        if repository is not None:
            self.repository = repository
        else:
            self.repository = NoteRepository(engine=engine)

        if search_index is not None:
            self.search_index = search_index
        else:
            self.search_index = NoteSearchIndex(engine=index_engine)

        self.synchronizer = synchronizer or ProjectionSynchronizer(self.search_index)

    # =========================================================================
    # Helpers
    # =========================================================================

    @staticmethod
    def _validate_note_fields(title: Optional[str], content: Optional[str]) -> None:
        if not title or not title.strip():
            raise InvalidInputError(
                "Title is required", field="title", code=ErrorCode.NOTE_TITLE_REQUIRED
            )
        if len(title) > MAX_TITLE_LENGTH:
            raise InvalidInputError(
                f"Title cannot exceed {MAX_TITLE_LENGTH} characters",
                field="title",
                value=title,
            )
        if not content or not content.strip():
            raise InvalidInputError(
                "Content is required",
                field="content",
                code=ErrorCode.NOTE_CONTENT_REQUIRED,
            )

    def _require_user(self, username: str) -> User:
        user = self.repository.find_user_by_username(username)
        if user is None:
            raise UserNotFoundError(username)
        return user

    def _require_note(self, note_id: str) -> Note:
        note = self.repository.get(note_id)
        if note is None:
            raise NoteNotFoundError(note_id)
        return note

    def _sync(self, note_id: str) -> None:
        """Project the latest committed state of a note.

        The last sync to run carries the last commit. A failure leaves the
        note stale, not the call failed.
        """
        note = self.repository.get(note_id)
        if note is None:
            # Deleted since the write; the delete removes the document
            logger.debug(f"Note {note_id} is gone, nothing to project")
            return
        try:
            self.synchronizer.sync(note)
        except ProjectionSyncError as e:
            metrics.record_event("projection_sync_failed")
            logger.warning(f"Search projection for note {e.note_id} is stale: {e}")

    def _remove(self, note_id: str) -> None:
        try:
            self.synchronizer.remove(note_id)
        except ProjectionSyncError as e:
            metrics.record_event("projection_remove_failed")
            logger.warning(f"Search document for deleted note {e.note_id} is stale: {e}")

    @staticmethod
    def _annotate(note: Note, username: str) -> Note:
        return note.with_ownership(classify(note, username))

    # =========================================================================
    # Operations
    # =========================================================================

    @traced("create_note")
    def create_note(
        self,
        title: str,
        content: str,
        tags: Optional[List[str]],
        owner_username: str,
    ) -> Note:
        """Create a note owned by ``owner_username``.

        Tags are normalized (trimmed, upper-cased) and created on first use.

        Returns:
            The stored note, classified OWNED.

        Raises:
            InvalidInputError: If title or content is blank.
            UserNotFoundError: If the owner does not exist.
        """
        self._validate_note_fields(title, content)
        owner = self._require_user(owner_username)

        now = utc_now()
        note = Note(
            title=title,
            content=content,
            tags=tags or [],
            created_at=now,
            updated_at=now,
            owner_id=owner.id,
            owner_username=owner.username,
        )
        saved = self.repository.create(note)
        logger.info(f"User '{owner.username}' created note {saved.id}")

        self._sync(saved.id)
        return self._annotate(saved, owner.username)

    @traced("list_notes")
    def list_notes(self, username: str) -> List[Note]:
        """Notes the user owns or received, newest update first.

        Raises:
            UserNotFoundError: If the user does not exist.
        """
        user = self._require_user(username)

        visible: Dict[str, Note] = {}
        for note in self.repository.find_all_by_owner(user.id):
            visible[note.id] = note
        for note in self.repository.find_all_shared_with(user.id):
            visible.setdefault(note.id, note)

        # Two stable sorts: id ascending breaks updated_at ties
        ordered = sorted(visible.values(), key=lambda n: n.id)
        ordered.sort(key=lambda n: n.updated_at, reverse=True)
        return [self._annotate(note, username) for note in ordered]

    @traced("get_note")
    def get_note(self, note_id: str, username: str) -> Note:
        """Raises NoteNotFoundError or AccessDeniedError."""
        note = self._require_note(note_id)
        ownership = ensure_can(note, username, NoteAction.READ)
        return note.with_ownership(ownership)

    @traced("update_note")
    def update_note(
        self,
        note_id: str,
        title: str,
        content: str,
        tags: Optional[List[str]],
        username: str,
    ) -> Note:
        """Replace title, content and tag set of a note. Owner only.

        Concurrent updates are not versioned: the last commit wins.
        """
        self._validate_note_fields(title, content)
        note = self._require_note(note_id)
        ensure_can(note, username, NoteAction.UPDATE)

        changed = note.model_copy(update={
            "title": title,
            "content": content,
            "tags": normalize_tag_names(tags),
            "updated_at": utc_now(),
            "ownership": None,
        })
        saved = self.repository.update(changed)
        logger.info(f"User '{username}' updated note {saved.id}")

        self._sync(saved.id)
        return self._annotate(saved, username)

    @traced("delete_note")
    def delete_note(self, note_id: str, username: str) -> None:
        """Delete a note and its shares. Owner only."""
        note = self._require_note(note_id)
        ensure_can(note, username, NoteAction.DELETE)

        self.repository.delete(note.id)
        logger.info(f"User '{username}' deleted note {note.id}")

        self._remove(note.id)

    @traced("share_note")
    def share_note(
        self,
        note_id: str,
        target_username: str,
        owner_username: str,
    ) -> Note:
        """Make a note visible to another user. Owner only.

        Sharing does not touch ``updated_at``.

        Returns:
            The owner's view of the note, now SHARED_BY_ME.

        Raises:
            NoteNotFoundError: If the note does not exist.
            UserNotFoundError: If the owner or the target does not exist.
            AccessDeniedError: If ``owner_username`` does not own the note.
            SelfShareError: If the target is the owner.
            ShareAlreadyExistsError: If the note is already shared with the target.
        """
        note = self._require_note(note_id)
        self._require_user(owner_username)
        target = self._require_user(target_username)
        ensure_can(note, owner_username, NoteAction.SHARE)
        if target.id == note.owner_id:
            raise SelfShareError(note.id, target.username)

        self.repository.save_share(
            NoteShare(note_id=note.id, shared_with_user_id=target.id)
        )
        logger.info(f"User '{owner_username}' shared note {note.id} with '{target.username}'")

        shared = self._require_note(note.id)
        self._sync(shared.id)
        return self._annotate(shared, owner_username)

    @traced("search_notes")
    def search_notes(
        self,
        text: Optional[str],
        tags: Optional[List[str]],
        username: str,
    ) -> List[Note]:
        """Search notes visible to the user by free text and/or tags.

        Results keep the index's relevance order. Ids the index returns but
        the relational store no longer has are skipped, as is anything the
        access resolver denies.

        Raises:
            InvalidSearchCriteriaError: If both text and tags are empty.
        """
        text_query = text.strip() if text and text.strip() else None
        tag_names = normalize_tag_names(tags)
        if text_query is None and not tag_names:
            raise InvalidSearchCriteriaError()

        ranked_ids = self.search_index.search(text_query, tag_names, username)
        if not ranked_ids:
            return []

        by_id = {n.id: n for n in self.repository.find_all_by_ids(ranked_ids)}
        results = []
        for note_id in ranked_ids:
            note = by_id.get(note_id)
            if note is None:
                logger.debug(f"Search hit {note_id} has no note, skipping")
                continue
            ownership = classify(note, username)
            if ownership is NoteOwnership.DENIED:
                logger.warning(
                    f"Search index returned note {note_id} not visible to '{username}'"
                )
                continue
            results.append(note.with_ownership(ownership))
        return results

    @traced("resync_note")
    def resync_note(self, note_id: str, username: str) -> Note:
        """Re-derive one note's search document. Owner only.

        Unlike the implicit sync after writes, a failure here is raised.

        Raises:
            ProjectionSyncError: If the index write fails again.
        """
        note = self._require_note(note_id)
        ownership = ensure_can(note, username, NoteAction.UPDATE)
        self.synchronizer.sync(note)
        logger.info(f"Resynced search document for note {note.id}")
        return note.with_ownership(ownership)

    @traced("reconcile_projection")
    def reconcile_projection(self) -> Dict[str, int]:
        """Rebuild every search document from the relational store."""
        return self.synchronizer.reconcile(self.repository.get_all())

    @property
    def stale_note_ids(self) -> List[str]:
        return sorted(self.synchronizer.stale_ids)
