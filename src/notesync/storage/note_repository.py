"""Repository for note storage and retrieval (the authoritative store)."""

import logging
from typing import Any, Iterable, List, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import selectinload

from notesync.exceptions import (
    ErrorCode,
    NoteNotFoundError,
    ShareAlreadyExistsError,
)
from notesync.models.db_models import (
    DBNote,
    DBNoteShare,
    DBUser,
    get_session_factory,
    init_db,
    to_naive_utc,
)
from notesync.models.schema import (
    Note,
    NoteShare,
    Tag,
    User,
    ensure_timezone_aware,
)
from notesync.storage.base import Repository, store_errors
from notesync.storage.tag_repository import TagRepository
from notesync.storage.user_repository import UserRepository

logger = logging.getLogger(__name__)

# Everything needed to hydrate a Note without lazy loads after the session closes
_NOTE_LOAD_OPTIONS = (
    selectinload(DBNote.owner),
    selectinload(DBNote.tags),
    selectinload(DBNote.shares).selectinload(DBNoteShare.shared_with_user),
)


class NoteRepository(Repository[Note]):
    """Repository over the relational store.

    Each write method runs in a single session transaction, so every
    relational change belonging to one service operation commits or rolls
    back together. Reads hydrate notes with owner, tags and recipients.
    """

    def __init__(self, engine: Optional[Any] = None):
        """Initialize the repository.

        Args:
            engine: Pre-configured SQLAlchemy engine. When None, the
                    relational store from config is initialized.
        """
        self.engine = engine if engine is not None else init_db()
        self.session_factory = get_session_factory(self.engine)
        self.tags = TagRepository(self.session_factory)
        self.users = UserRepository(self.session_factory)
        logger.info(f"NoteRepository initialized: db_url={self.engine.url}")

    # =========================================================================
    # Reads
    # =========================================================================

    def get(self, id: str) -> Optional[Note]:
        """Get a note by ID, or None."""
        with store_errors("find_note_by_id"), self.session_factory() as session:
            db_note = session.scalar(
                select(DBNote).where(DBNote.id == id).options(*_NOTE_LOAD_OPTIONS)
            )
            return self._db_to_model(db_note) if db_note else None

    def get_all(self) -> List[Note]:
        """Get every note, oldest first."""
        with store_errors("get_all_notes"), self.session_factory() as session:
            db_notes = session.scalars(
                select(DBNote)
                .options(*_NOTE_LOAD_OPTIONS)
                .order_by(DBNote.created_at, DBNote.id)
            ).all()
            return [self._db_to_model(n) for n in db_notes]

    def get_all_ids(self) -> List[str]:
        with store_errors("get_all_note_ids"), self.session_factory() as session:
            return list(session.scalars(select(DBNote.id)).all())

    def find_all_by_owner(self, user_id: str) -> List[Note]:
        """Get every note owned by a user (unordered)."""
        with store_errors("find_notes_by_owner"), self.session_factory() as session:
            db_notes = session.scalars(
                select(DBNote)
                .where(DBNote.owner_id == user_id)
                .options(*_NOTE_LOAD_OPTIONS)
            ).all()
            return [self._db_to_model(n) for n in db_notes]

    def find_all_shared_with(self, user_id: str) -> List[Note]:
        """Get every note reached through the user's received shares."""
        with store_errors("find_notes_shared_with"), self.session_factory() as session:
            db_notes = session.scalars(
                select(DBNote)
                .join(DBNoteShare, DBNoteShare.note_id == DBNote.id)
                .where(DBNoteShare.shared_with_user_id == user_id)
                .options(*_NOTE_LOAD_OPTIONS)
            ).unique().all()
            return [self._db_to_model(n) for n in db_notes]

    def find_all_by_ids(self, ids: Iterable[str]) -> List[Note]:
        """Batch load notes by id. Order is NOT preserved; unknown ids are skipped."""
        id_list = list(dict.fromkeys(ids))
        if not id_list:
            return []
        with store_errors("find_notes_by_ids"), self.session_factory() as session:
            db_notes = session.scalars(
                select(DBNote)
                .where(DBNote.id.in_(id_list))
                .options(*_NOTE_LOAD_OPTIONS)
            ).all()
            return [self._db_to_model(n) for n in db_notes]

    def get_shares(self, note_id: str) -> List[NoteShare]:
        """Get the shares of a note, oldest first."""
        with store_errors("get_shares"), self.session_factory() as session:
            db_shares = session.scalars(
                select(DBNoteShare)
                .where(DBNoteShare.note_id == note_id)
                .order_by(DBNoteShare.shared_at)
            ).all()
            return [
                NoteShare(
                    id=s.id,
                    note_id=s.note_id,
                    shared_with_user_id=s.shared_with_user_id,
                    shared_at=ensure_timezone_aware(s.shared_at),
                )
                for s in db_shares
            ]

    def find_user_by_username(self, username: str) -> Optional[User]:
        return self.users.get_by_username(username)

    def find_or_create_tag(self, name: str) -> Tag:
        return self.tags.get_or_create(name)

    # =========================================================================
    # Writes
    # =========================================================================

    def create(self, note: Note) -> Note:
        """Insert a new note together with its tag set.

        Tags are looked up or created in the same transaction.

        Returns:
            The note as re-read from the store.
        """
        with store_errors("create_note", ErrorCode.STORAGE_WRITE_FAILED):
            with self.session_factory() as session:
                db_tags = [TagRepository.resolve(session, name) for name in note.tags]
                db_note = DBNote(
                    id=note.id,
                    owner_id=note.owner_id,
                    created_at=to_naive_utc(note.created_at),
                )
                self._apply(db_note, note, db_tags)
                session.add(db_note)
                session.commit()

        logger.debug(f"Created note {note.id} with tags {note.tags}")
        return self._reread(note.id)

    def update(self, note: Note) -> Note:
        """Replace title, content and tag set of an existing note.

        Shares are not touched. A note deleted since it was loaded stays
        deleted.

        Raises:
            NoteNotFoundError: If the note no longer exists.
        """
        with store_errors("update_note", ErrorCode.STORAGE_WRITE_FAILED):
            with self.session_factory() as session:
                db_note = session.get(DBNote, note.id)
                if db_note is None:
                    raise NoteNotFoundError(note.id)
                db_tags = [TagRepository.resolve(session, name) for name in note.tags]
                self._apply(db_note, note, db_tags)
                session.commit()

        logger.debug(f"Updated note {note.id} with tags {note.tags}")
        return self._reread(note.id)

    def delete(self, note_id: str) -> None:
        """Delete a note; its shares and tag links go with it.

        Raises:
            NoteNotFoundError: If the note does not exist.
        """
        with store_errors("delete_note", ErrorCode.STORAGE_WRITE_FAILED):
            with self.session_factory() as session:
                db_note = session.get(DBNote, note_id)
                if db_note is None:
                    raise NoteNotFoundError(note_id)
                session.delete(db_note)
                session.commit()

        logger.debug(f"Deleted note {note_id}")

    def save_share(self, share: NoteShare) -> NoteShare:
        """Persist a share.

        The unique constraint on (note_id, shared_with_user_id) is the only
        guard against duplicates, so concurrent sharers cannot both win.

        Raises:
            ShareAlreadyExistsError: If the note is already shared with the user.
            NoteNotFoundError: If the note was deleted before the share committed.
        """
        with store_errors("save_share", ErrorCode.STORAGE_WRITE_FAILED):
            with self.session_factory() as session:
                session.add(DBNoteShare(
                    id=share.id,
                    note_id=share.note_id,
                    shared_with_user_id=share.shared_with_user_id,
                    shared_at=to_naive_utc(share.shared_at),
                ))
                try:
                    session.commit()
                except IntegrityError:
                    session.rollback()
                    # The same constraint failure covers a note deleted since it was loaded
                    if session.get(DBNote, share.note_id) is None:
                        raise NoteNotFoundError(share.note_id)
                    recipient = session.get(DBUser, share.shared_with_user_id)
                    raise ShareAlreadyExistsError(
                        share.note_id,
                        recipient.username if recipient else share.shared_with_user_id,
                    )

        logger.debug(f"Shared note {share.note_id} with user {share.shared_with_user_id}")
        return share

    # =========================================================================
    # Mapping
    # =========================================================================

    @staticmethod
    def _apply(db_note: DBNote, note: Note, db_tags: List[Any]) -> None:
        db_note.title = note.title
        db_note.content = note.content
        db_note.updated_at = to_naive_utc(note.updated_at)
        db_note.tags = db_tags

    def _reread(self, note_id: str) -> Note:
        saved = self.get(note_id)
        if saved is None:
            raise NoteNotFoundError(note_id, "Note vanished right after being saved")
        return saved

    @staticmethod
    def _db_to_model(db_note: DBNote) -> Note:
        return Note(
            id=db_note.id,
            title=db_note.title,
            content=db_note.content,
            tags=[tag.name for tag in db_note.tags],
            created_at=ensure_timezone_aware(db_note.created_at),
            updated_at=ensure_timezone_aware(db_note.updated_at),
            owner_id=db_note.owner_id,
            owner_username=db_note.owner.username,
            shared_with=sorted(
                share.shared_with_user.username for share in db_note.shares
            ),
        )
