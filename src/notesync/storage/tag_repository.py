"""Repository for tag storage and retrieval."""
import logging
from typing import List, Optional

from sqlalchemy import func, select, text

from notesync.exceptions import ErrorCode, InvalidInputError
from notesync.models.db_models import DBTag
from notesync.models.schema import Tag, normalize_tag_name
from notesync.storage.base import store_errors

logger = logging.getLogger(__name__)


class TagRepository:
    """Repository for managing tags.

    Tags are normalized (trimmed, upper-cased), globally deduplicated and
    never deleted; note writes look them up or create them.
    """

    def __init__(self, session_factory):
        """Initialize the tag repository.

        Args:
            session_factory: SQLAlchemy session factory for database operations.
        """
        self.session_factory = session_factory

    @staticmethod
    def resolve(session, tag_name: str) -> DBTag:
        """Look up or create a tag inside the caller's transaction.

        Args:
            session: Open session whose transaction the insert joins.
            tag_name: Raw tag name; normalized before use.

        Returns:
            The persistent DBTag row.
        """
        name = normalize_tag_name(tag_name)
        if not name:
            raise InvalidInputError(
                "Tag name cannot be empty", field="tags", value=tag_name
            )
        # INSERT OR IGNORE handles two writers creating the same tag
        session.execute(
            text("INSERT OR IGNORE INTO tags (name) VALUES (:name)"),
            {"name": name}
        )
        return session.scalar(select(DBTag).where(DBTag.name == name))

    def get_or_create(self, tag_name: str) -> Tag:
        """Get an existing tag or create a new one.

        Args:
            tag_name: The name of the tag, in any casing.

        Returns:
            The Tag object.
        """
        with store_errors("find_or_create_tag", ErrorCode.STORAGE_WRITE_FAILED):
            with self.session_factory() as session:
                db_tag = self.resolve(session, tag_name)
                session.commit()
                return Tag(name=db_tag.name)

    def get(self, tag_name: str) -> Optional[Tag]:
        """Get a tag by name.

        Returns:
            The Tag object if found, None otherwise.
        """
        with store_errors("get_tag"), self.session_factory() as session:
            db_tag = session.scalar(
                select(DBTag).where(DBTag.name == normalize_tag_name(tag_name))
            )
            if not db_tag:
                return None

            return Tag(name=db_tag.name)

    def get_all(self) -> List[Tag]:
        """Get all tags in the system, ordered by name."""
        with store_errors("get_all_tags"), self.session_factory() as session:
            db_tags = session.scalars(select(DBTag).order_by(DBTag.name)).all()

            return [Tag(name=tag.name) for tag in db_tags]

    def count(self) -> int:
        """Number of tag records."""
        with store_errors("count_tags"), self.session_factory() as session:
            return session.scalar(select(func.count()).select_from(DBTag))
