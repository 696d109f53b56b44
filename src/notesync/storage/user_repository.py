"""Repository for user storage and retrieval."""
import logging
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from notesync.exceptions import ErrorCode, UsernameAlreadyExistsError
from notesync.models.db_models import DBUser, to_naive_utc
from notesync.models.schema import User, ensure_timezone_aware
from notesync.storage.base import Repository, store_errors

logger = logging.getLogger(__name__)


class UserRepository(Repository[User]):
    """Repository for users. Identities are immutable once created."""

    def __init__(self, session_factory):
        self.session_factory = session_factory

    def create(self, user: User) -> User:
        """Persist a new user.

        Raises:
            UsernameAlreadyExistsError: If the username is taken.
        """
        with store_errors("create_user", ErrorCode.STORAGE_WRITE_FAILED):
            with self.session_factory() as session:
                session.add(DBUser(
                    id=user.id,
                    username=user.username,
                    created_at=to_naive_utc(user.created_at),
                ))
                try:
                    session.commit()
                except IntegrityError:
                    session.rollback()
                    raise UsernameAlreadyExistsError(user.username)

        logger.info(f"Created user '{user.username}' with id {user.id}")
        return user

    def get(self, id: str) -> Optional[User]:
        with store_errors("get_user"), self.session_factory() as session:
            db_user = session.get(DBUser, id)
            return self._db_to_model(db_user) if db_user else None

    def get_by_username(self, username: str) -> Optional[User]:
        """Get a user by exact username."""
        with store_errors("find_user_by_username"), self.session_factory() as session:
            db_user = session.scalar(
                select(DBUser).where(DBUser.username == username)
            )
            return self._db_to_model(db_user) if db_user else None

    def get_all(self) -> List[User]:
        with store_errors("get_all_users"), self.session_factory() as session:
            db_users = session.scalars(select(DBUser).order_by(DBUser.username)).all()
            return [self._db_to_model(u) for u in db_users]

    @staticmethod
    def _db_to_model(db_user: DBUser) -> User:
        return User(
            id=db_user.id,
            username=db_user.username,
            created_at=ensure_timezone_aware(db_user.created_at),
        )
